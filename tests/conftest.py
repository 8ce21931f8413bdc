"""Shared pytest fixtures for all tests."""

from pathlib import Path
from typing import List, Tuple

import pytest
import pytest_asyncio

from postforge.auth.encryption import CredentialCipher
from postforge.auth.security import TokenIssuer
from postforge.common.config import Config, DatabaseConfig, LoggingConfig
from postforge.core.db import AccountRepository
from postforge.mail import EmailMessageContent, EmailSender

TEST_ACCESS_SECRET = "test-access-secret-0123456789abcdefghijklmnop"
TEST_REFRESH_SECRET = "test-refresh-secret-0123456789abcdefghijklmnop"
TEST_ENCRYPTION_KEY = "a1b2c3d4" * 8


class RecordingEmailSender(EmailSender):
    """Email backend that keeps sent messages in memory."""

    def __init__(self) -> None:
        self.sent: List[Tuple[str, EmailMessageContent]] = []

    async def send(self, to: str, content: EmailMessageContent) -> None:
        self.sent.append((to, content))

    def last_to(self, to: str) -> EmailMessageContent:
        for recipient, content in reversed(self.sent):
            if recipient == to:
                return content
        raise AssertionError(f"No email sent to {to}")


@pytest.fixture
def sample_config(tmp_path: Path) -> Config:
    """Provide a sample configuration for tests."""
    return Config(
        config_dir=tmp_path,
        logging=LoggingConfig(
            level="DEBUG",
            format="text",
        ),
    )


@pytest.fixture
def database_config(tmp_path: Path) -> DatabaseConfig:
    """Provide a test database configuration."""
    return DatabaseConfig(
        database_path=str(tmp_path / "test_postforge.db"),
        enable_wal_mode=False,  # Disable WAL mode in tests to avoid lock issues
        connection_timeout=30,
    )


@pytest_asyncio.fixture
async def test_repository(database_config: DatabaseConfig) -> AccountRepository:
    """Provide a test database with migrations applied."""
    repo = await AccountRepository.from_config(database_config)
    yield repo
    await repo.close()


@pytest.fixture
def master_secret() -> str:
    return TEST_ENCRYPTION_KEY


@pytest.fixture
def cipher(master_secret: str) -> CredentialCipher:
    return CredentialCipher(master_secret)


@pytest.fixture
def issuer() -> TokenIssuer:
    """Provide a token issuer with test secrets."""
    return TokenIssuer(
        access_secret=TEST_ACCESS_SECRET,
        refresh_secret=TEST_REFRESH_SECRET,
    )


@pytest.fixture
def email_sender() -> RecordingEmailSender:
    return RecordingEmailSender()
