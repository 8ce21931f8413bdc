"""Shared pytest fixtures for API tests."""

import sqlite3
from pathlib import Path
from typing import Any, AsyncGenerator, Callable, Dict, List

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

import postforge
from postforge.auth.throttle import FixedWindowRateLimiter, get_rate_limiter
from postforge.common.config import AuthConfig, Config, DatabaseConfig, LoggingConfig
from postforge.core.db import AccountRepository
from postforge.web.dependencies import get_api_settings, get_email_sender, get_repository
from postforge.web.main import create_app
from postforge.web.settings import APISettings, get_settings

API_ACCESS_SECRET = "api-test-access-secret-0123456789abcdefghij"
API_REFRESH_SECRET = "api-test-refresh-secret-0123456789abcdefghij"
API_ENCRYPTION_KEY = "0f1e2d3c4b5a6978" * 4


@pytest.fixture
def api_settings(monkeypatch: pytest.MonkeyPatch) -> APISettings:
    """Provide test API settings; the environment carries the same secrets."""
    monkeypatch.setenv("POSTFORGE_API_ACCESS_TOKEN_SECRET", API_ACCESS_SECRET)
    monkeypatch.setenv("POSTFORGE_API_REFRESH_TOKEN_SECRET", API_REFRESH_SECRET)
    monkeypatch.setenv("POSTFORGE_API_ENCRYPTION_KEY", API_ENCRYPTION_KEY)
    return APISettings(
        host="127.0.0.1",
        port=8000,
        debug=True,
        allowed_origins=["*"],
        log_requests=False,  # Reduce noise in tests
        access_token_secret=API_ACCESS_SECRET,
        refresh_token_secret=API_REFRESH_SECRET,
        encryption_key=API_ENCRYPTION_KEY,
    )


@pytest.fixture
def test_database_config(tmp_path: Path) -> DatabaseConfig:
    """Provide a test database configuration using temp directory."""
    return DatabaseConfig(
        database_path=str(tmp_path / "test_api.db"),
        enable_wal_mode=False,  # Disable WAL in tests to avoid lock issues
        connection_timeout=30,
    )


@pytest.fixture
def test_config(tmp_path: Path, test_database_config: DatabaseConfig) -> Config:
    """Provide a test configuration."""
    return Config(
        config_dir=tmp_path,
        database=test_database_config,
        logging=LoggingConfig(
            level="WARNING",  # Reduce noise in tests
            format="text",
        ),
        auth=AuthConfig(password_hash_rounds=4),
    )


@pytest_asyncio.fixture
async def api_repository(test_database_config: DatabaseConfig) -> AsyncGenerator[AccountRepository, None]:
    """Provide a test database repository with migrations applied."""
    repo = await AccountRepository.from_config(test_database_config)
    yield repo
    await repo.close()


@pytest.fixture
def rate_limiter() -> FixedWindowRateLimiter:
    """Provide a fresh limiter for each test."""
    return FixedWindowRateLimiter()


@pytest_asyncio.fixture
async def test_app(
    api_repository: AccountRepository,
    api_settings: APISettings,
    test_config: Config,
    rate_limiter: FixedWindowRateLimiter,
    email_sender,
) -> AsyncGenerator[TestClient, None]:
    """
    Provide a FastAPI TestClient with test database.

    This fixture:
    1. Creates a fresh test database
    2. Overrides the repository, settings, limiter and email dependencies
    3. Returns a TestClient for making HTTP requests
    """
    postforge._config = test_config
    postforge._repository = api_repository

    get_settings.cache_clear()

    app = create_app()

    async def override_get_repository() -> AsyncGenerator[AccountRepository, None]:
        yield api_repository

    def override_get_settings() -> APISettings:
        return api_settings

    app.dependency_overrides[get_repository] = override_get_repository
    app.dependency_overrides[get_settings] = override_get_settings
    app.dependency_overrides[get_api_settings] = override_get_settings
    app.dependency_overrides[get_rate_limiter] = lambda: rate_limiter
    app.dependency_overrides[get_email_sender] = lambda: email_sender

    with TestClient(app, raise_server_exceptions=False) as client:
        yield client

    app.dependency_overrides.clear()
    get_settings.cache_clear()
    postforge._config = None
    postforge._repository = None


@pytest.fixture
def db_query(test_database_config: DatabaseConfig):
    """Run a read-only query against the test database file."""

    def query(sql: str, params: tuple = ()) -> List[Dict[str, Any]]:
        conn = sqlite3.connect(test_database_config.database_path)
        conn.row_factory = sqlite3.Row
        try:
            return [dict(row) for row in conn.execute(sql, params).fetchall()]
        finally:
            conn.close()

    return query


@pytest.fixture
def register_user(test_app: TestClient) -> Callable[..., dict]:
    """Provide a helper that registers an account and returns the response body."""

    def register(
        email: str = "jane@example.com",
        password: str = "Sup3rSecret",
        name: str = "Jane Doe",
        client_ip: str = "198.51.100.1",
    ) -> dict:
        response = test_app.post(
            "/auth/register",
            json={"email": email, "password": password, "name": name},
            headers={"X-Real-IP": client_ip},
        )
        assert response.status_code == 201, response.text
        return response.json()

    return register


@pytest.fixture
def db_execute(test_database_config: DatabaseConfig):
    """Run a write statement against the test database file."""

    def execute(sql: str, params: tuple = ()) -> None:
        conn = sqlite3.connect(test_database_config.database_path)
        try:
            conn.execute(sql, params)
            conn.commit()
        finally:
            conn.close()

    return execute
