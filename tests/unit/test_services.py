"""Unit tests for the account services."""

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from postforge.auth.encryption import CredentialCipher
from postforge.auth.schemas import (
    AddApiKeyRequest,
    ApiKeyProvider,
    RegisterRequest,
    UpdateApiKeyRequest,
)
from postforge.auth.security import TokenIssuer, verify_password
from postforge.common.config import AuthConfig
from postforge.core.db import AccountRepository, parse_timestamp
from postforge.core.exceptions import (
    AuthenticationError,
    ConflictError,
    ExpiredError,
    NotFoundError,
    ValidationError,
)
from postforge.mail import EmailDeliveryError, EmailMessageContent, EmailSender
from postforge.services import ApiKeyService, AuthService
from postforge.services import auth_service as auth_service_module
from postforge.services.auth_service import FORGOT_PASSWORD_MESSAGE, INVALID_CREDENTIALS

PASSWORD = "Sup3rSecret"


class MutableClock:
    """Clock returning a settable aware datetime."""

    def __init__(self) -> None:
        self.current = datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


class FailingEmailSender(EmailSender):
    async def send(self, to: str, content: EmailMessageContent) -> None:
        raise EmailDeliveryError("SMTP unavailable", recipient=to)


@pytest.fixture
def clock() -> MutableClock:
    return MutableClock()


@pytest.fixture
def auth_service(test_repository, issuer, email_sender, clock) -> AuthService:
    return AuthService(
        repository=test_repository,
        issuer=issuer,
        email_sender=email_sender,
        auth_config=AuthConfig(password_hash_rounds=4),
        clock=clock,
    )


@pytest_asyncio.fixture
async def registered(auth_service: AuthService):
    """Register jane@example.com and return the AuthResponse."""
    return await auth_service.register(
        RegisterRequest(email="Jane@Example.com", password=PASSWORD, name="Jane"),
        user_agent="pytest",
        ip_address="203.0.113.7",
    )


class TestRegisterAndLogin:
    """Tests for registration and login."""

    @pytest.mark.asyncio
    async def test_register_creates_user_and_session(
        self, registered, test_repository: AccountRepository, issuer: TokenIssuer, clock
    ):
        assert registered.user.email == "jane@example.com"
        assert registered.user.email_verified is False

        user = await test_repository.get_user_by_id(registered.user.id)
        assert user["password_hash"].startswith("$2b$04$")
        assert verify_password(PASSWORD, user["password_hash"])

        session = await test_repository.find_session(registered.tokens.refresh_token)
        assert session["user_agent"] == "pytest"
        assert session["ip_address"] == "203.0.113.7"
        assert parse_timestamp(session["expires_at"]) == clock.current + timedelta(days=7)

        assert issuer.verify_access_token(registered.tokens.access_token).user_id == registered.user.id

    @pytest.mark.asyncio
    async def test_register_duplicate_email(self, auth_service: AuthService, registered):
        with pytest.raises(ConflictError):
            await auth_service.register(RegisterRequest(email="jane@example.com", password=PASSWORD))

    @pytest.mark.asyncio
    async def test_login_success_records_login(self, auth_service: AuthService, registered):
        response = await auth_service.login("jane@example.com", PASSWORD)

        assert response.user.id == registered.user.id
        assert response.user.last_login_at is not None
        assert response.tokens.refresh_token != registered.tokens.refresh_token

    @pytest.mark.asyncio
    async def test_login_errors_are_identical(self, auth_service: AuthService, registered):
        """Test unknown email and wrong password fail the same way."""
        with pytest.raises(AuthenticationError) as unknown:
            await auth_service.login("nobody@example.com", PASSWORD)
        with pytest.raises(AuthenticationError) as wrong:
            await auth_service.login("jane@example.com", "Wr0ngPassword")

        assert unknown.value.message == wrong.value.message == INVALID_CREDENTIALS

    @pytest.mark.asyncio
    async def test_unknown_email_checks_hash_at_configured_cost(
        self, auth_service: AuthService, registered, monkeypatch: pytest.MonkeyPatch
    ):
        """Test the unknown-email path checks a hash as costly as a real one."""
        checked = []

        def recording_verify(password, hashed):
            checked.append(hashed)
            return verify_password(password, hashed)

        monkeypatch.setattr(auth_service_module, "verify_password", recording_verify)

        with pytest.raises(AuthenticationError):
            await auth_service.login("nobody@example.com", PASSWORD)
        with pytest.raises(AuthenticationError):
            await auth_service.login("jane@example.com", "Wr0ngPassword")

        unknown_hash, real_hash = checked
        assert unknown_hash.startswith("$2b$04$")
        assert unknown_hash[:7] == real_hash[:7]


class TestSessions:
    """Tests for refresh, logout and access tokens."""

    @pytest.mark.asyncio
    async def test_refresh_rotates_session(
        self, auth_service: AuthService, registered, test_repository: AccountRepository
    ):
        old_token = registered.tokens.refresh_token

        tokens = await auth_service.refresh(old_token)

        assert tokens.refresh_token != old_token
        assert await test_repository.find_session(old_token) is None
        assert await test_repository.find_session(tokens.refresh_token) is not None

        with pytest.raises(AuthenticationError):
            await auth_service.refresh(old_token)

    @pytest.mark.asyncio
    async def test_refresh_rejects_access_token(self, auth_service: AuthService, registered):
        with pytest.raises(AuthenticationError):
            await auth_service.refresh(registered.tokens.access_token)

    @pytest.mark.asyncio
    async def test_refresh_rejects_expired_session(
        self, auth_service: AuthService, registered, test_repository: AccountRepository
    ):
        """Test a session row past its expiry is refused and removed."""
        token = registered.tokens.refresh_token
        session = await test_repository.find_session(token)
        await test_repository.connection.execute(
            "UPDATE sessions SET expires_at = ? WHERE id = ?",
            ((datetime.now(timezone.utc) - timedelta(minutes=1)).isoformat(), session["id"]),
        )
        await test_repository.connection.commit()

        with pytest.raises(AuthenticationError):
            await auth_service.refresh(token)
        assert await test_repository.find_session(token) is None

    @pytest.mark.asyncio
    async def test_logout(self, auth_service: AuthService, registered, test_repository):
        await auth_service.logout(registered.tokens.refresh_token)
        assert await test_repository.find_session(registered.tokens.refresh_token) is None

        # Unknown and missing tokens are ignored
        await auth_service.logout("not-a-token")
        await auth_service.logout(None)

    @pytest.mark.asyncio
    async def test_authenticate(self, auth_service: AuthService, registered):
        payload = await auth_service.authenticate(registered.tokens.access_token)
        assert payload.user_id == registered.user.id

        with pytest.raises(AuthenticationError):
            await auth_service.authenticate(registered.tokens.refresh_token)

    @pytest.mark.asyncio
    async def test_get_user_missing(self, auth_service: AuthService):
        with pytest.raises(AuthenticationError):
            await auth_service.get_user(999)


class TestEmailVerification:
    """Tests for the verification code flow."""

    @pytest.mark.asyncio
    async def test_send_and_verify(self, auth_service: AuthService, registered, email_sender):
        expires_in = await auth_service.send_otp("jane@example.com")
        assert expires_in == 600

        recipient, content = email_sender.sent[-1]
        assert recipient == "jane@example.com"
        code = next(word for word in content.text.split() if word.isdigit() and len(word) == 6)

        await auth_service.verify_otp("jane@example.com", code)

        user = await auth_service.get_user(registered.user.id)
        assert user.email_verified is True

        with pytest.raises(ValidationError, match="already verified"):
            await auth_service.send_otp("jane@example.com")

    @pytest.mark.asyncio
    async def test_new_code_replaces_old(self, auth_service: AuthService, registered, test_repository):
        await auth_service.send_otp("jane@example.com")
        first = (await test_repository.get_user_by_id(registered.user.id))["email_verification_otp"]
        await auth_service.send_otp("jane@example.com")
        second = (await test_repository.get_user_by_id(registered.user.id))["email_verification_otp"]

        if first != second:
            with pytest.raises(ValidationError):
                await auth_service.verify_otp("jane@example.com", first)

    @pytest.mark.asyncio
    async def test_wrong_code(self, auth_service: AuthService, registered, test_repository):
        await auth_service.send_otp("jane@example.com")
        stored = (await test_repository.get_user_by_id(registered.user.id))["email_verification_otp"]
        wrong = "100000" if stored != "100000" else "100001"

        with pytest.raises(ValidationError, match="Invalid verification code"):
            await auth_service.verify_otp("jane@example.com", wrong)

    @pytest.mark.asyncio
    async def test_expired_code(self, auth_service: AuthService, registered, test_repository, clock):
        await auth_service.send_otp("jane@example.com")
        stored = (await test_repository.get_user_by_id(registered.user.id))["email_verification_otp"]
        clock.advance(minutes=11)

        with pytest.raises(ExpiredError):
            await auth_service.verify_otp("jane@example.com", stored)

    @pytest.mark.asyncio
    async def test_verify_without_code(self, auth_service: AuthService, registered):
        with pytest.raises(ExpiredError, match="No verification code"):
            await auth_service.verify_otp("jane@example.com", "123456")

    @pytest.mark.asyncio
    async def test_unknown_email(self, auth_service: AuthService):
        with pytest.raises(NotFoundError):
            await auth_service.send_otp("nobody@example.com")

    @pytest.mark.asyncio
    async def test_delivery_failure_propagates(self, test_repository, issuer, registered):
        service = AuthService(
            repository=test_repository,
            issuer=issuer,
            email_sender=FailingEmailSender(),
            auth_config=AuthConfig(password_hash_rounds=4),
        )
        with pytest.raises(EmailDeliveryError):
            await service.send_otp("jane@example.com")


class TestPasswordReset:
    """Tests for forgot/reset password."""

    @pytest.mark.asyncio
    async def test_forgot_password_unknown_email(self, auth_service: AuthService, email_sender):
        message = await auth_service.forgot_password("nobody@example.com")
        assert message == FORGOT_PASSWORD_MESSAGE
        assert email_sender.sent == []

    @pytest.mark.asyncio
    async def test_reset_flow(self, auth_service: AuthService, registered, test_repository, email_sender):
        """Test reset stores the new hash, revokes every session and sends a notice."""
        await auth_service.login("jane@example.com", PASSWORD)
        assert await auth_service.forgot_password("jane@example.com") == FORGOT_PASSWORD_MESSAGE

        token = (await test_repository.get_user_by_id(registered.user.id))["reset_token"]
        assert token in email_sender.last_to("jane@example.com").text

        await auth_service.reset_password(token, "N3wPassword")

        assert await test_repository.list_user_sessions(registered.user.id) == []
        assert "changed" in email_sender.last_to("jane@example.com").subject

        with pytest.raises(AuthenticationError):
            await auth_service.login("jane@example.com", PASSWORD)
        await auth_service.login("jane@example.com", "N3wPassword")

        with pytest.raises(ValidationError):
            await auth_service.reset_password(token, "An0therPassword")

    @pytest.mark.asyncio
    async def test_expired_reset_token(self, auth_service: AuthService, registered, test_repository, clock):
        await auth_service.forgot_password("jane@example.com")
        token = (await test_repository.get_user_by_id(registered.user.id))["reset_token"]
        clock.advance(minutes=31)

        with pytest.raises(ExpiredError):
            await auth_service.reset_password(token, "N3wPassword")

    @pytest.mark.asyncio
    async def test_invalid_reset_token(self, auth_service: AuthService):
        with pytest.raises(ValidationError):
            await auth_service.reset_password("f" * 64, "N3wPassword")


class TestApiKeyService:
    """Tests for ApiKeyService."""

    @pytest_asyncio.fixture
    async def user_id(self, test_repository: AccountRepository) -> int:
        return await test_repository.create_user("jane@example.com", "$2b$04$hash")

    @pytest.fixture
    def service(self, test_repository: AccountRepository, cipher: CredentialCipher) -> ApiKeyService:
        return ApiKeyService(repository=test_repository, cipher=cipher)

    @pytest.mark.asyncio
    async def test_add_key_encrypts(self, service: ApiKeyService, user_id: int, test_repository):
        info = await service.add_key(
            user_id, AddApiKeyRequest(provider=ApiKeyProvider.OPENAI, key=" sk-live-abc ", label="Main")
        )

        assert info.provider == ApiKeyProvider.OPENAI
        assert info.is_valid is True
        row = await test_repository.find_api_key_by_provider(user_id, "OPENAI")
        assert row["encrypted_key"] != "sk-live-abc"
        assert "sk-live-abc" not in row["encrypted_key"]

    @pytest.mark.asyncio
    async def test_add_duplicate_provider(self, service: ApiKeyService, user_id: int):
        request = AddApiKeyRequest(provider=ApiKeyProvider.OPENAI, key="sk-1")
        await service.add_key(user_id, request)
        with pytest.raises(ConflictError):
            await service.add_key(user_id, request)

    @pytest.mark.asyncio
    async def test_reveal_key(self, service: ApiKeyService, user_id: int, test_repository):
        info = await service.add_key(
            user_id, AddApiKeyRequest(provider=ApiKeyProvider.ANTHROPIC, key="sk-ant-123")
        )

        assert await service.reveal_key(user_id, ApiKeyProvider.ANTHROPIC) == "sk-ant-123"
        assert (await test_repository.get_api_key(info.id, user_id))["last_used_at"] is not None
        assert await service.reveal_key(user_id, ApiKeyProvider.OPENAI) is None

    @pytest.mark.asyncio
    async def test_reveal_undecryptable_key_marks_invalid(
        self, user_id: int, test_repository: AccountRepository, cipher: CredentialCipher
    ):
        """Test a key stored under another master secret is flagged invalid."""
        other = ApiKeyService(repository=test_repository, cipher=CredentialCipher("0" * 64))
        info = await other.add_key(
            user_id, AddApiKeyRequest(provider=ApiKeyProvider.REPLICATE, key="r8_abc")
        )
        service = ApiKeyService(repository=test_repository, cipher=cipher)

        assert await service.reveal_key(user_id, ApiKeyProvider.REPLICATE) is None
        assert (await test_repository.get_api_key(info.id, user_id))["is_valid"] == 0
        # Invalid keys are not decrypted again
        assert await other.reveal_key(user_id, ApiKeyProvider.REPLICATE) is None

    @pytest.mark.asyncio
    async def test_update_and_delete(self, service: ApiKeyService, user_id: int):
        info = await service.add_key(user_id, AddApiKeyRequest(provider=ApiKeyProvider.OPENAI, key="sk-1"))

        updated = await service.update_key(user_id, info.id, UpdateApiKeyRequest(label="Work"))
        assert updated.label == "Work"

        await service.delete_key(user_id, info.id)
        assert await service.list_keys(user_id) == []

        with pytest.raises(NotFoundError):
            await service.delete_key(user_id, info.id)
        with pytest.raises(NotFoundError):
            await service.update_key(user_id, info.id, UpdateApiKeyRequest(label="x"))
