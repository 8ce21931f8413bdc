"""Account authentication flows: registration, login, sessions and recovery.

Every flow that accepts a credential fails closed. Login answers the same
way whether the email is unknown or the password is wrong, refresh tokens
must match a live session row, and a password reset signs the user out
everywhere.
"""

from typing import Any, Callable, Dict, Optional

from postforge.auth.otp import (
    expiry_of,
    generate_otp,
    generate_reset_token,
    is_expired,
    verify_code,
)
from postforge.auth.schemas import (
    AuthResponse,
    RegisterRequest,
    TokenPair,
    TokenPayload,
    UserInfo,
)
from postforge.auth.security import (
    TokenIssuer,
    dummy_password_hash,
    hash_password,
    verify_password,
)
from postforge.common.config import AuthConfig, EmailConfig
from postforge.core.db.exceptions import DuplicateRecordError, UserNotFoundError
from postforge.core.db.repository import AccountRepository, parse_timestamp
from postforge.core.exceptions import (
    AuthenticationError,
    ConflictError,
    ExpiredError,
    NotFoundError,
    ValidationError,
)
from postforge.mail import (
    EmailDeliveryError,
    EmailSender,
    otp_email,
    password_changed_email,
    password_reset_email,
)

from .base import BaseService, utcnow

INVALID_CREDENTIALS = "Invalid email or password"
INVALID_REFRESH_TOKEN = "Invalid or expired refresh token"
FORGOT_PASSWORD_MESSAGE = (
    "If an account with that email exists, a password reset link has been sent."
)


class AuthService(BaseService):
    """Service implementing the account authentication flows.

    Args:
        repository: AccountRepository for users and sessions
        issuer: TokenIssuer holding the access and refresh secrets
        email_sender: Delivery backend for codes and reset links
        auth_config: Hash cost and one-time credential lifetimes
        email_config: Sender identity and the public app URL
        clock: Returns the current aware UTC datetime
    """

    def __init__(
        self,
        repository: AccountRepository,
        issuer: TokenIssuer,
        email_sender: EmailSender,
        auth_config: Optional[AuthConfig] = None,
        email_config: Optional[EmailConfig] = None,
        clock: Callable = utcnow,
    ):
        super().__init__(repository, clock)
        self.issuer = issuer
        self.email_sender = email_sender
        self.auth_config = auth_config or AuthConfig()
        self.email_config = email_config or EmailConfig()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _start_session(
        self,
        user: Dict[str, Any],
        user_agent: Optional[str],
        ip_address: Optional[str],
    ) -> TokenPair:
        pair = self.issuer.generate_token_pair(TokenIssuer.claims_for(user["id"], user["email"]))
        await self.repository.create_session(
            user_id=user["id"],
            token=pair.refresh_token,
            expires_at=self.issuer.refresh_expires_at(self.now()),
            user_agent=user_agent,
            ip_address=ip_address,
        )
        return pair

    # ------------------------------------------------------------------
    # Registration and login
    # ------------------------------------------------------------------

    async def register(
        self,
        request: RegisterRequest,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> AuthResponse:
        """
        Create an account and sign it in.

        Args:
            request: Validated registration data (email already lower-cased)
            user_agent: Client user agent, stored on the session
            ip_address: Client identifier, stored on the session

        Returns:
            The new user and a token pair

        Raises:
            ConflictError: If the email is already registered
        """
        if await self.repository.find_user_by_email(request.email) is not None:
            self.logger.info("registration_rejected_duplicate_email")
            raise ConflictError("User with this email already exists", field="email")

        password_hash = hash_password(request.password, rounds=self.auth_config.password_hash_rounds)

        try:
            async with self.repository.transaction():
                user_id = await self.repository.create_user(
                    email=request.email,
                    password_hash=password_hash,
                    name=request.name,
                )
                user = await self.repository.get_user_by_id(user_id)
                tokens = await self._start_session(user, user_agent, ip_address)
        except DuplicateRecordError as e:
            raise ConflictError("User with this email already exists", field="email") from e

        self.logger.info("user_registered", user_id=user_id, ip=ip_address)
        return AuthResponse(user=UserInfo.model_validate(user), tokens=tokens)

    async def login(
        self,
        email: str,
        password: str,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> AuthResponse:
        """
        Verify credentials and open a new session.

        Raises:
            AuthenticationError: With the same message for an unknown email
                and a wrong password
        """
        user = await self.repository.find_user_by_email(email)

        if user is None:
            # Keep the unknown-email path as slow as a real check
            rounds = self.auth_config.password_hash_rounds
            verify_password(password, dummy_password_hash(rounds))
            self.logger.warning("login_failed_user_not_found", ip=ip_address)
            raise AuthenticationError(INVALID_CREDENTIALS)

        if not verify_password(password, user["password_hash"]):
            self.logger.warning("login_failed_invalid_password", user_id=user["id"], ip=ip_address)
            raise AuthenticationError(INVALID_CREDENTIALS)

        await self.repository.record_login(user["id"])
        user = await self.repository.get_user_by_id(user["id"])
        tokens = await self._start_session(user, user_agent, ip_address)

        self.logger.info("login_successful", user_id=user["id"], ip=ip_address)
        return AuthResponse(user=UserInfo.model_validate(user), tokens=tokens)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def refresh(
        self,
        refresh_token: str,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> TokenPair:
        """
        Exchange a refresh token for a new pair, rotating its session.

        The token must carry a valid refresh signature AND match a live
        session row. The old row is deleted and the new one stored in the
        same transaction.

        Raises:
            AuthenticationError: If the token is invalid, revoked or expired
        """
        payload = self.issuer.verify_refresh_token(refresh_token)
        if payload is None:
            raise AuthenticationError(INVALID_REFRESH_TOKEN)

        session = await self.repository.find_session(refresh_token)
        if session is None:
            self.logger.warning("refresh_rejected_session_not_found", user_id=payload.user_id)
            raise AuthenticationError(INVALID_REFRESH_TOKEN)

        if is_expired(parse_timestamp(session["expires_at"]), self.now()):
            await self.repository.delete_session(refresh_token)
            self.logger.info("refresh_rejected_session_expired", user_id=payload.user_id)
            raise AuthenticationError(INVALID_REFRESH_TOKEN)

        try:
            user = await self.repository.get_user_by_id(payload.user_id)
        except UserNotFoundError as e:
            raise AuthenticationError(INVALID_REFRESH_TOKEN) from e

        async with self.repository.transaction():
            if not await self.repository.delete_session(refresh_token):
                # Consumed by a concurrent refresh
                raise AuthenticationError(INVALID_REFRESH_TOKEN)
            tokens = await self._start_session(user, user_agent, ip_address)

        self.logger.info("session_rotated", user_id=user["id"])
        return tokens

    async def logout(self, refresh_token: Optional[str]) -> None:
        """End the session of ``refresh_token``. Unknown tokens are ignored."""
        if not refresh_token:
            return
        if await self.repository.delete_session(refresh_token):
            self.logger.info("session_revoked")

    async def authenticate(self, access_token: str) -> TokenPayload:
        """
        Verify an access token.

        Raises:
            AuthenticationError: If the token is invalid or expired
        """
        payload = self.issuer.verify_access_token(access_token)
        if payload is None:
            raise AuthenticationError("Invalid or expired token")
        return payload

    async def get_user(self, user_id: int) -> UserInfo:
        """
        Get the public view of an authenticated user.

        Raises:
            AuthenticationError: If the account no longer exists
        """
        try:
            user = await self.repository.get_user_by_id(user_id)
        except UserNotFoundError as e:
            raise AuthenticationError("Invalid or expired token") from e
        return UserInfo.model_validate(user)

    # ------------------------------------------------------------------
    # Email verification
    # ------------------------------------------------------------------

    async def _get_unverified_user(self, email: str) -> Dict[str, Any]:
        user = await self.repository.find_user_by_email(email)
        if user is None:
            raise NotFoundError("User not found", resource_type="user")
        if user["email_verified"]:
            raise ValidationError("Email already verified", field="email")
        return user

    async def send_otp(self, email: str) -> int:
        """
        Issue a new verification code and email it.

        Any earlier code for the user stops working.

        Returns:
            Seconds until the code expires

        Raises:
            NotFoundError: If no account has this email
            ValidationError: If the email is already verified
            EmailDeliveryError: If the email could not be sent
        """
        user = await self._get_unverified_user(email)

        minutes = self.auth_config.otp_expires_minutes
        code = generate_otp()
        await self.repository.set_verification_otp(
            user["id"], code, expiry_of(self.now(), minutes)
        )

        content = otp_email(code, minutes, name=user["name"], product=self.email_config.from_name)
        await self.email_sender.send(user["email"], content)

        self.logger.info("verification_code_sent", user_id=user["id"])
        return minutes * 60

    async def verify_otp(self, email: str, otp: str) -> None:
        """
        Verify an email address with a code from :meth:`send_otp`.

        Raises:
            NotFoundError: If no account has this email
            ValidationError: If already verified or the code is wrong
            ExpiredError: If there is no active code or it has expired
        """
        user = await self._get_unverified_user(email)

        if not user["email_verification_otp"]:
            raise ExpiredError(
                "No verification code found. Please request a new one.", field="otp"
            )

        if is_expired(parse_timestamp(user["otp_expires_at"]), self.now()):
            raise ExpiredError(
                "Verification code has expired. Please request a new one.", field="otp"
            )

        if not verify_code(otp, user["email_verification_otp"]):
            self.logger.warning("verification_code_mismatch", user_id=user["id"])
            raise ValidationError("Invalid verification code", field="otp")

        await self.repository.mark_email_verified(user["id"])

    # ------------------------------------------------------------------
    # Password recovery
    # ------------------------------------------------------------------

    async def forgot_password(self, email: str) -> str:
        """
        Email a password reset link if the account exists.

        The outcome is the same whether or not the email is registered.

        Returns:
            The message to show the client
        """
        user = await self.repository.find_user_by_email(email)
        if user is None:
            self.logger.info("password_reset_requested_unknown_email")
            return FORGOT_PASSWORD_MESSAGE

        minutes = self.auth_config.reset_token_expires_minutes
        token = generate_reset_token()
        await self.repository.set_reset_token(user["id"], token, expiry_of(self.now(), minutes))

        reset_url = f"{self.email_config.app_base_url}/reset-password?token={token}"
        content = password_reset_email(
            reset_url, minutes, name=user["name"], product=self.email_config.from_name
        )
        await self.email_sender.send(user["email"], content)

        self.logger.info("password_reset_requested", user_id=user["id"])
        return FORGOT_PASSWORD_MESSAGE

    async def reset_password(self, token: str, password: str) -> None:
        """
        Set a new password with a reset token.

        The token is consumed and every session of the user is deleted in
        the same transaction.

        Raises:
            ValidationError: If the token is unknown
            ExpiredError: If the token has expired
        """
        user = await self.repository.find_user_by_reset_token(token.strip())
        if user is None:
            raise ValidationError("Invalid or expired reset token", field="token")

        if is_expired(parse_timestamp(user["reset_token_expires_at"]), self.now()):
            raise ExpiredError(
                "Reset token has expired. Please request a new one.", field="token"
            )

        password_hash = hash_password(password, rounds=self.auth_config.password_hash_rounds)
        await self.repository.complete_password_reset(user["id"], password_hash)

        try:
            await self.email_sender.send(
                user["email"],
                password_changed_email(name=user["name"], product=self.email_config.from_name),
            )
        except EmailDeliveryError as e:
            self.logger.warning(
                "password_changed_email_failed", user_id=user["id"], error=str(e)
            )
