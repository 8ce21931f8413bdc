"""FastAPI dependency injection for database, authentication, and services."""

from dataclasses import dataclass
from typing import AsyncGenerator, Callable, Optional

import structlog
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

import postforge
from postforge.auth.encryption import CredentialCipher
from postforge.auth.schemas import UserInfo
from postforge.auth.security import TokenIssuer
from postforge.auth.throttle import (
    FixedWindowRateLimiter,
    RateLimitPolicy,
    RateLimitResult,
    get_client_identifier,
    get_rate_limiter,
)
from postforge.common.config import Config
from postforge.core.db import AccountRepository, UserNotFoundError
from postforge.core.exceptions import AuthenticationError, RateLimitedError
from postforge.mail import EmailSender, build_email_sender
from postforge.services import ApiKeyService, AuthService

from .settings import APISettings, get_settings

logger = structlog.get_logger(__name__)

# Optional bearer scheme - doesn't require auth header, allows checking if present
optional_bearer = HTTPBearer(auto_error=False)

_email_sender: Optional[EmailSender] = None


async def get_repository() -> AsyncGenerator[AccountRepository, None]:
    """
    Dependency that provides an AccountRepository instance.

    Yields the repository from the configured postforge module.
    Requires postforge.configure() to have been called (done in app lifespan).

    Example:
        @router.get("/api-keys")
        async def list_keys(repo: AccountRepository = Depends(get_repository)):
            ...
    """
    repo = await postforge.get_repository()
    yield repo


def get_api_settings() -> APISettings:
    """
    Dependency that provides API settings.

    Returns:
        APISettings instance (cached)
    """
    return get_settings()


def get_config() -> Config:
    return postforge.get_config()


def get_email_sender(config: Config = Depends(get_config)) -> EmailSender:
    """Dependency that provides the process-wide email sender."""
    global _email_sender
    if _email_sender is None:
        _email_sender = build_email_sender(config.email)
    return _email_sender


def get_token_issuer(settings: APISettings = Depends(get_api_settings)) -> TokenIssuer:
    return TokenIssuer(
        access_secret=settings.access_token_secret,
        refresh_secret=settings.refresh_token_secret,
        algorithm=settings.jwt_algorithm,
        access_expires_minutes=settings.access_token_expires_minutes,
        refresh_expires_minutes=settings.refresh_token_expires_minutes,
    )


def get_cipher(settings: APISettings = Depends(get_api_settings)) -> CredentialCipher:
    return CredentialCipher(settings.encryption_key)


# ==================== Request Metadata ====================


@dataclass(frozen=True)
class ClientContext:
    """Who is calling: stored on new sessions and used as rate-limit key."""

    ip_address: str
    user_agent: Optional[str]


def get_client_context(request: Request, config: Config = Depends(get_config)) -> ClientContext:
    """
    Dependency that identifies the caller from proxy headers.

    Returns:
        ClientContext with the client identifier and user agent
    """
    return ClientContext(
        ip_address=get_client_identifier(request.headers, config.rate_limits.client_ip_headers),
        user_agent=request.headers.get("user-agent"),
    )


def rate_limit(action: str, policy_name: str) -> Callable[..., Optional[RateLimitResult]]:
    """
    Build a dependency enforcing a fixed-window limit for one action.

    The window key is ``"<action>:<client identifier>"``. The check runs
    before the request body is validated, so rejected and malformed
    requests alike count against the window.

    Args:
        action: Key prefix, e.g. ``"login"``
        policy_name: Name of the policy in ``config.rate_limits``
            (``"login"``, ``"registration"`` or ``"api"``)

    Example:
        @router.post("/login", dependencies=[Depends(rate_limit("login", "login"))])
        async def login(...): ...
    """

    def check_rate_limit(
        client: ClientContext = Depends(get_client_context),
        limiter: FixedWindowRateLimiter = Depends(get_rate_limiter),
        config: Config = Depends(get_config),
    ) -> Optional[RateLimitResult]:
        if not config.rate_limits.enabled:
            return None

        policy_config = getattr(config.rate_limits, policy_name)
        policy = RateLimitPolicy(
            window_seconds=policy_config.window_seconds,
            max_requests=policy_config.max_requests,
        )
        result = limiter.check(f"{action}:{client.ip_address}", policy)
        if not result.allowed:
            raise RateLimitedError(
                "Too many requests. Please try again later.",
                result=result,
                limit=policy.max_requests,
                action=action,
            )
        return result

    return check_rate_limit


# ==================== Authentication ====================


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(optional_bearer),
    issuer: TokenIssuer = Depends(get_token_issuer),
    repo: AccountRepository = Depends(get_repository),
) -> Optional[UserInfo]:
    """
    Dependency that extracts and validates the current user from JWT token.

    Returns:
        UserInfo if a valid token was sent, None if no token was sent

    Raises:
        AuthenticationError: If the token is invalid/expired or the user is gone
    """
    if not credentials:
        return None

    payload = issuer.verify_access_token(credentials.credentials)
    if payload is None:
        raise AuthenticationError("Invalid or expired token")

    try:
        user = await repo.get_user_by_id(payload.user_id)
    except UserNotFoundError as e:
        raise AuthenticationError("Invalid or expired token") from e

    return UserInfo.model_validate(user)


async def require_auth(user: Optional[UserInfo] = Depends(get_current_user)) -> UserInfo:
    """
    Dependency that requires a valid access token.

    Raises:
        AuthenticationError: If no valid token was provided

    Example:
        @router.get("/protected")
        async def protected_route(user: UserInfo = Depends(require_auth)):
            return {"message": f"Hello, {user.email}"}
    """
    if user is None:
        raise AuthenticationError("Authentication required")

    logger.debug("request_authenticated", user_id=user.id)
    return user


# ==================== Service Dependencies ====================


async def get_auth_service(
    repo: AccountRepository = Depends(get_repository),
    issuer: TokenIssuer = Depends(get_token_issuer),
    email_sender: EmailSender = Depends(get_email_sender),
    config: Config = Depends(get_config),
) -> AuthService:
    """
    Dependency that provides an AuthService instance.

    The service is created per-request with the repository dependency.
    """
    return AuthService(
        repository=repo,
        issuer=issuer,
        email_sender=email_sender,
        auth_config=config.auth,
        email_config=config.email,
    )


async def get_api_key_service(
    repo: AccountRepository = Depends(get_repository),
    cipher: CredentialCipher = Depends(get_cipher),
) -> ApiKeyService:
    return ApiKeyService(repository=repo, cipher=cipher)
