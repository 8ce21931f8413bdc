"""Authentication and credential protection primitives for PostForge."""

from .encryption import CredentialCipher, decrypt, encrypt
from .otp import (
    expiry_of,
    generate_otp,
    generate_reset_token,
    is_expired,
    verify_code,
)
from .schemas import (
    ApiKeyProvider,
    AuthResponse,
    LoginRequest,
    RefreshRequest,
    RegisterRequest,
    TokenPair,
    TokenPayload,
    UserInfo,
)
from .security import (
    TokenIssuer,
    decode_token,
    dummy_password_hash,
    hash_password,
    verify_password,
)
from .throttle import (
    FixedWindowRateLimiter,
    RateLimitPolicy,
    RateLimitResult,
    get_client_identifier,
    get_rate_limiter,
)

__all__ = [
    # Credential store
    "CredentialCipher",
    "encrypt",
    "decrypt",
    # Passwords and tokens
    "hash_password",
    "verify_password",
    "decode_token",
    "dummy_password_hash",
    "TokenIssuer",
    # One-time credentials
    "generate_otp",
    "generate_reset_token",
    "expiry_of",
    "is_expired",
    "verify_code",
    # Schemas
    "ApiKeyProvider",
    "AuthResponse",
    "LoginRequest",
    "RefreshRequest",
    "RegisterRequest",
    "TokenPair",
    "TokenPayload",
    "UserInfo",
    # Throttle
    "FixedWindowRateLimiter",
    "RateLimitPolicy",
    "RateLimitResult",
    "get_client_identifier",
    "get_rate_limiter",
]
