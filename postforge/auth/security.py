"""Security utilities for password hashing and JWT token management."""

import hashlib
import secrets
import uuid
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Any, Dict, Optional

import bcrypt
import structlog
from jose import JWTError, jwt
from pydantic import ValidationError as PydanticValidationError

from .schemas import TokenPair, TokenPayload

logger = structlog.get_logger(__name__)

# bcrypt ignores input beyond 72 bytes
BCRYPT_MAX_BYTES = 72

DEFAULT_HASH_ROUNDS = 12

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"


# ============================================================================
# Password Hashing
# ============================================================================


def _password_bytes(password: str) -> bytes:
    encoded = password.encode("utf-8")
    if len(encoded) > BCRYPT_MAX_BYTES:
        return hashlib.sha256(encoded).hexdigest().encode("ascii")
    return encoded


def hash_password(password: str, rounds: int = DEFAULT_HASH_ROUNDS) -> str:
    """
    Hash a password using bcrypt.

    Passwords longer than 72 bytes are SHA-256 pre-hashed so that every
    byte counts.

    Args:
        password: Plain text password to hash
        rounds: bcrypt cost factor (default: 12)

    Returns:
        Bcrypt hashed password string

    Example:
        >>> hashed = hash_password("Sup3rSecret")
        >>> hashed.startswith("$2b$12$")
        True
    """
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(_password_bytes(password), salt).decode("utf-8")


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    """
    Verify a password against a bcrypt hash.

    Never raises: a missing or malformed hash verifies as False.

    Example:
        >>> hashed = hash_password("test")
        >>> verify_password("test", hashed)
        True
        >>> verify_password("wrong", hashed)
        False
    """
    if not hashed_password:
        return False
    try:
        return bcrypt.checkpw(_password_bytes(plain_password), hashed_password.encode("utf-8"))
    except (ValueError, TypeError) as e:
        logger.warning("password_verification_error", error=str(e))
        return False


@lru_cache(maxsize=None)
def dummy_password_hash(rounds: int = DEFAULT_HASH_ROUNDS) -> str:
    """
    Hash of a random unguessable password at the given cost.

    Checked when a login names an unknown email so that path spends the
    same bcrypt work as a real account hashed with ``rounds``. Computed
    once per cost factor.
    """
    return hash_password(secrets.token_urlsafe(32), rounds=rounds)


# ============================================================================
# JWT
# ============================================================================


def create_token(
    data: Dict[str, Any],
    secret_key: str,
    token_type: str,
    algorithm: str = "HS256",
    expires_minutes: int = 15,
) -> str:
    """
    Create a signed JWT.

    Adds ``iat``, ``exp``, ``type`` and a unique ``jti`` to ``data``.

    Args:
        data: Claims to encode (``sub``, ``user_id``, ``email``)
        secret_key: Secret key for signing the token
        token_type: ``"access"`` or ``"refresh"``
        algorithm: JWT signing algorithm (default: HS256)
        expires_minutes: Lifetime in minutes

    Returns:
        Encoded JWT string
    """
    now = datetime.now(timezone.utc)
    to_encode = data.copy()
    to_encode.update(
        {
            "iat": int(now.timestamp()),
            "exp": now + timedelta(minutes=expires_minutes),
            "type": token_type,
            "jti": str(uuid.uuid4()),
        }
    )
    return jwt.encode(to_encode, secret_key, algorithm=algorithm)


def decode_token(
    token: str,
    secret_key: str,
    algorithm: str = "HS256",
    expected_type: Optional[str] = None,
) -> Optional[TokenPayload]:
    """
    Decode and validate a JWT.

    Args:
        token: JWT string
        secret_key: Secret the token must be signed with
        algorithm: JWT signing algorithm (default: HS256)
        expected_type: If provided, the ``type`` claim must match

    Returns:
        Verified claims, or None if the token is invalid for any reason
    """
    try:
        claims = jwt.decode(token, secret_key, algorithms=[algorithm])
    except JWTError as e:
        logger.debug("token_decode_error", error=str(e))
        return None

    if expected_type and claims.get("type") != expected_type:
        logger.debug("token_type_mismatch", expected=expected_type, actual=claims.get("type"))
        return None

    try:
        return TokenPayload.model_validate(claims)
    except PydanticValidationError:
        logger.debug("token_claims_invalid", expected=expected_type)
        return None


class TokenIssuer:
    """
    Signs and verifies access/refresh token pairs.

    Access and refresh tokens use independent secrets, so a token of one
    kind can never verify as the other.

    Args:
        access_secret: Secret for access tokens
        refresh_secret: Secret for refresh tokens (must differ)
        algorithm: JWT signing algorithm
        access_expires_minutes: Access token lifetime (default: 15)
        refresh_expires_minutes: Refresh token lifetime (default: 7 days)

    Raises:
        ValueError: If a secret is missing or both secrets are equal
    """

    def __init__(
        self,
        access_secret: str,
        refresh_secret: str,
        algorithm: str = "HS256",
        access_expires_minutes: int = 15,
        refresh_expires_minutes: int = 7 * 24 * 60,
    ):
        if not access_secret or not refresh_secret:
            raise ValueError("Access and refresh token secrets are required")
        if access_secret == refresh_secret:
            raise ValueError("Access and refresh token secrets must differ")
        self._access_secret = access_secret
        self._refresh_secret = refresh_secret
        self.algorithm = algorithm
        self.access_expires_minutes = access_expires_minutes
        self.refresh_expires_minutes = refresh_expires_minutes

    @staticmethod
    def claims_for(user_id: int, email: str) -> Dict[str, Any]:
        return {"sub": str(user_id), "user_id": user_id, "email": email}

    def sign_access_token(
        self, payload: Dict[str, Any], expires_minutes: Optional[int] = None
    ) -> str:
        return create_token(
            payload,
            self._access_secret,
            ACCESS_TOKEN_TYPE,
            algorithm=self.algorithm,
            expires_minutes=(
                self.access_expires_minutes if expires_minutes is None else expires_minutes
            ),
        )

    def sign_refresh_token(
        self, payload: Dict[str, Any], expires_minutes: Optional[int] = None
    ) -> str:
        return create_token(
            payload,
            self._refresh_secret,
            REFRESH_TOKEN_TYPE,
            algorithm=self.algorithm,
            expires_minutes=(
                self.refresh_expires_minutes if expires_minutes is None else expires_minutes
            ),
        )

    def verify_access_token(self, token: str) -> Optional[TokenPayload]:
        return decode_token(token, self._access_secret, self.algorithm, ACCESS_TOKEN_TYPE)

    def verify_refresh_token(self, token: str) -> Optional[TokenPayload]:
        return decode_token(token, self._refresh_secret, self.algorithm, REFRESH_TOKEN_TYPE)

    def generate_token_pair(self, payload: Dict[str, Any]) -> TokenPair:
        """
        Issue a fresh access/refresh pair for the same claims.

        Example:
            >>> pair = issuer.generate_token_pair(TokenIssuer.claims_for(1, "a@b.co"))
            >>> issuer.verify_refresh_token(pair.refresh_token).user_id
            1
        """
        return TokenPair(
            access_token=self.sign_access_token(payload),
            refresh_token=self.sign_refresh_token(payload),
        )

    def refresh_expires_at(self, now: Optional[datetime] = None) -> datetime:
        """Expiry to store on the session row of a newly issued refresh token."""
        now = now or datetime.now(timezone.utc)
        return now + timedelta(minutes=self.refresh_expires_minutes)
