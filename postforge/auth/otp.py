"""One-time codes and password reset tokens."""

import hmac
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

OTP_LENGTH = 6
RESET_TOKEN_BYTES = 32


def generate_otp(length: int = OTP_LENGTH) -> str:
    """
    Generate a numeric verification code with no leading zero.

    The value is drawn uniformly from ``[10**(length-1), 10**length - 1]``
    using the operating system CSPRNG.

    Example:
        >>> code = generate_otp()
        >>> len(code), code[0] != "0"
        (6, True)
    """
    if length < 1:
        raise ValueError("OTP length must be positive")
    low = 10 ** (length - 1)
    high = 10**length - 1
    return str(low + secrets.randbelow(high - low + 1))


def generate_reset_token() -> str:
    """Generate a 64-character hex password reset token."""
    return secrets.token_hex(RESET_TOKEN_BYTES)


def expiry_of(now: datetime, minutes: int) -> datetime:
    return now + timedelta(minutes=minutes)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_expired(expires_at: Optional[datetime], now: Optional[datetime] = None) -> bool:
    """
    Check whether a code or token expiry has passed.

    A missing expiry counts as expired. Naive datetimes are read as UTC.
    """
    if expires_at is None:
        return True
    current = _as_utc(now) if now is not None else datetime.now(timezone.utc)
    return _as_utc(expires_at) < current


def verify_code(provided: Optional[str], stored: Optional[str]) -> bool:
    """
    Compare a submitted code with the stored one.

    Surrounding whitespace is ignored on both sides; the comparison is
    otherwise exact and constant-time.
    """
    if stored is None or provided is None:
        return False
    return hmac.compare_digest(provided.strip().encode("utf-8"), stored.strip().encode("utf-8"))
