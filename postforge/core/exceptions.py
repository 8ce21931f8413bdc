"""Exceptions raised by the account and credential core.

Each class maps to exactly one HTTP outcome in ``postforge.web.middleware``:

- ValidationError, ConflictError, ExpiredError -> 400
- AuthenticationError -> 401 (generic message only)
- NotFoundError -> 404
- RateLimitedError -> 429 with Retry-After
"""

from typing import Any, Dict, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from postforge.auth.throttle import RateLimitResult


class PostForgeError(Exception):
    """Base exception for all account-core errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(PostForgeError):
    """Raised when input is malformed or violates a business rule."""

    def __init__(self, message: str, field: Optional[str] = None, **kwargs: Any):
        super().__init__(message, details={"field": field, **kwargs})
        self.field = field


class ConflictError(ValidationError):
    """Raised when an operation would create a duplicate (e.g. email, provider key)."""

    def __init__(self, message: str, field: Optional[str] = None, **kwargs: Any):
        super().__init__(message, field=field, **kwargs)


class AuthenticationError(PostForgeError):
    """Raised for bad credentials, signatures or authentication tags.

    The message is shown to clients verbatim, so it must never say which
    part of a credential check failed.
    """

    def __init__(self, message: str = "Authentication failed"):
        super().__init__(message)


class NotFoundError(PostForgeError):
    """Raised when a flow intentionally reveals that a resource does not exist."""

    def __init__(
        self,
        message: str,
        resource_type: str,
        resource_id: Optional[Any] = None,
    ):
        super().__init__(
            message,
            details={"resource_type": resource_type, "resource_id": resource_id},
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class ExpiredError(PostForgeError):
    """Raised when a one-time code or reset token is missing or past its expiry."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message, details={"field": field})
        self.field = field


class RateLimitedError(PostForgeError):
    """Raised when a fixed-window rate limit rejects a request."""

    def __init__(
        self,
        message: str,
        result: "RateLimitResult",
        limit: int,
        action: Optional[str] = None,
    ):
        super().__init__(message, details={"action": action, "limit": limit})
        self.result = result
        self.limit = limit
        self.action = action
