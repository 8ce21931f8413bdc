"""Core domain errors and persistence for PostForge."""

from .exceptions import (
    AuthenticationError,
    ConflictError,
    ExpiredError,
    NotFoundError,
    PostForgeError,
    RateLimitedError,
    ValidationError,
)

__all__ = [
    "PostForgeError",
    "ValidationError",
    "ConflictError",
    "AuthenticationError",
    "NotFoundError",
    "ExpiredError",
    "RateLimitedError",
]
