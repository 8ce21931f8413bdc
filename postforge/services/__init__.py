"""Service layer composing the auth primitives with persistence."""

from .api_key_service import ApiKeyService
from .auth_service import AuthService
from .base import BaseService

__all__ = [
    "BaseService",
    "AuthService",
    "ApiKeyService",
]
