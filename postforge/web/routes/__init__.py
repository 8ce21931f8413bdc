"""Route modules for the PostForge API."""

from . import api_keys, auth

__all__ = [
    "api_keys",
    "auth",
]
