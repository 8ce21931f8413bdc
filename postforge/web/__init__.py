"""FastAPI web API for PostForge accounts and credentials."""

from .main import create_app
from .settings import APISettings

__all__ = [
    "create_app",
    "APISettings",
]
