"""Configuration and logging shared across PostForge."""

from .config import (
    AuthConfig,
    Config,
    DatabaseConfig,
    EmailConfig,
    LoggingConfig,
    RateLimitPolicyConfig,
    RateLimitsConfig,
)
from .logging_config import bind_context, clear_context, setup_logging

__all__ = [
    "Config",
    "AuthConfig",
    "DatabaseConfig",
    "EmailConfig",
    "LoggingConfig",
    "RateLimitPolicyConfig",
    "RateLimitsConfig",
    "setup_logging",
    "bind_context",
    "clear_context",
]
