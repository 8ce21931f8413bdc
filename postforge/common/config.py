"""Configuration models using Pydantic for validation.

Secrets (signing keys, the encryption master key) are NOT part of this
configuration; they come from the environment via
``postforge.web.settings.APISettings``.
"""

import os
from pathlib import Path
from typing import ClassVar, Dict, List, Optional

import structlog
import yaml
from pydantic import BaseModel, EmailStr, Field, field_validator
from ruamel.yaml import YAML

logger = structlog.get_logger(__name__)


class FileLoggingConfig(BaseModel):
    """Configuration for file-based logging.

    Log files are written as postforge.log in config_dir, rotated daily at
    midnight with 7 days of retention.
    """

    enabled: bool = Field(
        default=False,
        description="Enable file logging (logs to postforge.log in config_dir)",
    )


class LoggingConfig(BaseModel):
    """Configuration for logging."""

    level: str = Field(
        default="INFO",
        description="Log level: DEBUG, INFO, WARNING, ERROR, CRITICAL",
    )
    format: str = Field(
        default="json",
        description="Log format: json or text",
    )
    file: FileLoggingConfig = Field(
        default_factory=FileLoggingConfig,
        description="File logging configuration",
    )
    third_party: Dict[str, str] = Field(
        default_factory=dict,
        description="Log levels for third-party libraries (advanced)",
    )

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v_upper

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        """Validate log format."""
        valid_formats = ["json", "text"]
        v_lower = v.lower()
        if v_lower not in valid_formats:
            raise ValueError(f"Invalid format: {v}. Must be one of {valid_formats}")
        return v_lower


class DatabaseConfig(BaseModel):
    """Configuration for the SQLite account database."""

    database_path: str = Field(
        default="postforge.db",
        description="Database file, relative to config_dir unless absolute (':memory:' allowed)",
    )
    enable_wal_mode: bool = Field(
        default=True,
        description="Enable SQLite Write-Ahead Logging",
    )
    connection_timeout: int = Field(
        default=30,
        ge=1,
        le=300,
        description="Seconds to wait on a locked database",
    )


class AuthConfig(BaseModel):
    """Password hashing and one-time credential policy."""

    password_hash_rounds: int = Field(
        default=12,
        ge=4,
        le=31,
        description="bcrypt cost factor",
    )
    otp_expires_minutes: int = Field(
        default=10,
        ge=1,
        description="Lifetime of an email verification code",
    )
    reset_token_expires_minutes: int = Field(
        default=30,
        ge=1,
        description="Lifetime of a password reset token",
    )
    session_purge_interval_seconds: float = Field(
        default=60 * 60,
        gt=0,
        description="How often expired sessions are deleted while the API runs",
    )


class RateLimitPolicyConfig(BaseModel):
    """A single fixed-window policy."""

    window_seconds: float = Field(..., gt=0, description="Window length in seconds")
    max_requests: int = Field(..., ge=1, description="Requests allowed per window")


class RateLimitsConfig(BaseModel):
    """Fixed-window rate limiting for the public auth endpoints."""

    enabled: bool = Field(default=True, description="Whether rate limiting is enforced")
    login: RateLimitPolicyConfig = Field(
        default_factory=lambda: RateLimitPolicyConfig(window_seconds=15 * 60, max_requests=5),
        description="Login and code verification attempts",
    )
    registration: RateLimitPolicyConfig = Field(
        default_factory=lambda: RateLimitPolicyConfig(window_seconds=60 * 60, max_requests=3),
        description="Account registrations",
    )
    api: RateLimitPolicyConfig = Field(
        default_factory=lambda: RateLimitPolicyConfig(window_seconds=60, max_requests=60),
        description="Other public endpoints (OTP send, password reset, refresh)",
    )
    sweep_interval_seconds: float = Field(
        default=5 * 60,
        gt=0,
        description="How often expired windows are purged from memory",
    )
    client_ip_headers: List[str] = Field(
        default_factory=lambda: ["cf-connecting-ip", "x-real-ip", "x-forwarded-for"],
        description="Headers consulted, in order, to identify the client",
    )

    @field_validator("client_ip_headers")
    @classmethod
    def normalize_headers(cls, v: List[str]) -> List[str]:
        return [h.strip().lower() for h in v if h.strip()]


class EmailConfig(BaseModel):
    """Outbound email (verification codes and password resets)."""

    smtp_host: Optional[str] = Field(
        default=None,
        description="SMTP server; when unset, emails are only logged",
    )
    smtp_port: int = Field(default=587, ge=1, le=65535)
    smtp_username: Optional[str] = Field(default=None)
    smtp_password: Optional[str] = Field(default=None)
    smtp_use_tls: bool = Field(default=True, description="Issue STARTTLS before login")
    smtp_timeout: int = Field(default=15, ge=1)
    from_address: EmailStr = Field(default="no-reply@postforge.app")
    from_name: str = Field(default="PostForge")
    app_base_url: str = Field(
        default="http://localhost:3000",
        description="Public URL of the web app, used in reset links",
    )

    @field_validator("app_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


def _get_default_config_dir() -> Path:
    """
    Get default config directory based on environment.

    Priority:
    1. POSTFORGE_CONFIG_DIR environment variable
    2. /config if POSTFORGE_DOCKER=1
    3. $HOME/PostForge/config otherwise
    """
    env_config_dir = os.environ.get("POSTFORGE_CONFIG_DIR")
    if env_config_dir:
        return Path(env_config_dir)

    if os.environ.get("POSTFORGE_DOCKER") == "1":
        return Path("/config")

    return Path.home() / "PostForge" / "config"


class Config(BaseModel):
    """Main configuration class for PostForge.

    ``config_dir`` holds the database and log files. It is resolved from
    POSTFORGE_CONFIG_DIR (or defaults) by ``resolve_paths``; relative paths
    in the rest of the configuration are resolved against it.
    """

    config_dir: Optional[Path] = Field(
        default=None,
        description="Configuration directory (database, logs). Resolved from POSTFORGE_CONFIG_DIR or defaults.",
    )
    logging: LoggingConfig = Field(
        default_factory=LoggingConfig,
        description="Logging configuration",
    )
    database: DatabaseConfig = Field(
        default_factory=DatabaseConfig,
        description="Database configuration",
    )
    auth: AuthConfig = Field(
        default_factory=AuthConfig,
        description="Password hashing and one-time credential policy",
    )
    rate_limits: RateLimitsConfig = Field(
        default_factory=RateLimitsConfig,
        description="Rate limiting for public endpoints",
    )
    email: EmailConfig = Field(
        default_factory=EmailConfig,
        description="Outbound email configuration",
    )

    LOG_FILE_NAME: ClassVar[str] = "postforge.log"

    def resolve_paths(self, create_dirs: bool = True) -> "Config":
        """
        Resolve config_dir from environment or defaults.

        Args:
            create_dirs: If True, create the directory if it doesn't exist

        Returns:
            Self with resolved paths (for chaining)
        """
        if self.config_dir is None:
            object.__setattr__(self, "config_dir", _get_default_config_dir())

        if create_dirs:
            self.config_dir.mkdir(parents=True, exist_ok=True)

        logger.debug("paths_resolved", config_dir=str(self.config_dir))
        return self

    def get_database_path(self) -> Path:
        """
        Get the database path, resolved against config_dir.

        Returns:
            Absolute path, or ``Path(":memory:")`` for an in-memory database
        """
        db_path = Path(self.database.database_path)
        if self.database.database_path == ":memory:" or db_path.is_absolute():
            return db_path
        if self.config_dir is None:
            self.resolve_paths(create_dirs=False)
        return self.config_dir / db_path

    def get_log_file_path(self) -> Path:
        """Get the log file path inside config_dir."""
        if self.config_dir is None:
            self.resolve_paths(create_dirs=False)
        return self.config_dir / self.LOG_FILE_NAME

    @classmethod
    def from_yaml(cls, path: Path) -> "Config":
        """
        Load configuration from a YAML file.

        Args:
            path: Path to YAML configuration file

        Returns:
            Config object with validated configuration

        Raises:
            FileNotFoundError: If config file doesn't exist
            pydantic.ValidationError: If configuration is invalid

        Example:
            >>> config = Config.from_yaml(Path("config.yaml"))
        """
        yaml_loader = YAML(typ="safe")
        with open(path, "r", encoding="utf-8") as f:
            data = yaml_loader.load(f)
        return cls.model_validate(data or {})

    @classmethod
    def from_yaml_string(cls, yaml_string: str) -> "Config":
        """
        Load configuration from a YAML string.

        Example:
            >>> config = Config.from_yaml_string("auth:\\n  otp_expires_minutes: 5")
        """
        data = yaml.safe_load(yaml_string)
        return cls.model_validate(data or {})
