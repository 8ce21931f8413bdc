"""API-specific settings using Pydantic BaseSettings."""

from functools import lru_cache
from typing import List, Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from postforge.auth.encryption import MIN_MASTER_SECRET_LENGTH

MIN_JWT_SECRET_LENGTH = 32


class APISettings(BaseSettings):
    """
    FastAPI application settings.

    Settings can be configured via environment variables with the prefix
    POSTFORGE_API_. For example: POSTFORGE_API_HOST=0.0.0.0,
    POSTFORGE_API_DEBUG=true

    The three secrets have no defaults. The app refuses to start when any
    of them is missing or too short, or when the two token secrets are
    equal. Generate values with ``postforge-admin generate-secrets``.

    Attributes:
        host: Server bind address
        port: Server bind port
        debug: Enable debug mode (auto-reload, verbose errors)
        allowed_origins: List of allowed CORS origins
        log_requests: Log all requests and responses
        openapi_url: OpenAPI schema URL (set to None to disable)
        access_token_secret: Signing secret for access tokens
        refresh_token_secret: Signing secret for refresh tokens
        encryption_key: Master secret for stored API keys (>= 64 characters)
        jwt_algorithm: JWT signing algorithm (default: HS256)
        access_token_expires_minutes: Access token lifetime (default: 15)
        refresh_token_expires_minutes: Refresh token lifetime (default: 7 days)
    """

    model_config = SettingsConfigDict(
        env_prefix="POSTFORGE_API_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Server settings
    host: str = "127.0.0.1"
    port: int = 8000
    debug: bool = False
    allowed_origins: List[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]
    log_requests: bool = True
    openapi_url: Optional[str] = "/openapi.json"

    # Secrets
    access_token_secret: Optional[str] = Field(default=None, repr=False)
    refresh_token_secret: Optional[str] = Field(default=None, repr=False)
    encryption_key: Optional[str] = Field(default=None, repr=False)

    # Tokens
    jwt_algorithm: str = "HS256"
    access_token_expires_minutes: int = Field(default=15, ge=1)
    refresh_token_expires_minutes: int = Field(default=7 * 24 * 60, ge=1)

    @model_validator(mode="after")
    def validate_secrets(self) -> "APISettings":
        """Reject missing, short or reused secrets."""
        hint = "Generate values with: postforge-admin generate-secrets"

        for name in ("access_token_secret", "refresh_token_secret"):
            value = getattr(self, name)
            if not value:
                raise ValueError(f"POSTFORGE_API_{name.upper()} must be set. {hint}")
            if len(value) < MIN_JWT_SECRET_LENGTH:
                raise ValueError(
                    f"POSTFORGE_API_{name.upper()} must be at least "
                    f"{MIN_JWT_SECRET_LENGTH} characters. {hint}"
                )

        if self.access_token_secret == self.refresh_token_secret:
            raise ValueError(
                "POSTFORGE_API_ACCESS_TOKEN_SECRET and POSTFORGE_API_REFRESH_TOKEN_SECRET must differ"
            )

        if not self.encryption_key or len(self.encryption_key) < MIN_MASTER_SECRET_LENGTH:
            raise ValueError(
                f"POSTFORGE_API_ENCRYPTION_KEY must be set to at least "
                f"{MIN_MASTER_SECRET_LENGTH} characters. {hint}"
            )

        return self


@lru_cache
def get_settings() -> APISettings:
    """
    Get cached API settings instance.

    Returns:
        APISettings instance (cached)
    """
    return APISettings()
