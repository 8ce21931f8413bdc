"""Pydantic schemas for authentication and API-key requests and responses."""

import re
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 128


def validate_password_strength(password: str) -> str:
    """
    Enforce the account password policy.

    At least 8 characters with one upper-case letter, one lower-case letter
    and one digit.
    """
    if len(password) < PASSWORD_MIN_LENGTH:
        raise ValueError(f"Password must be at least {PASSWORD_MIN_LENGTH} characters")
    if not re.search(r"[A-Z]", password):
        raise ValueError("Password must contain at least one uppercase letter")
    if not re.search(r"[a-z]", password):
        raise ValueError("Password must contain at least one lowercase letter")
    if not re.search(r"\d", password):
        raise ValueError("Password must contain at least one number")
    return password


class _EmailRequest(BaseModel):
    email: EmailStr = Field(..., description="Account email address", examples=["jane@example.com"])

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.strip().lower()


class RegisterRequest(_EmailRequest):
    """Request schema for account registration."""

    password: str = Field(
        ...,
        max_length=PASSWORD_MAX_LENGTH,
        description="At least 8 characters with upper-case, lower-case and a digit",
    )
    name: Optional[str] = Field(
        None,
        min_length=2,
        max_length=100,
        description="Display name",
        examples=["Jane Doe"],
    )

    @field_validator("password")
    @classmethod
    def check_password(cls, v: str) -> str:
        return validate_password_strength(v)


class LoginRequest(_EmailRequest):
    """Request schema for user login."""

    password: str = Field(
        ...,
        min_length=1,
        max_length=PASSWORD_MAX_LENGTH,
        description="Password for authentication",
    )


class RefreshRequest(BaseModel):
    """Request schema for token refresh."""

    refresh_token: str = Field(
        ...,
        min_length=1,
        description="Valid refresh token to exchange for a new token pair",
    )


class LogoutRequest(BaseModel):
    """Request schema for logout; without a token the call is a no-op."""

    refresh_token: Optional[str] = Field(None, description="Refresh token whose session to end")


class SendOtpRequest(_EmailRequest):
    """Request schema for (re)sending an email verification code."""


class VerifyOtpRequest(_EmailRequest):
    """Request schema for email verification."""

    otp: str = Field(
        ...,
        min_length=6,
        max_length=6,
        description="6-digit verification code",
        examples=["482913"],
    )

    @field_validator("otp", mode="before")
    @classmethod
    def strip_otp(cls, v: object) -> object:
        return v.strip() if isinstance(v, str) else v


class ForgotPasswordRequest(_EmailRequest):
    """Request schema for starting a password reset."""


class ResetPasswordRequest(BaseModel):
    """Request schema for completing a password reset."""

    token: str = Field(..., min_length=1, description="Reset token from the email link")
    password: str = Field(
        ...,
        max_length=PASSWORD_MAX_LENGTH,
        description="New password",
    )

    @field_validator("password")
    @classmethod
    def check_password(cls, v: str) -> str:
        return validate_password_strength(v)


class TokenPayload(BaseModel):
    """Verified claims of an access or refresh token."""

    sub: str
    user_id: int
    email: str
    type: str
    jti: Optional[str] = None
    iat: Optional[int] = None
    exp: int


class TokenPair(BaseModel):
    """Access and refresh token issued together."""

    access_token: str = Field(..., description="Short-lived JWT for API calls")
    refresh_token: str = Field(..., description="Long-lived JWT for obtaining a new pair")
    token_type: str = Field(default="bearer", description="Token type (always 'bearer')")


class UserInfo(BaseModel):
    """Public view of a user account."""

    model_config = ConfigDict(from_attributes=True)

    id: int = Field(..., description="User ID")
    email: str = Field(..., description="Email address")
    name: Optional[str] = Field(None, description="Display name")
    avatar: Optional[str] = Field(None, description="Avatar URL")
    email_verified: bool = Field(..., description="Whether the email address is verified")
    last_login_at: Optional[datetime] = Field(None, description="Last login timestamp")
    created_at: Optional[datetime] = Field(None, description="Account creation timestamp")


class AuthResponse(BaseModel):
    """Response for register and login."""

    user: UserInfo
    tokens: TokenPair


class RefreshResponse(BaseModel):
    tokens: TokenPair


class MessageResponse(BaseModel):
    message: str


class SendOtpResponse(BaseModel):
    message: str
    expires_in: int = Field(..., description="Seconds until the code expires")


class VerifyOtpResponse(BaseModel):
    message: str
    email_verified: bool


# ==================== API keys ====================


class ApiKeyProvider(str, Enum):
    """Third-party services whose API keys users may store."""

    OPENAI = "OPENAI"
    ANTHROPIC = "ANTHROPIC"
    GOOGLE_AI = "GOOGLE_AI"
    FAL_AI = "FAL_AI"
    REPLICATE = "REPLICATE"
    STABILITY_AI = "STABILITY_AI"
    DATAFORSEO = "DATAFORSEO"
    SERPAPI = "SERPAPI"
    LINKEDIN = "LINKEDIN"
    FACEBOOK = "FACEBOOK"
    INSTAGRAM = "INSTAGRAM"
    TWITTER_X = "TWITTER_X"
    TIKTOK = "TIKTOK"


class AddApiKeyRequest(BaseModel):
    """Request schema for storing a provider API key."""

    provider: ApiKeyProvider = Field(..., description="Provider the key belongs to")
    key: str = Field(..., min_length=1, max_length=4096, description="The secret API key")
    label: Optional[str] = Field(None, max_length=100, description="Optional label")

    @field_validator("key")
    @classmethod
    def strip_key(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("API key is required")
        return v


class UpdateApiKeyRequest(BaseModel):
    """Request schema for updating a stored key's metadata."""

    label: Optional[str] = Field(None, max_length=100)
    is_valid: Optional[bool] = None


class ApiKeyInfo(BaseModel):
    """Stored key metadata. The secret itself is never returned."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    provider: ApiKeyProvider
    label: Optional[str] = None
    is_valid: bool
    last_used_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class ApiKeyListResponse(BaseModel):
    api_keys: List[ApiKeyInfo]


class ApiKeyResponse(BaseModel):
    message: str
    api_key: ApiKeyInfo
