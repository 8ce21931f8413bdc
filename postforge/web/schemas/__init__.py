"""Response schemas shared by the HTTP routes."""

from .common import (
    AUTH_ERROR_RESPONSES,
    COMMON_ERROR_RESPONSES,
    PUBLIC_ERROR_RESPONSES,
    ErrorDetail,
    HealthCheckResponse,
    RateLimitErrorResponse,
    ValidationErrorResponse,
)

__all__ = [
    "AUTH_ERROR_RESPONSES",
    "COMMON_ERROR_RESPONSES",
    "PUBLIC_ERROR_RESPONSES",
    "ErrorDetail",
    "HealthCheckResponse",
    "RateLimitErrorResponse",
    "ValidationErrorResponse",
]
