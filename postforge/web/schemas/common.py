"""Common response schemas for errors and health checks."""

from typing import List

from pydantic import BaseModel, Field


class ErrorDetail(BaseModel):
    """Standard error response detail."""

    detail: str = Field(description="Error message")
    error_type: str = Field(description="Error type identifier")


class ValidationErrorDetail(BaseModel):
    """Validation error detail with field locations."""

    loc: List[str] = Field(description="Error location path")
    msg: str = Field(description="Error message")
    type: str = Field(description="Error type")


class ValidationErrorResponse(BaseModel):
    """Validation error response with multiple field errors."""

    detail: str = Field(default="Validation error")
    error_type: str = Field(default="validation_error")
    errors: List[ValidationErrorDetail] = Field(description="List of validation errors")


class RateLimitErrorResponse(ErrorDetail):
    """Body of a 429 response; the same values are sent as headers."""

    retry_after: int = Field(description="Seconds until the window resets")


# Reusable responses dict for OpenAPI documentation.
# Import and spread into route decorators: responses={**PUBLIC_ERROR_RESPONSES, ...}
COMMON_ERROR_RESPONSES = {
    400: {
        "model": ValidationErrorResponse,
        "description": "Bad Request - Invalid input or business rule violation",
    },
    401: {
        "model": ErrorDetail,
        "description": "Unauthorized - Authentication required or credentials invalid",
    },
    404: {
        "model": ErrorDetail,
        "description": "Not Found - Resource does not exist",
    },
    429: {
        "model": RateLimitErrorResponse,
        "description": "Too Many Requests - Rate limit exceeded",
    },
    500: {
        "model": ErrorDetail,
        "description": "Internal Server Error - Unexpected server error",
    },
}

PUBLIC_ERROR_RESPONSES = {
    400: COMMON_ERROR_RESPONSES[400],
    429: COMMON_ERROR_RESPONSES[429],
}

AUTH_ERROR_RESPONSES = {
    401: COMMON_ERROR_RESPONSES[401],
}


class HealthCheckResponse(BaseModel):
    """Health check endpoint response."""

    status: str = Field(description="Health status ('ok' or 'error')")
    version: str = Field(description="API version string")
