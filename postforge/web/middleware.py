"""Middleware and exception handlers for the FastAPI application."""

import time
import uuid
from typing import Callable

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from postforge.common.logging_config import bind_context, clear_context
from postforge.core.db.exceptions import DatabaseError, TransactionError
from postforge.core.exceptions import (
    AuthenticationError,
    ConflictError,
    ExpiredError,
    NotFoundError,
    RateLimitedError,
    ValidationError,
)
from postforge.mail import EmailDeliveryError

logger = structlog.get_logger(__name__)


def register_exception_handlers(app: FastAPI) -> None:
    """
    Register exception handlers for the FastAPI application.

    Maps domain exceptions to HTTP status codes:
    - ValidationError, ConflictError, ExpiredError -> 400
    - RequestValidationError -> 400 with field errors
    - AuthenticationError -> 401
    - NotFoundError -> 404
    - RateLimitedError -> 429 with Retry-After and X-RateLimit-* headers
    - DatabaseError, EmailDeliveryError -> 500 without internals

    Args:
        app: FastAPI application instance
    """

    @app.exception_handler(ValidationError)
    async def validation_handler(request: Request, exc: ValidationError) -> JSONResponse:
        logger.info(
            "request_rejected",
            error_type=exc.__class__.__name__,
            field=exc.field,
            path=str(request.url.path),
        )
        return JSONResponse(
            status_code=400,
            content={
                "detail": exc.message,
                "error_type": "conflict" if isinstance(exc, ConflictError) else "validation_error",
                "field": exc.field,
            },
        )

    @app.exception_handler(ExpiredError)
    async def expired_handler(request: Request, exc: ExpiredError) -> JSONResponse:
        logger.info("credential_expired", field=exc.field, path=str(request.url.path))
        return JSONResponse(
            status_code=400,
            content={
                "detail": exc.message,
                "error_type": "expired",
                "field": exc.field,
            },
        )

    @app.exception_handler(AuthenticationError)
    async def authentication_handler(request: Request, exc: AuthenticationError) -> JSONResponse:
        return JSONResponse(
            status_code=401,
            content={
                "detail": exc.message,
                "error_type": "authentication_failed",
            },
            headers={"WWW-Authenticate": "Bearer"},
        )

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
        logger.info(
            "resource_not_found",
            resource_type=exc.resource_type,
            resource_id=exc.resource_id,
            path=str(request.url.path),
        )
        return JSONResponse(
            status_code=404,
            content={
                "detail": exc.message,
                "error_type": "not_found",
                "resource_type": exc.resource_type,
            },
        )

    @app.exception_handler(RateLimitedError)
    async def rate_limited_handler(request: Request, exc: RateLimitedError) -> JSONResponse:
        result = exc.result
        return JSONResponse(
            status_code=429,
            content={
                "detail": exc.message,
                "error_type": "rate_limited",
                "retry_after": result.retry_after,
            },
            headers={
                "Retry-After": str(result.retry_after),
                "X-RateLimit-Limit": str(exc.limit),
                "X-RateLimit-Remaining": "0",
                "X-RateLimit-Reset": result.reset_at_datetime.isoformat(),
            },
        )

    @app.exception_handler(EmailDeliveryError)
    async def email_delivery_handler(request: Request, exc: EmailDeliveryError) -> JSONResponse:
        logger.error("email_delivery_error", path=str(request.url.path))
        return JSONResponse(
            status_code=500,
            content={
                "detail": "Failed to send email. Please try again later.",
                "error_type": "email_delivery_failed",
            },
        )

    @app.exception_handler(TransactionError)
    async def transaction_error_handler(request: Request, exc: TransactionError) -> JSONResponse:
        logger.error(
            "transaction_error",
            operation=exc.operation,
            error=str(exc),
            path=str(request.url.path),
        )
        return JSONResponse(
            status_code=500,
            content={
                "detail": "Database transaction failed",
                "error_type": "transaction_error",
            },
        )

    @app.exception_handler(DatabaseError)
    async def database_error_handler(request: Request, exc: DatabaseError) -> JSONResponse:
        logger.error(
            "database_error",
            error=str(exc),
            path=str(request.url.path),
        )
        return JSONResponse(
            status_code=500,
            content={
                "detail": "Database error occurred",
                "error_type": "database_error",
            },
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        # Submitted values are never echoed or logged; they may be passwords
        errors = [
            {
                "loc": [str(part) for part in err["loc"]],
                "msg": err["msg"],
                "type": err["type"],
            }
            for err in exc.errors()
        ]
        logger.info(
            "validation_error",
            fields=[".".join(e["loc"]) for e in errors],
            path=str(request.url.path),
        )
        return JSONResponse(
            status_code=400,
            content={
                "detail": "Validation failed",
                "error_type": "validation_error",
                "errors": errors,
            },
        )


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware to log all requests and responses.

    Binds a request id to the structlog context for the duration of the
    request and returns it in the ``X-Request-ID`` header.
    """

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Response]
    ) -> Response:
        """Log request details and response status."""
        start_time = time.perf_counter()
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex

        clear_context()
        bind_context(request_id=request_id)

        logger.info(
            "request_started",
            method=request.method,
            path=str(request.url.path),
        )

        try:
            response = await call_next(request)
        except Exception as exc:
            duration = time.perf_counter() - start_time
            logger.error(
                "request_failed",
                method=request.method,
                path=str(request.url.path),
                error=str(exc),
                duration_ms=round(duration * 1000, 2),
            )
            clear_context()
            raise

        duration = time.perf_counter() - start_time
        logger.info(
            "request_completed",
            method=request.method,
            path=str(request.url.path),
            status_code=response.status_code,
            duration_ms=round(duration * 1000, 2),
        )
        response.headers["X-Request-ID"] = request_id
        clear_context()

        return response
