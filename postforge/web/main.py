"""FastAPI application factory and entry point."""

import asyncio
import contextlib
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.utils import get_openapi

import postforge
from postforge.auth.throttle import get_rate_limiter, run_periodic_sweep
from postforge.common.logging_config import setup_logging
from postforge.core.db import run_session_purge

from .middleware import RequestLoggingMiddleware, register_exception_handlers
from .schemas.common import HealthCheckResponse
from .settings import get_settings

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan context manager.

    Handles startup and shutdown events:
    - Startup: Configure postforge (logging, database), start the rate-limit
      sweep and the expired-session purge
    - Shutdown: Stop the background tasks, close database connections

    Note: In test mode, postforge._config and postforge._repository are
    pre-configured by test fixtures, so we skip initialization.
    """
    settings = get_settings()

    logger.info("api_starting", host=settings.host, port=settings.port)

    already_configured = postforge._config is not None and postforge._repository is not None

    if not already_configured:
        await postforge.configure()
    else:
        logger.info("api_using_existing_config")

    config = postforge.get_config()
    repository = await postforge.get_repository()
    background = [
        asyncio.create_task(
            run_periodic_sweep(get_rate_limiter(), config.rate_limits.sweep_interval_seconds)
        ),
        asyncio.create_task(
            run_session_purge(repository, config.auth.session_purge_interval_seconds)
        ),
    ]

    logger.info(
        "api_ready",
        version=postforge.__version__,
        debug=settings.debug,
        rate_limits_enabled=config.rate_limits.enabled,
    )

    yield

    logger.info("api_shutting_down")

    for task in background:
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    # Close database (only if we initialized)
    if not already_configured and postforge._repository is not None:
        await postforge._repository.close()
        postforge._repository = None


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Settings are validated here, so a missing or weak secret stops the
    process before it serves a request.

    Returns:
        Configured FastAPI application instance

    Example:
        from fastapi.testclient import TestClient
        from postforge.web import create_app

        client = TestClient(create_app())
    """
    settings = get_settings()

    config = postforge.get_config()
    setup_logging(config.logging, config.config_dir)

    app = FastAPI(
        title="PostForge API",
        version=postforge.__version__,
        description="""Account and credential service for PostForge.

## Authentication

Register or log in to receive a token pair. Send the access token as a
Bearer token in the `Authorization` header:

```
Authorization: Bearer <access-token>
```

Access tokens expire after 15 minutes. Exchange the refresh token at
`POST /auth/refresh` for a new pair; each refresh token works once.

## Rate limits

Public endpoints are rate limited per client. Rejected requests receive
`429` with `Retry-After`, `X-RateLimit-Limit`, `X-RateLimit-Remaining` and
`X-RateLimit-Reset` headers.
""",
        openapi_url=settings.openapi_url,
        openapi_tags=[
            {
                "name": "Health",
                "description": "Health check and status endpoints",
            },
            {
                "name": "Authentication",
                "description": "Registration, login, sessions, email verification and password reset",
            },
            {
                "name": "API Keys",
                "description": "Encrypted storage of third-party provider API keys",
            },
        ],
        lifespan=lifespan,
        debug=settings.debug,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if settings.log_requests:
        app.add_middleware(RequestLoggingMiddleware)

    register_exception_handlers(app)

    @app.get(
        "/health",
        tags=["Health"],
        summary="Health check",
        response_model=HealthCheckResponse,
        response_description="Health status of the API",
    )
    async def health_check() -> HealthCheckResponse:
        """Check API health status."""
        return HealthCheckResponse(status="ok", version=postforge.__version__)

    from .routes import api_keys, auth

    app.include_router(auth.router)
    app.include_router(api_keys.router)

    def custom_openapi():
        if app.openapi_schema:
            return app.openapi_schema
        openapi_schema = get_openapi(
            title=app.title,
            version=app.version,
            description=app.description,
            routes=app.routes,
            tags=app.openapi_tags,
        )
        openapi_schema.setdefault("components", {})["securitySchemes"] = {
            "BearerAuth": {
                "type": "http",
                "scheme": "bearer",
                "bearerFormat": "JWT",
                "description": "Access token from POST /auth/login or /auth/register",
            }
        }
        app.openapi_schema = openapi_schema
        return app.openapi_schema

    app.openapi = custom_openapi

    logger.info("api_app_created", routes=len(app.routes))

    return app


def run() -> None:
    """
    Run the API server with uvicorn.

    This is the entry point for the postforge-api script.
    """
    settings = get_settings()
    uvicorn.run(
        "postforge.web.main:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )


if __name__ == "__main__":
    run()
