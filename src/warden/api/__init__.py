"""Warden API service.

FastAPI application providing:
- Registration, login, token rotation and logout
- Email verification and password reset flows
- User, role and permission administration
- Idempotent write requests (Idempotency-Key)

This module provides the app factory pattern for creating configured
FastAPI instances suitable for testing and production deployment.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import TYPE_CHECKING

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from warden.api.middleware import (
    ErrorHandlerMiddleware,
    IdempotencyMiddleware,
    RequestIDMiddleware,
    RequestLimitsMiddleware,
    TimeoutMiddleware,
    register_exception_handlers,
)
from warden.api.middleware.request_id import REQUEST_ID_HEADER
from warden.api.routers import auth_router, rbac_router, users_router
from warden.db import close_engine
from warden.services.background import BackgroundRunner
from warden.services.email import AccountMailer, build_email_sender
from warden.services.events import LoggingEventPublisher
from warden.services.passwords import PasswordHasher
from warden.services.storage import ObjectStoreClient

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from warden.core.config import Settings

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"

# Application metadata
API_TITLE = "Warden API"
API_DESCRIPTION = """
Authentication, authorization and request idempotency service.

## Namespaces

- **/api/v1/auth/** - Registration, sessions, verification and password reset
- **/api/v1/users/** - Account administration (permission or ownership gated)
- **/api/v1/roles/**, **/api/v1/permissions/** - RBAC administration

## Headers

- `Authorization: Bearer <access token>` on authenticated routes
- `Idempotency-Key` on write requests to make retries safe
- `X-Request-ID` echoed (or generated) on every response

## Documentation

- OpenAPI spec: `/api/openapi.json`
- Swagger UI: `/api/docs`
- ReDoc: `/api/redoc`
"""


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    yield
    # Let detached jobs and queued emails finish before the loop stops
    await app.state.background.drain()
    await app.state.email_sender.drain()
    await close_engine()
    logger.info("Warden API shut down")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure a FastAPI application instance.

    This factory function creates a fully configured FastAPI app with:
    - API routers mounted under /api/v1
    - Envelope exception handlers for domain, validation and HTTP errors
    - Request ID, error, deadline, size limit and idempotency middleware
    - CORS middleware restricted to the configured origins
    - OpenAPI documentation at /api/docs and /api/redoc

    Args:
        settings: Optional Settings instance. Defaults to the cached
            settings loaded from the environment.

    Returns:
        Configured FastAPI application ready to serve requests.

    Example:
        # Basic usage
        app = create_app()

        # For testing
        test_settings = Settings(environment="development", debug=True)
        app = create_app(test_settings)
    """
    if settings is None:
        from warden.core.settings import get_settings

        settings = get_settings()

    version = settings.app_version

    app = FastAPI(
        title=API_TITLE,
        description=API_DESCRIPTION,
        version=version,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
        lifespan=_lifespan,
    )

    # Store settings and long-lived collaborators in app state for dependencies
    app.state.settings = settings
    _init_services(app, settings)

    register_exception_handlers(app)

    # Add middleware (order matters - last added is outermost)
    _add_middleware(app, settings)

    # Include routers
    _include_routers(app)

    # Add root health endpoint
    @app.get("/health", tags=["health"])
    async def health_check() -> dict[str, str]:
        """Health check endpoint for container orchestration.

        Returns:
            Status dictionary indicating the service is healthy.
        """
        return {"status": "healthy"}

    logger.info("Warden API application created (version=%s)", version)
    logger.info("Configuration: %s", settings.get_startup_summary())

    return app


def _init_services(app: FastAPI, settings: Settings) -> None:
    """Build the collaborators shared by every request.

    Args:
        app: The FastAPI application instance.
        settings: Application settings.
    """
    app.state.hasher = PasswordHasher.from_settings(settings.security)
    app.state.background = BackgroundRunner()
    app.state.email_sender = build_email_sender(settings)
    app.state.mailer = AccountMailer(
        app.state.email_sender,
        public_url=settings.public_url,
        app_name=settings.app_name,
    )
    app.state.publisher = LoggingEventPublisher()
    app.state.storage = ObjectStoreClient.from_settings(settings.s3)


def _add_middleware(app: FastAPI, settings: Settings) -> None:
    """Add middleware to the application.

    Resulting order, outermost first: CORS, request id, error handler,
    deadline, size and media type limits, idempotency.

    Args:
        app: The FastAPI application instance.
        settings: Settings for middleware configuration.
    """
    idempotency = settings.idempotency
    if idempotency.enabled:
        app.add_middleware(
            IdempotencyMiddleware,
            ttl=timedelta(hours=idempotency.ttl_hours),
            consumer_id=idempotency.consumer_id,
            require_key=idempotency.require_key,
            ignored_paths=idempotency.ignored_paths,
            ignored_methods=idempotency.ignored_methods,
        )

    app.add_middleware(RequestLimitsMiddleware, max_body_bytes=settings.max_body_bytes)
    app.add_middleware(TimeoutMiddleware, timeout_seconds=settings.request_timeout_seconds)

    # Error handler middleware - converts unexpected exceptions to JSON responses
    app.add_middleware(ErrorHandlerMiddleware)

    # Request ID middleware - adds X-Request-ID to all responses
    app.add_middleware(RequestIDMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors.allowed_origins,
        allow_credentials="*" not in settings.cors.allowed_origins,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[REQUEST_ID_HEADER],
    )


def _include_routers(app: FastAPI) -> None:
    """Include API namespace routers.

    Args:
        app: The FastAPI application instance.
    """
    app.include_router(auth_router, prefix=API_PREFIX)
    app.include_router(users_router, prefix=API_PREFIX)
    app.include_router(rbac_router, prefix=API_PREFIX)
