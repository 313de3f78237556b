"""Warden API service entry point.

This module provides the application instance for ASGI servers (uvicorn)
and a run() function for direct execution.

The app is created lazily by uvicorn through the factory below, so that
importing this module never reads the environment.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI

from warden.api import create_app
from warden.core.logging import configure_logging
from warden.core.settings import get_settings

logger = logging.getLogger(__name__)


def app_factory() -> FastAPI:
    """Build the application from environment settings.

    Referenced by uvicorn as ``warden.api.main:app_factory`` with
    ``factory=True``.
    """
    settings = get_settings()
    configure_logging(settings.log_level)
    return create_app(settings)


def run() -> None:
    """Run the API server using uvicorn.

    This function is called by the warden-api console script
    defined in pyproject.toml.
    """
    import uvicorn

    settings = get_settings()
    configure_logging(settings.log_level)

    logger.info("Starting Warden API on %s:%d", settings.api_host, settings.api_port)

    uvicorn.run(
        "warden.api.main:app_factory",
        factory=True,
        host=settings.api_host,
        port=settings.api_port,
        reload=False,
        log_config=None,
    )


if __name__ == "__main__":
    run()
