"""Warden maintenance worker entry point.

Runs the periodic maintenance tasks (inbox sweep, token purges, role
expiry) until SIGTERM or SIGINT is received.
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from typing import TYPE_CHECKING, NoReturn

from warden.core.logging import configure_logging
from warden.core.settings import get_settings
from warden.db import close_engine, get_session_factory
from warden.worker.scheduler import MaintenanceScheduler, default_tasks, run_maintenance_loop

if TYPE_CHECKING:
    from warden.core.config import Settings

logger = logging.getLogger(__name__)

# Global shutdown event for signal handlers, and the loop that owns it
_shutdown_event: asyncio.Event | None = None
_shutdown_loop: asyncio.AbstractEventLoop | None = None


def _handle_shutdown(signum: int, _frame: object) -> None:
    """Handle shutdown signals gracefully."""
    logger.info("Shutdown signal received (signal=%d)", signum)
    if _shutdown_event is not None and _shutdown_loop is not None:
        # Signal handlers run outside the loop; hand the set over to it
        _shutdown_loop.call_soon_threadsafe(_shutdown_event.set)


async def _async_main(settings: Settings, shutdown_event: asyncio.Event) -> None:
    """Async entry point for the worker.

    Args:
        settings: Application settings.
        shutdown_event: Event to signal shutdown request.
    """
    scheduler = MaintenanceScheduler(get_session_factory(), default_tasks(settings))
    try:
        await run_maintenance_loop(
            scheduler,
            check_interval=settings.maintenance.check_interval_seconds,
            shutdown_event=shutdown_event,
        )
    finally:
        await close_engine()


def run() -> NoReturn:
    """Run the worker process.

    This is the main entry point for the warden-worker console script. It:
    - Loads settings and sets up logging
    - Registers signal handlers for graceful shutdown
    - Runs the maintenance loop
    """
    global _shutdown_event

    settings = get_settings()
    configure_logging(settings.log_level)

    signal.signal(signal.SIGTERM, _handle_shutdown)
    signal.signal(signal.SIGINT, _handle_shutdown)

    logger.info("Warden worker starting...")

    async def _run_with_event() -> None:
        global _shutdown_event, _shutdown_loop
        _shutdown_event = asyncio.Event()
        _shutdown_loop = asyncio.get_running_loop()
        await _async_main(settings, _shutdown_event)

    try:
        asyncio.run(_run_with_event())
    except Exception:
        logger.exception("Worker failed")
        sys.exit(1)

    logger.info("Warden worker shutdown complete")
    sys.exit(0)


if __name__ == "__main__":
    run()
