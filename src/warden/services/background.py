"""Detached background work.

Request handlers hand work here when its duration must not show in the
response time. Each job runs in its own task; failures are logged with a
stack trace and never reach the request that scheduled them.

Example:
    runner = BackgroundRunner()
    runner.submit(do_work(), name="password-reset")
    await runner.drain()
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Coroutine
    from typing import Any

logger = logging.getLogger(__name__)


class BackgroundRunner:
    """Run coroutines in tasks that outlive the request."""

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[None]] = set()

    def submit(self, work: Coroutine[Any, Any, None], *, name: str) -> None:
        """Schedule a coroutine on the running loop.

        Args:
            work: The coroutine to run.
            name: Label used for the task and in failure logs.
        """
        task = asyncio.create_task(self._run(work, name), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, work: Coroutine[Any, Any, None], name: str) -> None:
        try:
            await work
        except Exception:
            logger.exception("Background task failed: %s", name)

    @property
    def pending(self) -> int:
        """Number of jobs still running."""
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for running jobs (shutdown, tests)."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
