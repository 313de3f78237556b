"""Periodic maintenance tasks.

Each task removes rows that no longer affect any decision:
- inbox_sweep: expired deduplication entries
- revoked_token_purge: revoked jtis whose token has expired anyway
- one_time_token_purge: expired or consumed verification/reset tokens
- role_expiry: deactivates role assignments past their expiry

Tasks run in their own session and transaction; one failing task does not
prevent the others from running.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from warden.services.inbox import InboxService
from warden.services.one_time_tokens import OneTimeTokenLedger
from warden.services.rbac import RBACStore
from warden.services.tokens import TokenService

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from warden.core.config import Settings

logger = logging.getLogger(__name__)

TaskAction = Callable[["AsyncSession"], Awaitable[int]]


@dataclass
class MaintenanceTask:
    """Definition of a periodic maintenance task.

    Attributes:
        name: Task name used in logs.
        interval: Time between runs.
        action: Coroutine doing the work; returns the number of rows affected.
        enabled: Whether this task is active.
        last_run: When the task last ran.
    """

    name: str
    interval: timedelta
    action: TaskAction
    enabled: bool = True
    last_run: datetime | None = None

    def is_due(self, now: datetime) -> bool:
        if self.last_run is None:
            return True
        return now >= self.last_run + self.interval


def default_tasks(settings: Settings) -> list[MaintenanceTask]:
    """Build the standard maintenance tasks from configuration."""
    maintenance = settings.maintenance

    async def sweep_inbox(session: AsyncSession) -> int:
        return await InboxService(session).sweep_expired()

    async def purge_revoked_tokens(session: AsyncSession) -> int:
        return await TokenService(session, settings.tokens).purge_expired()

    async def purge_one_time_tokens(session: AsyncSession) -> int:
        return await OneTimeTokenLedger(session).purge_expired()

    async def expire_role_assignments(session: AsyncSession) -> int:
        return await RBACStore(session).cleanup_expired()

    return [
        MaintenanceTask(
            "inbox_sweep",
            timedelta(seconds=maintenance.inbox_sweep_seconds),
            sweep_inbox,
        ),
        MaintenanceTask(
            "revoked_token_purge",
            timedelta(seconds=maintenance.revoked_token_purge_seconds),
            purge_revoked_tokens,
        ),
        MaintenanceTask(
            "one_time_token_purge",
            timedelta(seconds=maintenance.one_time_token_purge_seconds),
            purge_one_time_tokens,
        ),
        MaintenanceTask(
            "role_expiry",
            timedelta(seconds=maintenance.role_expiry_seconds),
            expire_role_assignments,
        ),
    ]


class MaintenanceScheduler:
    """Run maintenance tasks when they are due.

    Example:
        scheduler = MaintenanceScheduler(session_factory, default_tasks(settings))
        await scheduler.tick()  # Run every task that is due
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        tasks: list[MaintenanceTask],
        *,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        """Initialize the scheduler.

        Args:
            session_factory: Factory for one session per task run.
            tasks: Task definitions.
            clock: Source of the current time.
        """
        self._session_factory = session_factory
        self._tasks = tasks
        self._clock = clock

    @property
    def tasks(self) -> list[MaintenanceTask]:
        return list(self._tasks)

    async def tick(self) -> dict[str, int]:
        """Run every enabled task that is due.

        Returns:
            Rows affected per task that completed.
        """
        now = self._clock()
        results: dict[str, int] = {}

        for task in self._tasks:
            if not task.enabled or not task.is_due(now):
                continue

            try:
                async with self._session_factory() as session:
                    count = await task.action(session)
                    await session.commit()
            except Exception:
                # Retried on the next tick
                logger.exception("Maintenance task failed: task=%s", task.name)
                continue

            task.last_run = now
            results[task.name] = count
            if count:
                logger.info("Maintenance task done: task=%s, affected=%d", task.name, count)
            else:
                logger.debug("Maintenance task done: task=%s, nothing to do", task.name)

        return results


async def run_maintenance_loop(
    scheduler: MaintenanceScheduler,
    check_interval: float = 30.0,
    shutdown_event: asyncio.Event | None = None,
) -> None:
    """Run the scheduler until shutdown is requested.

    Args:
        scheduler: Scheduler holding the tasks.
        check_interval: Seconds between checks.
        shutdown_event: Event to signal shutdown.
    """
    if shutdown_event is None:
        shutdown_event = asyncio.Event()

    logger.info(
        "Maintenance loop starting: check_interval=%ss, tasks=%s",
        check_interval,
        [task.name for task in scheduler.tasks],
    )

    while not shutdown_event.is_set():
        await scheduler.tick()

        # Wait for next check interval (uses wait_for to allow shutdown)
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(shutdown_event.wait(), timeout=check_interval)

    logger.info("Maintenance loop stopped")
