"""Tests for the maintenance worker.

Tests cover:
- Task scheduling (due checks, disabled tasks)
- The default task set and the rows each task removes
- Failure isolation between tasks
- Graceful shutdown of the loop and signal handling
"""

from __future__ import annotations

import asyncio
import signal
import uuid
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import func, select, update

from tests.factories import FrozenClock, create_user
from warden.db import get_session_factory
from warden.db.models import (
    InboxEntry,
    OneTimeToken,
    OneTimeTokenPurpose,
    RevokedToken,
    TokenKind,
    UserRole,
)
from warden.services.inbox import InboxService
from warden.services.one_time_tokens import OneTimeTokenLedger
from warden.services.rbac import USER_ROLE
from warden.services.tokens import TokenService
from warden.worker import main as worker_main
from warden.worker.scheduler import (
    MaintenanceScheduler,
    MaintenanceTask,
    default_tasks,
    run_maintenance_loop,
)

LONG_AGO = datetime(2020, 1, 1, tzinfo=UTC)


async def _count(session, model) -> int:
    return await session.scalar(select(func.count()).select_from(model))


class TestMaintenanceTask:
    """Tests for the MaintenanceTask dataclass."""

    def test_due_when_never_run(self):
        """Test that a task that never ran is due."""
        task = MaintenanceTask("t", timedelta(minutes=5), AsyncMock(return_value=0))
        assert task.is_due(datetime.now(UTC))

    def test_due_after_interval(self):
        """Test that a task becomes due exactly one interval after its last run."""
        now = datetime.now(UTC)
        task = MaintenanceTask(
            "t", timedelta(minutes=5), AsyncMock(return_value=0), last_run=now
        )
        assert not task.is_due(now + timedelta(minutes=4))
        assert task.is_due(now + timedelta(minutes=5))

    def test_default_tasks(self, settings):
        """Test the standard task set and its configured intervals."""
        tasks = {task.name: task for task in default_tasks(settings)}
        assert set(tasks) == {
            "inbox_sweep",
            "revoked_token_purge",
            "one_time_token_purge",
            "role_expiry",
        }
        assert tasks["inbox_sweep"].interval == timedelta(
            seconds=settings.maintenance.inbox_sweep_seconds
        )


class TestScheduler:
    """Tests for MaintenanceScheduler.tick."""

    @pytest.mark.asyncio
    async def test_tick_runs_due_tasks_once(self, engine):
        """Test that a task runs, then waits for its interval."""
        clock = FrozenClock()
        action = AsyncMock(return_value=3)
        scheduler = MaintenanceScheduler(
            get_session_factory(),
            [MaintenanceTask("t", timedelta(minutes=5), action)],
            clock=clock,
        )

        assert await scheduler.tick() == {"t": 3}
        assert await scheduler.tick() == {}
        clock.advance(minutes=5)
        assert await scheduler.tick() == {"t": 3}
        assert action.await_count == 2

    @pytest.mark.asyncio
    async def test_disabled_task_skipped(self, engine):
        """Test that disabled tasks never run."""
        action = AsyncMock(return_value=0)
        scheduler = MaintenanceScheduler(
            get_session_factory(),
            [MaintenanceTask("off", timedelta(seconds=10), action, enabled=False)],
        )
        assert await scheduler.tick() == {}
        action.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failure_is_isolated(self, engine):
        """Test that one failing task neither stops the others nor is marked as run."""
        failing = MaintenanceTask(
            "broken", timedelta(seconds=10), AsyncMock(side_effect=RuntimeError("boom"))
        )
        healthy = MaintenanceTask("healthy", timedelta(seconds=10), AsyncMock(return_value=1))
        scheduler = MaintenanceScheduler(get_session_factory(), [failing, healthy])

        assert await scheduler.tick() == {"healthy": 1}
        assert failing.last_run is None
        assert healthy.last_run is not None


class TestDefaultTasks:
    """Tests that the default tasks remove stale rows."""

    @pytest.mark.asyncio
    async def test_cleanup_pass(self, settings, session, hasher, rbac):
        """Test one maintenance pass over expired state of every kind."""
        old = FrozenClock(LONG_AGO)
        user = await create_user(session, hasher, email="stale@example.com", roles=[USER_ROLE])

        await InboxService(session, clock=old).process_if_new(uuid.uuid4(), "mailer", "x")
        await InboxService(session).process_if_new(uuid.uuid4(), "mailer", "x")

        tokens = TokenService(session, settings.tokens, clock=old)
        pair = tokens.issue_pair(user)
        await tokens.revoke(tokens.decode(pair.access_token, TokenKind.ACCESS))

        await OneTimeTokenLedger(session, clock=old).issue(
            OneTimeTokenPurpose.RESET_PASSWORD, user.user_id, timedelta(hours=1)
        )
        await session.execute(
            update(UserRole)
            .where(UserRole.user_id == user.user_id)
            .values(expires_at=datetime.now(UTC) - timedelta(minutes=1))
        )
        await session.commit()

        results = await MaintenanceScheduler(get_session_factory(), default_tasks(settings)).tick()

        assert results == {
            "inbox_sweep": 1,
            "revoked_token_purge": 1,
            "one_time_token_purge": 1,
            "role_expiry": 1,
        }
        assert await _count(session, InboxEntry) == 1
        assert await _count(session, RevokedToken) == 0
        assert await _count(session, OneTimeToken) == 0
        assignment = (await rbac.list_user_assignments(user.user_id))[0]
        assert assignment.is_active is False


class TestMaintenanceLoop:
    """Tests for run_maintenance_loop."""

    @pytest.mark.asyncio
    async def test_loop_exits_on_shutdown(self, engine):
        """Test that the loop ticks and stops when shutdown is requested."""
        action = AsyncMock(return_value=0)
        scheduler = MaintenanceScheduler(
            get_session_factory(), [MaintenanceTask("t", timedelta(seconds=10), action)]
        )
        shutdown_event = asyncio.Event()

        async def delayed_shutdown():
            await asyncio.sleep(0.05)
            shutdown_event.set()

        await asyncio.wait_for(
            asyncio.gather(
                run_maintenance_loop(scheduler, check_interval=0.01, shutdown_event=shutdown_event),
                delayed_shutdown(),
            ),
            timeout=5.0,
        )
        action.assert_awaited()

    @pytest.mark.asyncio
    async def test_loop_not_started_when_already_shut_down(self, engine):
        """Test that a set shutdown event prevents any tick."""
        action = AsyncMock(return_value=0)
        scheduler = MaintenanceScheduler(
            get_session_factory(), [MaintenanceTask("t", timedelta(seconds=10), action)]
        )
        shutdown_event = asyncio.Event()
        shutdown_event.set()

        await run_maintenance_loop(scheduler, check_interval=0.01, shutdown_event=shutdown_event)
        action.assert_not_awaited()


class TestSignalHandling:
    """Tests for the worker's shutdown signal handler."""

    @pytest.mark.asyncio
    async def test_signal_sets_shutdown_event(self, monkeypatch):
        """Test that SIGTERM sets the shutdown event on the running loop."""
        shutdown_event = asyncio.Event()
        monkeypatch.setattr(worker_main, "_shutdown_event", shutdown_event)
        monkeypatch.setattr(worker_main, "_shutdown_loop", asyncio.get_running_loop())

        worker_main._handle_shutdown(signal.SIGTERM, None)
        await asyncio.wait_for(shutdown_event.wait(), timeout=1.0)

        assert shutdown_event.is_set()

    def test_signal_before_start_is_ignored(self, monkeypatch):
        """Test that a signal arriving before the loop starts does not raise."""
        monkeypatch.setattr(worker_main, "_shutdown_event", None)
        monkeypatch.setattr(worker_main, "_shutdown_loop", None)

        worker_main._handle_shutdown(signal.SIGINT, None)
