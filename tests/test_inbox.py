"""Tests for the inbox deduplicator.

Tests cover:
- First delivery processes, duplicates are skipped
- Consumer isolation
- Expiry and reprocessing after the TTL
- process_once handler semantics
- HTTP message id derivation
"""

import uuid
from datetime import timedelta

import pytest

from tests.factories import FrozenClock
from warden.services.inbox import (
    HTTP_CONSUMER_ID,
    InboxService,
    derive_http_message_id,
    http_event_type,
)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def inbox(session, clock) -> InboxService:
    return InboxService(session, clock=clock)


class TestProcessIfNew:
    """Tests for insert-if-absent."""

    @pytest.mark.asyncio
    async def test_first_then_duplicate(self, inbox, session):
        """Test that only the first delivery is processed."""
        message_id = uuid.uuid4()
        assert await inbox.process_if_new(message_id, "mailer", "user.registered") is True
        await session.commit()

        assert await inbox.process_if_new(message_id, "mailer", "user.registered") is False
        assert await inbox.is_duplicate(message_id, "mailer") is True

    @pytest.mark.asyncio
    async def test_duplicate_keeps_transaction_usable(self, inbox, session):
        """Test that a duplicate does not poison the caller's transaction."""
        message_id = uuid.uuid4()
        await inbox.process_if_new(message_id, "mailer", "user.registered")
        await session.commit()

        assert await inbox.process_if_new(message_id, "mailer", "user.registered") is False
        other = uuid.uuid4()
        assert await inbox.process_if_new(other, "mailer", "user.registered") is True
        await session.commit()
        assert await inbox.is_duplicate(other, "mailer") is True

    @pytest.mark.asyncio
    async def test_consumers_are_independent(self, inbox, session):
        """Test that each consumer processes the same message once."""
        message_id = uuid.uuid4()
        assert await inbox.process_if_new(message_id, "mailer", "user.registered")
        assert await inbox.process_if_new(message_id, "audit", "user.registered")
        await session.commit()
        assert await inbox.is_duplicate(message_id, "mailer")
        assert await inbox.is_duplicate(message_id, "audit")
        assert not await inbox.is_duplicate(message_id, "billing")

    @pytest.mark.asyncio
    async def test_reprocess_after_ttl(self, inbox, session, clock):
        """Test that an expired entry no longer blocks the message."""
        message_id = uuid.uuid4()
        await inbox.process_if_new(message_id, "mailer", "x", ttl=timedelta(minutes=5))
        await session.commit()

        clock.advance(minutes=4, seconds=59)
        assert await inbox.process_if_new(message_id, "mailer", "x") is False

        clock.advance(seconds=1)
        assert await inbox.is_duplicate(message_id, "mailer") is False
        assert await inbox.process_if_new(message_id, "mailer", "x") is True
        await session.commit()
        assert await inbox.is_duplicate(message_id, "mailer") is True


class TestRelease:
    """Tests for release and sweeping."""

    @pytest.mark.asyncio
    async def test_release(self, inbox, session):
        """Test that a released message can be processed again."""
        message_id = uuid.uuid4()
        await inbox.process_if_new(message_id, "mailer", "x")
        await session.commit()

        assert await inbox.release(message_id, "mailer") is True
        assert await inbox.release(message_id, "mailer") is False
        assert await inbox.process_if_new(message_id, "mailer", "x") is True

    @pytest.mark.asyncio
    async def test_sweep_expired(self, inbox, session, clock):
        """Test that only expired entries are swept."""
        await inbox.process_if_new(uuid.uuid4(), "mailer", "x", ttl=timedelta(hours=1))
        await inbox.process_if_new(uuid.uuid4(), "mailer", "x", ttl=timedelta(hours=3))
        await session.commit()

        clock.advance(hours=2)
        assert await inbox.sweep_expired() == 1
        assert await inbox.sweep_expired() == 0


class TestProcessOnce:
    """Tests for the handler wrapper."""

    @pytest.mark.asyncio
    async def test_handler_runs_once(self, inbox, session):
        """Test that the handler is skipped for duplicates."""
        calls = []

        async def handler():
            calls.append(1)

        message_id = uuid.uuid4()
        assert await inbox.process_once(message_id, "mailer", "x", handler) is True
        await session.commit()
        assert await inbox.process_once(message_id, "mailer", "x", handler) is False
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_failed_handler_releases(self, inbox, session):
        """Test that a failing handler leaves the message reprocessable."""

        async def handler():
            raise RuntimeError("downstream unavailable")

        message_id = uuid.uuid4()
        with pytest.raises(RuntimeError, match="downstream unavailable"):
            await inbox.process_once(message_id, "mailer", "x", handler)
        assert await inbox.is_duplicate(message_id, "mailer") is False


class TestHttpMessageId:
    """Tests for Idempotency-Key derivation."""

    def test_stable(self):
        """Test that the same request shape gives the same id."""
        first = derive_http_message_id("key-1", "post", "/api/v1/users", "")
        second = derive_http_message_id("key-1", "POST", "/api/v1/users", "")
        assert first == second
        assert first.version == 5

    def test_shape_matters(self):
        """Test that key, method, path and query all feed the id."""
        base = derive_http_message_id("key-1", "POST", "/api/v1/users", "")
        assert base != derive_http_message_id("key-2", "POST", "/api/v1/users", "")
        assert base != derive_http_message_id("key-1", "PUT", "/api/v1/users", "")
        assert base != derive_http_message_id("key-1", "POST", "/api/v1/roles", "")
        assert base != derive_http_message_id("key-1", "POST", "/api/v1/users", "a=1")

    def test_parts_are_delimited(self):
        """Test that moving characters across a part boundary changes the id."""
        assert derive_http_message_id("ab", "POST", "/x", "q") != derive_http_message_id(
            "a", "POST", "b/x", "q"
        )
        assert derive_http_message_id("k", "POST", "/a", "b=1") != derive_http_message_id(
            "k", "POST", "/ab", "=1"
        )

    def test_event_type(self):
        """Test the event label for HTTP writes."""
        assert http_event_type("post", "/api/v1/users") == "http.POST./api/v1/users"
        assert HTTP_CONSUMER_ID == "http-api"
