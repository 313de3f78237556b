"""Inbox deduplicator.

Guarantees that a message is processed at most once per consumer within a
time-to-live. The unique key (message_id, consumer_id) makes the insert
itself the decision: whoever inserts first processes, everyone else sees a
duplicate.

The HTTP edge uses the same ledger for Idempotency-Key handling with a
message id derived from the key and the request shape.
"""

from __future__ import annotations

import hashlib
import logging
import uuid
from datetime import timedelta
from typing import TYPE_CHECKING

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError

from warden.db.models import InboxEntry
from warden.db.models.base import utcnow

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

DEFAULT_TTL = timedelta(hours=24)
HTTP_CONSUMER_ID = "http-api"


def derive_http_message_id(key: str, method: str, path: str, raw_query: str = "") -> uuid.UUID:
    """Stable message id for an HTTP request carrying an Idempotency-Key.

    Args:
        key: Client-supplied idempotency key.
        method: HTTP method, uppercase.
        path: Concrete request path.
        raw_query: Raw query string.

    Returns:
        UUIDv5 of the SHA-256 over the NUL-separated parts.
    """
    material = "\x00".join((key, method.upper(), path, raw_query))
    digest = hashlib.sha256(material.encode()).hexdigest()
    return uuid.uuid5(uuid.UUID(int=0), digest)


def http_event_type(method: str, route: str) -> str:
    """Event type recorded for an HTTP write."""
    return f"http.{method.upper()}.{route}"


class InboxService:
    """Insert-if-absent ledger over inbox_entries.

    The caller owns the transaction; process_if_new uses a savepoint so a
    duplicate leaves the outer transaction usable.

    Example:
        inbox = InboxService(session)
        if await inbox.process_if_new(message_id, "mailer", "user.registered"):
            await handle(message)
        await session.commit()
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session = session
        self._clock = clock

    async def process_if_new(
        self,
        message_id: uuid.UUID,
        consumer_id: str,
        event_type: str,
        ttl: timedelta = DEFAULT_TTL,
    ) -> bool:
        """Record a message for a consumer if not already recorded.

        Args:
            message_id: Message identity.
            consumer_id: Consumer identity.
            event_type: Informational label stored with the entry.
            ttl: How long the entry blocks duplicates.

        Returns:
            True if this call inserted the entry and the caller should
            process the message; False for a duplicate.
        """
        now = self._clock()
        entry = InboxEntry(
            message_id=message_id,
            consumer_id=consumer_id,
            event_type=event_type,
            processed_at=now,
            expires_at=now + ttl,
        )
        try:
            async with self._session.begin_nested():
                self._session.add(entry)
        except IntegrityError:
            # An expired entry that the sweeper has not removed yet does not
            # block reprocessing
            if await self._replace_expired(message_id, consumer_id, entry):
                return True
            logger.info(
                "Duplicate message skipped: message_id=%s, consumer=%s, event_type=%s",
                message_id,
                consumer_id,
                event_type,
            )
            return False
        return True

    async def _replace_expired(
        self,
        message_id: uuid.UUID,
        consumer_id: str,
        entry: InboxEntry,
    ) -> bool:
        try:
            async with self._session.begin_nested():
                result = await self._session.execute(
                    delete(InboxEntry)
                    .where(
                        InboxEntry.message_id == message_id,
                        InboxEntry.consumer_id == consumer_id,
                        InboxEntry.expires_at <= self._clock(),
                    )
                    .execution_options(synchronize_session=False)
                )
                if not result.rowcount:
                    return False
                self._session.add(entry)
        except IntegrityError:
            return False
        return True

    async def is_duplicate(self, message_id: uuid.UUID, consumer_id: str) -> bool:
        """Tell whether an unexpired entry exists."""
        found = await self._session.scalar(
            select(InboxEntry.inbox_entry_id).where(
                InboxEntry.message_id == message_id,
                InboxEntry.consumer_id == consumer_id,
                InboxEntry.expires_at > self._clock(),
            )
        )
        return found is not None

    async def release(self, message_id: uuid.UUID, consumer_id: str) -> bool:
        """Remove an entry so the message can be processed again.

        Returns:
            True if an entry was removed.
        """
        result = await self._session.execute(
            delete(InboxEntry)
            .where(InboxEntry.message_id == message_id, InboxEntry.consumer_id == consumer_id)
            .execution_options(synchronize_session=False)
        )
        return bool(result.rowcount)

    async def process_once(
        self,
        message_id: uuid.UUID,
        consumer_id: str,
        event_type: str,
        handler: Callable[[], Awaitable[None]],
        ttl: timedelta = DEFAULT_TTL,
    ) -> bool:
        """Run a handler only for the first delivery of a message.

        The entry and the handler's writes share the caller's transaction.
        If the handler raises, the entry is released and the error
        propagates so the message can be redelivered.

        Returns:
            True if the handler ran, False for a duplicate.
        """
        if not await self.process_if_new(message_id, consumer_id, event_type, ttl):
            return False
        try:
            await handler()
        except Exception:
            logger.warning(
                "Handler failed, releasing inbox entry: message_id=%s, consumer=%s",
                message_id,
                consumer_id,
            )
            await self.release(message_id, consumer_id)
            raise
        return True

    async def sweep_expired(self) -> int:
        """Delete expired entries.

        Returns:
            Number of entries deleted.
        """
        result = await self._session.execute(
            delete(InboxEntry)
            .where(InboxEntry.expires_at <= self._clock())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0
