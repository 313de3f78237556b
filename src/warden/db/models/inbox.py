"""Inbox deduplication ledger.

A row for (message_id, consumer_id) means that consumer already processed
the message. HTTP write requests carrying an Idempotency-Key use the same
table with consumer_id "http-api".
"""

from __future__ import annotations

import uuid  # noqa: TC003 - required at runtime for SQLAlchemy type resolution
from datetime import datetime  # noqa: TC003 - required at runtime for SQLAlchemy

from sqlalchemy import Index, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from warden.db.models.base import Base, TimestampTZ, UTCDateTime, UUIDPrimaryKey


class InboxEntry(Base):
    """Processed message marker with a time-to-live."""

    __tablename__ = "inbox_entries"

    inbox_entry_id: Mapped[UUIDPrimaryKey]

    message_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    consumer_id: Mapped[str] = mapped_column(String(100), nullable=False)
    event_type: Mapped[str] = mapped_column(String(200), nullable=False)
    processed_at: Mapped[TimestampTZ]
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    __table_args__ = (
        UniqueConstraint("message_id", "consumer_id", name="uq_inbox_entries_message_consumer"),
        Index("ix_inbox_entries_expires_at", "expires_at"),
    )
