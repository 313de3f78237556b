"""Account domain events.

Services publish events after their transaction commits. Publishing is
best-effort: a failing publisher is logged and never fails the operation
that emitted the event.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class AccountEventType(str, Enum):
    """Events emitted by the authenticator and user administration."""

    USER_REGISTERED = "user.registered"
    USER_LOGGED_IN = "user.logged_in"
    USER_LOGGED_OUT = "user.logged_out"
    USER_LOGGED_OUT_ALL = "user.logged_out_all"
    USER_EMAIL_VERIFIED = "user.email_verified"
    USER_PASSWORD_CHANGED = "user.password_changed"
    USER_PASSWORD_RESET = "user.password_reset"
    USER_UPDATED = "user.updated"
    USER_DEACTIVATED = "user.deactivated"


@dataclass(frozen=True, slots=True)
class AccountEvent:
    """An event about a user account.

    Attributes:
        event_type: What happened.
        user_id: Account concerned.
        details: Event-specific data; never secrets.
        event_id: Unique id, usable as an inbox message id by consumers.
        occurred_at: When it happened.
    """

    event_type: AccountEventType
    user_id: uuid.UUID
    details: dict[str, Any] = field(default_factory=dict)
    event_id: uuid.UUID = field(default_factory=uuid.uuid4)
    occurred_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        """Convert the event to a JSON-friendly dictionary."""
        return {
            "event_id": str(self.event_id),
            "event_type": self.event_type.value,
            "user_id": str(self.user_id),
            "details": self.details,
            "occurred_at": self.occurred_at.isoformat(),
        }


class EventPublisher(Protocol):
    """Outbound port for account events."""

    async def publish(self, event: AccountEvent) -> None:
        """Publish an event or raise."""
        ...


class LoggingEventPublisher:
    """Publisher that writes events to the log."""

    async def publish(self, event: AccountEvent) -> None:
        logger.info(
            "Account event: type=%s, user_id=%s, event_id=%s",
            event.event_type.value,
            event.user_id,
            event.event_id,
        )


async def publish_safely(publisher: EventPublisher | None, event: AccountEvent) -> None:
    """Publish an event, logging instead of raising on failure."""
    if publisher is None:
        return
    try:
        await publisher.publish(event)
    except Exception:
        logger.exception(
            "Event publish failed: type=%s, user_id=%s",
            event.event_type.value,
            event.user_id,
        )
