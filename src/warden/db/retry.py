"""Bounded retry for read-only database operations.

Only wrap operations that are safe to repeat. Writes are never retried
transparently; they are protected by transactions and, for HTTP requests,
by the idempotency inbox.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, TypeVar

from sqlalchemy.exc import DBAPIError, OperationalError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Two retries after the first attempt
MAX_ATTEMPTS = 3
BASE_DELAY_SECONDS = 0.05


def is_transient(exc: BaseException) -> bool:
    """Tell whether a database error is worth retrying.

    Args:
        exc: The raised exception.

    Returns:
        True for dropped connections and operational failures.
    """
    if isinstance(exc, OperationalError):
        return True
    return isinstance(exc, DBAPIError) and exc.connection_invalidated


async def run_with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    attempts: int = MAX_ATTEMPTS,
    base_delay: float = BASE_DELAY_SECONDS,
) -> T:
    """Run a read-only database operation with exponential backoff.

    Args:
        operation: Zero-argument coroutine factory performing the query.
        attempts: Total attempts including the first one.
        base_delay: Delay before the first retry; doubles each time.

    Returns:
        The operation's result.

    Raises:
        The last error if every attempt failed, or any non-transient error
        immediately.
    """
    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except DBAPIError as exc:
            if attempt >= attempts or not is_transient(exc):
                raise
            delay = base_delay * (2 ** (attempt - 1))
            logger.warning(
                "Transient database error (attempt %d/%d), retrying in %.2fs: %s",
                attempt,
                attempts,
                delay,
                exc.__class__.__name__,
            )
            await asyncio.sleep(delay)

    msg = "attempts must be at least 1"
    raise ValueError(msg)
