"""Tests for bounded database retries and log correlation.

Tests cover:
- Transient error classification
- Retry count and give-up behavior
- Request id injection into log records
"""

import logging
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from warden.api.middleware.request_id import request_id_ctx
from warden.core.logging import RequestIDLogFilter
from warden.db.retry import is_transient, run_with_retry


def _operational() -> OperationalError:
    return OperationalError("SELECT 1", {}, Exception("connection reset"))


class TestRetry:
    """Tests for run_with_retry."""

    def test_classification(self):
        """Test that operational errors are transient and integrity errors are not."""
        assert is_transient(_operational())
        assert not is_transient(IntegrityError("INSERT", {}, Exception("duplicate")))

    @pytest.mark.asyncio
    async def test_recovers_after_transient_error(self):
        """Test that a transient failure is retried."""
        operation = AsyncMock(side_effect=[_operational(), "rows"])
        assert await run_with_retry(operation, base_delay=0) == "rows"
        assert operation.await_count == 2

    @pytest.mark.asyncio
    async def test_gives_up_after_two_retries(self):
        """Test that the last error propagates after three attempts."""
        operation = AsyncMock(side_effect=_operational())
        with pytest.raises(OperationalError):
            await run_with_retry(operation, base_delay=0)
        assert operation.await_count == 3

    @pytest.mark.asyncio
    async def test_permanent_error_not_retried(self):
        """Test that non-transient errors propagate immediately."""
        operation = AsyncMock(side_effect=IntegrityError("INSERT", {}, Exception("dup")))
        with pytest.raises(IntegrityError):
            await run_with_retry(operation, base_delay=0)
        assert operation.await_count == 1


class TestRequestIDLogFilter:
    """Tests for RequestIDLogFilter."""

    def _record(self) -> logging.LogRecord:
        return logging.LogRecord("warden", logging.INFO, __file__, 1, "hello", None, None)

    def test_without_request(self):
        """Test the placeholder outside a request."""
        record = self._record()
        assert RequestIDLogFilter().filter(record) is True
        assert record.request_id == "-"

    def test_inside_request(self):
        """Test that the current request id is attached."""
        token = request_id_ctx.set("req-7")
        try:
            record = self._record()
            RequestIDLogFilter().filter(record)
        finally:
            request_id_ctx.reset(token)
        assert record.request_id == "req-7"
