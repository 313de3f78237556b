"""Request deadline middleware.

Wraps the downstream call in ``asyncio.wait_for``. When the deadline passes
the handler task is cancelled, database sessions roll back through their
context managers, and the client receives 408.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from starlette.middleware.base import BaseHTTPMiddleware

from warden.api.middleware.errors import build_error_response, error_type_for_status

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from starlette.requests import Request
    from starlette.responses import Response

logger = logging.getLogger(__name__)

TIMEOUT_CODE = "REQUEST_TIMEOUT"


class TimeoutMiddleware(BaseHTTPMiddleware):
    """Answer 408 when a request exceeds its deadline."""

    def __init__(self, app: Any, *, timeout_seconds: float = 30.0) -> None:
        """Initialize the middleware.

        Args:
            app: The ASGI application.
            timeout_seconds: Deadline for the downstream call.
        """
        super().__init__(app)
        self._timeout = timeout_seconds

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        try:
            return await asyncio.wait_for(call_next(request), timeout=self._timeout)
        except TimeoutError:
            logger.warning(
                "Request timed out after %.1fs: %s %s",
                self._timeout,
                request.method,
                request.url.path,
            )
            return build_error_response(
                error_type_for_status(408),
                "Request timed out",
                408,
                code=TIMEOUT_CODE,
            )
