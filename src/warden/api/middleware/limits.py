"""Request size and media type limits.

Rejects oversized bodies (413) and write requests whose body is neither
JSON nor a multipart upload (415) before any handler runs.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from starlette.middleware.base import BaseHTTPMiddleware

from warden.api.middleware.errors import build_error_response
from warden.core.errors import ErrorType

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable

    from starlette.requests import Request
    from starlette.responses import Response

logger = logging.getLogger(__name__)

PAYLOAD_TOO_LARGE_CODE = "PAYLOAD_TOO_LARGE"
UNSUPPORTED_MEDIA_TYPE_CODE = "UNSUPPORTED_MEDIA_TYPE"

BODY_METHODS = frozenset({"POST", "PUT", "PATCH"})
DEFAULT_MEDIA_TYPES = ("application/json", "multipart/form-data")


class RequestLimitsMiddleware(BaseHTTPMiddleware):
    """Enforce the body size limit and the accepted media types."""

    def __init__(
        self,
        app: Any,
        *,
        max_body_bytes: int,
        media_types: Iterable[str] = DEFAULT_MEDIA_TYPES,
    ) -> None:
        """Initialize the middleware.

        Args:
            app: The ASGI application.
            max_body_bytes: Largest accepted Content-Length.
            media_types: Accepted media types for request bodies.
        """
        super().__init__(app)
        self._max_body_bytes = max_body_bytes
        self._media_types = tuple(media_types)

    def _has_body(self, request: Request, length: int | None) -> bool:
        if length is not None:
            return length > 0
        return "transfer-encoding" in request.headers

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        raw_length = request.headers.get("content-length")
        length: int | None = None
        if raw_length is not None:
            try:
                length = int(raw_length)
            except ValueError:
                return build_error_response(
                    ErrorType.VALIDATION, "Invalid Content-Length header", 400
                )

        if length is not None and length > self._max_body_bytes:
            logger.warning(
                "Request body too large: %d bytes (limit %d), path=%s",
                length,
                self._max_body_bytes,
                request.url.path,
            )
            return build_error_response(
                ErrorType.VALIDATION,
                f"Request body exceeds {self._max_body_bytes} bytes",
                413,
                code=PAYLOAD_TOO_LARGE_CODE,
            )

        if request.method in BODY_METHODS and self._has_body(request, length):
            media_type = request.headers.get("content-type", "").split(";")[0].strip().lower()
            if media_type not in self._media_types:
                return build_error_response(
                    ErrorType.VALIDATION,
                    f"Unsupported media type: {media_type or 'none'}",
                    415,
                    code=UNSUPPORTED_MEDIA_TYPE_CODE,
                )

        return await call_next(request)
