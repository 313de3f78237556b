"""HTTP request idempotency on top of the inbox deduplicator.

A write request carrying ``Idempotency-Key`` is recorded in the inbox under
a message id derived from the key, method, concrete path and query string.
The first request proceeds; a repeat within the TTL is answered with 409.
If the first request fails (status >= 400 or an exception) its entry is
released so the client can retry with the same key.

The inbox entry is committed in its own short transaction before the
handler runs, so two concurrent requests with the same key cannot both
proceed.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import SQLAlchemyError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.routing import compile_path

from warden.api.middleware.errors import build_error_response
from warden.core.errors import ErrorType
from warden.db import get_async_session
from warden.services.inbox import (
    HTTP_CONSUMER_ID,
    InboxService,
    derive_http_message_id,
    http_event_type,
)

if TYPE_CHECKING:
    import re
    from collections.abc import Awaitable, Callable, Iterable
    from uuid import UUID

    from starlette.requests import Request
    from starlette.responses import Response

logger = logging.getLogger(__name__)

IDEMPOTENCY_HEADER = "Idempotency-Key"
WRITE_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})
MAX_KEY_LENGTH = 255


def route_templates(app: Any) -> list[tuple[re.Pattern[str], str]]:
    """Compile the application's path templates, literal paths first.

    Templates come from the OpenAPI document, which lists every included
    router's routes with their full prefix. ``/roles/cleanup-expired`` sorts
    ahead of ``/roles/{role_id}`` so the literal route wins.
    """
    paths = app.openapi().get("paths", {}) if hasattr(app, "openapi") else {}
    ordered = sorted(paths, key=lambda path: (path.count("{"), path))
    return [(compile_path(path)[0], path) for path in ordered]


def resolve_route_pattern(
    request: Request, templates: Iterable[tuple[re.Pattern[str], str]]
) -> str:
    """Return the route template matching the request, or its raw path.

    Used for the inbox event type only; the message id hashes the
    concrete path.
    """
    path = request.url.path
    for regex, template in templates:
        if regex.match(path):
            return template
    return path


class IdempotencyMiddleware(BaseHTTPMiddleware):
    """Reject replays of write requests that carry an Idempotency-Key."""

    def __init__(
        self,
        app: Any,
        *,
        ttl: timedelta = timedelta(hours=24),
        consumer_id: str = HTTP_CONSUMER_ID,
        require_key: bool = False,
        ignored_paths: Iterable[str] = (),
        ignored_methods: Iterable[str] = (),
    ) -> None:
        """Initialize the middleware.

        Args:
            app: The ASGI application.
            ttl: How long a processed key blocks replays.
            consumer_id: Inbox consumer the keys are recorded under.
            require_key: Reject write requests that carry no key.
            ignored_paths: Path prefixes exempt from idempotency.
            ignored_methods: Write methods exempt from idempotency.
        """
        super().__init__(app)
        self._ttl = ttl
        self._consumer_id = consumer_id
        self._require_key = require_key
        self._ignored_paths = tuple(ignored_paths)
        self._methods = WRITE_METHODS - {method.upper() for method in ignored_methods}
        self._templates: list[tuple[re.Pattern[str], str]] | None = None

    def _applies_to(self, request: Request) -> bool:
        if request.method not in self._methods:
            return False
        return not any(request.url.path.startswith(path) for path in self._ignored_paths)

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        if not self._applies_to(request):
            return await call_next(request)

        key = request.headers.get(IDEMPOTENCY_HEADER, "").strip()
        if not key:
            if self._require_key:
                return build_error_response(
                    ErrorType.VALIDATION, f"{IDEMPOTENCY_HEADER} header is required", 400
                )
            return await call_next(request)
        if len(key) > MAX_KEY_LENGTH:
            return build_error_response(
                ErrorType.VALIDATION,
                f"{IDEMPOTENCY_HEADER} must be at most {MAX_KEY_LENGTH} characters",
                400,
            )

        if self._templates is None:
            self._templates = route_templates(request.scope.get("app"))
        message_id = derive_http_message_id(
            key, request.method, request.url.path, request.url.query
        )
        event_type = http_event_type(
            request.method, resolve_route_pattern(request, self._templates)
        )

        try:
            is_new = await self._record(message_id, event_type)
        except SQLAlchemyError:
            logger.exception("Idempotency check failed: event_type=%s", event_type)
            return build_error_response(ErrorType.INTERNAL, "Idempotency check failed", 500)

        if not is_new:
            logger.info("Duplicate request rejected: event_type=%s", event_type)
            return build_error_response(ErrorType.CONFLICT, "Request already processed", 409)

        try:
            response = await call_next(request)
        except Exception:
            await self._release(message_id, event_type)
            raise

        if response.status_code >= 400:
            await self._release(message_id, event_type)
        return response

    async def _record(self, message_id: UUID, event_type: str) -> bool:
        async with get_async_session() as session:
            inbox = InboxService(session)
            is_new = await inbox.process_if_new(
                message_id, self._consumer_id, event_type, self._ttl
            )
            await session.commit()
            return is_new

    async def _release(self, message_id: UUID, event_type: str) -> None:
        try:
            async with get_async_session() as session:
                await InboxService(session).release(message_id, self._consumer_id)
                await session.commit()
        except SQLAlchemyError:
            # The key stays consumed until its TTL; the original error still reaches the client
            logger.exception("Failed to release idempotency key: event_type=%s", event_type)
        else:
            logger.debug("Idempotency key released after failure: event_type=%s", event_type)
