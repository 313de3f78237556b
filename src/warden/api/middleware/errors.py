"""Error handling for consistent JSON error envelopes.

Every failure leaves the API in the same shape:

    {"success": false,
     "error": {"type": ..., "message": ..., "details": ..., "code": ...},
     "meta": {"request_id": ...},
     "timestamp": ...}

Domain errors (ServiceError), request validation errors and HTTP exceptions
are converted by exception handlers registered on the app. Anything else
escapes to ErrorHandlerMiddleware, which logs the stack trace and answers
with a generic 500.

Edge responses with a status outside the taxonomy (408, 413, 415) take the
type error_type_for_status gives them, VALIDATION_ERROR for any 4xx, and
carry a ``code`` naming the cause.
"""

from __future__ import annotations

import logging
from http import HTTPStatus
from typing import TYPE_CHECKING, Any

from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from warden.api.middleware.request_id import get_request_id
from warden.api.schemas.common import ErrorBody, ErrorEnvelope
from warden.core.errors import ErrorType, ServiceError, UnauthorizedError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from fastapi import FastAPI
    from starlette.requests import Request
    from starlette.responses import Response

logger = logging.getLogger(__name__)

INTERNAL_MESSAGE = "An internal error occurred"

# Request locations that carry no information for clients
_LOCATION_PREFIXES = {"body", "query", "path", "header", "cookie"}

_STATUS_TYPES = {
    401: ErrorType.UNAUTHORIZED,
    403: ErrorType.FORBIDDEN,
    404: ErrorType.NOT_FOUND,
    409: ErrorType.CONFLICT,
}


def error_type_for_status(status_code: int) -> ErrorType:
    """Map an HTTP status to the closest error type."""
    if status_code in _STATUS_TYPES:
        return _STATUS_TYPES[status_code]
    if status_code >= 500:
        return ErrorType.INTERNAL
    return ErrorType.VALIDATION


def build_error_response(
    error_type: ErrorType,
    message: str,
    status_code: int,
    *,
    details: dict[str, Any] | None = None,
    code: str | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    """Build a standardized error response.

    Args:
        error_type: Machine-readable error type.
        message: Human-readable description.
        status_code: HTTP status code.
        details: Optional structured details.
        code: Optional finer-grained machine code.
        headers: Optional extra response headers.

    Returns:
        JSONResponse with the error envelope.
    """
    envelope = ErrorEnvelope(
        error=ErrorBody(type=error_type, message=message, details=details or None, code=code),
        meta={"request_id": get_request_id()},
    )
    return JSONResponse(
        status_code=status_code,
        content=envelope.model_dump(mode="json", exclude_none=True),
        headers=headers,
    )


def _field_name(loc: tuple[Any, ...]) -> str:
    parts = [str(part) for part in loc]
    if parts and parts[0] in _LOCATION_PREFIXES:
        parts = parts[1:]
    return ".".join(parts) or "body"


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    """Convert a domain error into its envelope."""
    headers = None
    if isinstance(exc, UnauthorizedError):
        # The reason is for the log only
        logger.info("Unauthorized: reason=%s, path=%s", exc.reason.value, request.url.path)
        headers = {"WWW-Authenticate": "Bearer"}
    elif exc.status_code >= 500:
        logger.error("Internal error: %s (path=%s)", exc.message, request.url.path)
    else:
        logger.debug(
            "Request rejected: type=%s, status=%d, path=%s",
            exc.error_type.value,
            exc.status_code,
            request.url.path,
        )
    return build_error_response(
        exc.error_type,
        exc.message,
        exc.status_code,
        details=exc.details,
        code=exc.code,
        headers=headers,
    )


async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Convert FastAPI request validation errors into a 400 with per-field details."""
    fields: dict[str, str] = {}
    for error in exc.errors():
        fields.setdefault(_field_name(tuple(error.get("loc", ()))), error.get("msg", "Invalid"))
    return build_error_response(
        ErrorType.VALIDATION,
        "Validation failed",
        400,
        details={"fields": fields},
    )


async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    """Convert Starlette HTTP exceptions (404 routes, 405 methods, ...)."""
    message = str(exc.detail) if exc.detail else HTTPStatus(exc.status_code).phrase
    return build_error_response(
        error_type_for_status(exc.status_code),
        message,
        exc.status_code,
        headers=getattr(exc, "headers", None),
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Attach the envelope exception handlers to an application."""
    app.add_exception_handler(ServiceError, service_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Last line of defense for exceptions no handler claimed.

    The stack trace and request id go to the log; the client only sees a
    generic INTERNAL_ERROR.
    """

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        """Process request and handle any unexpected exception.

        Args:
            request: The incoming HTTP request.
            call_next: The next middleware/handler in the chain.

        Returns:
            The response, or an error response if an exception occurred.
        """
        try:
            return await call_next(request)
        except Exception:
            logger.exception(
                "Unexpected error processing request: %s %s (request_id=%s)",
                request.method,
                request.url.path,
                get_request_id(),
            )
            return build_error_response(ErrorType.INTERNAL, INTERNAL_MESSAGE, 500)
