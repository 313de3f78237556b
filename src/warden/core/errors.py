"""Domain error taxonomy shared by every service.

Services raise these exceptions; the HTTP edge maps them to the response
envelope. Each error carries a machine type, a human message and optional
field-level details.

    ValidationFailedError  -> 400 VALIDATION_ERROR
    UnauthorizedError      -> 401 UNAUTHORIZED
    ForbiddenError         -> 403 FORBIDDEN
    NotFoundError          -> 404 NOT_FOUND
    ConflictError          -> 409 CONFLICT
    InternalError          -> 500 INTERNAL_ERROR
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorType(str, Enum):
    """Machine-readable error types exposed in the response envelope."""

    VALIDATION = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    INTERNAL = "INTERNAL_ERROR"


class AuthFailure(str, Enum):
    """Internal reason behind an UnauthorizedError.

    Logged for investigation, never sent to the client.
    """

    MISSING = "missing"
    INVALID_TOKEN = "invalid_token"
    EXPIRED = "expired"
    REVOKED = "revoked"
    INACTIVE = "inactive"
    INVALID_CREDENTIALS = "invalid_credentials"


class ServiceError(Exception):
    """Base class for typed domain errors."""

    error_type: ErrorType = ErrorType.INTERNAL
    status_code: int = 500

    def __init__(
        self,
        message: str,
        *,
        details: dict[str, Any] | None = None,
        code: str | None = None,
    ) -> None:
        """Initialize the error.

        Args:
            message: Human-readable description, safe to show to clients.
            details: Optional structured details (e.g., per-field errors).
            code: Optional finer-grained machine code.
        """
        self.message = message
        self.details = details
        self.code = code
        super().__init__(message)


class ValidationFailedError(ServiceError):
    """Input failed validation rules."""

    error_type = ErrorType.VALIDATION
    status_code = 400

    @classmethod
    def for_fields(cls, errors: dict[str, str]) -> ValidationFailedError:
        """Build an error from a field -> message mapping."""
        return cls("Validation failed", details={"fields": errors})


class NotFoundError(ServiceError):
    """Requested entity does not exist."""

    error_type = ErrorType.NOT_FOUND
    status_code = 404

    def __init__(self, resource: str, identifier: object) -> None:
        super().__init__(f"{resource} not found: {identifier}")
        self.resource = resource


class ConflictError(ServiceError):
    """Uniqueness or optimistic-version conflict."""

    error_type = ErrorType.CONFLICT
    status_code = 409


class UnauthorizedError(ServiceError):
    """Authentication failed.

    All reasons collapse to the same public message; the reason attribute
    is only for logging.
    """

    error_type = ErrorType.UNAUTHORIZED
    status_code = 401

    def __init__(
        self,
        reason: AuthFailure = AuthFailure.INVALID_TOKEN,
        message: str = "Invalid or expired credentials",
    ) -> None:
        super().__init__(message)
        self.reason = reason


class ForbiddenError(ServiceError):
    """Authenticated but not allowed."""

    error_type = ErrorType.FORBIDDEN
    status_code = 403


class InternalError(ServiceError):
    """Unexpected failure; message is generic by construction."""

    error_type = ErrorType.INTERNAL
    status_code = 500

    def __init__(self, message: str = "An internal error occurred", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
