"""Response envelope shared by every JSON endpoint.

Success:
    {"success": true, "message": ..., "data": ..., "meta": ..., "timestamp": ...}

Error:
    {"success": false, "error": {"type", "message", "details"?, "code"?},
     "meta": {"request_id": ...}, "timestamp": ...}
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, Field

from warden.core.errors import ErrorType  # noqa: TC001 - used at runtime

T = TypeVar("T")


def _now() -> datetime:
    return datetime.now(UTC)


class Pagination(BaseModel):
    """Page position within a listing."""

    page: int = Field(..., ge=1, description="Current page (1-based)")
    page_size: int = Field(..., ge=1, description="Items per page")
    total: int = Field(..., ge=0, description="Total matching items")
    total_pages: int = Field(..., ge=0, description="Number of pages")

    @classmethod
    def build(cls, page: int, page_size: int, total: int) -> Pagination:
        return cls(
            page=page,
            page_size=page_size,
            total=total,
            total_pages=(total + page_size - 1) // page_size,
        )


class Envelope(BaseModel, Generic[T]):
    """Successful response wrapper."""

    success: bool = Field(True, description="Always true for successful responses")
    message: str | None = Field(None, description="Optional human-readable message")
    data: T | None = Field(None, description="Response payload")
    meta: dict[str, Any] | None = Field(None, description="Listing metadata")
    timestamp: datetime = Field(default_factory=_now, description="Server time (UTC)")

    @classmethod
    def ok(
        cls,
        data: T | None = None,
        *,
        message: str | None = None,
        meta: dict[str, Any] | None = None,
    ) -> Envelope[T]:
        """Wrap a payload."""
        return cls(data=data, message=message, meta=meta)


class ErrorBody(BaseModel):
    """Error description inside the error envelope."""

    type: ErrorType = Field(..., description="Machine-readable error type")
    message: str = Field(..., description="Human-readable description")
    details: dict[str, Any] | None = Field(None, description="Structured details")
    code: str | None = Field(None, description="Finer-grained machine code")


class ErrorEnvelope(BaseModel):
    """Failed response wrapper."""

    success: bool = False
    error: ErrorBody
    meta: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=_now)
