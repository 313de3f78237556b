"""Pydantic schemas for the Warden API.

This package contains request/response schemas organized by API namespace.
"""

from warden.api.schemas.auth import (
    AuthResponse,
    ProfileResponse,
    TokenPairResponse,
    TokensResponse,
    UserResponse,
)
from warden.api.schemas.common import Envelope, ErrorEnvelope, Pagination

__all__ = [
    "AuthResponse",
    "Envelope",
    "ErrorEnvelope",
    "Pagination",
    "ProfileResponse",
    "TokenPairResponse",
    "TokensResponse",
    "UserResponse",
]
