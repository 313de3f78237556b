"""Warden API middleware components.

This module provides:
- Request ID tracking for log correlation
- Consistent error envelopes
- Request deadline, body size and media type limits
- Idempotency-Key handling for write requests
- Route-level authentication and authorization gates
"""

from warden.api.middleware.auth import (
    AuthenticatedUser,
    conditional_access,
    dynamic_permission_check,
    get_current_user,
    optional_authenticated_user,
    require_admin,
    require_all_roles,
    require_any_role,
    require_authenticated_user,
    require_moderator,
    require_ownership,
    require_ownership_or_role,
    require_permission,
    require_permission_by_name,
    require_role,
)
from warden.api.middleware.errors import ErrorHandlerMiddleware, register_exception_handlers
from warden.api.middleware.idempotency import IdempotencyMiddleware
from warden.api.middleware.limits import RequestLimitsMiddleware
from warden.api.middleware.request_id import RequestIDMiddleware
from warden.api.middleware.timeout import TimeoutMiddleware

__all__ = [
    "AuthenticatedUser",
    "ErrorHandlerMiddleware",
    "IdempotencyMiddleware",
    "RequestIDMiddleware",
    "RequestLimitsMiddleware",
    "TimeoutMiddleware",
    "conditional_access",
    "dynamic_permission_check",
    "get_current_user",
    "optional_authenticated_user",
    "register_exception_handlers",
    "require_admin",
    "require_all_roles",
    "require_any_role",
    "require_authenticated_user",
    "require_moderator",
    "require_ownership",
    "require_ownership_or_role",
    "require_permission",
    "require_permission_by_name",
    "require_role",
]
