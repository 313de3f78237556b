"""Warden API routers, all mounted under /api/v1.

- auth: registration, sessions, email verification and password reset
- users: account administration and avatars
- rbac: roles, permissions, grants and role assignments
"""

from warden.api.routers.auth import router as auth_router
from warden.api.routers.rbac import router as rbac_router
from warden.api.routers.users import router as users_router

__all__ = [
    "auth_router",
    "rbac_router",
    "users_router",
]
