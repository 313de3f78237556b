"""SQLAlchemy ORM models for Warden.

This package contains all database models organized by domain:
- base: Common metadata, column types and enums
- users: User accounts and credentials
- rbac: Roles, permissions, grants and assignments
- tokens: Token revocation set and one-time tokens
- inbox: Message deduplication ledger
"""

from warden.db.models.base import Base, OneTimeTokenPurpose, TokenKind, metadata
from warden.db.models.inbox import InboxEntry
from warden.db.models.rbac import Permission, Role, RolePermission, UserRole
from warden.db.models.tokens import OneTimeToken, RevokedToken
from warden.db.models.users import User

__all__ = [
    "Base",
    "InboxEntry",
    "OneTimeToken",
    "OneTimeTokenPurpose",
    "Permission",
    "RevokedToken",
    "Role",
    "RolePermission",
    "TokenKind",
    "User",
    "UserRole",
    "metadata",
]
