"""Warden service layer.

This package contains the domain services and their collaborators:
- UserStore: credential store (users, epochs, optimistic versions)
- RBACStore: roles, permissions, grants and assignments
- TokenService: signed bearer tokens, rotation and revocation
- OneTimeTokenLedger: email verification and password reset tokens
- AuthService: registration, login and the password lifecycle
- AuthorizationService: effective role and permission checks
- InboxService: message and HTTP request deduplication
- ProfileService: user administration and avatars
"""

from warden.services.auth import AuthResult, AuthService, Profile
from warden.services.authz import AuthorizationService, PermissionInfo
from warden.services.inbox import InboxService
from warden.services.one_time_tokens import OneTimeTokenLedger
from warden.services.profiles import ProfileService
from warden.services.rbac import RBACStore
from warden.services.tokens import TokenClaims, TokenPair, TokenService
from warden.services.users import UserStore

__all__ = [
    "AuthResult",
    "AuthService",
    "AuthorizationService",
    "InboxService",
    "OneTimeTokenLedger",
    "PermissionInfo",
    "Profile",
    "ProfileService",
    "RBACStore",
    "TokenClaims",
    "TokenPair",
    "TokenService",
    "UserStore",
]
