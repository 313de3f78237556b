"""Authentication and authorization gates for routes.

Bearer access tokens are validated by the token service (signature, kind,
expiry, revocation set, account state and epoch). The resulting user is
kept in a context variable and on ``request.state`` for the rest of the
request.

Gates are FastAPI dependencies:
- require_authenticated_user: any valid access token
- require_permission / require_permission_by_name: effective permission
- require_role / require_any_role / require_all_roles: effective roles
- require_admin / require_moderator: shorthands (admins count as moderators)
- require_ownership / require_ownership_or_role: the user named in the path
- dynamic_permission_check: permission derived from the path and method
- conditional_access: any one of several named conditions

Without a user every gate raises UnauthorizedError (401); a failed check
raises ForbiddenError (403).
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from contextvars import ContextVar
from dataclasses import dataclass
from typing import TYPE_CHECKING, Annotated

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from warden.api.dependencies import AppSettings, AuthzServiceDep, DbSession
from warden.core.errors import AuthFailure, ForbiddenError, UnauthorizedError
from warden.db.models import TokenKind
from warden.services.rbac import ADMIN_ROLE, MODERATOR_ROLE
from warden.services.tokens import TokenService

if TYPE_CHECKING:
    from uuid import UUID

    from warden.db.models import User
    from warden.services.authz import AuthorizationService
    from warden.services.tokens import TokenClaims

logger = logging.getLogger(__name__)

current_user_ctx: ContextVar[AuthenticatedUser | None] = ContextVar("current_user", default=None)

# Bearer token security scheme for OpenAPI docs
bearer_scheme = HTTPBearer(auto_error=False)

AUTHENTICATION_REQUIRED = "Authentication required"

METHOD_ACTIONS = {
    "GET": "read",
    "HEAD": "read",
    "POST": "create",
    "PUT": "update",
    "PATCH": "update",
    "DELETE": "delete",
}

CONDITION_AUTHENTICATED = "authenticated"
CONDITION_ADMIN = "admin"
CONDITION_MODERATOR = "moderator"
CONDITION_OWNER_PREFIX = "owner:"


@dataclass(frozen=True)
class AuthenticatedUser:
    """The caller behind a validated access token.

    Attributes:
        user: The account, loaded while validating the token.
        claims: Decoded claims of the access token.
    """

    user: User
    claims: TokenClaims

    @property
    def user_id(self) -> UUID:
        return self.user.user_id

    @property
    def email(self) -> str:
        return self.user.email


def get_current_user() -> AuthenticatedUser | None:
    """Get the current authenticated user from context.

    Returns:
        The authenticated user, or None if not authenticated.
    """
    return current_user_ctx.get()


def set_current_user(user: AuthenticatedUser | None) -> None:
    """Set the current authenticated user in context."""
    current_user_ctx.set(user)


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


async def optional_authenticated_user(
    request: Request,
    session: DbSession,
    settings: AppSettings,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)] = None,
) -> AuthenticatedUser | None:
    """Validate the bearer token if one was sent.

    Returns:
        The authenticated user, or None when no token was presented.

    Raises:
        UnauthorizedError: If a token was presented but is not acceptable.
    """
    cached = getattr(request.state, "user", None)
    if cached is not None:
        return cached
    if credentials is None or not credentials.credentials:
        return None

    tokens = TokenService(session, settings.tokens)
    user, claims = await tokens.validate(credentials.credentials, TokenKind.ACCESS)
    authenticated = AuthenticatedUser(user=user, claims=claims)
    request.state.user = authenticated
    set_current_user(authenticated)
    return authenticated


async def require_authenticated_user(
    user: Annotated[AuthenticatedUser | None, Depends(optional_authenticated_user)],
) -> AuthenticatedUser:
    """Dependency that requires a valid access token.

    Raises:
        UnauthorizedError: If no token was presented.
    """
    if user is None:
        raise UnauthorizedError(AuthFailure.MISSING, AUTHENTICATION_REQUIRED)
    return user


CurrentUser = Annotated[AuthenticatedUser, Depends(require_authenticated_user)]

GateDependency = Callable[..., Awaitable[AuthenticatedUser]]


def _deny(user: AuthenticatedUser, message: str) -> ForbiddenError:
    logger.info("Access denied: user_id=%s, %s", user.user_id, message)
    return ForbiddenError(message)


# ---------------------------------------------------------------------------
# Permission gates
# ---------------------------------------------------------------------------


def require_permission(resource: str, action: str) -> GateDependency:
    """Factory for dependencies that require ``resource:action``.

    Usage:
        @router.get("/users")
        async def list_users(
            user: AuthenticatedUser = Depends(require_permission("users", "list"))
        ):
            ...
    """

    async def _check_permission(user: CurrentUser, authz: AuthzServiceDep) -> AuthenticatedUser:
        if not await authz.has_permission(user.user_id, resource, action):
            raise _deny(user, f"Permission required: {resource}:{action}")
        return user

    return _check_permission


def require_permission_by_name(name: str) -> GateDependency:
    """Factory for dependencies that require a permission by its full name."""

    async def _check_permission(user: CurrentUser, authz: AuthzServiceDep) -> AuthenticatedUser:
        if not await authz.has_permission_by_name(user.user_id, name):
            raise _deny(user, f"Permission required: {name}")
        return user

    return _check_permission


async def dynamic_permission_check(
    request: Request,
    user: CurrentUser,
    authz: AuthzServiceDep,
) -> AuthenticatedUser:
    """Require the permission implied by the request itself.

    The resource is the path segment after the version under ``/api``
    (``/api/v1/roles/...`` -> ``roles``), otherwise the first segment. The
    action follows the method: GET read, POST create, PUT/PATCH update,
    DELETE delete.
    """
    segments = [segment for segment in request.url.path.split("/") if segment]
    if segments and segments[0] == "api":
        resource = segments[2] if len(segments) > 2 else ""
    else:
        resource = segments[0] if segments else ""
    action = METHOD_ACTIONS.get(request.method)
    if not resource or action is None:
        raise _deny(user, "Access denied")

    if not await authz.has_permission(user.user_id, resource, action):
        raise _deny(user, f"Permission required: {resource}:{action}")
    return user


# ---------------------------------------------------------------------------
# Role gates
# ---------------------------------------------------------------------------


def require_role(role: str) -> GateDependency:
    """Factory for dependencies that require one role (case-insensitive)."""

    async def _check_role(user: CurrentUser, authz: AuthzServiceDep) -> AuthenticatedUser:
        if not await authz.has_role(user.user_id, role):
            raise _deny(user, f"Role required: {role.upper()}")
        return user

    return _check_role


def require_any_role(*roles: str) -> GateDependency:
    """Factory for dependencies that require at least one of the roles."""

    async def _check_roles(user: CurrentUser, authz: AuthzServiceDep) -> AuthenticatedUser:
        if not await authz.has_any_role(user.user_id, *roles):
            raise _deny(user, f"One of these roles is required: {', '.join(roles).upper()}")
        return user

    return _check_roles


def require_all_roles(*roles: str) -> GateDependency:
    """Factory for dependencies that require every one of the roles."""

    async def _check_roles(user: CurrentUser, authz: AuthzServiceDep) -> AuthenticatedUser:
        if not await authz.has_all_roles(user.user_id, *roles):
            raise _deny(user, f"All of these roles are required: {', '.join(roles).upper()}")
        return user

    return _check_roles


async def require_admin(user: CurrentUser, authz: AuthzServiceDep) -> AuthenticatedUser:
    """Dependency that requires the admin role."""
    if not await authz.is_admin(user.user_id):
        raise _deny(user, "Admin access required")
    return user


async def require_moderator(user: CurrentUser, authz: AuthzServiceDep) -> AuthenticatedUser:
    """Dependency that requires the moderator or admin role."""
    if not await authz.is_moderator(user.user_id):
        raise _deny(user, "Moderator access required")
    return user


# ---------------------------------------------------------------------------
# Ownership gates
# ---------------------------------------------------------------------------


def _owns(request: Request, user: AuthenticatedUser, param: str) -> bool:
    target = request.path_params.get(param)
    return target is not None and str(target).lower() == str(user.user_id).lower()


def require_ownership(param: str = "user_id") -> GateDependency:
    """Factory for dependencies that allow the user named by a path parameter, or an admin."""

    async def _check_ownership(
        request: Request, user: CurrentUser, authz: AuthzServiceDep
    ) -> AuthenticatedUser:
        if _owns(request, user, param) or await authz.is_admin(user.user_id):
            return user
        raise _deny(user, "You can only access your own resources")

    return _check_ownership


def require_ownership_or_role(param: str, *roles: str) -> GateDependency:
    """Factory for dependencies that allow the owner or any holder of the roles."""

    async def _check_ownership(
        request: Request, user: CurrentUser, authz: AuthzServiceDep
    ) -> AuthenticatedUser:
        if _owns(request, user, param) or await authz.has_any_role(user.user_id, *roles):
            return user
        raise _deny(user, "You can only access your own resources")

    return _check_ownership


# ---------------------------------------------------------------------------
# Composite gate
# ---------------------------------------------------------------------------


async def _condition_holds(
    condition: str,
    request: Request,
    user: AuthenticatedUser,
    authz: AuthorizationService,
) -> bool:
    if condition == CONDITION_AUTHENTICATED:
        return True
    if condition == CONDITION_ADMIN:
        return await authz.is_admin(user.user_id)
    if condition == CONDITION_MODERATOR:
        return await authz.is_moderator(user.user_id)
    return _owns(request, user, condition.removeprefix(CONDITION_OWNER_PREFIX))


def conditional_access(*conditions: str) -> GateDependency:
    """Factory for dependencies that pass when any condition holds.

    Conditions: ``authenticated``, ``admin``, ``moderator`` and
    ``owner:<path param>``. Conditions are checked in order and the first
    one that holds grants access.

    Raises:
        ValueError: At definition time, for an unknown condition.
    """
    for condition in conditions:
        known = condition in (CONDITION_AUTHENTICATED, CONDITION_ADMIN, CONDITION_MODERATOR)
        owner = condition.startswith(CONDITION_OWNER_PREFIX) and len(condition) > len(
            CONDITION_OWNER_PREFIX
        )
        if not (known or owner):
            msg = f"Unknown access condition: {condition}"
            raise ValueError(msg)

    async def _check_conditions(
        request: Request, user: CurrentUser, authz: AuthzServiceDep
    ) -> AuthenticatedUser:
        for condition in conditions:
            if await _condition_holds(condition, request, user, authz):
                return user
        raise _deny(user, "Access denied")

    return _check_conditions


AdminUser = Annotated[AuthenticatedUser, Depends(require_admin)]
