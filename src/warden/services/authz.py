"""Authorizer: effective role and permission checks.

A permission is effective for a user when a single chain links them:

    user_roles (active, not expired)
      -> roles (active)
      -> role_permissions (active)
      -> permissions (active)

Every check is one query over that chain; nothing is cached, so a revoked
grant stops counting on the very next check. All queries are read-only and
retried on transient database errors, which makes the service safe to run
on a read replica session.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from sqlalchemy import or_, select

from warden.db.models import Permission, Role, RolePermission, UserRole
from warden.db.models.base import utcnow
from warden.db.retry import run_with_retry
from warden.services.rbac import ADMIN_ROLE, MODERATOR_ROLE
from warden.services.validation import normalize_role_name

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable
    from datetime import datetime
    from uuid import UUID

    from sqlalchemy import Select
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PermissionInfo:
    """Public description of an effective permission."""

    permission_id: UUID
    name: str
    resource: str
    action: str
    description: str | None

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-friendly dictionary."""
        return {
            "permission_id": str(self.permission_id),
            "name": self.name,
            "resource": self.resource,
            "action": self.action,
            "description": self.description,
        }


class AuthorizationService:
    """Answer role and permission questions about a user.

    Example:
        authz = AuthorizationService(read_session)
        if await authz.has_permission(user_id, "users", "update"):
            ...
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Initialize the service.

        Args:
            session: Session used for reads; may be bound to a replica.
            clock: Source of the current time for expiry checks.
        """
        self._session = session
        self._clock = clock

    # -------------------------------------------------------------------------
    # Query building
    # -------------------------------------------------------------------------

    def _assignment_filter(self, user_id: UUID) -> list[Any]:
        return [
            UserRole.user_id == user_id,
            UserRole.is_active.is_(True),
            or_(UserRole.expires_at.is_(None), UserRole.expires_at > self._clock()),
            Role.is_active.is_(True),
        ]

    def _roles_query(self, user_id: UUID) -> Select[Any]:
        return (
            select(Role.name)
            .join(UserRole, UserRole.role_id == Role.role_id)
            .where(*self._assignment_filter(user_id))
        )

    def _permissions_query(self, user_id: UUID, *columns: Any) -> Select[Any]:
        return (
            select(*columns)
            .select_from(Permission)
            .join(RolePermission, RolePermission.permission_id == Permission.permission_id)
            .join(Role, Role.role_id == RolePermission.role_id)
            .join(UserRole, UserRole.role_id == Role.role_id)
            .where(
                *self._assignment_filter(user_id),
                RolePermission.is_active.is_(True),
                Permission.is_active.is_(True),
            )
        )

    async def _read(self, operation: Callable[[], Awaitable[Any]]) -> Any:
        return await run_with_retry(operation)

    async def _exists(self, query: Select[Any]) -> bool:
        async def run() -> bool:
            return bool(await self._session.scalar(select(query.exists())))

        return await self._read(run)

    async def _names(self, query: Select[Any]) -> set[str]:
        async def run() -> set[str]:
            return set((await self._session.scalars(query.distinct())).all())

        return await self._read(run)

    # -------------------------------------------------------------------------
    # Permission checks
    # -------------------------------------------------------------------------

    async def has_permission(self, user_id: UUID, resource: str, action: str) -> bool:
        """Tell whether the user effectively holds ``resource:action``."""
        allowed = await self._exists(
            self._permissions_query(user_id, Permission.permission_id).where(
                Permission.resource == resource.strip().lower(),
                Permission.action == action.strip().lower(),
            )
        )
        logger.debug(
            "Permission check: user_id=%s, permission=%s:%s, allowed=%s",
            user_id,
            resource,
            action,
            allowed,
        )
        return allowed

    async def has_permission_by_name(self, user_id: UUID, name: str) -> bool:
        """Tell whether the user effectively holds a permission by name."""
        return await self._exists(
            self._permissions_query(user_id, Permission.permission_id).where(
                Permission.name == name.strip().lower()
            )
        )

    async def check_multiple_permissions(
        self,
        user_id: UUID,
        names: Iterable[str],
    ) -> dict[str, bool]:
        """Check several permissions with a single query.

        Returns:
            Mapping of each requested name to whether it is held.
        """
        requested = list(dict.fromkeys(names))
        if not requested:
            return {}
        normalized = {name: name.strip().lower() for name in requested}
        held = await self._names(
            self._permissions_query(user_id, Permission.name).where(
                Permission.name.in_(set(normalized.values()))
            )
        )
        return {name: normalized[name] in held for name in requested}

    async def get_effective_permissions(self, user_id: UUID) -> list[PermissionInfo]:
        """Distinct effective permissions, ordered by name."""

        async def run() -> list[PermissionInfo]:
            result = await self._session.execute(
                self._permissions_query(
                    user_id,
                    Permission.permission_id,
                    Permission.name,
                    Permission.resource,
                    Permission.action,
                    Permission.description,
                )
                .distinct()
                .order_by(Permission.name)
            )
            return [
                PermissionInfo(
                    permission_id=row.permission_id,
                    name=row.name,
                    resource=row.resource,
                    action=row.action,
                    description=row.description,
                )
                for row in result.all()
            ]

        return await self._read(run)

    # -------------------------------------------------------------------------
    # Role checks
    # -------------------------------------------------------------------------

    async def get_user_roles(self, user_id: UUID) -> list[str]:
        """Effective role names, sorted."""
        return sorted(await self._names(self._roles_query(user_id)))

    async def has_role(self, user_id: UUID, role_name: str) -> bool:
        """Tell whether the user effectively holds a role (case-insensitive)."""
        return await self._exists(
            self._roles_query(user_id).where(Role.name == normalize_role_name(role_name))
        )

    async def has_any_role(self, user_id: UUID, *role_names: str) -> bool:
        """Tell whether the user holds at least one of the roles."""
        wanted = {normalize_role_name(name) for name in role_names}
        if not wanted:
            return False
        return await self._exists(self._roles_query(user_id).where(Role.name.in_(wanted)))

    async def has_all_roles(self, user_id: UUID, *role_names: str) -> bool:
        """Tell whether the user holds every one of the roles."""
        wanted = {normalize_role_name(name) for name in role_names}
        if not wanted:
            return True
        held = await self._names(self._roles_query(user_id).where(Role.name.in_(wanted)))
        return wanted <= held

    async def is_admin(self, user_id: UUID) -> bool:
        """Shorthand for holding the admin role."""
        return await self.has_role(user_id, ADMIN_ROLE)

    async def is_moderator(self, user_id: UUID) -> bool:
        """Admins count as moderators."""
        return await self.has_any_role(user_id, ADMIN_ROLE, MODERATOR_ROLE)
