"""Role/permission store: roles, permissions, grants and assignments.

Deletion is deactivation throughout. A deactivated role or permission keeps
its rows and grants for audit, but stops contributing to authorization
because effective checks require every link in the chain to be active.

Grant and assignment operations are idempotent:
- granting an existing active grant is a no-op
- granting an inactive grant re-activates it
- assigning an existing role re-activates it and refreshes its expiry
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError

from warden.core.errors import ConflictError, NotFoundError, ValidationFailedError
from warden.db.models import Permission, Role, RolePermission, User, UserRole
from warden.db.models.base import utcnow
from warden.services.validation import (
    normalize_role_name,
    validate_permission,
    validate_role,
)

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

ADMIN_ROLE = "ADMIN"
USER_ROLE = "USER"
MODERATOR_ROLE = "MODERATOR"

DEFAULT_ROLES: dict[str, str] = {
    ADMIN_ROLE: "Full administrative access",
    USER_ROLE: "Regular user",
    MODERATOR_ROLE: "Can view and edit users",
}
DEFAULT_RESOURCES = ("users", "roles", "permissions")
DEFAULT_ACTIONS = ("create", "read", "update", "delete", "list")
DEFAULT_PERMISSIONS: tuple[tuple[str, str], ...] = (
    *((resource, action) for resource in DEFAULT_RESOURCES for action in DEFAULT_ACTIONS),
    ("system", "manage"),
)
# ADMIN implicitly receives every default permission
DEFAULT_GRANTS: dict[str, tuple[str, ...]] = {
    USER_ROLE: ("users:read",),
    MODERATOR_ROLE: ("users:read", "users:list", "users:update"),
}


@dataclass(frozen=True, slots=True)
class SyncResult:
    """Outcome of a role permission sync.

    Attributes:
        granted: Permission ids newly granted or re-activated.
        revoked: Permission ids whose grant was deactivated.
    """

    granted: list[UUID]
    revoked: list[UUID]


class RBACStore:
    """Persistence operations for roles, permissions and their links.

    The store flushes but never commits; the caller owns the transaction.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    # -------------------------------------------------------------------------
    # Roles
    # -------------------------------------------------------------------------

    async def create_role(self, name: str, description: str | None = None) -> Role:
        """Create a role.

        Raises:
            ValidationFailedError: If the name or description is malformed.
            ConflictError: If the name is taken.
        """
        name = normalize_role_name(name)
        validate_role(name, description)
        if await self.find_role_by_name(name) is not None:
            raise ConflictError(f"Role already exists: {name}", code="ROLE_EXISTS")

        role = Role(name=name, description=description)
        try:
            async with self._session.begin_nested():
                self._session.add(role)
        except IntegrityError as exc:
            raise ConflictError(f"Role already exists: {name}", code="ROLE_EXISTS") from exc

        logger.info("Role created: name=%s, role_id=%s", name, role.role_id)
        return role

    async def get_role(self, role_id: UUID) -> Role:
        """Return a role by id.

        Raises:
            NotFoundError: If no such role exists.
        """
        role = await self._session.get(Role, role_id, populate_existing=True)
        if role is None:
            raise NotFoundError("Role", role_id)
        return role

    async def find_role_by_name(self, name: str) -> Role | None:
        """Return a role by name (case-insensitive), or None."""
        result = await self._session.execute(
            select(Role).where(Role.name == normalize_role_name(name))
        )
        return result.scalar_one_or_none()

    async def get_role_by_name(self, name: str) -> Role:
        """Return a role by name.

        Raises:
            NotFoundError: If no such role exists.
        """
        role = await self.find_role_by_name(name)
        if role is None:
            raise NotFoundError("Role", normalize_role_name(name))
        return role

    async def list_roles(self, *, include_inactive: bool = False) -> list[Role]:
        """List roles ordered by name."""
        query = select(Role).order_by(Role.name)
        if not include_inactive:
            query = query.where(Role.is_active.is_(True))
        result = await self._session.execute(query)
        return list(result.scalars().all())

    async def update_role(
        self,
        role_id: UUID,
        expected_version: int,
        *,
        name: str | None = None,
        description: str | None = None,
        is_active: bool | None = None,
    ) -> Role:
        """Update a role if its version still matches.

        Raises:
            ValidationFailedError: If the new values are malformed.
            ConflictError: On a stale version or a taken name.
            NotFoundError: If the role does not exist.
        """
        role = await self.get_role(role_id)
        changes: dict[str, Any] = {}
        if name is not None:
            changes["name"] = normalize_role_name(name)
        if description is not None:
            changes["description"] = description
        if is_active is not None:
            changes["is_active"] = is_active
        validate_role(changes.get("name", role.name), changes.get("description"))

        if "name" in changes and changes["name"] != role.name:
            if await self.find_role_by_name(changes["name"]) is not None:
                raise ConflictError(f"Role already exists: {changes['name']}", code="ROLE_EXISTS")

        try:
            async with self._session.begin_nested():
                result = await self._session.execute(
                    update(Role)
                    .where(Role.role_id == role_id, Role.version == expected_version)
                    .values(**changes, version=Role.version + 1, updated_at=utcnow())
                    .returning(Role.version)
                )
                new_version = result.scalar_one_or_none()
        except IntegrityError as exc:
            raise ConflictError("Role name already exists", code="ROLE_EXISTS") from exc

        if new_version is None:
            raise ConflictError("Role was modified by another request", code="VERSION_CONFLICT")
        return await self.get_role(role_id)

    async def _set_role_active(self, role_id: UUID, active: bool) -> Role:
        await self.get_role(role_id)
        await self._session.execute(
            update(Role)
            .where(Role.role_id == role_id)
            .values(is_active=active, version=Role.version + 1, updated_at=utcnow())
        )
        return await self.get_role(role_id)

    async def deactivate_role(self, role_id: UUID) -> Role:
        """Deactivate a role; its grants and assignments stop counting."""
        role = await self._set_role_active(role_id, False)
        logger.info("Role deactivated: name=%s", role.name)
        return role

    async def activate_role(self, role_id: UUID) -> Role:
        """Re-activate a role."""
        role = await self._set_role_active(role_id, True)
        logger.info("Role activated: name=%s", role.name)
        return role

    async def delete_role(self, role_id: UUID) -> None:
        """Deactivate a role together with its grants and assignments.

        Raises:
            NotFoundError: If the role does not exist.
        """
        role = await self._set_role_active(role_id, False)
        await self._session.execute(
            update(RolePermission).where(RolePermission.role_id == role_id).values(is_active=False)
        )
        await self._session.execute(
            update(UserRole).where(UserRole.role_id == role_id).values(is_active=False)
        )
        logger.info("Role deleted: name=%s", role.name)

    # -------------------------------------------------------------------------
    # Permissions
    # -------------------------------------------------------------------------

    async def create_permission(
        self,
        resource: str,
        action: str,
        description: str | None = None,
        *,
        name: str | None = None,
    ) -> Permission:
        """Create a permission named ``resource:action``.

        Args:
            resource: Resource part, lowercase.
            action: Action part, standard or extending a standard action.
            description: Optional description.
            name: Optional explicit name; must equal ``resource:action``.

        Raises:
            ValidationFailedError: If any part is malformed or the name
                disagrees with resource and action.
            ConflictError: If the name is taken.
        """
        resource = resource.strip().lower()
        action = action.strip().lower()
        composed = validate_permission(resource, action, description)
        if name is not None and name.strip().lower() != composed:
            raise ValidationFailedError.for_fields(
                {"name": f"Permission name must equal '{composed}'"}
            )

        if await self.find_permission_by_name(composed) is not None:
            raise ConflictError(f"Permission already exists: {composed}", code="PERMISSION_EXISTS")

        permission = Permission(
            name=composed, resource=resource, action=action, description=description
        )
        try:
            async with self._session.begin_nested():
                self._session.add(permission)
        except IntegrityError as exc:
            raise ConflictError(
                f"Permission already exists: {composed}", code="PERMISSION_EXISTS"
            ) from exc

        logger.info("Permission created: name=%s", composed)
        return permission

    async def get_permission(self, permission_id: UUID) -> Permission:
        """Return a permission by id.

        Raises:
            NotFoundError: If no such permission exists.
        """
        permission = await self._session.get(Permission, permission_id, populate_existing=True)
        if permission is None:
            raise NotFoundError("Permission", permission_id)
        return permission

    async def find_permission_by_name(self, name: str) -> Permission | None:
        """Return a permission by name, or None."""
        result = await self._session.execute(
            select(Permission).where(Permission.name == name.strip().lower())
        )
        return result.scalar_one_or_none()

    async def get_permission_by_name(self, name: str) -> Permission:
        """Return a permission by name.

        Raises:
            NotFoundError: If no such permission exists.
        """
        permission = await self.find_permission_by_name(name)
        if permission is None:
            raise NotFoundError("Permission", name)
        return permission

    async def list_permissions(
        self,
        *,
        resource: str | None = None,
        include_inactive: bool = False,
    ) -> list[Permission]:
        """List permissions ordered by name, optionally for one resource."""
        query = select(Permission).order_by(Permission.name)
        if resource:
            query = query.where(Permission.resource == resource.strip().lower())
        if not include_inactive:
            query = query.where(Permission.is_active.is_(True))
        result = await self._session.execute(query)
        return list(result.scalars().all())

    async def update_permission(
        self,
        permission_id: UUID,
        *,
        description: str | None = None,
        is_active: bool | None = None,
    ) -> Permission:
        """Update a permission's description or activation.

        Name, resource and action are immutable once created.
        """
        permission = await self.get_permission(permission_id)
        changes: dict[str, Any] = {}
        if description is not None:
            validate_permission(permission.resource, permission.action, description)
            changes["description"] = description
        if is_active is not None:
            changes["is_active"] = is_active
        if changes:
            await self._session.execute(
                update(Permission)
                .where(Permission.permission_id == permission_id)
                .values(**changes, updated_at=utcnow())
            )
        return await self.get_permission(permission_id)

    async def delete_permission(self, permission_id: UUID) -> None:
        """Deactivate a permission and every grant of it.

        Raises:
            NotFoundError: If the permission does not exist.
        """
        permission = await self.update_permission(permission_id, is_active=False)
        await self._session.execute(
            update(RolePermission)
            .where(RolePermission.permission_id == permission_id)
            .values(is_active=False)
        )
        logger.info("Permission deleted: name=%s", permission.name)

    # -------------------------------------------------------------------------
    # Grants
    # -------------------------------------------------------------------------

    async def _find_grant(self, role_id: UUID, permission_id: UUID) -> RolePermission | None:
        result = await self._session.execute(
            select(RolePermission)
            .where(
                RolePermission.role_id == role_id,
                RolePermission.permission_id == permission_id,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def grant_permission(
        self,
        role_id: UUID,
        permission_id: UUID,
        granted_by: UUID | None = None,
    ) -> RolePermission:
        """Grant a permission to a role (idempotent).

        Raises:
            NotFoundError: If the role or permission does not exist.
        """
        await self.get_role(role_id)
        await self.get_permission(permission_id)
        return await self._grant(role_id, permission_id, granted_by)

    async def _grant(
        self,
        role_id: UUID,
        permission_id: UUID,
        granted_by: UUID | None,
    ) -> RolePermission:
        grant = await self._find_grant(role_id, permission_id)
        if grant is None:
            grant = RolePermission(
                role_id=role_id, permission_id=permission_id, granted_by=granted_by
            )
            try:
                async with self._session.begin_nested():
                    self._session.add(grant)
                return grant
            except IntegrityError:
                # Concurrent grant won; fall through and re-activate it
                grant = await self._find_grant(role_id, permission_id)
                if grant is None:
                    raise

        if not grant.is_active:
            grant.is_active = True
            grant.granted_by = granted_by
            grant.granted_at = utcnow()
            await self._session.flush()
        return grant

    async def revoke_permission(self, role_id: UUID, permission_id: UUID) -> bool:
        """Deactivate a grant.

        Returns:
            True if an active grant was deactivated.
        """
        result = await self._session.execute(
            update(RolePermission)
            .where(
                RolePermission.role_id == role_id,
                RolePermission.permission_id == permission_id,
                RolePermission.is_active.is_(True),
            )
            .values(is_active=False)
            .returning(RolePermission.role_permission_id)
        )
        return result.scalar_one_or_none() is not None

    async def list_role_permissions(self, role_id: UUID) -> list[Permission]:
        """Active permissions granted to a role."""
        result = await self._session.execute(
            select(Permission)
            .join(RolePermission, RolePermission.permission_id == Permission.permission_id)
            .where(
                RolePermission.role_id == role_id,
                RolePermission.is_active.is_(True),
                Permission.is_active.is_(True),
            )
            .order_by(Permission.name)
        )
        return list(result.scalars().all())

    async def sync_role_permissions(
        self,
        role_id: UUID,
        permission_ids: Iterable[UUID],
        granted_by: UUID | None = None,
    ) -> SyncResult:
        """Make a role's active grants exactly the given set.

        Runs in a savepoint: either every grant and revocation applies or
        none does.

        Raises:
            NotFoundError: If the role or any permission does not exist.
        """
        desired = set(permission_ids)
        await self.get_role(role_id)

        async with self._session.begin_nested():
            if desired:
                found = set(
                    (
                        await self._session.scalars(
                            select(Permission.permission_id).where(
                                Permission.permission_id.in_(desired)
                            )
                        )
                    ).all()
                )
                missing = desired - found
                if missing:
                    raise NotFoundError("Permission", sorted(str(m) for m in missing)[0])

            result = await self._session.execute(
                select(RolePermission.permission_id, RolePermission.is_active).where(
                    RolePermission.role_id == role_id
                )
            )
            current_active = {pid for pid, active in result.all() if active}

            granted = sorted(desired - current_active, key=str)
            revoked = sorted(current_active - desired, key=str)
            for permission_id in granted:
                await self._grant(role_id, permission_id, granted_by)
            for permission_id in revoked:
                await self.revoke_permission(role_id, permission_id)

        logger.info(
            "Role permissions synced: role_id=%s, granted=%d, revoked=%d",
            role_id,
            len(granted),
            len(revoked),
        )
        return SyncResult(granted=granted, revoked=revoked)

    # -------------------------------------------------------------------------
    # Assignments
    # -------------------------------------------------------------------------

    async def _find_assignment(self, user_id: UUID, role_id: UUID) -> UserRole | None:
        result = await self._session.execute(
            select(UserRole)
            .where(UserRole.user_id == user_id, UserRole.role_id == role_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def assign_role(
        self,
        user_id: UUID,
        role_id: UUID,
        assigned_by: UUID | None = None,
        expires_at: datetime | None = None,
    ) -> UserRole:
        """Assign a role to a user (idempotent per pair).

        Raises:
            NotFoundError: If the user or role does not exist.
            ValidationFailedError: If expires_at is not in the future.
            ConflictError: If the role is inactive.
        """
        if await self._session.get(User, user_id) is None:
            raise NotFoundError("User", user_id)
        role = await self.get_role(role_id)
        if not role.is_active:
            raise ConflictError(f"Role is inactive: {role.name}", code="ROLE_INACTIVE")
        if expires_at is not None and expires_at <= utcnow():
            raise ValidationFailedError.for_fields(
                {"expires_at": "Expiry must be in the future"}
            )

        assignment = await self._find_assignment(user_id, role_id)
        if assignment is None:
            assignment = UserRole(
                user_id=user_id,
                role_id=role_id,
                assigned_by=assigned_by,
                expires_at=expires_at,
            )
            try:
                async with self._session.begin_nested():
                    self._session.add(assignment)
                logger.info("Role assigned: user_id=%s, role=%s", user_id, role.name)
                return assignment
            except IntegrityError:
                assignment = await self._find_assignment(user_id, role_id)
                if assignment is None:
                    raise

        assignment.is_active = True
        assignment.assigned_by = assigned_by
        assignment.assigned_at = utcnow()
        assignment.expires_at = expires_at
        await self._session.flush()
        logger.info("Role re-assigned: user_id=%s, role=%s", user_id, role.name)
        return assignment

    async def revoke_role(self, user_id: UUID, role_id: UUID) -> bool:
        """Deactivate a user's role assignment.

        Returns:
            True if an active assignment was deactivated.
        """
        result = await self._session.execute(
            update(UserRole)
            .where(
                UserRole.user_id == user_id,
                UserRole.role_id == role_id,
                UserRole.is_active.is_(True),
            )
            .values(is_active=False)
            .returning(UserRole.user_role_id)
        )
        revoked = result.scalar_one_or_none() is not None
        if revoked:
            logger.info("Role revoked: user_id=%s, role_id=%s", user_id, role_id)
        return revoked

    async def list_user_assignments(self, user_id: UUID) -> list[UserRole]:
        """Every assignment of a user, including expired and inactive ones."""
        result = await self._session.execute(
            select(UserRole)
            .where(UserRole.user_id == user_id)
            .order_by(UserRole.assigned_at)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def cleanup_expired(self) -> int:
        """Deactivate assignments whose expiry has passed.

        Returns:
            Number of assignments deactivated.
        """
        result = await self._session.execute(
            update(UserRole)
            .where(
                UserRole.is_active.is_(True),
                UserRole.expires_at.is_not(None),
                UserRole.expires_at <= utcnow(),
            )
            .values(is_active=False)
            .returning(UserRole.user_role_id)
            .execution_options(synchronize_session=False)
        )
        count = len(result.all())
        if count:
            logger.info("Expired role assignments deactivated: count=%d", count)
        return count

    async def count_role_members(self, role_id: UUID) -> int:
        """Number of active assignments of a role."""
        return (
            await self._session.scalar(
                select(func.count())
                .select_from(UserRole)
                .where(UserRole.role_id == role_id, UserRole.is_active.is_(True))
            )
        ) or 0

    # -------------------------------------------------------------------------
    # Setup
    # -------------------------------------------------------------------------

    async def seed_defaults(self) -> None:
        """Create the default roles, permissions and grants if missing.

        Safe to run repeatedly; existing rows are left untouched except that
        missing default grants are added.
        """
        roles: dict[str, Role] = {}
        for name, description in DEFAULT_ROLES.items():
            role = await self.find_role_by_name(name)
            if role is None:
                role = await self.create_role(name, description)
            roles[name] = role

        permissions: dict[str, Permission] = {}
        for resource, action in DEFAULT_PERMISSIONS:
            name = f"{resource}:{action}"
            permission = await self.find_permission_by_name(name)
            if permission is None:
                permission = await self.create_permission(
                    resource, action, f"{action.capitalize()} {resource}"
                )
            permissions[name] = permission

        grants = {ADMIN_ROLE: tuple(permissions), **DEFAULT_GRANTS}
        for role_name, permission_names in grants.items():
            for permission_name in permission_names:
                grant = await self._find_grant(
                    roles[role_name].role_id, permissions[permission_name].permission_id
                )
                if grant is None:
                    await self._grant(
                        roles[role_name].role_id,
                        permissions[permission_name].permission_id,
                        None,
                    )
        logger.info("Default roles and permissions ensured")
