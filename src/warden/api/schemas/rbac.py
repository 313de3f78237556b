"""Pydantic schemas for role and permission administration."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from warden.db.models import Permission, Role, UserRole
    from warden.services.rbac import SyncResult

# -----------------------------------------------------------------------------
# Roles
# -----------------------------------------------------------------------------


class CreateRoleRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., max_length=100, description="Role name; stored uppercase")
    description: str | None = Field(None, max_length=500)


class UpdateRoleRequest(BaseModel):
    """Partial role update guarded by the optimistic version."""

    model_config = ConfigDict(extra="forbid")

    version: int = Field(..., ge=1)
    name: str | None = Field(None, max_length=100)
    description: str | None = Field(None, max_length=500)
    is_active: bool | None = None


class RoleResponse(BaseModel):
    role_id: UUID
    name: str
    description: str | None = None
    is_active: bool
    version: int
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_role(cls, role: Role) -> RoleResponse:
        return cls(
            role_id=role.role_id,
            name=role.name,
            description=role.description,
            is_active=role.is_active,
            version=role.version,
            created_at=role.created_at,
            updated_at=role.updated_at,
        )


# -----------------------------------------------------------------------------
# Permissions
# -----------------------------------------------------------------------------


class CreatePermissionRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    resource: str = Field(..., max_length=100)
    action: str = Field(..., max_length=100)
    description: str | None = Field(None, max_length=500)
    name: str | None = Field(None, max_length=200, description="Must equal resource:action")


class UpdatePermissionRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    description: str | None = Field(None, max_length=500)
    is_active: bool | None = None


class PermissionResponse(BaseModel):
    permission_id: UUID
    name: str
    resource: str
    action: str
    description: str | None = None
    is_active: bool
    created_at: datetime

    @classmethod
    def from_permission(cls, permission: Permission) -> PermissionResponse:
        return cls(
            permission_id=permission.permission_id,
            name=permission.name,
            resource=permission.resource,
            action=permission.action,
            description=permission.description,
            is_active=permission.is_active,
            created_at=permission.created_at,
        )


# -----------------------------------------------------------------------------
# Grants and assignments
# -----------------------------------------------------------------------------


class SyncPermissionsRequest(BaseModel):
    """The complete set of permissions the role should hold."""

    model_config = ConfigDict(extra="forbid")

    permission_ids: list[UUID] = Field(default_factory=list)


class SyncResultResponse(BaseModel):
    granted: list[UUID]
    revoked: list[UUID]

    @classmethod
    def from_result(cls, result: SyncResult) -> SyncResultResponse:
        return cls(granted=list(result.granted), revoked=list(result.revoked))


class AssignRoleRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    user_id: UUID
    expires_at: datetime | None = Field(None, description="Optional expiry; must be in the future")


class AssignmentResponse(BaseModel):
    user_role_id: UUID
    user_id: UUID
    role_id: UUID
    assigned_by: UUID | None = None
    assigned_at: datetime
    expires_at: datetime | None = None
    is_active: bool

    @classmethod
    def from_assignment(cls, assignment: UserRole) -> AssignmentResponse:
        return cls(
            user_role_id=assignment.user_role_id,
            user_id=assignment.user_id,
            role_id=assignment.role_id,
            assigned_by=assignment.assigned_by,
            assigned_at=assignment.assigned_at,
            expires_at=assignment.expires_at,
            is_active=assignment.is_active,
        )


class CleanupResponse(BaseModel):
    deactivated: int = Field(..., ge=0, description="Assignments deactivated")
