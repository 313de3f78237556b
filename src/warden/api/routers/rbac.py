"""Role and permission administration router.

Every route is gated by ``dynamic_permission_check``: the resource is the
first path segment (``roles`` or ``permissions``) and the action follows
the HTTP method. The store does not commit; each write route commits once.
"""

from __future__ import annotations

import logging
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from warden.api.dependencies import DbSession, RBACStoreDep
from warden.api.middleware.auth import AuthenticatedUser, dynamic_permission_check
from warden.api.schemas.common import Envelope, ErrorEnvelope
from warden.api.schemas.rbac import (
    AssignmentResponse,
    AssignRoleRequest,
    CleanupResponse,
    CreatePermissionRequest,
    CreateRoleRequest,
    PermissionResponse,
    RoleResponse,
    SyncPermissionsRequest,
    SyncResultResponse,
    UpdatePermissionRequest,
    UpdateRoleRequest,
)
from warden.core.errors import NotFoundError

logger = logging.getLogger(__name__)

router = APIRouter(
    tags=["rbac"],
    responses={
        401: {"model": ErrorEnvelope, "description": "Authentication required"},
        403: {"model": ErrorEnvelope, "description": "Missing permission"},
        404: {"model": ErrorEnvelope, "description": "Not found"},
    },
)

RBACAdmin = Annotated[AuthenticatedUser, Depends(dynamic_permission_check)]


# -----------------------------------------------------------------------------
# Roles
# -----------------------------------------------------------------------------


@router.post("/roles/cleanup-expired", response_model=Envelope[CleanupResponse])
async def cleanup_expired_assignments(
    _user: RBACAdmin, store: RBACStoreDep, session: DbSession
) -> Envelope[CleanupResponse]:
    """Deactivate role assignments whose expiry has passed."""
    count = await store.cleanup_expired()
    await session.commit()
    return Envelope.ok(CleanupResponse(deactivated=count))


@router.get("/roles", response_model=Envelope[list[RoleResponse]])
async def list_roles(
    _user: RBACAdmin,
    store: RBACStoreDep,
    include_inactive: Annotated[bool, Query()] = False,
) -> Envelope[list[RoleResponse]]:
    roles = await store.list_roles(include_inactive=include_inactive)
    return Envelope.ok([RoleResponse.from_role(r) for r in roles])


@router.post(
    "/roles",
    response_model=Envelope[RoleResponse],
    status_code=status.HTTP_201_CREATED,
    responses={409: {"model": ErrorEnvelope, "description": "Role name taken"}},
)
async def create_role(
    body: CreateRoleRequest, _user: RBACAdmin, store: RBACStoreDep, session: DbSession
) -> Envelope[RoleResponse]:
    role = await store.create_role(body.name, body.description)
    await session.commit()
    return Envelope.ok(RoleResponse.from_role(role), message="Role created")


@router.get("/roles/{role_id}", response_model=Envelope[RoleResponse])
async def get_role(role_id: UUID, _user: RBACAdmin, store: RBACStoreDep) -> Envelope[RoleResponse]:
    return Envelope.ok(RoleResponse.from_role(await store.get_role(role_id)))


@router.put(
    "/roles/{role_id}",
    response_model=Envelope[RoleResponse],
    responses={409: {"model": ErrorEnvelope, "description": "Stale version or name taken"}},
)
async def update_role(
    role_id: UUID,
    body: UpdateRoleRequest,
    _user: RBACAdmin,
    store: RBACStoreDep,
    session: DbSession,
) -> Envelope[RoleResponse]:
    role = await store.update_role(
        role_id,
        body.version,
        name=body.name,
        description=body.description,
        is_active=body.is_active,
    )
    await session.commit()
    return Envelope.ok(RoleResponse.from_role(role), message="Role updated")


@router.delete("/roles/{role_id}", response_model=Envelope[None])
async def delete_role(
    role_id: UUID, _user: RBACAdmin, store: RBACStoreDep, session: DbSession
) -> Envelope[None]:
    """Deactivate the role along with its grants and assignments."""
    await store.delete_role(role_id)
    await session.commit()
    return Envelope.ok(message="Role deleted")


# -----------------------------------------------------------------------------
# Role grants
# -----------------------------------------------------------------------------


@router.get("/roles/{role_id}/permissions", response_model=Envelope[list[PermissionResponse]])
async def list_role_permissions(
    role_id: UUID, _user: RBACAdmin, store: RBACStoreDep
) -> Envelope[list[PermissionResponse]]:
    await store.get_role(role_id)
    permissions = await store.list_role_permissions(role_id)
    return Envelope.ok([PermissionResponse.from_permission(p) for p in permissions])


@router.put("/roles/{role_id}/permissions", response_model=Envelope[SyncResultResponse])
async def sync_role_permissions(
    role_id: UUID,
    body: SyncPermissionsRequest,
    user: RBACAdmin,
    store: RBACStoreDep,
    session: DbSession,
) -> Envelope[SyncResultResponse]:
    """Make the role's grants exactly the given permission set."""
    result = await store.sync_role_permissions(
        role_id, body.permission_ids, granted_by=user.user_id
    )
    await session.commit()
    return Envelope.ok(SyncResultResponse.from_result(result), message="Permissions synced")


@router.post(
    "/roles/{role_id}/permissions/{permission_id}",
    response_model=Envelope[None],
    status_code=status.HTTP_201_CREATED,
)
async def grant_permission(
    role_id: UUID,
    permission_id: UUID,
    user: RBACAdmin,
    store: RBACStoreDep,
    session: DbSession,
) -> Envelope[None]:
    await store.grant_permission(role_id, permission_id, granted_by=user.user_id)
    await session.commit()
    return Envelope.ok(message="Permission granted")


@router.delete("/roles/{role_id}/permissions/{permission_id}", response_model=Envelope[None])
async def revoke_permission(
    role_id: UUID,
    permission_id: UUID,
    _user: RBACAdmin,
    store: RBACStoreDep,
    session: DbSession,
) -> Envelope[None]:
    if not await store.revoke_permission(role_id, permission_id):
        raise NotFoundError("Permission grant", f"{role_id}/{permission_id}")
    await session.commit()
    return Envelope.ok(message="Permission revoked")


# -----------------------------------------------------------------------------
# Role assignments
# -----------------------------------------------------------------------------


@router.post(
    "/roles/{role_id}/users",
    response_model=Envelope[AssignmentResponse],
    status_code=status.HTTP_201_CREATED,
)
async def assign_role(
    role_id: UUID,
    body: AssignRoleRequest,
    user: RBACAdmin,
    store: RBACStoreDep,
    session: DbSession,
) -> Envelope[AssignmentResponse]:
    assignment = await store.assign_role(
        body.user_id, role_id, assigned_by=user.user_id, expires_at=body.expires_at
    )
    await session.commit()
    return Envelope.ok(AssignmentResponse.from_assignment(assignment), message="Role assigned")


@router.delete("/roles/{role_id}/users/{user_id}", response_model=Envelope[None])
async def revoke_role(
    role_id: UUID,
    user_id: UUID,
    _user: RBACAdmin,
    store: RBACStoreDep,
    session: DbSession,
) -> Envelope[None]:
    if not await store.revoke_role(user_id, role_id):
        raise NotFoundError("Role assignment", f"{role_id}/{user_id}")
    await session.commit()
    return Envelope.ok(message="Role revoked")


# -----------------------------------------------------------------------------
# Permissions
# -----------------------------------------------------------------------------


@router.get("/permissions", response_model=Envelope[list[PermissionResponse]])
async def list_permissions(
    _user: RBACAdmin,
    store: RBACStoreDep,
    resource: Annotated[str | None, Query(max_length=100)] = None,
    include_inactive: Annotated[bool, Query()] = False,
) -> Envelope[list[PermissionResponse]]:
    permissions = await store.list_permissions(
        resource=resource, include_inactive=include_inactive
    )
    return Envelope.ok([PermissionResponse.from_permission(p) for p in permissions])


@router.post(
    "/permissions",
    response_model=Envelope[PermissionResponse],
    status_code=status.HTTP_201_CREATED,
    responses={409: {"model": ErrorEnvelope, "description": "Permission exists"}},
)
async def create_permission(
    body: CreatePermissionRequest,
    _user: RBACAdmin,
    store: RBACStoreDep,
    session: DbSession,
) -> Envelope[PermissionResponse]:
    permission = await store.create_permission(
        body.resource, body.action, body.description, name=body.name
    )
    await session.commit()
    return Envelope.ok(PermissionResponse.from_permission(permission), message="Permission created")


@router.get("/permissions/{permission_id}", response_model=Envelope[PermissionResponse])
async def get_permission(
    permission_id: UUID, _user: RBACAdmin, store: RBACStoreDep
) -> Envelope[PermissionResponse]:
    permission = await store.get_permission(permission_id)
    return Envelope.ok(PermissionResponse.from_permission(permission))


@router.put("/permissions/{permission_id}", response_model=Envelope[PermissionResponse])
async def update_permission(
    permission_id: UUID,
    body: UpdatePermissionRequest,
    _user: RBACAdmin,
    store: RBACStoreDep,
    session: DbSession,
) -> Envelope[PermissionResponse]:
    permission = await store.update_permission(
        permission_id, description=body.description, is_active=body.is_active
    )
    await session.commit()
    return Envelope.ok(PermissionResponse.from_permission(permission), message="Permission updated")


@router.delete("/permissions/{permission_id}", response_model=Envelope[None])
async def delete_permission(
    permission_id: UUID, _user: RBACAdmin, store: RBACStoreDep, session: DbSession
) -> Envelope[None]:
    """Deactivate the permission and every grant of it."""
    await store.delete_permission(permission_id)
    await session.commit()
    return Envelope.ok(message="Permission deleted")
