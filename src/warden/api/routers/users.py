"""User administration router.

Creating and listing accounts needs the matching ``users:*`` permission.
Reading, editing, deactivating and the avatar of one account are open to
that user and to admins.
"""

from __future__ import annotations

import logging
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, File, Query, UploadFile, status

from warden.api.dependencies import ProfileServiceDep
from warden.api.middleware.auth import (
    AuthenticatedUser,
    require_ownership,
    require_permission,
)
from warden.api.schemas.auth import UserResponse
from warden.api.schemas.common import Envelope, ErrorEnvelope, Pagination
from warden.api.schemas.users import CreateUserRequest, UpdateUserRequest
from warden.services.profiles import MAX_AVATAR_BYTES

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/users",
    tags=["users"],
    responses={
        401: {"model": ErrorEnvelope, "description": "Authentication required"},
        403: {"model": ErrorEnvelope, "description": "Not allowed"},
    },
)

Owner = Annotated[AuthenticatedUser, Depends(require_ownership("user_id"))]


@router.post(
    "",
    response_model=Envelope[UserResponse],
    status_code=status.HTTP_201_CREATED,
    responses={409: {"model": ErrorEnvelope, "description": "Email already registered"}},
)
async def create_user(
    body: CreateUserRequest,
    user: Annotated[AuthenticatedUser, Depends(require_permission("users", "create"))],
    profiles: ProfileServiceDep,
) -> Envelope[UserResponse]:
    created = await profiles.create_user(
        email=body.email,
        name=body.name,
        password=body.password,
        phone=body.phone,
        is_verified=body.is_verified,
        created_by=user.user_id,
    )
    return Envelope.ok(UserResponse.from_user(created), message="User created")


@router.get("", response_model=Envelope[list[UserResponse]])
async def list_users(
    _user: Annotated[AuthenticatedUser, Depends(require_permission("users", "list"))],
    profiles: ProfileServiceDep,
    page: Annotated[int, Query(ge=1)] = 1,
    page_size: Annotated[int, Query(ge=1, le=100)] = 20,
    search: Annotated[str | None, Query(max_length=100)] = None,
    is_active: bool | None = None,
) -> Envelope[list[UserResponse]]:
    """List accounts page by page, newest first."""
    users, total = await profiles.list_users(
        page=page, page_size=page_size, search=search, is_active=is_active
    )
    pagination = Pagination.build(page, page_size, total)
    return Envelope.ok(
        [UserResponse.from_user(u) for u in users],
        meta={"pagination": pagination.model_dump()},
    )


@router.get("/{user_id}", response_model=Envelope[UserResponse])
async def get_user(
    user_id: UUID, _user: Owner, profiles: ProfileServiceDep
) -> Envelope[UserResponse]:
    return Envelope.ok(UserResponse.from_user(await profiles.get_user(user_id)))


@router.put(
    "/{user_id}",
    response_model=Envelope[UserResponse],
    responses={409: {"model": ErrorEnvelope, "description": "Stale version"}},
)
async def update_user(
    user_id: UUID,
    body: UpdateUserRequest,
    _user: Owner,
    profiles: ProfileServiceDep,
) -> Envelope[UserResponse]:
    """Edit name and phone; ``version`` must match the stored version."""
    updated = await profiles.update_user(
        user_id, version=body.version, name=body.name, phone=body.phone
    )
    return Envelope.ok(UserResponse.from_user(updated), message="User updated")


@router.delete("/{user_id}", response_model=Envelope[None])
async def delete_user(user_id: UUID, user: Owner, profiles: ProfileServiceDep) -> Envelope[None]:
    """Deactivate the account; all of its tokens stop working immediately."""
    await profiles.delete_user(user_id, deleted_by=user.user_id)
    return Envelope.ok(message="User deactivated")


@router.post("/{user_id}/avatar", response_model=Envelope[UserResponse])
async def upload_avatar(
    user_id: UUID,
    _user: Owner,
    profiles: ProfileServiceDep,
    file: Annotated[UploadFile, File(description="JPEG, PNG, GIF or WebP image")],
) -> Envelope[UserResponse]:
    # One byte past the limit is enough to reject
    data = await file.read(MAX_AVATAR_BYTES + 1)
    updated = await profiles.upload_avatar(user_id, data, file.content_type)
    return Envelope.ok(UserResponse.from_user(updated), message="Avatar updated")
