"""Pydantic schemas for the /auth endpoints.

Request models only check shape; field rules (email format, password
strength, ...) are enforced by the services so that every entry point
reports them the same way.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from warden.db.models import User
    from warden.services.authz import PermissionInfo
    from warden.services.tokens import TokenPair

# -----------------------------------------------------------------------------
# Requests
# -----------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Self-service account creation."""

    model_config = ConfigDict(extra="forbid")

    email: str = Field(..., max_length=320, description="Account email")
    name: str = Field(..., max_length=200, description="Display name")
    phone: str | None = Field(None, max_length=30, description="Optional phone number")
    password: str = Field(..., max_length=200, description="Account password")


class LoginRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    email: str = Field(..., max_length=320)
    password: str = Field(..., max_length=200)


class RefreshRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    refresh_token: str = Field(..., min_length=1, description="Current refresh token")


class LogoutRequest(BaseModel):
    """Optional logout body; the refresh token is revoked too when given."""

    model_config = ConfigDict(extra="forbid")

    refresh_token: str | None = Field(None, description="Refresh token to revoke")


class TokenRequest(BaseModel):
    """Body carrying a one-time token from an email link."""

    model_config = ConfigDict(extra="forbid")

    token: str = Field(..., min_length=1, max_length=200)


class EmailRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    email: str = Field(..., max_length=320)


class ConfirmResetRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    token: str = Field(..., min_length=1, max_length=200)
    new_password: str = Field(..., max_length=200)


class ChangePasswordRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    old_password: str = Field(..., max_length=200)
    new_password: str = Field(..., max_length=200)


# -----------------------------------------------------------------------------
# Responses
# -----------------------------------------------------------------------------


class AvatarInfo(BaseModel):
    key: str = Field(..., description="Object key in the avatar bucket")
    url: str = Field(..., description="Public URL of the image")


class UserResponse(BaseModel):
    """Public view of an account. Credentials and the token epoch never leave."""

    user_id: UUID
    email: str
    name: str
    phone: str | None = None
    avatar: AvatarInfo | None = None
    is_active: bool
    is_verified: bool
    verified_at: datetime | None = None
    last_login_at: datetime | None = None
    version: int
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_user(cls, user: User) -> UserResponse:
        avatar = None
        if user.avatar_key and user.avatar_url:
            avatar = AvatarInfo(key=user.avatar_key, url=user.avatar_url)
        return cls(
            user_id=user.user_id,
            email=user.email,
            name=user.name,
            phone=user.phone,
            avatar=avatar,
            is_active=user.is_active,
            is_verified=user.is_verified,
            verified_at=user.verified_at,
            last_login_at=user.last_login_at,
            version=user.version,
            created_at=user.created_at,
            updated_at=user.updated_at,
        )


class TokenPairResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    access_expires_at: datetime
    refresh_expires_at: datetime

    @classmethod
    def from_pair(cls, pair: TokenPair) -> TokenPairResponse:
        return cls(
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            token_type=pair.token_type,
            access_expires_at=pair.access_expires_at,
            refresh_expires_at=pair.refresh_expires_at,
        )


class AuthResponse(BaseModel):
    """A user with freshly issued tokens (register, login)."""

    user: UserResponse
    tokens: TokenPairResponse


class TokensResponse(BaseModel):
    tokens: TokenPairResponse


class PermissionInfoResponse(BaseModel):
    permission_id: UUID
    name: str
    resource: str
    action: str
    description: str | None = None

    @classmethod
    def from_info(cls, info: PermissionInfo) -> PermissionInfoResponse:
        return cls(
            permission_id=info.permission_id,
            name=info.name,
            resource=info.resource,
            action=info.action,
            description=info.description,
        )


class ProfileResponse(BaseModel):
    user: UserResponse
    roles: list[str] = Field(default_factory=list)
    permissions: list[PermissionInfoResponse] = Field(default_factory=list)
