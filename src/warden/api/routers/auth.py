"""Authentication router.

Public endpoints register, sign in, rotate tokens and run the email
verification and password reset flows. Authenticated endpoints end
sessions, change the password and describe the caller.

Reset and resend answer identically whether or not the account exists: the
handler only schedules the work, which runs after the response.
"""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Body, status

from warden.api.dependencies import AccountEmailRequestsDep, AuthServiceDep, AuthzServiceDep
from warden.api.middleware.auth import CurrentUser
from warden.api.schemas.auth import (
    AuthResponse,
    ChangePasswordRequest,
    ConfirmResetRequest,
    EmailRequest,
    LoginRequest,
    LogoutRequest,
    PermissionInfoResponse,
    ProfileResponse,
    RefreshRequest,
    RegisterRequest,
    TokenPairResponse,
    TokenRequest,
    TokensResponse,
    UserResponse,
)
from warden.api.schemas.common import Envelope, ErrorEnvelope

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/auth",
    tags=["auth"],
    responses={
        400: {"model": ErrorEnvelope, "description": "Validation failed"},
        401: {"model": ErrorEnvelope, "description": "Invalid or missing credentials"},
    },
)

RESET_REQUESTED_MESSAGE = "If the account exists, a password reset link has been sent"
RESEND_REQUESTED_MESSAGE = "If the account needs verification, a new link has been sent"


# -----------------------------------------------------------------------------
# Public
# -----------------------------------------------------------------------------


@router.post(
    "/register",
    response_model=Envelope[AuthResponse],
    status_code=status.HTTP_201_CREATED,
    responses={409: {"model": ErrorEnvelope, "description": "Email already registered"}},
)
async def register(body: RegisterRequest, auth: AuthServiceDep) -> Envelope[AuthResponse]:
    """Create an account, send the verification email and sign the user in."""
    result = await auth.register(body.email, body.name, body.phone, body.password)
    return Envelope.ok(
        AuthResponse(
            user=UserResponse.from_user(result.user),
            tokens=TokenPairResponse.from_pair(result.tokens),
        ),
        message="Registration successful",
    )


@router.post("/login", response_model=Envelope[AuthResponse])
async def login(body: LoginRequest, auth: AuthServiceDep) -> Envelope[AuthResponse]:
    result = await auth.login(body.email, body.password)
    return Envelope.ok(
        AuthResponse(
            user=UserResponse.from_user(result.user),
            tokens=TokenPairResponse.from_pair(result.tokens),
        ),
        message="Login successful",
    )


@router.post("/refresh", response_model=Envelope[TokensResponse])
async def refresh(body: RefreshRequest, auth: AuthServiceDep) -> Envelope[TokensResponse]:
    """Exchange a refresh token for a new pair; the old refresh token is spent."""
    pair = await auth.refresh(body.refresh_token)
    return Envelope.ok(TokensResponse(tokens=TokenPairResponse.from_pair(pair)))


@router.post("/verify-email", response_model=Envelope[None])
async def verify_email(body: TokenRequest, auth: AuthServiceDep) -> Envelope[None]:
    await auth.verify_email(body.token)
    return Envelope.ok(message="Email verified")


@router.post("/reset-password", response_model=Envelope[None])
async def reset_password(body: EmailRequest, requests: AccountEmailRequestsDep) -> Envelope[None]:
    requests.request_password_reset(body.email)
    return Envelope.ok(message=RESET_REQUESTED_MESSAGE)


@router.post("/confirm-reset", response_model=Envelope[None])
async def confirm_reset(body: ConfirmResetRequest, auth: AuthServiceDep) -> Envelope[None]:
    await auth.confirm_password_reset(body.token, body.new_password)
    return Envelope.ok(message="Password has been reset")


@router.post("/resend-verification", response_model=Envelope[None])
async def resend_verification(
    body: EmailRequest, requests: AccountEmailRequestsDep
) -> Envelope[None]:
    requests.request_verification_email(body.email)
    return Envelope.ok(message=RESEND_REQUESTED_MESSAGE)


# -----------------------------------------------------------------------------
# Authenticated
# -----------------------------------------------------------------------------


@router.post("/logout", response_model=Envelope[None])
async def logout(
    user: CurrentUser,
    auth: AuthServiceDep,
    body: Annotated[LogoutRequest | None, Body()] = None,
) -> Envelope[None]:
    """Revoke the presented access token and, optionally, a refresh token."""
    refresh_token = body.refresh_token if body else None
    await auth.logout(user.user_id, user.claims, refresh_token)
    return Envelope.ok(message="Logged out")


@router.post("/logout-all", response_model=Envelope[None])
async def logout_all(user: CurrentUser, auth: AuthServiceDep) -> Envelope[None]:
    """Invalidate every token issued to the caller."""
    await auth.logout_all(user.user_id)
    return Envelope.ok(message="Logged out from all sessions")


@router.get("/profile", response_model=Envelope[ProfileResponse])
async def get_profile(user: CurrentUser, auth: AuthServiceDep) -> Envelope[ProfileResponse]:
    profile = await auth.get_profile(user.user_id)
    return Envelope.ok(
        ProfileResponse(
            user=UserResponse.from_user(profile.user),
            roles=profile.roles,
            permissions=[PermissionInfoResponse.from_info(p) for p in profile.permissions],
        )
    )


@router.get("/permissions", response_model=Envelope[list[PermissionInfoResponse]])
async def get_permissions(
    user: CurrentUser, authz: AuthzServiceDep
) -> Envelope[list[PermissionInfoResponse]]:
    permissions = await authz.get_effective_permissions(user.user_id)
    return Envelope.ok([PermissionInfoResponse.from_info(p) for p in permissions])


@router.put("/change-password", response_model=Envelope[TokensResponse])
async def change_password(
    body: ChangePasswordRequest, user: CurrentUser, auth: AuthServiceDep
) -> Envelope[TokensResponse]:
    """Change the password; every other session ends and fresh tokens are returned."""
    pair = await auth.change_password(user.user_id, body.old_password, body.new_password)
    return Envelope.ok(
        TokensResponse(tokens=TokenPairResponse.from_pair(pair)),
        message="Password changed",
    )
