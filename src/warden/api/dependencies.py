"""FastAPI dependencies shared by the routers.

Sessions come from the module-level factories in ``warden.db``; the
long-lived collaborators (hasher, mailer, publisher, object store and the
background runner) are built once by ``create_app`` and stored on
``app.state``.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from warden.core.config import Settings
from warden.db import get_async_session, get_read_session
from warden.services.auth import AccountEmailRequests, AuthService
from warden.services.authz import AuthorizationService
from warden.services.background import BackgroundRunner
from warden.services.email import AccountMailer
from warden.services.events import EventPublisher
from warden.services.passwords import PasswordHasher
from warden.services.profiles import ProfileService
from warden.services.rbac import RBACStore
from warden.services.storage import ObjectStoreClient


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Primary session, shared by every dependency of one request."""
    async with get_async_session() as session:
        yield session


async def get_read_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Read-only session, bound to the replica when one is configured."""
    async with get_read_session() as session:
        yield session


DbSession = Annotated[AsyncSession, Depends(get_db_session)]
ReadSession = Annotated[AsyncSession, Depends(get_read_db_session)]


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_password_hasher(request: Request) -> PasswordHasher:
    return request.app.state.hasher


def get_mailer(request: Request) -> AccountMailer | None:
    return getattr(request.app.state, "mailer", None)


def get_event_publisher(request: Request) -> EventPublisher | None:
    return getattr(request.app.state, "publisher", None)


def get_object_store(request: Request) -> ObjectStoreClient | None:
    return getattr(request.app.state, "storage", None)


def get_background_runner(request: Request) -> BackgroundRunner:
    return request.app.state.background


AppSettings = Annotated[Settings, Depends(get_app_settings)]
Hasher = Annotated[PasswordHasher, Depends(get_password_hasher)]
Mailer = Annotated[AccountMailer | None, Depends(get_mailer)]
Publisher = Annotated[EventPublisher | None, Depends(get_event_publisher)]
ObjectStore = Annotated[ObjectStoreClient | None, Depends(get_object_store)]
Background = Annotated[BackgroundRunner, Depends(get_background_runner)]


def get_auth_service(
    session: DbSession,
    settings: AppSettings,
    hasher: Hasher,
    mailer: Mailer,
    publisher: Publisher,
) -> AuthService:
    return AuthService(session, settings, hasher=hasher, mailer=mailer, publisher=publisher)


def get_account_email_requests(
    settings: AppSettings,
    runner: Background,
    hasher: Hasher,
    mailer: Mailer,
    publisher: Publisher,
) -> AccountEmailRequests:
    """Dispatcher for reset and resend; opens no session for the request."""
    return AccountEmailRequests(
        settings, runner, hasher=hasher, mailer=mailer, publisher=publisher
    )


def get_authorization_service(session: ReadSession) -> AuthorizationService:
    return AuthorizationService(session)


def get_profile_service(
    session: DbSession,
    settings: AppSettings,
    hasher: Hasher,
    storage: ObjectStore,
    publisher: Publisher,
) -> ProfileService:
    return ProfileService(
        session,
        hasher=hasher,
        storage=storage,
        publisher=publisher,
        default_role=settings.security.default_role,
    )


def get_rbac_store(session: DbSession) -> RBACStore:
    return RBACStore(session)


AuthServiceDep = Annotated[AuthService, Depends(get_auth_service)]
AccountEmailRequestsDep = Annotated[AccountEmailRequests, Depends(get_account_email_requests)]
AuthzServiceDep = Annotated[AuthorizationService, Depends(get_authorization_service)]
ProfileServiceDep = Annotated[ProfileService, Depends(get_profile_service)]
RBACStoreDep = Annotated[RBACStore, Depends(get_rbac_store)]
