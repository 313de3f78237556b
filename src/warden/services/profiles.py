"""User administration and avatars on top of the credential store.

Used by the /users routes. Unlike the authenticator, nothing here issues
tokens: administrators create accounts, users edit their own profile, and
either may deactivate an account.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import TYPE_CHECKING

from warden.core.errors import InternalError, ValidationFailedError
from warden.services.events import AccountEvent, AccountEventType, publish_safely
from warden.services.rbac import RBACStore
from warden.services.storage import StorageError
from warden.services.users import UserStore
from warden.services.validation import (
    normalize_email,
    validate_profile,
    validate_registration,
)

if TYPE_CHECKING:
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession

    from warden.db.models import User
    from warden.services.events import EventPublisher
    from warden.services.passwords import PasswordHasher
    from warden.services.storage import ObjectStoreClient

logger = logging.getLogger(__name__)

MAX_AVATAR_BYTES = 5 * 1024 * 1024
AVATAR_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
}


class ProfileService:
    """Administrative and self-service operations on user accounts.

    Commits its own unit of work, like the authenticator.
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        hasher: PasswordHasher,
        storage: ObjectStoreClient | None = None,
        publisher: EventPublisher | None = None,
        default_role: str | None = None,
    ) -> None:
        self._session = session
        self._hasher = hasher
        self._storage = storage
        self._publisher = publisher
        self._default_role = default_role
        self._users = UserStore(session)
        self._rbac = RBACStore(session)

    async def create_user(
        self,
        *,
        email: str,
        name: str,
        password: str,
        phone: str | None = None,
        is_verified: bool = False,
        created_by: UUID | None = None,
    ) -> User:
        """Create an account on behalf of an administrator.

        Raises:
            ValidationFailedError: If any field is invalid.
            ConflictError: If the email is already registered.
        """
        email = normalize_email(email)
        validate_registration(email, name, phone, password)
        password_hash = await self._hasher.hash(password)
        user = await self._users.create(
            email=email,
            name=name,
            phone=phone,
            password_hash=password_hash,
            is_verified=is_verified,
        )
        if self._default_role:
            role = await self._rbac.find_role_by_name(self._default_role)
            if role is not None and role.is_active:
                await self._rbac.assign_role(user.user_id, role.role_id, assigned_by=created_by)
        await self._session.commit()

        logger.info("User created by administrator: user_id=%s, by=%s", user.user_id, created_by)
        await publish_safely(
            self._publisher,
            AccountEvent(AccountEventType.USER_REGISTERED, user.user_id, {"by": str(created_by)}),
        )
        return user

    async def get_user(self, user_id: UUID) -> User:
        """Return a user or raise NotFoundError."""
        return await self._users.get_by_id(user_id)

    async def list_users(
        self,
        *,
        page: int,
        page_size: int,
        search: str | None = None,
        is_active: bool | None = None,
    ) -> tuple[list[User], int]:
        """Return a page of users and the total count."""
        return await self._users.list_users(
            page=page, page_size=page_size, search=search, is_active=is_active
        )

    async def update_user(
        self,
        user_id: UUID,
        *,
        version: int,
        name: str,
        phone: str | None = None,
    ) -> User:
        """Update the editable profile fields.

        Raises:
            ValidationFailedError: If a field is invalid.
            ConflictError: If the version is stale.
            NotFoundError: If the user does not exist.
        """
        validate_profile(name, phone)
        user = await self._users.update(user_id, version, name=name.strip(), phone=phone or None)
        await self._session.commit()
        await publish_safely(
            self._publisher, AccountEvent(AccountEventType.USER_UPDATED, user_id)
        )
        return user

    async def delete_user(self, user_id: UUID, *, deleted_by: UUID | None = None) -> None:
        """Deactivate an account and revoke all of its tokens."""
        await self._users.soft_delete(user_id)
        await self._session.commit()
        await publish_safely(
            self._publisher,
            AccountEvent(AccountEventType.USER_DEACTIVATED, user_id, {"by": str(deleted_by)}),
        )

    async def upload_avatar(
        self,
        user_id: UUID,
        data: bytes,
        content_type: str | None,
    ) -> User:
        """Store a new avatar image and point the profile at it.

        Raises:
            ValidationFailedError: For a missing, oversized or non-image file.
            NotFoundError: If the user does not exist.
            InternalError: If object storage is unavailable.
        """
        if self._storage is None:
            raise InternalError("Avatar storage is not configured")

        extension = AVATAR_EXTENSIONS.get((content_type or "").lower())
        if extension is None:
            raise ValidationFailedError.for_fields(
                {"file": f"Unsupported image type; allowed: {', '.join(AVATAR_EXTENSIONS)}"}
            )
        if not data:
            raise ValidationFailedError.for_fields({"file": "File is empty"})
        if len(data) > MAX_AVATAR_BYTES:
            raise ValidationFailedError.for_fields(
                {"file": f"File exceeds {MAX_AVATAR_BYTES // (1024 * 1024)} MiB"}
            )

        user = await self._users.get_by_id(user_id)
        previous_key = user.avatar_key
        key = f"avatars/{user_id}/{uuid.uuid4().hex}{extension}"
        try:
            await asyncio.to_thread(
                self._storage.upload,
                key,
                data,
                content_type=content_type or "application/octet-stream",
                metadata={"user-id": str(user_id)},
            )
        except StorageError as exc:
            logger.exception("Avatar upload failed: user_id=%s", user_id)
            raise InternalError("Avatar upload failed") from exc

        user = await self._users.update(
            user_id,
            user.version,
            avatar_key=key,
            avatar_url=self._storage.object_url(key),
        )
        await self._session.commit()
        logger.info("Avatar updated: user_id=%s, key=%s", user_id, key)

        if previous_key:
            try:
                await asyncio.to_thread(self._storage.delete, previous_key)
            except StorageError:
                logger.warning("Old avatar not deleted: user_id=%s, key=%s", user_id, previous_key)
        return user
