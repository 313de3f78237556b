"""Credential store: persistence of user accounts.

Every mutation goes through a single conditional UPDATE so concurrent
writers cannot lose each other's changes:
- ``version`` is compared and incremented on profile updates
- ``token_epoch`` is incremented atomically in SQL, never read-modify-write

Emails are normalized (trimmed, lowercased) before every lookup and write.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError

from warden.core.errors import ConflictError, NotFoundError
from warden.db.models import User, UserRole
from warden.db.models.base import utcnow
from warden.services.validation import normalize_email

if TYPE_CHECKING:
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

# Columns callers may change through update()
UPDATABLE_FIELDS = frozenset(
    {"name", "phone", "avatar_key", "avatar_url", "is_active", "is_verified", "verified_at"}
)


class UserStore:
    """Persistence operations for users.

    The store flushes but never commits; the calling service owns the
    transaction.

    Example:
        store = UserStore(session)
        user = await store.create(email="a@b.io", name="Ann", password_hash=h)
        user = await store.update(user.user_id, user.version, name="Anne")
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(
        self,
        *,
        email: str,
        name: str,
        password_hash: str,
        phone: str | None = None,
        is_verified: bool = False,
    ) -> User:
        """Insert a new user.

        Args:
            email: Email address (normalized here).
            name: Display name.
            password_hash: argon2id hash, never the plain password.
            phone: Optional phone number.
            is_verified: Initial verification state.

        Returns:
            The persisted user.

        Raises:
            ConflictError: If the email is already registered.
        """
        email = normalize_email(email)
        if await self.find_by_email(email) is not None:
            raise ConflictError("Email already registered", code="EMAIL_EXISTS")

        user = User(
            email=email,
            name=name.strip(),
            phone=phone or None,
            password_hash=password_hash,
            is_verified=is_verified,
            verified_at=utcnow() if is_verified else None,
        )
        try:
            # Savepoint so a lost race leaves the outer transaction usable
            async with self._session.begin_nested():
                self._session.add(user)
        except IntegrityError as exc:
            raise ConflictError("Email already registered", code="EMAIL_EXISTS") from exc

        logger.info("User created: user_id=%s", user.user_id)
        return user

    async def find_by_id(self, user_id: UUID) -> User | None:
        """Return the user or None."""
        return await self._session.get(User, user_id, populate_existing=True)

    async def get_by_id(self, user_id: UUID) -> User:
        """Return the user.

        Raises:
            NotFoundError: If no such user exists.
        """
        user = await self.find_by_id(user_id)
        if user is None:
            raise NotFoundError("User", user_id)
        return user

    async def find_by_email(self, email: str) -> User | None:
        """Return the user for an email, or None."""
        result = await self._session.execute(
            select(User).where(User.email == normalize_email(email))
        )
        return result.scalar_one_or_none()

    async def get_by_email(self, email: str) -> User:
        """Return the user for an email.

        Raises:
            NotFoundError: If no such user exists.
        """
        user = await self.find_by_email(email)
        if user is None:
            raise NotFoundError("User", normalize_email(email))
        return user

    async def update(self, user_id: UUID, expected_version: int, **changes: Any) -> User:
        """Apply changes if the stored version still matches.

        Args:
            user_id: User to update.
            expected_version: Version the caller read.
            **changes: Column values, limited to UPDATABLE_FIELDS.

        Returns:
            The updated user with its new version.

        Raises:
            ConflictError: If the version moved on.
            NotFoundError: If the user does not exist.
            ValueError: If a change names a protected column.
        """
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            msg = f"Cannot update protected fields: {', '.join(sorted(unknown))}"
            raise ValueError(msg)

        result = await self._session.execute(
            update(User)
            .where(User.user_id == user_id, User.version == expected_version)
            .values(**changes, version=User.version + 1, updated_at=utcnow())
            .returning(User.version)
        )
        if result.scalar_one_or_none() is None:
            await self._raise_missing_or_stale(user_id)
        return await self.get_by_id(user_id)

    async def _raise_missing_or_stale(self, user_id: UUID) -> None:
        exists = await self._session.scalar(select(User.user_id).where(User.user_id == user_id))
        if exists is None:
            raise NotFoundError("User", user_id)
        raise ConflictError(
            "User was modified by another request",
            code="VERSION_CONFLICT",
        )

    async def increment_epoch(self, user_id: UUID) -> int:
        """Invalidate every outstanding token of a user.

        Returns:
            The new epoch.

        Raises:
            NotFoundError: If the user does not exist.
        """
        result = await self._session.execute(
            update(User)
            .where(User.user_id == user_id)
            .values(
                token_epoch=User.token_epoch + 1,
                version=User.version + 1,
                updated_at=utcnow(),
            )
            .returning(User.token_epoch)
        )
        epoch = result.scalar_one_or_none()
        if epoch is None:
            raise NotFoundError("User", user_id)
        logger.info("Token epoch bumped: user_id=%s, epoch=%d", user_id, epoch)
        return epoch

    async def set_password(
        self,
        user_id: UUID,
        password_hash: str,
        *,
        revoke_tokens: bool = True,
    ) -> int:
        """Store a new password hash.

        Args:
            user_id: User whose password changes.
            password_hash: New argon2id hash.
            revoke_tokens: Bump the epoch as part of the same statement.
                False only for transparent rehashing on login.

        Returns:
            The user's epoch after the update.
        """
        values: dict[str, Any] = {
            "password_hash": password_hash,
            "version": User.version + 1,
            "updated_at": utcnow(),
        }
        if revoke_tokens:
            values["token_epoch"] = User.token_epoch + 1
            values["password_changed_at"] = utcnow()

        result = await self._session.execute(
            update(User).where(User.user_id == user_id).values(**values).returning(User.token_epoch)
        )
        epoch = result.scalar_one_or_none()
        if epoch is None:
            raise NotFoundError("User", user_id)
        if revoke_tokens:
            logger.info("Password changed, epoch bumped: user_id=%s, epoch=%d", user_id, epoch)
        return epoch

    async def record_login(self, user_id: UUID) -> None:
        """Stamp last_login_at without touching the version."""
        await self._session.execute(
            update(User).where(User.user_id == user_id).values(last_login_at=utcnow())
        )

    async def mark_verified(self, user_id: UUID) -> bool:
        """Mark an account verified.

        Returns:
            True if this call flipped the flag, False if already verified.
        """
        now = utcnow()
        result = await self._session.execute(
            update(User)
            .where(User.user_id == user_id, User.is_verified.is_(False))
            .values(is_verified=True, verified_at=now, version=User.version + 1, updated_at=now)
            .returning(User.user_id)
        )
        return result.scalar_one_or_none() is not None

    async def soft_delete(self, user_id: UUID) -> None:
        """Deactivate a user, revoke their tokens and end their role assignments.

        Raises:
            NotFoundError: If the user does not exist.
        """
        now = utcnow()
        result = await self._session.execute(
            update(User)
            .where(User.user_id == user_id)
            .values(
                is_active=False,
                deactivated_at=now,
                token_epoch=User.token_epoch + 1,
                version=User.version + 1,
                updated_at=now,
            )
            .returning(User.user_id)
        )
        if result.scalar_one_or_none() is None:
            raise NotFoundError("User", user_id)

        await self._session.execute(
            update(UserRole)
            .where(UserRole.user_id == user_id, UserRole.is_active.is_(True))
            .values(is_active=False)
        )
        logger.info("User deactivated: user_id=%s", user_id)

    async def list_users(
        self,
        *,
        page: int = 1,
        page_size: int = 20,
        search: str | None = None,
        is_active: bool | None = None,
    ) -> tuple[list[User], int]:
        """Return one page of users and the total count.

        Args:
            page: 1-based page number.
            page_size: Rows per page.
            search: Case-insensitive substring of email or name.
            is_active: Filter on the active flag.

        Returns:
            Tuple of (users ordered by creation time, total matching).
        """
        conditions = []
        if search:
            pattern = f"%{search.strip().lower()}%"
            conditions.append(or_(User.email.like(pattern), func.lower(User.name).like(pattern)))
        if is_active is not None:
            conditions.append(User.is_active.is_(is_active))

        total = await self._session.scalar(
            select(func.count()).select_from(User).where(*conditions)
        )
        result = await self._session.execute(
            select(User)
            .where(*conditions)
            .order_by(User.created_at, User.user_id)
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return list(result.scalars().all()), total or 0
