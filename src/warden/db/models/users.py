"""User accounts: identity, credentials and revocation epoch."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import Boolean, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from warden.db.models.base import (
    Base,
    OptionalTimestampTZ,
    TimestampTZ,
    UUIDPrimaryKey,
)

if TYPE_CHECKING:
    from warden.db.models.rbac import UserRole
    from warden.db.models.tokens import OneTimeToken, RevokedToken


class User(Base):
    """A user account.

    Emails are stored lowercased and are globally unique. The password is
    only ever stored as an argon2id hash. ``version`` increases on every
    mutation; ``token_epoch`` increases whenever all outstanding tokens must
    stop validating (logout-all, password change, deactivation).
    """

    __tablename__ = "users"

    user_id: Mapped[UUIDPrimaryKey]
    created_at: Mapped[TimestampTZ]
    updated_at: Mapped[TimestampTZ]

    # Identity
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(20), nullable=True)

    # argon2id hash
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)

    # Avatar stored in object storage
    avatar_key: Mapped[str | None] = mapped_column(String(500), nullable=True)
    avatar_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    # Account status
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    verified_at: Mapped[OptionalTimestampTZ]
    deactivated_at: Mapped[OptionalTimestampTZ]

    # Concurrency and revocation counters
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    token_epoch: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    last_login_at: Mapped[OptionalTimestampTZ]
    password_changed_at: Mapped[OptionalTimestampTZ]

    # Relationships
    role_assignments: Mapped[list[UserRole]] = relationship(
        "UserRole",
        foreign_keys="UserRole.user_id",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    one_time_tokens: Mapped[list[OneTimeToken]] = relationship(
        "OneTimeToken",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    revoked_tokens: Mapped[list[RevokedToken]] = relationship(
        "RevokedToken",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<User {self.user_id} {self.email}>"
