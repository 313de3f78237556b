"""Token state: the revocation set and one-time verification/reset tokens."""

from __future__ import annotations

import uuid  # noqa: TC003 - required at runtime for SQLAlchemy type resolution
from datetime import datetime  # noqa: TC003 - required at runtime for SQLAlchemy
from typing import TYPE_CHECKING

from sqlalchemy import Enum, ForeignKey, Index, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from warden.db.models.base import (
    Base,
    OneTimeTokenPurpose,
    OptionalTimestampTZ,
    TimestampTZ,
    TokenKind,
    UTCDateTime,
    UUIDPrimaryKey,
    enum_values,
)

if TYPE_CHECKING:
    from warden.db.models.users import User


class RevokedToken(Base):
    """A revoked token id.

    Keyed by jti so membership checks are a primary-key lookup. Rows are
    useless once the token would have expired anyway and are purged then.
    """

    __tablename__ = "revoked_tokens"

    jti: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.user_id", ondelete="CASCADE"),
        nullable=False,
    )
    token_kind: Mapped[TokenKind] = mapped_column(
        Enum(TokenKind, native_enum=False, length=16, values_callable=enum_values),
        nullable=False,
    )
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    revoked_at: Mapped[TimestampTZ]
    # logout, rotation, ...
    reason: Mapped[str] = mapped_column(String(50), nullable=False)

    user: Mapped[User] = relationship("User", back_populates="revoked_tokens")

    __table_args__ = (Index("ix_revoked_tokens_expires_at", "expires_at"),)


class OneTimeToken(Base):
    """Single-use token for email verification or password reset.

    Only the SHA-256 of the token is stored. Redemption sets consumed_at
    with a conditional update so at most one caller succeeds.
    """

    __tablename__ = "one_time_tokens"

    one_time_token_id: Mapped[UUIDPrimaryKey]
    created_at: Mapped[TimestampTZ]

    token_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    purpose: Mapped[OneTimeTokenPurpose] = mapped_column(
        Enum(OneTimeTokenPurpose, native_enum=False, length=32, values_callable=enum_values),
        nullable=False,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.user_id", ondelete="CASCADE"),
        nullable=False,
    )
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    consumed_at: Mapped[OptionalTimestampTZ]

    user: Mapped[User] = relationship("User", back_populates="one_time_tokens")

    __table_args__ = (
        Index("ix_one_time_tokens_user_purpose", "user_id", "purpose", "created_at"),
        Index("ix_one_time_tokens_expires_at", "expires_at"),
    )
