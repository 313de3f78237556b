"""Verification/reset ledger: single-use opaque tokens.

Tokens are 256 random bits, URL-safe encoded, and handed to the user by
email. Only their SHA-256 hex digest is stored, so a database leak does not
expose redeemable tokens. Redemption is one conditional UPDATE; concurrent
attempts on the same token resolve to exactly one winner.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
from typing import TYPE_CHECKING

from sqlalchemy import delete, or_, select, update

from warden.core.errors import AuthFailure, UnauthorizedError
from warden.db.models import OneTimeToken
from warden.db.models.base import utcnow

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime, timedelta
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession

    from warden.db.models import OneTimeTokenPurpose

logger = logging.getLogger(__name__)

TOKEN_BYTES = 32  # 256 bits of entropy


def hash_token(token: str) -> str:
    """SHA-256 hex digest of a token, as stored."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class OneTimeTokenLedger:
    """Issue and redeem one-time tokens.

    Example:
        ledger = OneTimeTokenLedger(session)
        token = await ledger.issue(OneTimeTokenPurpose.VERIFY_EMAIL, user_id, timedelta(hours=24))
        user_id = await ledger.redeem(OneTimeTokenPurpose.VERIFY_EMAIL, token)
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session = session
        self._clock = clock

    async def issue(self, purpose: OneTimeTokenPurpose, user_id: UUID, ttl: timedelta) -> str:
        """Create a token for a user.

        Args:
            purpose: What the token may be redeemed for.
            user_id: Owner of the token.
            ttl: Lifetime from now.

        Returns:
            The plain token. It is not recoverable afterwards.
        """
        token = secrets.token_urlsafe(TOKEN_BYTES)
        now = self._clock()
        record = OneTimeToken(
            token_hash=hash_token(token),
            purpose=purpose,
            user_id=user_id,
            created_at=now,
            expires_at=now + ttl,
        )
        self._session.add(record)
        await self._session.flush()
        logger.info(
            "One-time token issued: purpose=%s, user_id=%s, hash=%s",
            purpose.value,
            user_id,
            record.token_hash[:8],
        )
        return token

    async def redeem(self, purpose: OneTimeTokenPurpose, token: str) -> UUID:
        """Consume a token.

        Returns:
            The owning user's id.

        Raises:
            UnauthorizedError: INVALID_TOKEN if the token is unknown, of
                another purpose, expired or already consumed.
        """
        token_hash = hash_token(token)
        now = self._clock()
        result = await self._session.execute(
            update(OneTimeToken)
            .where(
                OneTimeToken.token_hash == token_hash,
                OneTimeToken.purpose == purpose,
                OneTimeToken.consumed_at.is_(None),
                OneTimeToken.expires_at > now,
            )
            .values(consumed_at=now)
            .returning(OneTimeToken.user_id)
            .execution_options(synchronize_session=False)
        )
        user_id = result.scalar_one_or_none()
        if user_id is None:
            logger.info(
                "One-time token rejected: purpose=%s, hash=%s", purpose.value, token_hash[:8]
            )
            raise UnauthorizedError(AuthFailure.INVALID_TOKEN, "Invalid or expired token")
        logger.info("One-time token redeemed: purpose=%s, user_id=%s", purpose.value, user_id)
        return user_id

    async def issued_since(
        self,
        user_id: UUID,
        purpose: OneTimeTokenPurpose,
        since: datetime,
    ) -> bool:
        """Tell whether a token of this purpose was issued after ``since``."""
        found = await self._session.scalar(
            select(OneTimeToken.one_time_token_id)
            .where(
                OneTimeToken.user_id == user_id,
                OneTimeToken.purpose == purpose,
                OneTimeToken.created_at > since,
            )
            .limit(1)
        )
        return found is not None

    async def invalidate_outstanding(self, user_id: UUID, purpose: OneTimeTokenPurpose) -> int:
        """Consume every open token of a purpose for a user.

        Returns:
            Number of tokens invalidated.
        """
        result = await self._session.execute(
            update(OneTimeToken)
            .where(
                OneTimeToken.user_id == user_id,
                OneTimeToken.purpose == purpose,
                OneTimeToken.consumed_at.is_(None),
            )
            .values(consumed_at=self._clock())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def purge_expired(self, older_than: datetime | None = None) -> int:
        """Delete tokens that can no longer be redeemed.

        Args:
            older_than: Cutoff; defaults to now. Rows expired or consumed
                before it are deleted.

        Returns:
            Number of rows deleted.
        """
        cutoff = older_than or self._clock()
        result = await self._session.execute(
            delete(OneTimeToken)
            .where(
                or_(
                    OneTimeToken.expires_at <= cutoff,
                    OneTimeToken.consumed_at <= cutoff,
                )
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0
