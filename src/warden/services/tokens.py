"""Token service: signed bearer tokens with epoch-based revocation.

Tokens are HMAC-signed JWTs carrying ``sub, kind, iat, exp, jti, epoch, iss``.
Signature, kind and expiry are checked without touching the database.
Revocation has two layers:
- a per-jti revocation set (logout, refresh rotation), keyed by jti so
  membership is a primary-key lookup
- a per-user epoch; bumping it invalidates every token issued before

Every rejection raises the same UnauthorizedError. The internal reason is
logged and attached to the exception but never rendered to clients.
"""

from __future__ import annotations

import logging
import secrets
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

import jwt
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError

from warden.core.errors import AuthFailure, UnauthorizedError
from warden.db.models import RevokedToken, TokenKind, User
from warden.db.models.base import utcnow

if TYPE_CHECKING:
    from collections.abc import Callable

    from sqlalchemy.ext.asyncio import AsyncSession

    from warden.core.config import TokenSettings

logger = logging.getLogger(__name__)

REQUIRED_CLAIMS = ["sub", "kind", "iat", "exp", "jti", "epoch"]

# Reasons stored alongside revoked jtis
REASON_LOGOUT = "logout"
REASON_ROTATED = "rotated"


@dataclass(frozen=True, slots=True)
class TokenClaims:
    """Verified claims of a bearer token.

    Attributes:
        user_id: Subject of the token.
        kind: Access or refresh.
        jti: Unique token id.
        epoch: User epoch at issuance.
        issued_at: Issue time.
        expires_at: Expiry time (exclusive).
    """

    user_id: uuid.UUID
    kind: TokenKind
    jti: str
    epoch: int
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True, slots=True)
class TokenPair:
    """Access and refresh tokens issued together."""

    access_token: str
    refresh_token: str
    access_expires_at: datetime
    refresh_expires_at: datetime
    token_type: str = "Bearer"


def _reject(reason: AuthFailure, detail: str, jti: str | None = None) -> UnauthorizedError:
    logger.info("Token rejected: reason=%s, jti=%s, detail=%s", reason.value, jti or "-", detail)
    return UnauthorizedError(reason)


class TokenService:
    """Issue, validate, rotate and revoke bearer tokens.

    The service flushes and never commits; callers own the transaction.

    Example:
        tokens = TokenService(session, settings.tokens)
        pair = tokens.issue_pair(user)
        user, claims = await tokens.validate(pair.access_token, TokenKind.ACCESS)
    """

    def __init__(
        self,
        session: AsyncSession,
        settings: TokenSettings,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Initialize the token service.

        Args:
            session: Database session for revocation and user lookups.
            settings: Signing key, algorithm, issuer and TTLs.
            clock: Source of the current time, replaceable in tests.
        """
        self._session = session
        self._key = settings.signing_key.get_secret_value()
        self._algorithm = settings.algorithm
        self._issuer = settings.issuer
        self._access_ttl = timedelta(minutes=settings.access_ttl_minutes)
        self._refresh_ttl = timedelta(days=settings.refresh_ttl_days)
        self._clock = clock

    # -------------------------------------------------------------------------
    # Issuance
    # -------------------------------------------------------------------------

    def _encode(self, user: User, kind: TokenKind, issued_at: datetime) -> tuple[str, datetime]:
        ttl = self._access_ttl if kind is TokenKind.ACCESS else self._refresh_ttl
        expires_at = issued_at + ttl
        payload: dict[str, Any] = {
            "sub": str(user.user_id),
            "kind": kind.value,
            "iat": int(issued_at.timestamp()),
            "exp": int(expires_at.timestamp()),
            "jti": secrets.token_hex(16),
            "epoch": user.token_epoch,
            "iss": self._issuer,
        }
        token = jwt.encode(payload, self._key, algorithm=self._algorithm)
        return token, expires_at

    def issue_pair(self, user: User) -> TokenPair:
        """Issue an access/refresh pair bound to the user's current epoch."""
        # Whole seconds so the exp claim and expires_at agree exactly
        now = self._clock().replace(microsecond=0)
        access_token, access_expires_at = self._encode(user, TokenKind.ACCESS, now)
        refresh_token, refresh_expires_at = self._encode(user, TokenKind.REFRESH, now)
        logger.debug("Token pair issued: user_id=%s, epoch=%d", user.user_id, user.token_epoch)
        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            access_expires_at=access_expires_at,
            refresh_expires_at=refresh_expires_at,
        )

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------

    def decode(self, token: str, expected_kind: TokenKind) -> TokenClaims:
        """Verify signature, kind and expiry without database access.

        Args:
            token: Encoded token.
            expected_kind: Kind the caller requires.

        Returns:
            The verified claims.

        Raises:
            UnauthorizedError: INVALID_TOKEN or EXPIRED.
        """
        try:
            payload = jwt.decode(
                token,
                self._key,
                algorithms=[self._algorithm],
                issuer=self._issuer,
                # Expiry is checked below against the injectable clock
                options={"verify_exp": False, "verify_iat": False, "require": REQUIRED_CLAIMS},
            )
        except jwt.InvalidTokenError as exc:
            raise _reject(AuthFailure.INVALID_TOKEN, exc.__class__.__name__) from exc

        jti = payload.get("jti")
        try:
            kind = TokenKind(payload["kind"])
            user_id = uuid.UUID(str(payload["sub"]))
            epoch = payload["epoch"]
            exp = payload["exp"]
            iat = payload["iat"]
            numeric = all(isinstance(value, int | float) for value in (exp, iat))
            if not isinstance(epoch, int) or not numeric:
                raise TypeError("epoch, exp and iat must be numeric")
        except (TypeError, ValueError) as exc:
            raise _reject(AuthFailure.INVALID_TOKEN, "malformed claims", jti) from exc

        if kind is not expected_kind:
            raise _reject(AuthFailure.INVALID_TOKEN, f"kind {kind.value}", jti)

        # Strictly greater: a token is dead at its exp second
        if not exp > self._clock().timestamp():
            raise _reject(AuthFailure.EXPIRED, "expired", jti)

        return TokenClaims(
            user_id=user_id,
            kind=kind,
            jti=str(jti),
            epoch=epoch,
            issued_at=datetime.fromtimestamp(iat, tz=UTC),
            expires_at=datetime.fromtimestamp(exp, tz=UTC),
        )

    async def is_revoked(self, jti: str) -> bool:
        """Tell whether a jti is in the revocation set."""
        found = await self._session.scalar(
            select(RevokedToken.jti).where(RevokedToken.jti == jti)
        )
        return found is not None

    async def _resolve_user(self, claims: TokenClaims) -> User:
        user = await self._session.get(User, claims.user_id, populate_existing=True)
        if user is None:
            raise _reject(AuthFailure.INVALID_TOKEN, "unknown subject", claims.jti)
        if not user.is_active:
            raise _reject(AuthFailure.INACTIVE, "inactive user", claims.jti)
        if claims.epoch != user.token_epoch:
            raise _reject(AuthFailure.REVOKED, "stale epoch", claims.jti)
        return user

    async def validate(self, token: str, expected_kind: TokenKind) -> tuple[User, TokenClaims]:
        """Fully validate a token.

        Checks, in order: signature, kind, expiry, revocation set, user
        active, epoch.

        Returns:
            Tuple of (user, claims).

        Raises:
            UnauthorizedError: With the first failing reason.
        """
        claims = self.decode(token, expected_kind)
        if await self.is_revoked(claims.jti):
            raise _reject(AuthFailure.REVOKED, "revoked jti", claims.jti)
        user = await self._resolve_user(claims)
        return user, claims

    # -------------------------------------------------------------------------
    # Revocation
    # -------------------------------------------------------------------------

    async def revoke(self, claims: TokenClaims, reason: str = REASON_LOGOUT) -> bool:
        """Add a token to the revocation set until it would have expired.

        Returns:
            True if this call revoked it, False if it already was.
        """
        if await self.is_revoked(claims.jti):
            return False
        try:
            async with self._session.begin_nested():
                self._session.add(
                    RevokedToken(
                        jti=claims.jti,
                        user_id=claims.user_id,
                        token_kind=claims.kind,
                        expires_at=claims.expires_at,
                        reason=reason,
                    )
                )
        except IntegrityError:
            return False
        logger.info(
            "Token revoked: jti=%s, kind=%s, reason=%s", claims.jti, claims.kind.value, reason
        )
        return True

    async def rotate(self, refresh_token: str) -> tuple[User, TokenPair]:
        """Exchange a refresh token for a new pair, revoking the old one.

        Presenting a refresh token that was already revoked fails with
        REVOKED and is logged as a reuse. Tokens issued by earlier rotations
        stay valid; logout-all is what ends every session.

        Concurrent rotations of the same token race on the revocation
        insert; the loser fails with REVOKED.

        Returns:
            Tuple of (user, new pair). The caller commits.

        Raises:
            UnauthorizedError: If the refresh token is not acceptable.
        """
        claims = self.decode(refresh_token, TokenKind.REFRESH)

        if await self.is_revoked(claims.jti):
            logger.warning(
                "Revoked refresh token presented: user_id=%s, jti=%s",
                claims.user_id,
                claims.jti,
            )
            raise _reject(AuthFailure.REVOKED, "refresh token reuse", claims.jti)

        user = await self._resolve_user(claims)

        try:
            async with self._session.begin_nested():
                self._session.add(
                    RevokedToken(
                        jti=claims.jti,
                        user_id=claims.user_id,
                        token_kind=TokenKind.REFRESH,
                        expires_at=claims.expires_at,
                        reason=REASON_ROTATED,
                    )
                )
        except IntegrityError as exc:
            raise _reject(AuthFailure.REVOKED, "concurrent rotation", claims.jti) from exc

        return user, self.issue_pair(user)

    async def purge_expired(self) -> int:
        """Delete revocation entries for tokens that have expired anyway.

        Returns:
            Number of rows deleted.
        """
        result = await self._session.execute(
            delete(RevokedToken)
            .where(RevokedToken.expires_at <= self._clock())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0
