"""Authenticator: registration, login and the credential lifecycle.

The service owns the unit of work: each mutating operation commits once at
its end, and only then sends email and publishes events. Password hashing
always happens before the first write of an operation so no row lock is
held while argon2 runs.

Enumeration safety:
- login failures for unknown user, wrong password and inactive account are
  indistinguishable (same error, and the unknown-user branch performs a
  dummy verification)
- reset_password and resend_verification_email return nothing whether or
  not the account exists; over HTTP they run through AccountEmailRequests,
  detached from the request, so response time does not depend on the account
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING

from warden.core.errors import (
    AuthFailure,
    ConflictError,
    UnauthorizedError,
    ValidationFailedError,
)
from warden.db import get_async_session
from warden.db.models import OneTimeTokenPurpose, TokenKind
from warden.db.models.base import utcnow
from warden.services.authz import AuthorizationService, PermissionInfo
from warden.services.email import EmailError
from warden.services.events import AccountEvent, AccountEventType, publish_safely
from warden.services.one_time_tokens import OneTimeTokenLedger
from warden.services.rbac import RBACStore
from warden.services.tokens import REASON_LOGOUT, TokenClaims, TokenPair, TokenService
from warden.services.users import UserStore
from warden.services.validation import (
    email_error,
    normalize_email,
    validate_password,
    validate_registration,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from datetime import datetime
    from uuid import UUID

    from sqlalchemy.ext.asyncio import AsyncSession

    from warden.core.config import Settings
    from warden.db.models import User
    from warden.services.background import BackgroundRunner
    from warden.services.email import AccountMailer
    from warden.services.events import EventPublisher
    from warden.services.passwords import PasswordHasher

logger = logging.getLogger(__name__)

LOGIN_FAILED_MESSAGE = "Invalid email or password"


@dataclass(frozen=True, slots=True)
class AuthResult:
    """A user with a freshly issued token pair."""

    user: User
    tokens: TokenPair


@dataclass(frozen=True, slots=True)
class Profile:
    """A user with their effective roles and permissions."""

    user: User
    roles: list[str]
    permissions: list[PermissionInfo]


class AuthService:
    """Authentication operations over the stores and the token service.

    Example:
        service = AuthService(session, settings, hasher=hasher, mailer=mailer)
        result = await service.register("a@x.io", "Alice", None, "Passw0rd!")
        result = await service.login("a@x.io", "Passw0rd!")
        pair = await service.refresh(result.tokens.refresh_token)
    """

    def __init__(
        self,
        session: AsyncSession,
        settings: Settings,
        *,
        hasher: PasswordHasher,
        mailer: AccountMailer | None = None,
        publisher: EventPublisher | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Initialize the service.

        Args:
            session: Primary database session; committed by this service.
            settings: Application settings.
            hasher: Password hasher.
            mailer: Account mailer; None disables emails.
            publisher: Event publisher; None disables events.
            clock: Source of the current time.
        """
        self._session = session
        self._settings = settings
        self._hasher = hasher
        self._mailer = mailer
        self._publisher = publisher
        self._clock = clock

        self._users = UserStore(session)
        self._rbac = RBACStore(session)
        self.tokens = TokenService(session, settings.tokens, clock=clock)
        self._ledger = OneTimeTokenLedger(session, clock=clock)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    async def _publish(
        self, event_type: AccountEventType, user_id: UUID, **details: object
    ) -> None:
        await publish_safely(self._publisher, AccountEvent(event_type, user_id, dict(details)))

    async def _issue_verification(self, user: User) -> str:
        ttl = timedelta(hours=self._settings.security.verification_ttl_hours)
        return await self._ledger.issue(OneTimeTokenPurpose.VERIFY_EMAIL, user.user_id, ttl)

    async def _send_verification(self, user: User, token: str) -> None:
        if self._mailer is None:
            return
        try:
            await self._mailer.send_verification(
                user.email,
                user.name,
                token,
                ttl_hours=self._settings.security.verification_ttl_hours,
            )
        except EmailError:
            logger.exception("Verification email failed: user_id=%s", user.user_id)

    async def _send_reset(self, user: User, token: str) -> None:
        if self._mailer is None:
            return
        try:
            await self._mailer.send_password_reset(
                user.email,
                user.name,
                token,
                ttl_minutes=self._settings.security.reset_ttl_minutes,
            )
        except EmailError:
            logger.exception("Password reset email failed: user_id=%s", user.user_id)

    async def _throttled(self, user: User, purpose: OneTimeTokenPurpose) -> bool:
        cooldown = self._settings.security.resend_cooldown_seconds
        if cooldown <= 0:
            return False
        since = self._clock() - timedelta(seconds=cooldown)
        return await self._ledger.issued_since(user.user_id, purpose, since)

    # -------------------------------------------------------------------------
    # Registration and login
    # -------------------------------------------------------------------------

    async def register(
        self,
        email: str,
        name: str,
        phone: str | None,
        password: str,
    ) -> AuthResult:
        """Create an account and sign it in.

        Raises:
            ValidationFailedError: If any field is invalid.
            ConflictError: If the email is already registered.
        """
        email = normalize_email(email)
        validate_registration(email, name, phone, password)
        # Cheap pre-check so duplicates do not pay for hashing
        await self._ensure_email_available(email)

        password_hash = await self._hasher.hash(password)
        user = await self._users.create(
            email=email, name=name, phone=phone, password_hash=password_hash
        )

        default_role = self._settings.security.default_role
        if default_role:
            role = await self._rbac.find_role_by_name(default_role)
            if role is not None and role.is_active:
                await self._rbac.assign_role(user.user_id, role.role_id)
            else:
                logger.warning("Default role missing or inactive: %s", default_role)

        tokens = self.tokens.issue_pair(user)
        verification_token = await self._issue_verification(user)
        await self._session.commit()

        logger.info("User registered: user_id=%s", user.user_id)
        await self._send_verification(user, verification_token)
        await self._publish(AccountEventType.USER_REGISTERED, user.user_id)
        return AuthResult(user=user, tokens=tokens)

    async def _ensure_email_available(self, email: str) -> None:
        if await self._users.find_by_email(email) is not None:
            # Same error the store raises on a lost race
            raise ConflictError("Email already registered", code="EMAIL_EXISTS")

    async def login(self, email: str, password: str) -> AuthResult:
        """Verify credentials and issue tokens.

        Raises:
            UnauthorizedError: For unknown email, wrong password or inactive
                account, all with the same message.
        """
        user = await self._users.find_by_email(email)
        if user is None:
            await self._hasher.verify_dummy(password)
            logger.info("Login failed: reason=unknown_user")
            raise UnauthorizedError(AuthFailure.INVALID_CREDENTIALS, LOGIN_FAILED_MESSAGE)

        if not await self._hasher.verify(user.password_hash, password):
            logger.info("Login failed: reason=bad_password, user_id=%s", user.user_id)
            raise UnauthorizedError(AuthFailure.INVALID_CREDENTIALS, LOGIN_FAILED_MESSAGE)

        if not user.is_active:
            logger.info("Login failed: reason=inactive, user_id=%s", user.user_id)
            raise UnauthorizedError(AuthFailure.INACTIVE, LOGIN_FAILED_MESSAGE)

        if self._hasher.needs_rehash(user.password_hash):
            new_hash = await self._hasher.hash(password)
            await self._users.set_password(user.user_id, new_hash, revoke_tokens=False)
            logger.info("Password rehashed with current parameters: user_id=%s", user.user_id)

        await self._users.record_login(user.user_id)
        user = await self._users.get_by_id(user.user_id)
        tokens = self.tokens.issue_pair(user)
        await self._session.commit()

        logger.info("Login succeeded: user_id=%s", user.user_id)
        await self._publish(AccountEventType.USER_LOGGED_IN, user.user_id)
        return AuthResult(user=user, tokens=tokens)

    async def refresh(self, refresh_token: str) -> TokenPair:
        """Rotate a refresh token into a new pair.

        Raises:
            UnauthorizedError: If the refresh token is not acceptable.
        """
        user, tokens = await self.tokens.rotate(refresh_token)
        await self._session.commit()
        logger.info("Tokens refreshed: user_id=%s", user.user_id)
        return tokens

    # -------------------------------------------------------------------------
    # Logout
    # -------------------------------------------------------------------------

    async def logout(
        self,
        user_id: UUID,
        access_claims: TokenClaims,
        refresh_token: str | None = None,
    ) -> None:
        """Revoke the current access token and, if given, its refresh token.

        A refresh token that is invalid or belongs to another user is
        ignored; logout itself always succeeds.
        """
        await self.tokens.revoke(access_claims, REASON_LOGOUT)
        if refresh_token:
            try:
                refresh_claims = self.tokens.decode(refresh_token, TokenKind.REFRESH)
            except UnauthorizedError:
                logger.info("Logout ignored unusable refresh token: user_id=%s", user_id)
            else:
                if refresh_claims.user_id == user_id:
                    await self.tokens.revoke(refresh_claims, REASON_LOGOUT)
        await self._session.commit()
        await self._publish(AccountEventType.USER_LOGGED_OUT, user_id)

    async def logout_all(self, user_id: UUID) -> None:
        """Invalidate every token of the user by bumping the epoch."""
        await self._users.increment_epoch(user_id)
        await self._session.commit()
        await self._publish(AccountEventType.USER_LOGGED_OUT_ALL, user_id)

    # -------------------------------------------------------------------------
    # Passwords
    # -------------------------------------------------------------------------

    async def change_password(
        self,
        user_id: UUID,
        old_password: str,
        new_password: str,
    ) -> TokenPair:
        """Change the password and end every other session.

        Returns:
            A fresh token pair for the caller, bound to the new epoch.

        Raises:
            ValidationFailedError: If the new password is invalid.
            UnauthorizedError: If the old password does not match.
        """
        validate_password(new_password)
        if old_password == new_password:
            raise ValidationFailedError.for_fields(
                {"new_password": "New password must differ from the current password"}
            )

        user = await self._users.get_by_id(user_id)
        if not await self._hasher.verify(user.password_hash, old_password):
            logger.info("Password change rejected: reason=bad_password, user_id=%s", user_id)
            raise UnauthorizedError(
                AuthFailure.INVALID_CREDENTIALS, "Current password is incorrect"
            )

        new_hash = await self._hasher.hash(new_password)
        await self._users.set_password(user_id, new_hash)
        user = await self._users.get_by_id(user_id)
        tokens = self.tokens.issue_pair(user)
        await self._session.commit()

        await self._publish(AccountEventType.USER_PASSWORD_CHANGED, user_id)
        return tokens

    async def reset_password(self, email: str) -> None:
        """Email a reset link if the account exists and is active.

        Reveals nothing: returns the same way for every input.
        """
        email = normalize_email(email)
        if email_error(email):
            return
        user = await self._users.find_by_email(email)
        if user is None or not user.is_active:
            logger.info("Password reset requested for unknown or inactive account")
            return
        if await self._throttled(user, OneTimeTokenPurpose.RESET_PASSWORD):
            logger.info("Password reset throttled: user_id=%s", user.user_id)
            return

        ttl = timedelta(minutes=self._settings.security.reset_ttl_minutes)
        token = await self._ledger.issue(OneTimeTokenPurpose.RESET_PASSWORD, user.user_id, ttl)
        await self._session.commit()
        await self._send_reset(user, token)

    async def confirm_password_reset(self, token: str, new_password: str) -> None:
        """Set a new password using a reset token.

        Raises:
            ValidationFailedError: If the new password is invalid.
            UnauthorizedError: If the token is invalid, expired or used.
        """
        validate_password(new_password)
        new_hash = await self._hasher.hash(new_password)

        user_id = await self._ledger.redeem(OneTimeTokenPurpose.RESET_PASSWORD, token)
        user = await self._users.find_by_id(user_id)
        if user is None or not user.is_active:
            raise UnauthorizedError(AuthFailure.INACTIVE, "Invalid or expired token")

        await self._users.set_password(user_id, new_hash)
        await self._ledger.invalidate_outstanding(user_id, OneTimeTokenPurpose.RESET_PASSWORD)
        await self._session.commit()

        logger.info("Password reset completed: user_id=%s", user_id)
        await self._publish(AccountEventType.USER_PASSWORD_RESET, user_id)

    # -------------------------------------------------------------------------
    # Email verification
    # -------------------------------------------------------------------------

    async def verify_email(self, token: str) -> None:
        """Mark the token owner's email as verified.

        Raises:
            UnauthorizedError: If the token is invalid, expired or used.
        """
        user_id = await self._ledger.redeem(OneTimeTokenPurpose.VERIFY_EMAIL, token)
        flipped = await self._users.mark_verified(user_id)
        await self._session.commit()
        if flipped:
            logger.info("Email verified: user_id=%s", user_id)
            await self._publish(AccountEventType.USER_EMAIL_VERIFIED, user_id)

    async def resend_verification_email(self, email: str) -> None:
        """Send a new verification link to an unverified account.

        Reveals nothing: returns the same way for every input.
        """
        email = normalize_email(email)
        if email_error(email):
            return
        user = await self._users.find_by_email(email)
        if user is None or not user.is_active or user.is_verified:
            return
        if await self._throttled(user, OneTimeTokenPurpose.VERIFY_EMAIL):
            logger.info("Verification resend throttled: user_id=%s", user.user_id)
            return

        token = await self._issue_verification(user)
        await self._session.commit()
        await self._send_verification(user, token)

    # -------------------------------------------------------------------------
    # Profile
    # -------------------------------------------------------------------------

    async def get_profile(self, user_id: UUID) -> Profile:
        """Return the user with effective roles and permissions."""
        user = await self._users.get_by_id(user_id)
        authz = AuthorizationService(self._session, clock=self._clock)
        return Profile(
            user=user,
            roles=await authz.get_user_roles(user_id),
            permissions=await authz.get_effective_permissions(user_id),
        )


class AccountEmailRequests:
    """Run password-reset and verification-resend requests off the request path.

    Account lookup, throttling, token issue and delivery all depend on
    whether the email belongs to an account. The handler only schedules
    the work, so every input is answered after the same steps; the job
    runs later in a detached task with its own session.

    Example:
        requests = AccountEmailRequests(settings, runner, hasher=hasher, mailer=mailer)
        requests.request_password_reset("a@x.io")
    """

    def __init__(
        self,
        settings: Settings,
        runner: BackgroundRunner,
        *,
        hasher: PasswordHasher,
        mailer: AccountMailer | None = None,
        publisher: EventPublisher | None = None,
    ) -> None:
        self._settings = settings
        self._runner = runner
        self._hasher = hasher
        self._mailer = mailer
        self._publisher = publisher

    def request_password_reset(self, email: str) -> None:
        self._runner.submit(
            self._run(lambda auth: auth.reset_password(email)), name="password-reset"
        )

    def request_verification_email(self, email: str) -> None:
        self._runner.submit(
            self._run(lambda auth: auth.resend_verification_email(email)),
            name="verification-resend",
        )

    async def _run(self, action: Callable[[AuthService], Awaitable[None]]) -> None:
        async with get_async_session() as session:
            service = AuthService(
                session,
                self._settings,
                hasher=self._hasher,
                mailer=self._mailer,
                publisher=self._publisher,
            )
            await action(service)
