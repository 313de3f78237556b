"""Password hashing with argon2id.

Hashing and verification are CPU-bound, so they run in a worker thread and
never block the event loop. Callers must not hold a database row lock while
awaiting them.

Unknown-user login attempts verify against a dummy hash so existing and
non-existing accounts take the same time to reject.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
from typing import TYPE_CHECKING

from argon2 import PasswordHasher as Argon2Hasher
from argon2 import Type
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError

if TYPE_CHECKING:
    from warden.core.config import SecuritySettings

logger = logging.getLogger(__name__)


class PasswordHasher:
    """argon2id hasher with async helpers.

    Example:
        hasher = PasswordHasher.from_settings(settings.security)
        stored = await hasher.hash("Passw0rd!")
        ok = await hasher.verify(stored, "Passw0rd!")
    """

    def __init__(
        self,
        *,
        time_cost: int = 3,
        memory_cost: int = 65536,
        parallelism: int = 4,
    ) -> None:
        self._hasher = Argon2Hasher(
            time_cost=time_cost,
            memory_cost=memory_cost,
            parallelism=parallelism,
            type=Type.ID,
        )
        self._dummy_hash: str | None = None

    @classmethod
    def from_settings(cls, settings: SecuritySettings) -> PasswordHasher:
        """Create a hasher from SecuritySettings."""
        return cls(
            time_cost=settings.argon2_time_cost,
            memory_cost=settings.argon2_memory_cost,
            parallelism=settings.argon2_parallelism,
        )

    async def hash(self, password: str) -> str:
        """Hash a password off the event loop."""
        return await asyncio.to_thread(self._hasher.hash, password)

    def _verify_sync(self, stored_hash: str, password: str) -> bool:
        try:
            return self._hasher.verify(stored_hash, password)
        except VerifyMismatchError:
            return False
        except (InvalidHashError, VerificationError):
            logger.warning("Stored password hash could not be verified")
            return False

    async def verify(self, stored_hash: str, password: str) -> bool:
        """Verify a password against a stored hash.

        Returns:
            True on match, False on mismatch or malformed hash.
        """
        return await asyncio.to_thread(self._verify_sync, stored_hash, password)

    async def verify_dummy(self, password: str) -> bool:
        """Spend the same effort as a real verification and return False."""
        if self._dummy_hash is None:
            self._dummy_hash = await self.hash(secrets.token_urlsafe(16))
        await self.verify(self._dummy_hash, password)
        return False

    def needs_rehash(self, stored_hash: str) -> bool:
        """Tell whether a hash was made with outdated parameters."""
        try:
            return self._hasher.check_needs_rehash(stored_hash)
        except InvalidHashError:
            return True
