"""
Account lockout after repeated authentication failures.

An identity is Locked while its `locked_until` lies in the future. Expiry is
checked lazily whenever the identity is read; nothing runs in the background.
"""
import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import AsyncIterator, Callable, Dict, Optional, Tuple

from app.features.users.identity import Identity, IdentityNotFound, IdentityStore
from app.utils import get_logger


log = get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LockState(str, Enum):
    ACTIVE = "active"
    LOCKED = "locked"


class LockoutTracker:
    """
    Tracks failed authentications and locks accounts over the threshold.

    Args:
        store: Identity store holding the counters
        threshold: Consecutive failures that lock the account
        lock_seconds: How long a lock lasts
        clock: Returns the current aware UTC datetime
    """

    def __init__(
        self,
        store: IdentityStore,
        threshold: int = 5,
        lock_seconds: int = 900,
        clock: Callable[[], datetime] = utcnow,
    ):
        if threshold < 1:
            raise ValueError("Lockout threshold must be at least 1")
        self.store = store
        self.threshold = threshold
        self.lock_duration = timedelta(seconds=lock_seconds)
        self._clock = clock
        # identity id -> (lock, number of callers holding or waiting on it)
        self._locks: Dict[str, Tuple[asyncio.Lock, int]] = {}

    @asynccontextmanager
    async def _serialized(self, identity_id: str) -> AsyncIterator[None]:
        """Serialize updates per identity; the entry is dropped once unused."""
        entry = self._locks.get(identity_id)
        lock, users = entry if entry is not None else (asyncio.Lock(), 0)
        self._locks[identity_id] = (lock, users + 1)
        try:
            async with lock:
                yield
        finally:
            lock, users = self._locks[identity_id]
            if users <= 1:
                del self._locks[identity_id]
            else:
                self._locks[identity_id] = (lock, users - 1)

    def is_locked(self, identity: Identity, now: Optional[datetime] = None) -> bool:
        if identity.locked_until is None:
            return False
        return identity.locked_until > (now or self._clock())

    def state(self, identity: Identity) -> LockState:
        return LockState.LOCKED if self.is_locked(identity) else LockState.ACTIVE

    async def report_failure(self, identity_id: str) -> LockState:
        """
        Record a failed credential check.

        Raises:
            IdentityNotFound: If the identity does not exist
        """
        async with self._serialized(identity_id):
            identity = await self.store.get_identity(identity_id)
            if identity is None:
                raise IdentityNotFound(identity_id)

            now = self._clock()
            if self.is_locked(identity, now):
                # Failures while locked do not extend the lock.
                await self.store.register_failure(identity_id)
                return LockState.LOCKED

            expired = identity.locked_until is not None
            attempts = await self.store.register_failure(identity_id, restart=expired)
            if attempts >= self.threshold:
                until = now + self.lock_duration
                await self.store.lock(identity_id, until)
                log.warning(
                    "Identity %s locked until %s after %d failed attempts",
                    identity_id, until.isoformat(), attempts,
                )
                return LockState.LOCKED

            log.info("Failed authentication for %s (%d/%d)", identity_id, attempts, self.threshold)
            return LockState.ACTIVE

    async def report_success(self, identity_id: str) -> LockState:
        """
        Record a successful authentication: counter to zero, lock cleared.

        Raises:
            IdentityNotFound: If the identity does not exist
        """
        async with self._serialized(identity_id):
            identity = await self.store.get_identity(identity_id)
            if identity is None:
                raise IdentityNotFound(identity_id)
            await self.store.reset_failures(identity_id, login_at=self._clock())
            if identity.failed_login_attempts or identity.locked_until:
                log.info("Lockout state cleared for %s", identity_id)
            return LockState.ACTIVE

    async def unlock(self, identity_id: str) -> None:
        """Administrative reset without recording a login."""
        async with self._serialized(identity_id):
            identity = await self.store.get_identity(identity_id)
            if identity is None:
                raise IdentityNotFound(identity_id)
            await self.store.reset_failures(identity_id)
            log.info("Identity %s unlocked by administrator", identity_id)
