"""
Identity records as seen by the authorization core.

User records are owned by user management. The core reads them through
`IdentityStore`, which also updates the failed login counter, the role and
the active flag.
"""
import threading
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Dict, Optional, Protocol


@dataclass(frozen=True)
class Identity:
    """
    Snapshot of an authenticated caller.

    Attributes:
        id: Opaque user identifier
        role: Stored role value (may be unknown to this deployment)
        is_active: Whether the account is enabled
        failed_login_attempts: Consecutive failed authentications
        locked_until: Lock expiry, None when not locked
        last_login_at: Last successful authentication
    """
    id: str
    role: Optional[str]
    is_active: bool = True
    failed_login_attempts: int = 0
    locked_until: Optional[datetime] = None
    last_login_at: Optional[datetime] = None


class IdentityNotFound(LookupError):
    """Raised when an identity id is unknown to the store."""

    def __init__(self, identity_id: str):
        self.identity_id = identity_id
        super().__init__(f"Identity {identity_id} not found")


class IdentityStore(Protocol):
    """Narrow interface onto user records."""

    async def get_identity(self, identity_id: str) -> Optional[Identity]:
        ...

    async def register_failure(self, identity_id: str, restart: bool = False) -> int:
        """Increment the failed counter (from zero if `restart`) and return it."""
        ...

    async def lock(self, identity_id: str, until: datetime) -> None:
        ...

    async def reset_failures(self, identity_id: str, login_at: Optional[datetime] = None) -> None:
        """Zero the counter and clear any lock; record `login_at` if given."""
        ...

    async def set_role(self, identity_id: str, role: str) -> Identity:
        ...

    async def set_active(self, identity_id: str, is_active: bool) -> Identity:
        """Enable or disable the account."""
        ...

    async def list_identities(self, skip: int = 0, limit: int = 50) -> list[Identity]:
        ...


class InMemoryIdentityStore:
    """Dictionary-backed identity store for single-process use and tests."""

    def __init__(self, identities: Optional[Dict[str, Identity]] = None):
        self._identities: Dict[str, Identity] = dict(identities or {})
        self._lock = threading.Lock()

    def add(self, identity: Identity) -> Identity:
        with self._lock:
            self._identities[identity.id] = identity
        return identity

    async def list_identities(self, skip: int = 0, limit: int = 50) -> list[Identity]:
        with self._lock:
            return list(self._identities.values())[skip:skip + limit]

    def _require(self, identity_id: str) -> Identity:
        identity = self._identities.get(identity_id)
        if identity is None:
            raise IdentityNotFound(identity_id)
        return identity

    async def get_identity(self, identity_id: str) -> Optional[Identity]:
        with self._lock:
            return self._identities.get(identity_id)

    async def register_failure(self, identity_id: str, restart: bool = False) -> int:
        with self._lock:
            identity = self._require(identity_id)
            attempts = 1 if restart else identity.failed_login_attempts + 1
            changes = {"failed_login_attempts": attempts}
            if restart:
                changes["locked_until"] = None
            self._identities[identity_id] = replace(identity, **changes)
            return attempts

    async def lock(self, identity_id: str, until: datetime) -> None:
        with self._lock:
            identity = self._require(identity_id)
            self._identities[identity_id] = replace(identity, locked_until=until)

    async def reset_failures(self, identity_id: str, login_at: Optional[datetime] = None) -> None:
        with self._lock:
            identity = self._require(identity_id)
            self._identities[identity_id] = replace(
                identity,
                failed_login_attempts=0,
                locked_until=None,
                last_login_at=login_at or identity.last_login_at,
            )

    async def set_role(self, identity_id: str, role: str) -> Identity:
        with self._lock:
            identity = replace(self._require(identity_id), role=role)
            self._identities[identity_id] = identity
            return identity

    async def set_active(self, identity_id: str, is_active: bool) -> Identity:
        with self._lock:
            identity = replace(self._require(identity_id), is_active=is_active)
            self._identities[identity_id] = identity
            return identity
