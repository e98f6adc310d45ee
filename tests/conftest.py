"""Shared pytest fixtures for authorization tests."""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

# Settings are module-level constants read on first import of app.core.config,
# so the environment has to be in place before anything under app/ is imported.
_DATA_DIR = Path(tempfile.mkdtemp(prefix="authz-tests-"))
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_DATA_DIR / 'test.db'}"
os.environ["SESSION_SECRET"] = "test-session-secret-with-enough-length-for-hs256"
os.environ["AUTH_SERVICE_KEY"] = "test-service-key"
os.environ["LOG_LEVEL"] = "DEBUG"
os.environ["RATE_LIMIT_STORAGE_URI"] = "memory://"
os.environ.pop("ENVIRONMENT", None)
os.environ.pop("ROUTE_RULES_FILE", None)
os.environ.pop("DEFAULT_ROUTE_ROLE", None)

import pytest  # noqa: E402

from app.features.audit.emitter import AuditEmitter  # noqa: E402
from app.features.audit.sinks import MemoryAuditSink  # noqa: E402
from app.features.guard.guard import AuthorizationGuard  # noqa: E402
from app.features.permissions.resolver import resolver  # noqa: E402
from app.features.policies.rules import (  # noqa: E402
    DEFAULT_ROUTE_RULES,
    RoutePolicyMatcher,
    build_rules,
)
from app.features.throttling.limiter import FixedWindowRateLimiter  # noqa: E402
from app.features.throttling.lockout import LockoutTracker  # noqa: E402
from app.features.users.auth import JWTSessionLookup, issue_session_token  # noqa: E402
from app.features.users.identity import Identity, InMemoryIdentityStore  # noqa: E402

SESSION_SECRET = os.environ["SESSION_SECRET"]

ROLES = ("admin", "director", "team", "client", "builder")


class Clock:
    """Manually advanced clock for window and lock expiry."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now


@dataclass
class GuardKit:
    guard: AuthorizationGuard
    store: InMemoryIdentityStore
    sink: MemoryAuditSink
    emitter: AuditEmitter
    limiter: FixedWindowRateLimiter
    lockout: LockoutTracker


def token_for(identity_id: str, expires_in: int = 3600) -> str:
    return issue_session_token(identity_id, expires_in=expires_in, secret=SESSION_SECRET)


def auth_headers(identity_id: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token_for(identity_id)}"}


def seeded_store() -> InMemoryIdentityStore:
    """One active user per role, with the role name as id."""
    store = InMemoryIdentityStore()
    for role in ROLES:
        store.add(Identity(id=role, role=role))
    return store


def build_kit(
    store: InMemoryIdentityStore | None = None,
    max_requests: int = 60,
    window_seconds: int = 60,
    threshold: int = 3,
) -> GuardKit:
    store = store or seeded_store()
    sink = MemoryAuditSink()
    emitter = AuditEmitter(sink)
    limiter = FixedWindowRateLimiter(max_requests, window_seconds)
    lockout = LockoutTracker(store, threshold=threshold, lock_seconds=900)
    guard = AuthorizationGuard(
        matcher=RoutePolicyMatcher(build_rules(DEFAULT_ROUTE_RULES)),
        resolver=resolver,
        sessions=JWTSessionLookup(secret=SESSION_SECRET),
        identities=store,
        limiter=limiter,
        lockout=lockout,
        emitter=emitter,
        login_path="/login",
    )
    return GuardKit(guard, store, sink, emitter, limiter, lockout)


@pytest.fixture
def kit() -> GuardKit:
    """Guard wired to in-memory collaborators."""

    return build_kit()
