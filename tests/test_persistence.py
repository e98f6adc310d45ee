"""Tests for the SQL identity store and the database audit sink."""

from __future__ import annotations

from collections.abc import AsyncIterator
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.core.database.base import Base, generate_ulid
from app.features.audit.events import ALLOW, AuditEvent, AuditSinkUnavailable
from app.features.audit.models import AuditLog
from app.features.audit.sinks import DatabaseAuditSink
from app.features.throttling.lockout import LockoutTracker, LockState
from app.features.users.identity import IdentityNotFound
from app.features.users.models import User
from app.features.users.repository import SqlIdentityStore


@pytest_asyncio.fixture
async def session_factory(tmp_path: Path) -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'store.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        session.add(User(id="u1", email="u1@example.com", name="User One", role="director"))
        await session.commit()
    yield factory
    await engine.dispose()


def test_models_share_one_registry_with_ulid_ids() -> None:
    first, second = generate_ulid(), generate_ulid()

    assert len(first) == 26
    assert first != second
    assert {"users", "audit_logs"} <= set(Base.metadata.tables)


@pytest.mark.asyncio
async def test_get_identity(session_factory) -> None:
    store = SqlIdentityStore(session_factory)

    identity = await store.get_identity("u1")

    assert identity.role == "director"
    assert identity.is_active
    assert identity.failed_login_attempts == 0
    assert await store.get_identity("missing") is None


@pytest.mark.asyncio
async def test_failure_counter_and_lock_round_trip(session_factory) -> None:
    store = SqlIdentityStore(session_factory)

    assert await store.register_failure("u1") == 1
    assert await store.register_failure("u1") == 2

    until = datetime.now(timezone.utc) + timedelta(minutes=15)
    await store.lock("u1", until)
    identity = await store.get_identity("u1")
    assert identity.locked_until.tzinfo is not None
    assert abs(identity.locked_until - until) < timedelta(seconds=1)

    assert await store.register_failure("u1", restart=True) == 1
    assert (await store.get_identity("u1")).locked_until is None


@pytest.mark.asyncio
async def test_reset_failures_records_login(session_factory) -> None:
    store = SqlIdentityStore(session_factory)
    await store.register_failure("u1")

    login_at = datetime.now(timezone.utc)
    await store.reset_failures("u1", login_at=login_at)

    identity = await store.get_identity("u1")
    assert identity.failed_login_attempts == 0
    assert identity.last_login_at is not None


@pytest.mark.asyncio
async def test_updates_on_unknown_identity_raise(session_factory) -> None:
    store = SqlIdentityStore(session_factory)

    with pytest.raises(IdentityNotFound):
        await store.register_failure("missing")
    with pytest.raises(IdentityNotFound):
        await store.set_role("missing", "client")
    with pytest.raises(IdentityNotFound):
        await store.set_active("missing", False)


@pytest.mark.asyncio
async def test_set_role_and_list(session_factory) -> None:
    store = SqlIdentityStore(session_factory)

    updated = await store.set_role("u1", "client")
    listed = await store.list_identities()

    assert updated.role == "client"
    assert [i.id for i in listed] == ["u1"]


@pytest.mark.asyncio
async def test_set_active_round_trip(session_factory) -> None:
    store = SqlIdentityStore(session_factory)

    disabled = await store.set_active("u1", False)
    assert disabled.is_active is False
    assert (await store.get_identity("u1")).is_active is False

    assert (await store.set_active("u1", True)).is_active is True


@pytest.mark.asyncio
async def test_lockout_tracker_over_sql_store(session_factory) -> None:
    tracker = LockoutTracker(SqlIdentityStore(session_factory), threshold=2, lock_seconds=60)

    await tracker.report_failure("u1")
    assert await tracker.report_failure("u1") is LockState.LOCKED
    assert tracker.is_locked(await tracker.store.get_identity("u1"))

    await tracker.report_success("u1")
    assert not tracker.is_locked(await tracker.store.get_identity("u1"))


@pytest.mark.asyncio
async def test_database_sink_stores_rows(session_factory) -> None:
    sink = DatabaseAuditSink(session_factory)

    await sink.write(AuditEvent(
        path="/users/me",
        method="GET",
        outcome=ALLOW,
        reason="Granted",
        identity_id="u1",
        role="director",
        detail={"rule": "/users/me"},
        ip_address="127.0.0.1",
    ))

    async with session_factory() as session:
        rows = (await session.execute(select(AuditLog))).scalars().all()
    assert len(rows) == 1
    assert rows[0].user_id == "u1"
    assert rows[0].reason == "Granted"
    assert rows[0].details == {"rule": "/users/me"}


@pytest.mark.asyncio
async def test_database_sink_wraps_errors(tmp_path: Path) -> None:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'empty.db'}")
    sink = DatabaseAuditSink(async_sessionmaker(engine, class_=AsyncSession))

    with pytest.raises(AuditSinkUnavailable):
        await sink.write(AuditEvent(path="/", method="GET", outcome=ALLOW, reason="Granted"))
    await engine.dispose()
