"""
SQL-backed identity store over the users table.
"""
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.features.users.identity import Identity, IdentityNotFound
from app.features.users.models import User


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def to_identity(user: User) -> Identity:
    return Identity(
        id=user.id,
        role=user.role,
        is_active=user.is_active,
        failed_login_attempts=user.failed_login_attempts or 0,
        locked_until=_aware(user.locked_until),
        last_login_at=_aware(user.last_login_at),
    )


class SqlIdentityStore:
    """
    Identity store backed by the users table.

    Counter updates are single UPDATE statements, so concurrent reports for
    the same user are serialised by the database.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get_identity(self, identity_id: str) -> Optional[Identity]:
        async with self._session_factory() as session:
            result = await session.execute(select(User).where(User.id == identity_id))
            user = result.scalar_one_or_none()
            return to_identity(user) if user is not None else None

    async def _update(self, session: AsyncSession, identity_id: str, **values) -> None:
        result = await session.execute(
            update(User).where(User.id == identity_id).values(**values)
        )
        if result.rowcount == 0:
            raise IdentityNotFound(identity_id)

    async def register_failure(self, identity_id: str, restart: bool = False) -> int:
        async with self._session_factory() as session:
            if restart:
                await self._update(session, identity_id, failed_login_attempts=1, locked_until=None)
            else:
                await self._update(
                    session, identity_id,
                    failed_login_attempts=User.failed_login_attempts + 1,
                )
            result = await session.execute(
                select(User.failed_login_attempts).where(User.id == identity_id)
            )
            attempts = result.scalar_one()
            await session.commit()
            return attempts

    async def lock(self, identity_id: str, until: datetime) -> None:
        async with self._session_factory() as session:
            await self._update(session, identity_id, locked_until=until)
            await session.commit()

    async def reset_failures(self, identity_id: str, login_at: Optional[datetime] = None) -> None:
        values = {"failed_login_attempts": 0, "locked_until": None}
        if login_at is not None:
            values["last_login_at"] = login_at
        async with self._session_factory() as session:
            await self._update(session, identity_id, **values)
            await session.commit()

    async def set_role(self, identity_id: str, role: str) -> Identity:
        async with self._session_factory() as session:
            await self._update(session, identity_id, role=role)
            await session.commit()
            result = await session.execute(select(User).where(User.id == identity_id))
            return to_identity(result.scalar_one())

    async def set_active(self, identity_id: str, is_active: bool) -> Identity:
        async with self._session_factory() as session:
            await self._update(session, identity_id, is_active=is_active)
            await session.commit()
            result = await session.execute(select(User).where(User.id == identity_id))
            return to_identity(result.scalar_one())

    async def list_identities(self, skip: int = 0, limit: int = 50) -> list[Identity]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(User).order_by(User.created_at).offset(skip).limit(limit)
            )
            return [to_identity(user) for user in result.scalars().all()]
