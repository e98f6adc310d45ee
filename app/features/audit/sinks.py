"""
Audit sink implementations.
"""
from typing import List

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.features.audit.events import AuditEvent, AuditSinkUnavailable
from app.features.audit.models import AuditLog
from app.utils import get_logger


log = get_logger(__name__)


class DatabaseAuditSink:
    """Stores each event as one row in the audit_logs table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def write(self, event: AuditEvent) -> None:
        row = AuditLog(
            occurred_at=event.timestamp,
            path=event.path[:2048],
            method=event.method,
            user_id=event.identity_id,
            user_role=event.role,
            outcome=event.outcome,
            reason=event.reason,
            details=dict(event.detail) or None,
            ip_address=event.ip_address,
            user_agent=(event.user_agent or "")[:255] or None,
        )
        try:
            async with self._session_factory() as session:
                session.add(row)
                await session.commit()
        except SQLAlchemyError as e:
            raise AuditSinkUnavailable(f"Failed to store audit event: {e}") from e


class LoggingAuditSink:
    """Writes events to the application log."""

    def __init__(self, logger_name: str = "audit"):
        self._log = get_logger(logger_name)

    async def write(self, event: AuditEvent) -> None:
        self._log.info(
            "Audit: user=%s role=%s %s %s outcome=%s reason=%s",
            event.identity_id, event.role, event.method, event.path, event.outcome, event.reason,
        )


class MemoryAuditSink:
    """Keeps events in a list."""

    def __init__(self):
        self.events: List[AuditEvent] = []

    async def write(self, event: AuditEvent) -> None:
        self.events.append(event)
