"""
Audit log table.

Rows are written once per authorization decision or administrative action and
never updated. They carry the caller's role at decision time and have no
foreign key to users.
"""
from datetime import datetime
from typing import Any, Dict
from sqlalchemy import String, JSON, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database.base import Base, TimestampMixin, generate_ulid


class AuditLog(Base, TimestampMixin):
    """
    Audit log for tracking authorization decisions.

    Tracks who tried what, when, from where, and with what result.
    """
    __tablename__ = "audit_logs"

    # Primary key using ULID
    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    # When the decision was taken (created_at is when the row was stored)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)

    # Request
    path: Mapped[str] = mapped_column(String(2048), nullable=False)
    method: Mapped[str] = mapped_column(String(16), nullable=False)

    # Actor, as known at decision time
    user_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    user_role: Mapped[str | None] = mapped_column(String(50), nullable=True)

    # Outcome
    outcome: Mapped[str] = mapped_column(String(10), nullable=False, index=True)
    reason: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    details: Mapped[Dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    # Context
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(255), nullable=True)

    def __repr__(self) -> str:
        return f"<AuditLog(id={self.id}, user_id={self.user_id}, outcome={self.outcome}, reason={self.reason})>"
