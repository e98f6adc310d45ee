"""
Declarative base shared by the users and audit_logs tables.

Primary keys are ULID strings: sortable by creation time, so audit rows can
be paged in insertion order without a separate sequence.
"""
from datetime import datetime
from sqlalchemy import DateTime, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from ulid import ULID


def generate_ulid() -> str:
    """26-character ULID for a new row id."""
    return str(ULID())


class Base(DeclarativeBase):
    """
    Registry for `User` (app.features.users.models) and `AuditLog`
    (app.features.audit.models). `init_db` creates every table registered here.
    """
    pass


class TimestampMixin:
    """
    created_at / updated_at columns filled in by the database.

    `AuditLog` relies on created_at only; `User` also uses updated_at to
    show when the role, active flag or lockout counters last changed.
    """
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
