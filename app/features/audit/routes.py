"""
Audit log API routes.
"""
from typing import Annotated, Optional

from fastapi import APIRouter, Depends
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.audit.emitter import AuditEmitter
from app.features.audit.models import AuditLog
from app.features.audit.schemas import AuditDiagnostics, AuditLogListResponse, AuditLogResponse
from app.features.users.dependencies import get_audit_emitter


router = APIRouter(tags=["audit"])


@router.get("/logs", response_model=AuditLogListResponse)
async def list_audit_logs(
    db: Annotated[AsyncSession, Depends(get_db)],
    skip: int = 0,
    limit: int = 50,
    user_id: Optional[str] = None,
    outcome: Optional[str] = None,
    reason: Optional[str] = None,
    path: Optional[str] = None,
):
    """List audit logs with optional filtering, newest first."""
    limit = min(max(limit, 1), 500)
    stmt = select(AuditLog)

    if user_id:
        stmt = stmt.where(AuditLog.user_id == user_id)
    if outcome:
        stmt = stmt.where(AuditLog.outcome == outcome)
    if reason:
        stmt = stmt.where(AuditLog.reason == reason)
    if path:
        stmt = stmt.where(AuditLog.path == path)

    # Get total count
    count_stmt = select(func.count()).select_from(stmt.subquery())
    total_result = await db.execute(count_stmt)
    total = total_result.scalar() or 0

    # Get paginated results
    stmt = stmt.order_by(AuditLog.occurred_at.desc()).offset(skip).limit(limit)
    result = await db.execute(stmt)
    logs = result.scalars().all()

    pages = (total + limit - 1) // limit
    page = (skip // limit) + 1

    return AuditLogListResponse(
        items=[AuditLogResponse.model_validate(log) for log in logs],
        total=total,
        page=page,
        page_size=limit,
        pages=pages,
    )


@router.get("/diagnostics", response_model=AuditDiagnostics)
async def audit_diagnostics(
    emitter: Annotated[AuditEmitter, Depends(get_audit_emitter)],
):
    """Audit emitter counters; a growing `failed` count means the sink is unhealthy."""
    return AuditDiagnostics(running=emitter.running, **emitter.stats())
