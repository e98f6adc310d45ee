"""
Pydantic schemas for audit log responses.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict


class AuditLogResponse(BaseModel):
    """Schema for audit log response."""
    id: str
    occurred_at: datetime
    path: str
    method: str
    user_id: Optional[str]
    user_role: Optional[str]
    outcome: str
    reason: str
    details: Optional[Dict[str, Any]]
    ip_address: Optional[str]
    user_agent: Optional[str]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AuditLogListResponse(BaseModel):
    """Schema for paginated audit log list."""
    items: List[AuditLogResponse]
    total: int
    page: int
    page_size: int
    pages: int


class AuditDiagnostics(BaseModel):
    """Emitter counters since startup."""
    running: bool
    recorded: int
    written: int
    failed: int
    dropped: int
    pending: int
