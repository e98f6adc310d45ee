"""
Audit event record and sink interface.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Protocol


ALLOW = "allow"
DENY = "deny"


@dataclass(frozen=True)
class AuditEvent:
    """
    Write-once record of one authorization decision or administrative action.

    Carries everything needed to answer "who tried what, when, with what
    result" without looking at user records that may have changed since.
    """
    path: str
    method: str
    outcome: str
    reason: str
    identity_id: Optional[str] = None
    role: Optional[str] = None
    detail: Mapping[str, Any] = field(default_factory=dict)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def as_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "path": self.path,
            "method": self.method,
            "identity_id": self.identity_id,
            "role": self.role,
            "outcome": self.outcome,
            "reason": self.reason,
            "detail": dict(self.detail),
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
        }


class AuditSinkUnavailable(RuntimeError):
    """The audit sink could not accept an event."""


class AuditSink(Protocol):
    """Durable destination for audit events."""

    async def write(self, event: AuditEvent) -> None:
        ...
