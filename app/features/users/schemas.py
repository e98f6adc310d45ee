"""
Pydantic schemas for user-related requests and responses.
"""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.features.permissions.roles import Role
from app.features.throttling.lockout import LockState


class IdentityResponse(BaseModel):
    """Schema for identity responses."""
    id: str
    role: Optional[str] = None
    is_active: bool
    failed_login_attempts: int = 0
    locked_until: Optional[datetime] = None
    last_login_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class CurrentIdentityResponse(IdentityResponse):
    """The caller, with effective permissions."""
    inherited_roles: List[Role] = []
    permissions: List[str] = []


class RoleUpdate(BaseModel):
    """Schema for changing another user's role."""
    role: Role


class ActiveUpdate(BaseModel):
    """Schema for deactivating or reactivating another user."""
    is_active: bool


class LockStateResponse(BaseModel):
    identity_id: str
    state: LockState
    locked_until: Optional[datetime] = None


class AuthEventRequest(BaseModel):
    """Login outcome reported by the authentication service."""
    identity_id: str = Field(..., min_length=1, max_length=64)
    outcome: Literal["success", "failure"]
