"""
Pydantic schemas for permission inspection.
"""
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from app.features.permissions.roles import Permission, Role


class RoleResponse(BaseModel):
    """A role with its direct and effective grants."""
    name: Role
    inherits: List[Role] = []
    direct_permissions: List[Permission] = []
    permissions: List[Permission] = []


class UserPermissionsResponse(BaseModel):
    """Everything the caller's role allows."""
    user_id: str
    role: Role
    inherited_roles: List[Role] = []
    permissions: List[Permission] = []


class PermissionCheckRequest(BaseModel):
    """Schema for checking permissions against the caller's role, or another role."""
    permissions: List[Permission] = Field(..., min_length=1)
    mode: Literal["all", "any"] = "all"
    role: Optional[Role] = Field(None, description="Role to check instead of the caller's")


class PermissionCheckResponse(BaseModel):
    """Schema for permission check response."""
    role: Role
    has_permission: bool
    missing: List[Permission] = []
    reason: Optional[str] = None
