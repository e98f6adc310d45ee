"""
Permission inspection API routes.
"""
from typing import Annotated

from fastapi import APIRouter, Depends

from app.features.permissions.resolver import PermissionResolver
from app.features.permissions.schemas import (
    PermissionCheckRequest,
    PermissionCheckResponse,
    RoleResponse,
    UserPermissionsResponse,
)
from app.features.users.dependencies import current_role, get_current_identity, get_resolver
from app.features.users.identity import Identity


router = APIRouter()


def _sorted(values):
    return sorted(values, key=lambda v: v.value)


@router.get("/me", response_model=UserPermissionsResponse)
async def get_my_permissions(
    identity: Annotated[Identity, Depends(get_current_identity)],
    resolver: Annotated[PermissionResolver, Depends(get_resolver)],
):
    """Get all permissions the caller holds, directly or through inheritance."""
    role = current_role(identity)
    return UserPermissionsResponse(
        user_id=identity.id,
        role=role,
        inherited_roles=list(resolver.inherited_roles(role)),
        permissions=_sorted(resolver.resolve_permissions(role)),
    )


@router.get("/roles", response_model=list[RoleResponse])
async def list_roles(
    resolver: Annotated[PermissionResolver, Depends(get_resolver)],
):
    """List every role with its direct and effective permissions."""
    return [
        RoleResponse(
            name=role,
            inherits=list(resolver.graph.parents(role)),
            direct_permissions=_sorted(resolver.direct_permissions(role)),
            permissions=_sorted(resolver.resolve_permissions(role)),
        )
        for role in resolver.graph.roles
    ]


@router.post("/check", response_model=PermissionCheckResponse)
async def check_permission(
    check_request: PermissionCheckRequest,
    identity: Annotated[Identity, Depends(get_current_identity)],
    resolver: Annotated[PermissionResolver, Depends(get_resolver)],
):
    """Check whether the caller's role (or a given role) holds the permissions."""
    role = check_request.role or current_role(identity)
    granted = resolver.resolve_permissions(role)
    missing = [p for p in check_request.permissions if p not in granted]

    if check_request.mode == "any":
        has_perm = resolver.has_any_permission(role, check_request.permissions)
    else:
        has_perm = resolver.has_all_permissions(role, check_request.permissions)

    return PermissionCheckResponse(
        role=role,
        has_permission=has_perm,
        missing=missing,
        reason=None if has_perm else "Permission denied",
    )
