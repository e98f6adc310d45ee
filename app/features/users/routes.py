"""
User feature routes.
"""
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Request, status

from app.features.audit.emitter import AuditEmitter
from app.features.audit.events import ALLOW, AuditEvent
from app.features.permissions.resolver import PermissionResolver
from app.features.permissions.roles import ASSIGNABLE_ROLES, Permission
from app.features.throttling.lockout import LockoutTracker, LockState
from app.features.users.dependencies import (
    current_role,
    get_audit_emitter,
    get_current_identity,
    get_identity_store,
    get_lockout,
    get_resolver,
    require_permission,
)
from app.features.users.identity import Identity, IdentityNotFound, IdentityStore
from app.features.users.schemas import (
    ActiveUpdate,
    CurrentIdentityResponse,
    IdentityResponse,
    LockStateResponse,
    RoleUpdate,
)
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter(tags=["users"])


@router.get("/me", response_model=CurrentIdentityResponse)
async def get_current_user_profile(
    identity: Annotated[Identity, Depends(get_current_identity)],
    resolver: Annotated[PermissionResolver, Depends(get_resolver)],
):
    """Get the caller's identity and effective permissions."""
    role = current_role(identity)
    return CurrentIdentityResponse(
        id=identity.id,
        role=identity.role,
        is_active=identity.is_active,
        failed_login_attempts=identity.failed_login_attempts,
        locked_until=identity.locked_until,
        last_login_at=identity.last_login_at,
        inherited_roles=list(resolver.inherited_roles(role)),
        permissions=sorted(p.value for p in resolver.resolve_permissions(role)),
    )


@router.get("", response_model=list[IdentityResponse])
async def list_users(
    store: Annotated[IdentityStore, Depends(get_identity_store)],
    skip: int = 0,
    limit: int = 50,
):
    """List identities."""
    return await store.list_identities(skip=skip, limit=min(max(limit, 1), 200))


@router.patch("/{user_id}/role", response_model=IdentityResponse)
async def change_user_role(
    user_id: str,
    update: RoleUpdate,
    request: Request,
    actor: Annotated[Identity, Depends(require_permission(Permission.MANAGE_ROLES))],
    store: Annotated[IdentityStore, Depends(get_identity_store)],
    emitter: Annotated[AuditEmitter, Depends(get_audit_emitter)],
):
    """Change another user's role."""
    # Prevent self-promotion/demotion
    if user_id == actor.id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot modify your own role",
        )

    allowed = ASSIGNABLE_ROLES.get(current_role(actor), set())
    if update.role not in allowed:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Role '{actor.role}' cannot assign role '{update.role.value}'",
        )

    target = await store.get_identity(user_id)
    if target is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found",
        )

    updated = await store.set_role(user_id, update.role.value)
    log.info("User %s changed role of %s from %s to %s", actor.id, user_id, target.role, updated.role)
    emitter.record(AuditEvent(
        path=request.url.path,
        method=request.method,
        outcome=ALLOW,
        reason="role_change",
        identity_id=actor.id,
        role=actor.role,
        detail={"target_id": user_id, "old_role": target.role, "new_role": updated.role},
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    ))
    return updated


@router.post("/{user_id}/unlock", response_model=LockStateResponse)
async def unlock_user(
    user_id: str,
    admin: Annotated[Identity, Depends(require_permission(Permission.MANAGE_USERS))],
    lockout: Annotated[LockoutTracker, Depends(get_lockout)],
):
    """Clear failed attempts and any lock on an account."""
    try:
        await lockout.unlock(user_id)
    except IdentityNotFound:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found",
        )
    log.info("User %s unlocked by %s", user_id, admin.id)
    return LockStateResponse(identity_id=user_id, state=LockState.ACTIVE)


@router.patch("/{user_id}/active", response_model=IdentityResponse)
async def set_user_active(
    user_id: str,
    update: ActiveUpdate,
    request: Request,
    actor: Annotated[Identity, Depends(require_permission(Permission.MANAGE_USERS))],
    store: Annotated[IdentityStore, Depends(get_identity_store)],
    emitter: Annotated[AuditEmitter, Depends(get_audit_emitter)],
):
    """Deactivate or reactivate another user's account."""
    if user_id == actor.id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot change your own active status",
        )

    try:
        updated = await store.set_active(user_id, update.is_active)
    except IdentityNotFound:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found",
        )

    action = "activated" if update.is_active else "deactivated"
    log.info("User %s %s by %s", user_id, action, actor.id)
    emitter.record(AuditEvent(
        path=request.url.path,
        method=request.method,
        outcome=ALLOW,
        reason="active_change",
        identity_id=actor.id,
        role=actor.role,
        detail={"target_id": user_id, "is_active": updated.is_active},
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    ))
    return updated
