"""
FastAPI dependencies for authentication and authorization.

The AuthorizationMiddleware has already run the guard by the time a route
handler executes; these dependencies read its result from `request.state`.
"""
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from app.features.audit.emitter import AuditEmitter
from app.features.permissions.resolver import PermissionResolver, resolver as default_resolver
from app.features.permissions.roles import Permission, Role, parse_role
from app.features.throttling.lockout import LockoutTracker
from app.features.users.identity import Identity, IdentityStore


def get_identity_store(request: Request) -> IdentityStore:
    return request.app.state.identity_store


def get_lockout(request: Request) -> LockoutTracker:
    return request.app.state.lockout


def get_audit_emitter(request: Request) -> AuditEmitter:
    return request.app.state.audit_emitter


def get_resolver(request: Request) -> PermissionResolver:
    guard = getattr(request.app.state, "guard", None)
    return guard.resolver if guard is not None else default_resolver


async def get_current_identity(request: Request) -> Identity:
    """
    Get the identity the guard resolved for this request.

    Usage:
        @router.get("/me")
        async def get_me(identity: Identity = Depends(get_current_identity)):
            return identity
    """
    identity = getattr(request.state, "identity", None)
    if identity is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )
    return identity


def current_role(identity: Identity) -> Role:
    role = parse_role(identity.role)
    if role is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Unknown role",
        )
    return role


def require_permission(*permissions: Permission):
    """
    FastAPI dependency to require every one of `permissions`.

    Usage:
        @router.patch("/{user_id}/role")
        async def change_role(
            identity: Identity = Depends(require_permission(Permission.MANAGE_ROLES))
        ):
            ...

    Raises:
        HTTPException: 403 if the caller's role lacks a permission
    """
    async def permission_dependency(
        identity: Annotated[Identity, Depends(get_current_identity)],
        resolver: Annotated[PermissionResolver, Depends(get_resolver)],
    ) -> Identity:
        role = current_role(identity)
        if not resolver.has_all_permissions(role, permissions):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Permission denied: {', '.join(p.value for p in permissions)}",
            )
        return identity

    return permission_dependency

