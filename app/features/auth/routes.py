"""
Login outcome reports from the authentication service.

Credentials are verified elsewhere; this service only keeps the failed
attempt counter and lock state that the guard enforces.
"""
import hmac
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status

from app.core import config
from app.core.rate_limit import limiter
from app.features.throttling.lockout import LockoutTracker
from app.features.users.dependencies import get_identity_store, get_lockout
from app.features.users.identity import IdentityNotFound, IdentityStore
from app.features.users.schemas import AuthEventRequest, LockStateResponse
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter(tags=["auth"])


def verify_service_key(
    key: Annotated[Optional[str], Header(alias=config.AUTH_SERVICE_HEADER)] = None,
) -> None:
    """Require the shared authentication service key."""
    expected = config.AUTH_SERVICE_KEY
    if not expected:
        log.error("AUTH_SERVICE_KEY is not configured; rejecting auth event")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Auth event reporting is not configured",
        )
    if not key or not hmac.compare_digest(key, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid service key",
        )


@router.post("/events", response_model=LockStateResponse, dependencies=[Depends(verify_service_key)])
@limiter.limit(config.AUTH_EVENTS_RATE_LIMIT)
async def report_auth_event(
    request: Request,
    event: AuthEventRequest,
    lockout: Annotated[LockoutTracker, Depends(get_lockout)],
    store: Annotated[IdentityStore, Depends(get_identity_store)],
):
    """Record a successful or failed login for an identity."""
    try:
        if event.outcome == "success":
            state = await lockout.report_success(event.identity_id)
        else:
            state = await lockout.report_failure(event.identity_id)
    except IdentityNotFound:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found",
        )

    identity = await store.get_identity(event.identity_id)
    return LockStateResponse(
        identity_id=event.identity_id,
        state=state,
        locked_until=identity.locked_until if identity else None,
    )
