"""
Request, verdict and collaborator types used by the authorization guard.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Mapping, Optional, Protocol

from app.features.policies.rules import RouteRule
from app.features.users.identity import Identity


@dataclass(frozen=True)
class AccessRequest:
    """Already-parsed view of an inbound request."""
    path: str
    method: str = "GET"
    headers: Mapping[str, str] = field(default_factory=dict)
    cookies: Mapping[str, str] = field(default_factory=dict)
    client_ip: Optional[str] = None

    @classmethod
    def build(
        cls,
        path: str,
        method: str = "GET",
        headers: Optional[Mapping[str, str]] = None,
        cookies: Optional[Mapping[str, str]] = None,
        client_ip: Optional[str] = None,
    ) -> "AccessRequest":
        return cls(
            path=path,
            method=method.upper(),
            headers={k.lower(): v for k, v in (headers or {}).items()},
            cookies=dict(cookies or {}),
            client_ip=client_ip,
        )

    def header(self, name: str) -> Optional[str]:
        return self.headers.get(name.lower())


class AuthorizationReason(str, Enum):
    """Machine-readable outcome of an authorization decision."""
    GRANTED = "Granted"
    UNAUTHENTICATED = "Unauthenticated"
    ACCOUNT_INACTIVE = "AccountInactive"
    ACCOUNT_LOCKED = "AccountLocked"
    RATE_LIMITED = "RateLimited"
    INSUFFICIENT_ROLE = "InsufficientRole"
    INSUFFICIENT_PERMISSION = "InsufficientPermission"
    POLICY_LOOKUP_FAILED = "PolicyLookupFailed"


@dataclass(frozen=True)
class Verdict:
    """
    Allow/deny decision for one request.

    Attributes:
        allow: Whether the request may proceed
        reason: Why
        identity: Resolved caller, when one was found
        rule: Route rule that applied
        redirect_to: Login URL for unauthenticated callers
        retry_after: Seconds to wait when rate limited
        locked_until: Lock expiry when the account is locked
    """
    allow: bool
    reason: AuthorizationReason
    identity: Optional[Identity] = None
    rule: Optional[RouteRule] = None
    redirect_to: Optional[str] = None
    retry_after: Optional[int] = None
    locked_until: Optional[datetime] = None


class SessionLookup(Protocol):
    """Maps a request to the authenticated identity id, if any."""

    def identity_id(self, request: AccessRequest) -> Optional[str]:
        ...
