"""
Authorization guard.

Combines route policy, session, lockout, rate limiting and role/permission
checks into one allow/deny verdict per request. Checks run in a fixed order
and stop at the first failure:

1. public route            -> allow, no identity needed
2. no session              -> Unauthenticated (redirect to login)
3. identity missing/broken -> PolicyLookupFailed; inactive -> AccountInactive
4. account locked          -> AccountLocked
5. over the rate limit     -> RateLimited (retry after the window)
6. role rule not met       -> InsufficientRole
7. permission rule not met -> InsufficientPermission
8. otherwise               -> Granted

`authorize` never raises. Anything unexpected is a PolicyLookupFailed deny,
and exactly one audit event is recorded for every call.
"""
from typing import Any, Dict, Optional
from urllib.parse import urlencode

from app.features.audit.emitter import AuditEmitter
from app.features.audit.events import ALLOW, DENY, AuditEvent
from app.features.guard.types import AccessRequest, AuthorizationReason, SessionLookup, Verdict
from app.features.permissions.resolver import PermissionResolver
from app.features.permissions.roles import Role, parse_role
from app.features.policies.rules import AccessKind, PermissionMode, RoutePolicyMatcher, RouteRule
from app.features.throttling.limiter import FixedWindowRateLimiter
from app.features.throttling.lockout import LockoutTracker
from app.features.users.identity import Identity, IdentityStore
from app.utils import get_logger


log = get_logger(__name__)


class AuthorizationGuard:
    """
    Per-request authorization decision maker.

    Args:
        matcher: Route policy table
        resolver: Role and permission resolver
        sessions: Session lookup collaborator
        identities: Identity lookup collaborator
        limiter: Per-identity rate limiter
        lockout: Account lockout tracker
        emitter: Audit emitter
        login_path: Where unauthenticated callers are sent
    """

    def __init__(
        self,
        matcher: RoutePolicyMatcher,
        resolver: PermissionResolver,
        sessions: SessionLookup,
        identities: IdentityStore,
        limiter: FixedWindowRateLimiter,
        lockout: LockoutTracker,
        emitter: AuditEmitter,
        login_path: str = "/login",
    ):
        self.matcher = matcher
        self.resolver = resolver
        self.sessions = sessions
        self.identities = identities
        self.limiter = limiter
        self.lockout = lockout
        self.emitter = emitter
        self.login_path = login_path

    def login_redirect(self, path: str) -> str:
        return f"{self.login_path}?{urlencode({'redirect': path})}"

    async def authorize(self, request: AccessRequest) -> Verdict:
        """Decide whether `request` may proceed."""
        detail: Dict[str, Any] = {}
        try:
            verdict = await self._decide(request, detail)
        except Exception as e:
            log.exception("Authorization failed closed for %s %s", request.method, request.path)
            detail["error"] = type(e).__name__
            verdict = Verdict(allow=False, reason=AuthorizationReason.POLICY_LOOKUP_FAILED)
        self._audit(request, verdict, detail)
        return verdict

    async def _decide(self, request: AccessRequest, detail: Dict[str, Any]) -> Verdict:
        rule = self.matcher.match(request.path)
        detail["rule"] = rule.pattern

        if rule.is_public:
            return Verdict(allow=True, reason=AuthorizationReason.GRANTED, rule=rule)

        identity_id = self.sessions.identity_id(request)
        if not identity_id:
            return Verdict(
                allow=False,
                reason=AuthorizationReason.UNAUTHENTICATED,
                rule=rule,
                redirect_to=self.login_redirect(request.path),
            )

        identity = await self._lookup(identity_id, detail)
        if identity is None:
            return Verdict(allow=False, reason=AuthorizationReason.POLICY_LOOKUP_FAILED, rule=rule)

        role = parse_role(identity.role)
        if role is None:
            detail["error"] = f"unknown role {identity.role!r}"
            return Verdict(allow=False, reason=AuthorizationReason.POLICY_LOOKUP_FAILED,
                           identity=identity, rule=rule)

        if not identity.is_active:
            return Verdict(allow=False, reason=AuthorizationReason.ACCOUNT_INACTIVE,
                           identity=identity, rule=rule)

        if self.lockout.is_locked(identity):
            return Verdict(allow=False, reason=AuthorizationReason.ACCOUNT_LOCKED,
                           identity=identity, rule=rule, locked_until=identity.locked_until)

        if not self.limiter.allow(identity.id):
            return Verdict(allow=False, reason=AuthorizationReason.RATE_LIMITED,
                           identity=identity, rule=rule, retry_after=self.limiter.window_seconds)

        return self._check_rule(rule, identity, role, detail)

    async def _lookup(self, identity_id: str, detail: Dict[str, Any]) -> Optional[Identity]:
        try:
            identity = await self.identities.get_identity(identity_id)
        except Exception as e:
            log.error("Identity lookup failed for %s: %s", identity_id, e)
            detail["error"] = f"identity lookup failed: {type(e).__name__}"
            return None
        if identity is None:
            detail["error"] = "identity not found"
            detail["session_subject"] = identity_id
        return identity

    def _check_rule(self, rule: RouteRule, identity: Identity, role: Role, detail: Dict[str, Any]) -> Verdict:
        if rule.access is AccessKind.ROLE:
            detail["required_role"] = rule.role.value
            if not self.resolver.has_role(role, rule.role):
                return Verdict(allow=False, reason=AuthorizationReason.INSUFFICIENT_ROLE,
                               identity=identity, rule=rule)

        elif rule.access is AccessKind.PERMISSIONS:
            detail["required_permissions"] = sorted(p.value for p in rule.permissions)
            detail["mode"] = rule.mode.value
            if rule.mode is PermissionMode.ANY:
                granted = self.resolver.has_any_permission(role, rule.permissions)
            else:
                granted = self.resolver.has_all_permissions(role, rule.permissions)
            if not granted:
                return Verdict(allow=False, reason=AuthorizationReason.INSUFFICIENT_PERMISSION,
                               identity=identity, rule=rule)

        return Verdict(allow=True, reason=AuthorizationReason.GRANTED, identity=identity, rule=rule)

    def _audit(self, request: AccessRequest, verdict: Verdict, detail: Dict[str, Any]) -> None:
        identity = verdict.identity
        try:
            self.emitter.record(AuditEvent(
                path=request.path,
                method=request.method,
                outcome=ALLOW if verdict.allow else DENY,
                reason=verdict.reason.value,
                identity_id=identity.id if identity else None,
                role=identity.role if identity else None,
                detail=detail,
                ip_address=request.client_ip,
                user_agent=request.header("user-agent"),
            ))
        except Exception:
            log.exception("Audit emission failed for %s %s", request.method, request.path)

        if not verdict.allow:
            log.info(
                "Denied %s %s user=%s reason=%s",
                request.method, request.path, identity.id if identity else None, verdict.reason.value,
            )
