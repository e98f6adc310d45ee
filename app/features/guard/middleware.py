"""
HTTP middleware around the authorization guard.

- AuthorizationMiddleware: runs the guard for every request and turns
  denials into redirects or JSON error responses
- OriginCheckMiddleware: rejects cross-site state-changing requests that
  ride on the session cookie
- SecurityHeadersMiddleware: adds browser security headers to every response
"""
from typing import Iterable, Optional
from urllib.parse import urlsplit

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, RedirectResponse, Response

from app.core import config
from app.features.guard.types import AccessRequest, AuthorizationReason, Verdict
from app.utils import get_logger


log = get_logger(__name__)

SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})


def wants_html(request: Request) -> bool:
    return "text/html" in request.headers.get("accept", "")


def access_request(request: Request) -> AccessRequest:
    return AccessRequest.build(
        path=request.url.path,
        method=request.method,
        headers=request.headers,
        cookies=request.cookies,
        client_ip=request.client.host if request.client else None,
    )


def denial_response(request: Request, verdict: Verdict, unauthorized_path: str) -> Response:
    """Translate a deny verdict into the response sent to the caller."""
    reason = verdict.reason

    if reason is AuthorizationReason.UNAUTHENTICATED:
        if wants_html(request):
            return RedirectResponse(verdict.redirect_to, status_code=303)
        return JSONResponse(
            {"detail": "Authentication required", "reason": reason.value, "login_url": verdict.redirect_to},
            status_code=401,
        )

    if reason is AuthorizationReason.RATE_LIMITED:
        return JSONResponse(
            {"detail": "Too many requests", "reason": reason.value},
            status_code=429,
            headers={"Retry-After": str(verdict.retry_after or 0)},
        )

    if reason is AuthorizationReason.ACCOUNT_LOCKED:
        return JSONResponse(
            {
                "detail": "Account is temporarily locked",
                "reason": reason.value,
                "locked_until": verdict.locked_until.isoformat() if verdict.locked_until else None,
            },
            status_code=423,
        )

    if wants_html(request):
        return RedirectResponse(unauthorized_path, status_code=303)
    return JSONResponse({"detail": "Access denied", "reason": reason.value}, status_code=403)


class AuthorizationMiddleware(BaseHTTPMiddleware):
    """
    Ask `app.state.guard` about every request.

    Allowed requests continue with `request.state.verdict` and
    `request.state.identity` set for the route handlers.
    """

    def __init__(self, app, unauthorized_path: str = config.UNAUTHORIZED_PATH):
        super().__init__(app)
        self.unauthorized_path = unauthorized_path

    async def dispatch(self, request: Request, call_next):
        guard = request.app.state.guard
        verdict = await guard.authorize(access_request(request))
        request.state.verdict = verdict
        request.state.identity = verdict.identity
        if not verdict.allow:
            return denial_response(request, verdict, self.unauthorized_path)
        return await call_next(request)


class OriginCheckMiddleware(BaseHTTPMiddleware):
    """
    Reject unsafe requests authenticated by the session cookie unless their
    Origin or Referer points at this host or a trusted origin.

    Requests without the cookie (bearer tokens, service keys) cannot be
    forged by a third-party page and pass through.
    """

    def __init__(
        self,
        app,
        trusted_origins: Optional[Iterable[str]] = None,
        cookie_name: str = config.SESSION_COOKIE,
    ):
        super().__init__(app)
        self.trusted = {o.rstrip("/").lower() for o in (trusted_origins or [])}
        self.cookie_name = cookie_name

    def is_trusted(self, request: Request, source: str) -> bool:
        parts = urlsplit(source)
        if not parts.scheme or not parts.netloc:
            return False
        if f"{parts.scheme}://{parts.netloc}".lower() in self.trusted:
            return True
        host = request.headers.get("host", "")
        return bool(host) and parts.netloc.lower() == host.lower()

    async def dispatch(self, request: Request, call_next):
        if request.method in SAFE_METHODS or self.cookie_name not in request.cookies:
            return await call_next(request)

        source = request.headers.get("origin") or request.headers.get("referer")
        if not source or not self.is_trusted(request, source):
            log.warning(
                "Blocked cross-site %s %s from origin=%s",
                request.method, request.url.path, source,
            )
            return JSONResponse({"detail": "Invalid cross-site request"}, status_code=403)
        return await call_next(request)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    headers = {
        "Content-Security-Policy": (
            "default-src 'self'; "
            "script-src 'self' 'unsafe-inline'; "
            "style-src 'self' 'unsafe-inline'; "
            "img-src 'self' data: https:; "
            "font-src 'self' data:; "
            "connect-src 'self'; "
            "frame-ancestors 'none';"
        ),
        "X-XSS-Protection": "1; mode=block",
        "X-Frame-Options": "DENY",
        "X-Content-Type-Options": "nosniff",
        "Referrer-Policy": "strict-origin-when-cross-origin",
        "Permissions-Policy": "camera=(), microphone=(), geolocation=(), interest-cohort=()",
        "X-DNS-Prefetch-Control": "on",
    }

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        for name, value in self.headers.items():
            response.headers.setdefault(name, value)
        return response
