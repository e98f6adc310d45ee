from pathlib import Path

from fastapi import FastAPI
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from slowapi.errors import RateLimitExceeded
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from timing_asgi import TimingMiddleware, TimingClient  # type: ignore
from timing_asgi.integrations import StarletteScopeToName  # type: ignore

from app.core import config
from app.core.database.engine import AsyncSessionLocal, close_db, init_db
from app.core.rate_limit import limiter
from app.features.audit.emitter import AuditEmitter
from app.features.audit.routes import router as audit_router
from app.features.audit.sinks import DatabaseAuditSink
from app.features.auth.routes import router as auth_router
from app.features.guard.guard import AuthorizationGuard
from app.features.guard.middleware import (
    AuthorizationMiddleware,
    OriginCheckMiddleware,
    SecurityHeadersMiddleware,
)
from app.features.permissions.resolver import resolver
from app.features.permissions.roles import parse_role
from app.features.permissions.routes import router as permission_router
from app.features.policies.rules import (
    DEFAULT_ROUTE_RULES,
    RouteConfigurationError,
    RoutePolicyMatcher,
    build_rules,
    default_rule,
    load_route_rules,
)
from app.features.throttling.limiter import FixedWindowRateLimiter
from app.features.throttling.lockout import LockoutTracker
from app.features.users.auth import JWTSessionLookup
from app.features.users.repository import SqlIdentityStore
from app.features.users.routes import router as user_router
from app.utils import get_logger, setup_logging


setup_logging(config.LOG_LEVEL)
log = get_logger(__name__)
log.info("Initializing server")
app = FastAPI(
    title="Authorization Service",
    description="Role-based route authorization with rate limiting, lockout and audit",
    version="0.1.0",
    docs_url="/docs" if config.ENABLE_DOCS else None,
    redoc_url="/redoc" if config.ENABLE_DOCS else None,
    openapi_url="/openapi.json" if config.ENABLE_DOCS else None
)
app.state.limiter = limiter


def build_matcher() -> RoutePolicyMatcher:
    """Route table from ROUTE_RULES_FILE, or the built-in one."""
    if config.ROUTE_RULES_FILE:
        log.warning("Loading route rules from %s", config.ROUTE_RULES_FILE)
        rules = load_route_rules(Path(config.ROUTE_RULES_FILE))
    else:
        rules = build_rules(DEFAULT_ROUTE_RULES)

    fallback_role = None
    if config.DEFAULT_ROUTE_ROLE:
        fallback_role = parse_role(config.DEFAULT_ROUTE_ROLE)
        if fallback_role is None:
            log.error("DEFAULT_ROUTE_ROLE %r is not a known role", config.DEFAULT_ROUTE_ROLE)
            raise RouteConfigurationError(f"Unknown DEFAULT_ROUTE_ROLE {config.DEFAULT_ROUTE_ROLE!r}")
    return RoutePolicyMatcher(rules, fallback=default_rule(fallback_role))


def build_guard() -> AuthorizationGuard:
    """Wire the guard and its collaborators onto app.state."""
    identity_store = SqlIdentityStore(AsyncSessionLocal)
    lockout = LockoutTracker(
        identity_store,
        threshold=config.LOCKOUT_THRESHOLD,
        lock_seconds=config.LOCKOUT_DURATION_SECONDS,
    )
    emitter = AuditEmitter(
        DatabaseAuditSink(AsyncSessionLocal),
        max_queue=config.AUDIT_QUEUE_SIZE,
        timeout=config.AUDIT_SINK_TIMEOUT_SECONDS,
    )
    rate_limiter = FixedWindowRateLimiter.from_uri(
        config.RATE_LIMIT_MAX_REQUESTS,
        config.RATE_LIMIT_WINDOW_SECONDS,
        config.RATE_LIMIT_STORAGE_URI,
        enabled=config.RATE_LIMIT_ENABLED,
    )
    if not config.RATE_LIMIT_ENABLED:
        log.warning("Per-identity rate limiting disabled")

    app.state.identity_store = identity_store
    app.state.lockout = lockout
    app.state.audit_emitter = emitter
    return AuthorizationGuard(
        matcher=build_matcher(),
        resolver=resolver,
        sessions=JWTSessionLookup(),
        identities=identity_store,
        limiter=rate_limiter,
        lockout=lockout,
        emitter=emitter,
        login_path=config.LOGIN_PATH,
    )


app.state.guard = build_guard()

if config.SESSION_SECRET == "change-me":
    log.warning("SESSION_SECRET is the built-in default; set it before deploying")


class PrintTimings(TimingClient):
    def timing(self, metric_name, timing, tags):
        log.debug(dict(route=metric_name.removeprefix("main.app.features."), timing=timing, tags=tags))


# Last added runs first: headers wrap every response, origin check runs before the guard.
app.add_middleware(AuthorizationMiddleware, unauthorized_path=config.UNAUTHORIZED_PATH)
app.add_middleware(OriginCheckMiddleware, trusted_origins=config.TRUSTED_ORIGINS)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(TimingMiddleware, client=PrintTimings(), metric_namer=StarletteScopeToName("main", app))

if config.ENABLE_DOCS:
    log.warning("Docs enabled")
if config.ALLOW_ORIGIN:
    log.warning("Setting allow origin to %s", config.ALLOW_ORIGIN)
    origins = [config.ALLOW_ORIGIN]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(_request: Request, exc: RequestValidationError):
    errors = dict()
    for error in exc.errors():
        if "loc" not in error or "msg" not in error:
            continue
        key = error["loc"][-1]
        if key == "__root__":
            key = "root"
        errors[key] = error["msg"]
    log.info("Request validation error %s", errors)
    return JSONResponse(status_code=400, content=jsonable_encoder(errors))


@app.exception_handler(RateLimitExceeded)
def rate_limit_exceeded_handler(_request: Request, _exc: RateLimitExceeded) -> Response:
    return JSONResponse({"error": "You are going too fast"}, status_code=429)


@app.on_event("startup")
async def startup():
    """Initialize database and start the audit writer."""
    log.info("Initializing database...")
    await init_db()
    log.info("Database initialized successfully")
    app.state.audit_emitter.start()


@app.on_event("shutdown")
async def shutdown():
    """Write out pending audit events, then release the database."""
    await app.state.audit_emitter.stop()
    await close_db()


@app.get("/")
async def root():
    """Root endpoint - API health check."""
    return {
        "message": "Authorization Service API",
        "version": "0.1.0",
        "status": "online",
        "docs": "/docs" if config.ENABLE_DOCS else None,
        "authentication": {
            "info": "Protected endpoints require a session token as Bearer header or session cookie",
            "login_url": config.LOGIN_PATH,
        },
        "environment": config.ENVIRONMENT,
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


# Include routers
app.include_router(user_router, prefix="/users", tags=["users"])
app.include_router(auth_router, prefix="/auth", tags=["auth"])
app.include_router(permission_router, prefix="/permissions", tags=["permissions"])
app.include_router(audit_router, prefix="/audit", tags=["audit"])
