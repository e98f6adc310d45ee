"""
Session verification for tokens issued by the authentication service.

Tokens are HS256 JWTs carried either as `Authorization: Bearer <token>` or in
the session cookie. We only verify them; issuing tokens happens elsewhere.
"""
import jwt
from datetime import datetime, timedelta, timezone
from typing import Optional

from app.core import config
from app.features.guard.types import AccessRequest
from app.utils import get_logger


log = get_logger(__name__)


class JWTSessionLookup:
    """Resolve the identity id (`sub` claim) from a session token."""

    def __init__(
        self,
        secret: str = config.SESSION_SECRET,
        algorithm: str = config.SESSION_ALGORITHM,
        cookie_name: str = config.SESSION_COOKIE,
    ):
        self.secret = secret
        self.algorithm = algorithm
        self.cookie_name = cookie_name

    def token(self, request: AccessRequest) -> Optional[str]:
        auth = request.header("authorization") or ""
        scheme, _, credentials = auth.partition(" ")
        if scheme.lower() == "bearer" and credentials.strip():
            return credentials.strip()
        return request.cookies.get(self.cookie_name) or None

    def identity_id(self, request: AccessRequest) -> Optional[str]:
        token = self.token(request)
        if not token:
            return None
        try:
            payload = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                options={"require": ["exp", "sub"], "verify_exp": True},
            )
        except jwt.ExpiredSignatureError:
            log.debug("Session token expired for %s", request.path)
            return None
        except jwt.InvalidTokenError as e:
            log.info("Rejected session token on %s: %s", request.path, e)
            return None
        subject = payload.get("sub")
        return str(subject) if subject else None


def issue_session_token(identity_id: str, expires_in: int = 3600, secret: str = config.SESSION_SECRET) -> str:
    """
    Mint a session token.

    Development and test helper; production tokens come from the
    authentication service.
    """
    now = datetime.now(timezone.utc)
    payload = {"sub": identity_id, "iat": now, "exp": now + timedelta(seconds=expires_in)}
    return jwt.encode(payload, secret, algorithm=config.SESSION_ALGORITHM)
