"""
slowapi limiter for endpoints called outside the per-identity guard limit.
"""
from slowapi import Limiter
from starlette.requests import Request

from app.core import config


def get_authorization_header(request: Request) -> str:
    """
    Extract the caller credential for rate limiting.
    Used with slowapi Limiter.
    """
    auth = request.headers.get("Authorization", "")
    return auth or request.headers.get(config.AUTH_SERVICE_HEADER, "") or "anonymous"


limiter = Limiter(key_func=get_authorization_header, storage_uri=config.RATE_LIMIT_STORAGE_URI)
