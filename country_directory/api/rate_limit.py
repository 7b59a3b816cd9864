"""
Inbound rate limiting using slowapi.

Limits are kept in process memory; the service runs as a single
process because it owns the cache.
"""

from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from country_directory.config import Settings


def make_limiter(settings: Settings) -> Limiter:
    """Create an in-memory Limiter with the global default limit."""
    return Limiter(
        key_func=get_remote_address,
        default_limits=[settings.rate_limit_global],
        storage_uri="memory://",
        strategy="fixed-window",
    )


def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return a clean 429 response with retry_after."""
    retry_after = getattr(exc, "retry_after", 60)
    return JSONResponse(
        status_code=429,
        content={
            "success": False,
            "error": "rate_limit_exceeded",
            "detail": f"Rate limit exceeded: {exc.detail}",
            "retry_after": retry_after,
        },
        headers={"Retry-After": str(retry_after)},
    )
