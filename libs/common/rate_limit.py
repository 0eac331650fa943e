"""Rate limiting configuration for the storefront API.

Uses slowapi; state lives in Redis when RATE_LIMIT_STORAGE_URI points at it,
in process memory otherwise.
"""

from functools import lru_cache

from fastapi import Request, Response
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.responses import JSONResponse

from libs.common.config import get_settings
from libs.common.logging import get_logger, get_request_id

logger = get_logger(__name__)


def _get_client_ip(request: Request) -> str:
    """
    Get client IP from request, handling proxies.

    Checks X-Forwarded-For header first (for proxied requests),
    then falls back to direct connection IP.
    """
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return get_remote_address(request)


@lru_cache
def get_limiter() -> Limiter:
    """Create and return a cached Limiter instance."""
    settings = get_settings()

    return Limiter(
        key_func=_get_client_ip,
        default_limits=["100/minute"],
        storage_uri=settings.RATE_LIMIT_STORAGE_URI,
        strategy="fixed-window",
        enabled=settings.RATE_LIMIT_ENABLED,
    )


limiter = get_limiter()


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> Response:
    """Render a 429 in the same shape as every other storefront error."""
    logger.warning(
        "Rate limit %s hit by %s on %s",
        exc.detail,
        _get_client_ip(request),
        request.url.path,
    )
    return JSONResponse(
        status_code=429,
        content={
            "detail": f"Rate limit exceeded ({exc.detail}). Slow down and retry shortly.",
            "code": "RateLimitExceeded",
            "request_id": get_request_id(),
        },
        headers={"Retry-After": str(getattr(exc, "retry_after", 60))},
    )


# Limits for payment endpoints (gateway order creation, verification)
PAYMENT_LIMIT = "10/minute"
WEBHOOK_LIMIT = "120/minute"
