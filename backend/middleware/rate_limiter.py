"""
Rate Limiting for ServeSense
Uses slowapi for per-client request rate limiting.
"""

import logging

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded as SlowAPIRateLimitExceeded
from starlette.responses import JSONResponse

from config.settings import get_settings
from exceptions import RateLimitExceeded

logger = logging.getLogger(__name__)

RETRY_AFTER_SECONDS = 3600


def create_limiter() -> Limiter:
    """
    Create the rate limiter, keyed by client address.
    """
    settings = get_settings()

    return Limiter(
        key_func=get_remote_address,
        default_limits=[settings.RATE_LIMIT_GLOBAL],
        enabled=settings.RATE_LIMIT_ENABLED,
        storage_uri="memory://",  # Use Redis when running several workers
        strategy="fixed-window"
    )


# Global limiter instance
limiter = create_limiter()


async def rate_limit_exceeded_handler(request: Request, exc: SlowAPIRateLimitExceeded) -> JSONResponse:
    """Render slowapi's limit error in the ServeSense error format."""
    error = RateLimitExceeded(limit=str(exc.detail), retry_after=RETRY_AFTER_SECONDS)
    logger.warning(
        f"Rate limit exceeded for {get_remote_address(request)}",
        extra={
            "path": str(request.url.path),
            "method": request.method,
            "limit": str(exc.detail)
        }
    )

    return JSONResponse(
        status_code=error.status_code,
        content={**error.to_dict(), "path": str(request.url.path)},
        headers={
            "Retry-After": str(RETRY_AFTER_SECONDS),
            "X-RateLimit-Limit": str(exc.detail)
        }
    )


def setup_rate_limiting(app) -> None:
    """
    Setup rate limiting on the FastAPI app.

    Args:
        app: FastAPI application instance
    """
    settings = get_settings()

    if not settings.RATE_LIMIT_ENABLED:
        logger.info("Rate limiting is disabled")
        return

    app.state.limiter = limiter
    app.add_exception_handler(SlowAPIRateLimitExceeded, rate_limit_exceeded_handler)

    logger.info("Rate limiting enabled")
