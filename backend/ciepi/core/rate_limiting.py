"""Rate limiting configuration using slowapi.

Security: The verification endpoints are public. Issuance sends email and
status polling is called in a loop by the waiting page, so both are capped
per client IP.

Usage in routers:
    from ciepi.core.rate_limiting import limiter

    @router.get("/estado/{token}")
    @limiter.limit(lambda: settings.rate_limit_status_poll)
    async def get_status(request: Request, ...):
        ...
"""

from fastapi import Request, Response
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from starlette.responses import JSONResponse

from ciepi.core.client_ip import get_client_ip
from ciepi.core.config import settings


def _rate_limit_key_func(request: Request) -> str:
    """Get rate limit key from request.

    Keys on the client IP (honouring proxy headers). Requests with no
    determinable IP share a single bucket.

    Args:
        request: The incoming request.

    Returns:
        Rate limit key string.
    """
    return get_client_ip(request) or "unknown"


# Global limiter instance
# Configured with in-memory storage (suitable for single-instance deployment)
# For multi-instance, configure Redis storage via RATELIMIT_STORAGE_URL
limiter = Limiter(
    key_func=_rate_limit_key_func,
    enabled=settings.rate_limit_enabled,
)


def rate_limit_exceeded_handler(
    _request: Request,
    exc: RateLimitExceeded,
) -> Response:
    """Handle rate limit exceeded errors.

    Returns 429 Too Many Requests with standard error envelope.

    Args:
        request: The incoming request.
        exc: The rate limit exception.

    Returns:
        JSONResponse with 429 status and retry-after header.
    """
    # Parse retry-after from exception detail (e.g., "10 per 1 minute")
    # Fallback to 60 seconds if parsing fails
    try:
        retry_after = str(exc.detail.split()[-1])
        int(retry_after.rstrip("s"))
    except (ValueError, AttributeError, IndexError):
        retry_after = "60"

    return JSONResponse(
        status_code=429,
        content={
            "error": {
                "code": "RATE_LIMITED",
                "message": f"Rate limit exceeded: {exc.detail}",
            }
        },
        headers={"Retry-After": retry_after},
    )
