"""FastAPI application entry point.

Creates and configures the verification API:
- Security headers and CORS middleware
- Exception handlers mapping every failure to the error envelope
- API v1 router mounting
- Health check endpoint
"""

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from sqlalchemy.exc import SQLAlchemyError
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from ciepi.api.v1.router import router as v1_router
from ciepi.core.config import settings
from ciepi.core.errors import APIError, StoreUnavailableError
from ciepi.core.rate_limiting import limiter, rate_limit_exceeded_handler
from ciepi.core.responses import ErrorDetail, ErrorResponse

logger = structlog.get_logger()

_SECURITY_HEADERS = {
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    # API-only backend: responses never load resources
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
    "Cross-Origin-Opener-Policy": "same-origin",
    "Cross-Origin-Resource-Policy": "same-origin",
}


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to every response.

    API responses carry tokens and personal data, so they are also marked
    ``no-store``. HSTS is only sent in production (HTTPS terminates at the
    reverse proxy).
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        """Add security headers to response."""
        response = await call_next(request)

        for name, value in _SECURITY_HEADERS.items():
            response.headers[name] = value

        if request.url.path.startswith("/api/"):
            response.headers["Cache-Control"] = "no-store, max-age=0"

        if settings.environment == "production":
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )

        return response


def _error_response(
    status_code: int,
    code: str,
    message: str,
    details: list[dict] | None = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(
            error=ErrorDetail(code=code, message=message, details=details)
        ).model_dump(),
    )


def api_error_handler(_request: Request, exc: APIError) -> JSONResponse:
    """Handle custom API errors.

    Args:
        request: The incoming request.
        exc: The APIError that was raised.

    Returns:
        JSONResponse with error envelope and appropriate status code.
    """
    return _error_response(exc.status_code, exc.code, exc.message, exc.details)


def validation_error_handler(
    _request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Convert FastAPI request validation errors to VALIDATION_ERROR (400).

    Args:
        request: The incoming request.
        exc: The RequestValidationError from Pydantic.

    Returns:
        JSONResponse with field-level details.
    """
    return _error_response(
        400,
        "VALIDATION_ERROR",
        "Request validation failed",
        [
            {"loc": list(e["loc"]), "msg": e["msg"], "type": e["type"]}
            for e in exc.errors()
        ],
    )


def store_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Map database failures to STORE_UNAVAILABLE (500).

    The driver error is logged, never returned.

    Args:
        request: The incoming request.
        exc: The SQLAlchemy error.

    Returns:
        JSONResponse with STORE_UNAVAILABLE code.
    """
    logger.error(
        "Database error",
        exc_info=exc,
        path=str(request.url.path),
        error_type=type(exc).__name__,
    )
    error = StoreUnavailableError()
    return _error_response(error.status_code, error.code, error.message)


def internal_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unhandled exceptions.

    Returns 500 INTERNAL_ERROR without exposing stack traces.

    Args:
        request: The incoming request.
        exc: The unhandled exception.

    Returns:
        JSONResponse with generic error message (500).
    """
    logger.exception("Unhandled exception", exc_info=exc, path=str(request.url.path))
    return _error_response(500, "INTERNAL_ERROR", "An unexpected error occurred")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application instance.
    """
    app = FastAPI(
        title="CIEPI Verification API",
        version="1.0.0",
        description="Email verification for the CIEPI registration portal",
    )

    # Starlette runs the LAST added middleware FIRST; CORS must see
    # preflight requests before anything else.
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Accept", "X-Request-ID"],
    )

    # Specific handlers first, then catch-all
    app.add_exception_handler(APIError, api_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_exception_handler(SQLAlchemyError, store_error_handler)
    app.add_exception_handler(Exception, internal_error_handler)

    app.state.limiter = limiter

    app.include_router(v1_router, prefix="/api/v1")

    @app.get("/health")
    def health_check() -> dict:
        """Liveness probe.

        Returns:
            {"status": "healthy"} if service is running.
        """
        return {"status": "healthy"}

    return app


# Used by uvicorn: uvicorn ciepi.main:app
app = create_app()
