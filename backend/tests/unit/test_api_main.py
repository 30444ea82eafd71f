"""Tests for FastAPI application and exception handlers."""

from unittest.mock import patch

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.exc import OperationalError

from ciepi.core.errors import (
    InternalError,
    NotFoundError,
    StoreUnavailableError,
    TokenAlreadyUsedError,
    TokenExpiredError,
    TokenNotFoundError,
    TokenSupersededError,
    ValidationError,
)
from ciepi.main import create_app


@pytest.fixture
def app():
    """Create test application instance."""
    return create_app()


@pytest.fixture
async def client(app):
    """Create async HTTP client for testing."""
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


class TestHealthEndpoint:
    """Tests for health check endpoint."""

    @pytest.mark.asyncio
    async def test_health_returns_healthy_status(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}


class TestAPIVersioning:
    """Tests for API versioning."""

    @pytest.mark.asyncio
    async def test_verification_routes_mounted_under_v1(self, app):
        paths = {route.path for route in app.routes}
        assert "/api/v1/verificacion/generar" in paths
        assert "/api/v1/verificacion/reenviar" in paths
        assert "/api/v1/verificacion/estado/{token}" in paths
        assert "/api/v1/verificacion/validar/{token}" in paths

    @pytest.mark.asyncio
    async def test_unknown_route_is_404(self, client):
        response = await client.get("/api/v1/nonexistent")
        assert response.status_code == 404


class TestExceptionHandlers:
    """Custom exceptions become HTTP responses with the error envelope."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("error", "status_code", "code"),
        [
            (TokenNotFoundError(), 404, "TOKEN_NOT_FOUND"),
            (TokenExpiredError(), 400, "TOKEN_EXPIRED"),
            (TokenAlreadyUsedError(), 400, "TOKEN_ALREADY_USED"),
            (TokenSupersededError(), 400, "TOKEN_SUPERSEDED"),
            (NotFoundError("Student", "42"), 404, "NOT_FOUND"),
            (ValidationError("Invalid input"), 400, "VALIDATION_ERROR"),
            (StoreUnavailableError(), 500, "STORE_UNAVAILABLE"),
            (InternalError(), 500, "INTERNAL_ERROR"),
        ],
    )
    async def test_api_error_mapping(self, app, client, error, status_code, code):
        @app.get("/test/api-error")
        async def raise_error():
            raise error

        response = await client.get("/test/api-error")
        assert response.status_code == status_code
        body = response.json()
        assert body["error"]["code"] == code
        assert "message" in body["error"]
        assert "data" not in body

    @pytest.mark.asyncio
    async def test_database_error_returns_store_unavailable(self, app, client):
        """Driver errors map to STORE_UNAVAILABLE without leaking details."""

        @app.get("/test/db-error")
        async def raise_db_error():
            raise OperationalError(
                "SELECT 1", {}, Exception("could not connect to server at 10.1.2.3")
            )

        response = await client.get("/test/db-error")
        assert response.status_code == 500
        body = response.json()
        assert body["error"]["code"] == "STORE_UNAVAILABLE"
        assert "10.1.2.3" not in response.text

    @pytest.mark.asyncio
    async def test_unhandled_exception_returns_internal_error(self, app, client):
        @app.get("/test/boom")
        async def boom():
            raise RuntimeError("secret stack detail")

        response = await client.get("/test/boom")
        assert response.status_code == 500
        assert response.json()["error"]["code"] == "INTERNAL_ERROR"
        assert "secret stack detail" not in response.text

    @pytest.mark.asyncio
    async def test_request_validation_returns_400(self, client):
        """Malformed bodies are VALIDATION_ERROR (400), not FastAPI's 422."""
        response = await client.post(
            "/api/v1/verificacion/generar", json={"purpose": "registration"}
        )
        assert response.status_code == 400
        body = response.json()
        assert body["error"]["code"] == "VALIDATION_ERROR"
        assert body["error"]["details"]


class TestCORSMiddleware:
    """Tests for CORS middleware configuration."""

    @pytest.mark.asyncio
    async def test_cors_allows_configured_origin(self, client):
        response = await client.options(
            "/health",
            headers={
                "Origin": "http://localhost:3000",
                "Access-Control-Request-Method": "GET",
            },
        )
        assert response.status_code == 200
        assert (
            response.headers.get("access-control-allow-origin")
            == "http://localhost:3000"
        )

    @pytest.mark.asyncio
    async def test_cors_denies_unconfigured_origin(self):
        with patch("ciepi.main.settings.allowed_origins", ["http://portal.test"]):
            test_app = create_app()
            transport = ASGITransport(app=test_app)
            async with AsyncClient(transport=transport, base_url="http://test") as ac:
                response = await ac.options(
                    "/health",
                    headers={
                        "Origin": "http://malicious-site.com",
                        "Access-Control-Request-Method": "GET",
                    },
                )
                allowed_origin = response.headers.get("access-control-allow-origin")
                assert allowed_origin != "http://malicious-site.com"


class TestSecurityHeadersMiddleware:
    """Tests for security headers middleware."""

    @pytest.mark.asyncio
    async def test_basic_headers(self, client):
        response = await client.get("/health")
        assert response.headers.get("x-frame-options") == "DENY"
        assert response.headers.get("x-content-type-options") == "nosniff"
        assert "default-src 'none'" in response.headers.get(
            "content-security-policy", ""
        )

    @pytest.mark.asyncio
    async def test_api_responses_not_cached(self, client):
        response = await client.get("/api/v1/nonexistent")
        assert response.headers.get("cache-control") == "no-store, max-age=0"

    @pytest.mark.asyncio
    async def test_no_hsts_outside_production(self, client):
        response = await client.get("/health")
        assert "strict-transport-security" not in response.headers

    @pytest.mark.asyncio
    async def test_hsts_in_production(self, client):
        with patch("ciepi.main.settings.environment", "production"):
            response = await client.get("/health")
        assert "max-age=31536000" in response.headers.get(
            "strict-transport-security", ""
        )
