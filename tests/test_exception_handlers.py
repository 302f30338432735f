"""Tests for global exception handlers.

Validates that rate limiting errors raised inside routes are mapped to
consistent HTTP responses without leaking internals.
"""

import asyncio
import json
from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.core.errors import (
    AppError,
    InvalidConfigurationError,
    RateLimitExceededError,
    StoreUnavailableError,
)
from app.core.exception_handlers import general_exception_handler, setup_exception_handlers


@pytest.fixture
def app_with_handlers() -> FastAPI:
    """Create FastAPI app with exception handlers registered."""
    app = FastAPI()
    setup_exception_handlers(app)
    return app


@pytest.fixture
def client(app_with_handlers: FastAPI) -> TestClient:
    """Create test client with handlers enabled."""
    return TestClient(app_with_handlers)


class TestAppErrorHandler:
    """Test handler for AppError and subclasses."""

    def test_rate_limit_exceeded_returns_429(self, client: TestClient, app_with_handlers: FastAPI):
        """Verify RateLimitExceededError returns HTTP 429 with retry metadata."""
        @app_with_handlers.get("/test-limited")
        async def test_endpoint():
            raise RateLimitExceededError(
                limit=20,
                remaining_points=0,
                consumed_points=20,
                ms_before_next=12300,
            )

        response = client.get("/test-limited")

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "13"
        assert response.headers["X-RateLimit-Limit"] == "20"
        assert response.headers["X-RateLimit-Remaining"] == "0"
        data = response.json()
        assert data["error"]["code"] == "rate_limit_exceeded"
        assert data["error"]["details"]["ms_before_next"] == 12300
        assert data["error"]["details"]["remaining_points"] == 0

    def test_store_unavailable_returns_503(self, client: TestClient, app_with_handlers: FastAPI):
        """Verify StoreUnavailableError returns HTTP 503."""
        @app_with_handlers.get("/test-store")
        async def test_endpoint():
            raise StoreUnavailableError(
                code="store_unavailable",
                message="Rate limit counter store is not connected",
            )

        response = client.get("/test-store")

        assert response.status_code == 503
        assert response.json()["error"]["code"] == "store_unavailable"
        assert "Retry-After" not in response.headers

    def test_configuration_error_returns_500(self, client: TestClient, app_with_handlers: FastAPI):
        """Verify InvalidConfigurationError is treated as a server fault."""
        @app_with_handlers.get("/test-config")
        async def test_endpoint():
            raise InvalidConfigurationError(
                code="rate_limit_table_incomplete",
                message="No rate limits configured for modes: preview",
            )

        response = client.get("/test-config")

        assert response.status_code == 500
        assert response.json()["error"]["code"] == "rate_limit_table_incomplete"

    def test_error_response_format_is_consistent(self, client: TestClient, app_with_handlers: FastAPI):
        """Verify error responses have consistent JSON structure."""
        @app_with_handlers.get("/test-format")
        async def test_endpoint():
            raise StoreUnavailableError(code="test", message="test")

        response = client.get("/test-format")
        data = response.json()

        assert "error" in data
        assert "code" in data["error"]
        assert "message" in data["error"]
        assert "details" not in data["error"]


class TestGeneralExceptionHandler:
    """Test fallback handler for unexpected exceptions."""

    def test_unexpected_exception_handler_registered(self, app_with_handlers: FastAPI):
        """Verify fallback exception handler is registered."""
        assert Exception in app_with_handlers.exception_handlers

    def test_general_exception_handler_logic(self):
        """Verify general_exception_handler returns correct structure."""
        request = AsyncMock()
        request.url.path = "/test"
        request.method = "GET"

        exc = RuntimeError("Unexpected error: redis pool exhausted")
        response = asyncio.run(general_exception_handler(request, exc))

        response_body = response.body if isinstance(response.body, bytes) else bytes(response.body)
        data = json.loads(response_body.decode())
        assert response.status_code == 500
        assert data["error"]["code"] == "internal_server_error"
        assert "redis pool" not in data["error"]["message"]

    def test_general_exception_handler_never_leaks_stack_trace(self):
        """Verify stack traces are never included in response."""
        request = AsyncMock()
        request.url.path = "/test"
        request.method = "GET"

        exc = ValueError("Test error with details")
        response = asyncio.run(general_exception_handler(request, exc))

        response_text = bytes(response.body).decode()
        assert "Traceback" not in response_text
        assert "ValueError" not in response_text


class TestErrorHandlerIntegration:
    """Integration tests for exception handler setup."""

    def test_setup_exception_handlers_registers_handlers(self, app_with_handlers: FastAPI):
        """Verify setup_exception_handlers properly registers handlers."""
        assert AppError in app_with_handlers.exception_handlers
        assert Exception in app_with_handlers.exception_handlers

    def test_multiple_handler_setups_does_not_fail(self):
        """Verify calling setup_exception_handlers multiple times is safe."""
        app = FastAPI()

        setup_exception_handlers(app)
        setup_exception_handlers(app)

        assert AppError in app.exception_handlers
