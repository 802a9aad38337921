"""Tests for global exception handlers.

Validates that all exception types are handled consistently with
proper HTTP status codes, error format, and no information leakage.
"""

import asyncio
import json
from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.core.errors import (
    AppError,
    NotFoundAppError,
    PreconditionFailedError,
    QuotaExceededError,
    StorageAppError,
    StorageIntegrityError,
    StorageTimeoutError,
    UnsupportedVersionError,
    ValidationAppError,
)
from app.core.exception_handlers import setup_exception_handlers, status_for


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


def _raise_on(app: FastAPI, path: str, exc: Exception) -> None:
    @app.get(path)
    async def endpoint():
        raise exc


@pytest.mark.parametrize(
    ("exc", "status_code"),
    [
        (ValidationAppError(code="v", message="m"), 400),
        (UnsupportedVersionError(code="u", message="m"), 400),
        (NotFoundAppError(code="n", message="m"), 404),
        (PreconditionFailedError(code="p", message="m"), 412),
        (QuotaExceededError(code="q", message="m"), 429),
        (StorageTimeoutError(code="t", message="m"), 503),
        (StorageIntegrityError(code="i", message="m"), 500),
        (StorageAppError(code="s", message="m"), 500),
    ],
)
def test_status_mapping(exc: AppError, status_code: int):
    assert status_for(exc) == status_code


class TestAppErrorHandler:
    """Test handler for AppError and subclasses."""

    def test_not_found_returns_404(self, client: TestClient, app_with_handlers: FastAPI):
        _raise_on(
            app_with_handlers,
            "/test-not-found",
            NotFoundAppError(
                code="company_not_found",
                message="The company doesn't exist in the database.",
                details={"entity": "Company", "entity_id": "42"},
            ),
        )

        response = client.get("/test-not-found")

        assert response.status_code == 404
        data = response.json()
        assert data["error"]["code"] == "company_not_found"
        assert data["error"]["details"]["entity_id"] == "42"
        assert "request_id" in data["error"]

    def test_quota_error_sets_retry_after(self, client: TestClient, app_with_handlers: FastAPI):
        _raise_on(
            app_with_handlers,
            "/test-quota",
            QuotaExceededError(
                code="quota_exceeded",
                message="API calls quota exceeded! maximum admitted 1 per 1m.",
                details={"limit": 1, "period": "1m", "retry_after": 42},
            ),
        )

        response = client.get("/test-quota")

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "42"

    def test_storage_timeout_is_retryable(self, client: TestClient, app_with_handlers: FastAPI):
        _raise_on(
            app_with_handlers,
            "/test-timeout",
            StorageTimeoutError(code="storage_timeout", message="Storage deadline exceeded"),
        )

        response = client.get("/test-timeout")

        assert response.status_code == 503
        assert response.headers["Retry-After"] == "1"

    def test_unsupported_version_lists_versions(
        self, client: TestClient, app_with_handlers: FastAPI
    ):
        _raise_on(
            app_with_handlers,
            "/test-version",
            UnsupportedVersionError(
                code="unsupported_api_version",
                message="API version '3.0' is not supported.",
                details={"requested_version": "3.0", "supported_versions": ["1.0", "2.0"]},
            ),
        )

        response = client.get("/test-version")

        assert response.status_code == 400
        assert response.headers["api-supported-versions"] == "1.0, 2.0"

    def test_error_response_format_is_consistent(
        self, client: TestClient, app_with_handlers: FastAPI
    ):
        """Verify error responses have consistent JSON structure."""
        _raise_on(app_with_handlers, "/test-format", ValidationAppError(code="test", message="test"))

        data = client.get("/test-format").json()

        # Required fields always present
        assert "error" in data
        assert "code" in data["error"]
        assert "message" in data["error"]
        assert "request_id" in data["error"]
        assert "details" not in data["error"]


class TestGeneralExceptionHandler:
    """Test fallback handler for unexpected exceptions."""

    def test_unexpected_exception_handler_registered(self, app_with_handlers: FastAPI):
        """Verify fallback exception handler is registered."""
        assert Exception in app_with_handlers.exception_handlers

    def test_general_exception_handler_never_leaks_details(self):
        """Verify internal messages and stack traces are never included in response."""
        from app.core.exception_handlers import general_exception_handler

        request = AsyncMock()
        request.url.path = "/test"
        request.method = "GET"

        exc = RuntimeError("Unexpected error: database connection failed")
        response = asyncio.run(general_exception_handler(request, exc))

        response_body = response.body if isinstance(response.body, bytes) else bytes(response.body)
        data = json.loads(response_body.decode())
        assert response.status_code == 500
        assert data["error"]["code"] == "internal_server_error"
        assert "database connection" not in data["error"]["message"]
        assert "Traceback" not in response_body.decode()
        assert "RuntimeError" not in response_body.decode()


class TestErrorHandlerIntegration:
    """Integration tests for exception handler setup."""

    def test_setup_exception_handlers_registers_handlers(self, app_with_handlers: FastAPI):
        assert AppError in app_with_handlers.exception_handlers
        assert Exception in app_with_handlers.exception_handlers

    def test_multiple_handler_setups_does_not_fail(self):
        """Verify calling setup_exception_handlers multiple times is safe."""
        app = FastAPI()

        setup_exception_handlers(app)
        setup_exception_handlers(app)

        assert AppError in app.exception_handlers
