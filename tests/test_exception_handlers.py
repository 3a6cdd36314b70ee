"""Tests for global exception handlers.

Validates that all exception types are handled consistently with
proper HTTP status codes, wire error codes, and no information leakage.
"""

import asyncio
import json
import logging
from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from pydantic import BaseModel

from app.core.errors import (
    AppError,
    LLMAppError,
    ParseAppError,
    ValidationAppError,
)
from app.core.exception_handlers import (
    GENERIC_ERROR_MESSAGE,
    INVALID_REQUEST_MESSAGE,
    general_exception_handler,
    setup_exception_handlers,
)


class _Body(BaseModel):
    job_description: str


@pytest.fixture
def app_with_handlers() -> FastAPI:
    """Create FastAPI app with exception handlers registered."""
    app = FastAPI()
    setup_exception_handlers(app)

    @app.post("/echo")
    async def echo(body: _Body):
        return {"ok": True}

    return app


@pytest.fixture
def client(app_with_handlers: FastAPI) -> TestClient:
    return TestClient(app_with_handlers, raise_server_exceptions=False)


def _route_raising(app: FastAPI, path: str, exc: Exception) -> None:
    @app.get(path)
    async def endpoint():
        raise exc


class TestAppErrorHandler:
    """Test handler for AppError and subclasses."""

    @pytest.mark.parametrize(
        ("exc", "status", "code"),
        [
            (ValidationAppError(code="bad", message="Job description is too long."), 400, "INVALID_REQUEST"),
            (LLMAppError(code="llm_timeout", message="read timeout", error_type="timeout"), 504, "TIMEOUT"),
            (LLMAppError(code="llm_server_error", message="HTTP 500"), 502, "LLM_ERROR"),
            (ParseAppError(code="analysis_parse_failed", message="bad json"), 502, "PARSE_ERROR"),
            (AppError(code="other", message="other"), 500, "INTERNAL_ERROR"),
        ],
    )
    def test_status_and_wire_code(self, client, app_with_handlers, exc, status, code):
        _route_raising(app_with_handlers, "/raise", exc)

        response = client.get("/raise")

        assert response.status_code == status
        data = response.json()
        assert data["error"]["code"] == code
        assert "request_id" in data["error"]

    def test_client_errors_keep_their_message(self, client, app_with_handlers):
        _route_raising(
            app_with_handlers,
            "/too-long",
            ValidationAppError(code="too_long", message="Job description is too long."),
        )

        assert client.get("/too-long").json()["error"]["message"] == "Job description is too long."

    def test_server_errors_hide_provider_detail(self, client, app_with_handlers):
        _route_raising(
            app_with_handlers,
            "/llm",
            LLMAppError(code="llm_auth_failed", message="Incorrect API key sk-live-123"),
        )

        data = client.get("/llm").json()

        assert data["error"]["message"] == GENERIC_ERROR_MESSAGE
        assert "sk-live-123" not in json.dumps(data)

    def test_upstream_status_is_logged_not_returned(self, client, app_with_handlers, caplog):
        _route_raising(
            app_with_handlers,
            "/upstream",
            LLMAppError(code="llm_server_error", message="HTTP 503", details={"http_status": 503}),
        )

        with caplog.at_level(logging.WARNING):
            data = client.get("/upstream").json()

        record = next(r for r in caplog.records if r.getMessage() == "app_error_handled")
        assert record.upstream_status == 503
        assert "503" not in json.dumps(data)


class TestRequestValidationHandler:
    def test_missing_field_returns_invalid_request(self, client):
        response = client.post("/echo", json={"text": "no job description"})

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "INVALID_REQUEST"
        assert error["message"] == INVALID_REQUEST_MESSAGE

    def test_non_json_body_returns_invalid_request(self, client):
        response = client.post("/echo", content="nope", headers={"Content-Type": "application/json"})

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_REQUEST"


class TestGeneralExceptionHandler:
    """Test fallback handler for unexpected exceptions."""

    def test_unexpected_exception_returns_500(self, client, app_with_handlers):
        _route_raising(app_with_handlers, "/boom", RuntimeError("database connection failed"))

        response = client.get("/boom")

        assert response.status_code == 500
        data = response.json()
        assert data["error"]["code"] == "INTERNAL_ERROR"
        assert "database connection" not in data["error"]["message"]

    def test_general_exception_handler_never_leaks_stack_trace(self):
        request = AsyncMock()
        request.url.path = "/test"
        request.method = "GET"

        response = asyncio.run(general_exception_handler(request, ValueError("Test error with details")))

        response_text = bytes(response.body).decode()
        assert "Traceback" not in response_text
        assert "File \"" not in response_text
        assert "ValueError" not in response_text


def test_setup_exception_handlers_registers_handlers(app_with_handlers: FastAPI):
    assert AppError in app_with_handlers.exception_handlers
    assert Exception in app_with_handlers.exception_handlers


def test_multiple_handler_setups_does_not_fail():
    app = FastAPI()

    setup_exception_handlers(app)
    setup_exception_handlers(app)

    assert AppError in app.exception_handlers
