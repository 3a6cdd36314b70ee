"""Tests for sensitive data filtering in logs."""

from __future__ import annotations

import json
import logging
from io import StringIO

import pytest

from app.core.logging import JsonFormatter, RequestIdFilter, SensitiveDataFilter, request_context


@pytest.fixture
def capture():
    """Logger wired like production: redaction filter plus JSON formatter."""

    logger = logging.getLogger("test_redaction")
    logger.setLevel(logging.INFO)
    logger.handlers.clear()
    logger.propagate = False

    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.addFilter(RequestIdFilter())
    handler.addFilter(SensitiveDataFilter())
    handler.setFormatter(JsonFormatter())
    logger.addHandler(handler)
    yield logger, stream
    logger.handlers.clear()


def test_sensitive_filter_redacts_api_keys(capture):
    logger, stream = capture

    logger.info(
        "test_event",
        extra={"api_key": "sk-secret-123", "llm_api_key": "another-secret", "safe_field": "visible"},
    )

    output = stream.getvalue()
    assert "sk-secret-123" not in output
    assert "another-secret" not in output
    assert "[REDACTED]" in output
    assert "visible" in output


def test_sensitive_filter_redacts_job_description_and_prompt(capture):
    logger, stream = capture

    logger.info(
        "analysis_event",
        extra={
            "job_description": "Looking for senior developer, contact jane@example.com",
            "prompt": "You are analyzing fit for Daniel",
            "char_count": 100,
        },
    )

    output = stream.getvalue()
    assert "senior developer" not in output
    assert "jane@example.com" not in output
    assert "analyzing fit" not in output
    assert "[REDACTED]" in output
    assert "char_count" in output


def test_sensitive_filter_allows_safe_fields(capture):
    logger, stream = capture

    logger.info(
        "safe_event",
        extra={"route": "/v1/analyze", "status": 200, "duration_ms": 150.5},
    )

    output = stream.getvalue()
    assert "/v1/analyze" in output
    assert "200" in output
    assert "[REDACTED]" not in output


def test_sensitive_filter_redacts_nested_dicts(capture):
    logger, stream = capture

    logger.info(
        "nested_event",
        extra={
            "headers": {"authorization": "Bearer secret-key", "user-agent": "pytest"},
            "safe_data": {"count": 5, "type": "test"},
        },
    )

    output = stream.getvalue()
    assert "secret-key" not in output
    assert "[REDACTED]" in output
    assert "pytest" in output


def test_request_id_is_attached_to_records(capture):
    logger, stream = capture
    with request_context("req-log-1"):
        logger.info("with_id")

    record = json.loads(stream.getvalue().splitlines()[-1])
    assert record["request_id"] == "req-log-1"


def test_long_free_text_is_truncated(capture):
    logger, stream = capture

    logger.info("raw_event", extra={"detail": "x" * 1000})

    record = json.loads(stream.getvalue())
    assert len(record["detail"]) < 300
    assert "truncated 800 chars" in record["detail"]
