from __future__ import annotations

import logging

import pytest
from fastapi.testclient import TestClient

from app.core.logging import get_request_id
from app.core.middleware import resolve_request_id
from app.main import app

client = TestClient(app)


def test_preserves_incoming_request_id_header():
    resp = client.get("/health", headers={"X-Request-ID": "test-request-id-123"})

    assert resp.status_code == 200
    assert resp.headers["X-Request-ID"] == "test-request-id-123"
    assert float(resp.headers["X-Request-Duration-ms"]) >= 0


def test_generates_request_id_when_missing():
    resp = client.get("/health")

    assert len(resp.headers["X-Request-ID"]) == 32


@pytest.mark.parametrize("incoming", ["has spaces", "x" * 129, "line\nbreak", ""])
def test_malformed_incoming_ids_are_replaced(incoming):
    assert resolve_request_id(incoming) != incoming


def test_request_is_logged_with_its_id(caplog):
    with caplog.at_level(logging.INFO, logger="app.core.middleware"):
        client.get("/health", headers={"X-Request-ID": "req-log-42"})

    record = next(r for r in caplog.records if r.getMessage() == "http.request")
    assert record.route == "/health"
    assert record.status == 200
    assert get_request_id() is None
