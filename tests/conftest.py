"""Pytest configuration and fixtures shared across all test modules.

This file is automatically loaded by pytest before running any tests, so the
environment variables below are in place before settings are imported.
"""

import json
import os

# CRITICAL: Set this before any imports that might load settings
os.environ["APP_ENV"] = "testing"
os.environ.setdefault("LLM_PROVIDER", "openai")
os.environ.setdefault("LLM_MODEL", "gpt-4o-mini")
os.environ.setdefault("LLM_API_KEY", "test-key-123")
os.environ.setdefault("GUARDRAIL_ENABLED", "true")
os.environ.setdefault("LOG_FORMAT", "plain")

from typing import Any

import pytest

from tests.fakes import make_llm_payload


@pytest.fixture
def llm_payload() -> dict[str, Any]:
    return make_llm_payload()


@pytest.fixture
def llm_text(llm_payload: dict[str, Any]) -> str:
    return json.dumps(llm_payload)
