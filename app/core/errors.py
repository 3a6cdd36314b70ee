"""Application-level exception types and wire error codes.

This module defines domain errors used across services/adapters, enabling
consistent error handling, logging, and stream error events.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Literal, TypedDict


class ErrorCode(str, Enum):
    """Machine-readable codes carried by terminal ``error`` stream events."""

    INVALID_REQUEST = "INVALID_REQUEST"
    EMPTY_JOB_DESCRIPTION = "EMPTY_JOB_DESCRIPTION"
    GUARDRAIL_BLOCKED = "GUARDRAIL_BLOCKED"
    TIMEOUT = "TIMEOUT"
    LLM_ERROR = "LLM_ERROR"
    PARSE_ERROR = "PARSE_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


LLMErrorType = Literal[
    "api_key_missing",
    "rate_limit",
    "timeout",
    "network",
    "server",
    "invalid_response",
]


class ErrorDetails(TypedDict, total=False):
    """Structured error context; logged, never sent to clients."""

    http_status: int


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ValidationAppError(AppError):
    """Raised when input/config validation fails."""


@dataclass
class LLMAppError(AppError):
    """Raised when LLM provider/client operations fail.

    ``error_type`` drives which generic user message is shown; the raw
    provider text stays in ``message`` and is only logged.
    """

    error_type: LLMErrorType = "server"
    retryable: bool = True


class ParseAppError(AppError):
    """Raised when model output cannot be turned into an assessment."""
