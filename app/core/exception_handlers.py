"""Global exception handlers for consistent JSON error responses.

Errors raised before a stream starts (malformed bodies, service wiring
failures) are returned as ``{"error": {code, message, request_id}}`` with a
wire error code. Once a stream has started, failures travel as terminal
``error`` events instead.
"""

import logging

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.core.errors import (
    AppError,
    ErrorCode,
    LLMAppError,
    ParseAppError,
    ValidationAppError,
)
from app.core.logging import get_request_id

logger = logging.getLogger(__name__)

INVALID_REQUEST_MESSAGE = "Invalid request format. Expected { job_description: string }"
GENERIC_ERROR_MESSAGE = "Something went wrong on our end. Please try again."


def _status_and_code(exc: AppError) -> tuple[int, ErrorCode]:
    if isinstance(exc, ValidationAppError):
        return 400, ErrorCode.INVALID_REQUEST
    if isinstance(exc, LLMAppError):
        if exc.error_type == "timeout":
            return 504, ErrorCode.TIMEOUT
        return 502, ErrorCode.LLM_ERROR
    if isinstance(exc, ParseAppError):
        return 502, ErrorCode.PARSE_ERROR
    return 500, ErrorCode.INTERNAL_ERROR


def _error_response(status_code: int, code: ErrorCode, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": {
                "code": code.value,
                "message": message,
                "request_id": get_request_id(),
            }
        },
    )


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Handle domain errors raised outside of a stream.

    Provider and parser messages are only logged; clients get a generic
    message for server-side failures.
    """
    status_code, code = _status_and_code(exc)

    logger.warning(
        "app_error_handled",
        extra={
            "error_code": exc.code,
            "wire_code": code.value,
            "status_code": status_code,
            "upstream_status": (exc.details or {}).get("http_status"),
        },
    )

    message = exc.message if status_code == 400 else GENERIC_ERROR_MESSAGE
    return _error_response(status_code, code, message)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed request bodies become 400 INVALID_REQUEST."""

    logger.info(
        "request_validation_failed",
        extra={"error_count": len(exc.errors()), "request_path": request.url.path},
    )
    return _error_response(400, ErrorCode.INVALID_REQUEST, INVALID_REQUEST_MESSAGE)


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Fallback for unexpected errors; never leaks implementation details."""

    logger.error(
        "unhandled_exception",
        extra={
            "error_type": type(exc).__name__,
            "request_path": request.url.path,
            "request_method": request.method,
        },
    )
    return _error_response(500, ErrorCode.INTERNAL_ERROR, GENERIC_ERROR_MESSAGE)


def setup_exception_handlers(app) -> None:
    """Register all exception handlers with the FastAPI app."""

    app.exception_handler(AppError)(app_error_handler)
    app.exception_handler(RequestValidationError)(request_validation_handler)
    app.exception_handler(Exception)(general_exception_handler)
