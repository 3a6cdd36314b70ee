"""Transports that deliver analysis events to the client."""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator

import httpx

from app.client.state import FitAnalysisErrorType

logger = logging.getLogger(__name__)

GENERIC_MESSAGE = "Something went wrong. Please try again."
RATE_LIMIT_MESSAGE = "Too many requests. Please wait a moment and try again."
TIMEOUT_MESSAGE = "The analysis is taking too long. Please try again."
NETWORK_MESSAGE = "Unable to connect. Please check your connection and try again."
UNEXPECTED_RESPONSE_MESSAGE = "Received an unexpected response. Please try again."


class TransportError(Exception):
    """A failure delivering the event stream, already classified for display."""

    def __init__(
        self,
        error_type: FitAnalysisErrorType,
        message: str,
        retryable: bool = True,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.error_type = error_type
        self.message = message
        self.retryable = retryable
        self.status_code = status_code


class AbstractAnalysisTransport(ABC):
    """Interface for submitting a job description and reading its events."""

    @abstractmethod
    def stream(self, job_description: str) -> AsyncIterator[dict[str, Any]]:
        """Submit ``job_description`` and yield raw event dicts as they arrive.

        Implementations are async generators so callers can close them early.

        Raises:
            TransportError: If the request fails or the stream is unreadable.
        """
        ...


def _error_from_response(response: httpx.Response) -> TransportError:
    status = response.status_code
    if status == 429:
        return TransportError("server", RATE_LIMIT_MESSAGE, status_code=status)
    if status == 400:
        message = GENERIC_MESSAGE
        try:
            message = response.json()["error"]["message"]
        except (ValueError, KeyError, TypeError):
            pass
        return TransportError("validation", message, retryable=False, status_code=status)
    if status == 504:
        return TransportError("timeout", TIMEOUT_MESSAGE, status_code=status)
    return TransportError("server", GENERIC_MESSAGE, status_code=status)


class HttpAnalysisTransport(AbstractAnalysisTransport):
    """Reads NDJSON events from ``POST /v1/analyze`` with httpx.

    Attributes:
        base_url: Server root, e.g. ``http://localhost:8000``.
        path: Analysis endpoint path.
        timeout_seconds: Client-side timeout for connect and each read.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        *,
        path: str = "/v1/analyze",
        timeout_seconds: float = 35.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url
        self.path = path
        self.timeout_seconds = timeout_seconds
        self._client = client

    async def stream(self, job_description: str) -> AsyncIterator[dict[str, Any]]:
        owns_client = self._client is None
        client = self._client or httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout_seconds,
        )
        try:
            async with client.stream(
                "POST",
                self.path,
                json={"job_description": job_description},
                headers={"Accept": "application/x-ndjson"},
            ) as response:
                if response.status_code >= 400:
                    await response.aread()
                    logger.warning(
                        "transport.http_error",
                        extra={"status_code": response.status_code},
                    )
                    raise _error_from_response(response)

                async for line in response.aiter_lines():
                    if not line.strip():
                        continue
                    try:
                        event = json.loads(line)
                    except json.JSONDecodeError as exc:
                        raise TransportError("parse", UNEXPECTED_RESPONSE_MESSAGE) from exc
                    if not isinstance(event, dict):
                        raise TransportError("parse", UNEXPECTED_RESPONSE_MESSAGE)
                    yield event
        except httpx.TimeoutException as exc:
            raise TransportError("timeout", TIMEOUT_MESSAGE) from exc
        except httpx.TransportError as exc:
            logger.warning("transport.network_error", extra={"error_type": type(exc).__name__})
            raise TransportError("network", NETWORK_MESSAGE) from exc
        finally:
            if owns_client:
                await client.aclose()
