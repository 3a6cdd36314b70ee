"""Correlation id and timing middleware.

The id comes from the configured header (``LOG_REQUEST_ID_HEADER``,
``X-Request-ID`` by default) or is generated. It is bound for the duration of
the handler, echoed on the response and used by every log record emitted
while the request is served.
"""

from __future__ import annotations

import logging
import re
import time
import uuid

from fastapi import Request, Response

from app.core.config import settings
from app.core.logging import request_context

logger = logging.getLogger(__name__)

# Client-supplied ids end up in log lines and response headers
_SAFE_REQUEST_ID = re.compile(r"[A-Za-z0-9._:-]{1,128}")


def resolve_request_id(incoming: str | None) -> str:
    """Accept a well-formed incoming id, otherwise generate one."""

    if incoming and _SAFE_REQUEST_ID.fullmatch(incoming):
        return incoming
    return uuid.uuid4().hex


async def request_id_middleware(request: Request, call_next) -> Response:
    """Bind a correlation id and report time to first byte.

    Streamed analysis bodies are produced after this returns, so
    ``X-Request-Duration-ms`` covers headers only.
    """

    header_name = settings.log.request_id_header
    request_id = resolve_request_id(request.headers.get(header_name))

    start = time.perf_counter()
    with request_context(request_id):
        response: Response = await call_next(request)
        duration_ms = (time.perf_counter() - start) * 1000
        logger.info(
            "http.request",
            extra={
                "method": request.method,
                "route": request.url.path,
                "status": response.status_code,
                "duration_ms": round(duration_ms, 2),
            },
        )

    response.headers[header_name] = request_id
    response.headers["X-Request-Duration-ms"] = f"{duration_ms:.2f}"
    return response
