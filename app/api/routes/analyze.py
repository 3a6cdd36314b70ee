from __future__ import annotations

from contextlib import aclosing
from functools import lru_cache
from typing import AsyncIterator

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from app.adapters.content.file_store import FileContentStore
from app.adapters.guardrails.factory import create_safety_classifier
from app.adapters.llm.factory import create_llm_client
from app.core.config import settings
from app.core.errors import ErrorCode
from app.core.logging import get_request_id, request_context
from app.core.security_log import create_anonymized_request_id
from app.schemas.fit_analysis import AnalyzeRequest, ErrorEvent, is_terminal_event, to_json_line
from app.schemas.guardrails import FIT_ANALYSIS_GUARDRAIL_CONFIG
from app.services.analysis_service import AnalysisStreamEvent, FitAnalysisService
from app.services.guardrails_service import GuardrailsService
from app.services.input_validation import EMPTY_INPUT_MESSAGE, too_long_message

router = APIRouter(tags=["Fit Analysis"])

NDJSON_MEDIA_TYPE = "application/x-ndjson"


@lru_cache(maxsize=1)
def get_fit_analysis_service() -> FitAnalysisService:
    """Build the analysis service on first use from settings."""

    guardrails = None
    if settings.guardrails.enabled:
        guardrails = GuardrailsService(create_safety_classifier())
    guardrail_config = FIT_ANALYSIS_GUARDRAIL_CONFIG.model_copy(
        update={
            "block_threshold": settings.guardrails.block_threshold,
            "validate_output": settings.guardrails.validate_output,
        }
    )
    return FitAnalysisService(
        llm=create_llm_client(),
        content_store=FileContentStore(settings.portfolio.content_dir),
        guardrails=guardrails,
        guardrail_config=guardrail_config,
    )


def client_fingerprint(request: Request) -> str:
    """Derive the anonymized caller id from proxy headers and User-Agent."""

    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        ip = forwarded.split(",")[0].strip()
    else:
        ip = request.headers.get("x-real-ip") or (request.client.host if request.client else None)
    return create_anonymized_request_id(ip, request.headers.get("user-agent"))


async def _single(event: AnalysisStreamEvent) -> AsyncIterator[AnalysisStreamEvent]:
    yield event


async def _ndjson(
    events: AsyncIterator[AnalysisStreamEvent],
    correlation_id: str | None,
) -> AsyncIterator[str]:
    # The body is streamed after the middleware has reset the context
    with request_context(correlation_id):
        async with aclosing(events) as stream:
            async for event in stream:
                yield to_json_line(event)
                if is_terminal_event(event):
                    break


@router.post("/analyze", response_class=StreamingResponse)
async def analyze_job_description(
    body: AnalyzeRequest,
    request: Request,
    service: FitAnalysisService = Depends(get_fit_analysis_service),
) -> StreamingResponse:
    """Stream a fit analysis of the submitted job description.

    The response is newline-delimited JSON: progress events followed by
    exactly one ``complete`` or ``error`` event.
    """
    trimmed = body.job_description.strip()
    max_chars = settings.app.max_job_desc_chars

    if not trimmed:
        events = _single(ErrorEvent(code=ErrorCode.EMPTY_JOB_DESCRIPTION, message=EMPTY_INPUT_MESSAGE))
    elif len(trimmed) > max_chars:
        events = _single(ErrorEvent(code=ErrorCode.INVALID_REQUEST, message=too_long_message(max_chars)))
    else:
        events = service.stream_analysis(body.job_description, request_id=client_fingerprint(request))

    return StreamingResponse(
        _ndjson(events, get_request_id()),
        media_type=NDJSON_MEDIA_TYPE,
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
