"""Fit analysis orchestration streamed as progress and terminal events.

This service is the core business logic that turns a job description into a
stream of events ending in a MatchAssessment. It handles:
- Input safety validation before any generation happens
- Prompt construction from portfolio context
- Streaming generation under a single deadline with phase progress
- Parsing and optional output moderation
- Mapping every failure to exactly one terminal error event
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import aclosing
from dataclasses import dataclass
from datetime import datetime
from typing import AsyncIterator, Callable

from app.adapters.content.base import AbstractContentStore
from app.adapters.llm.base import AbstractLLMClient
from app.core.config import settings
from app.core.errors import ErrorCode, LLMAppError, LLMErrorType
from app.schemas.fit_analysis import (
    AnalysisPhase,
    AnalysisProgress,
    CompleteEvent,
    ErrorEvent,
    ProgressEvent,
)
from app.schemas.guardrails import FIT_ANALYSIS_GUARDRAIL_CONFIG, GuardrailConfig
from app.services.analysis_parser import (
    ParseFailure,
    ParseOptions,
    generate_unique_id,
    parse_analysis_response,
)
from app.services.guardrails_service import GuardrailsService
from app.services.prompt_builder import (
    ANALYSIS_USER_MESSAGE,
    PortfolioOwner,
    build_analysis_prompt,
)

logger = logging.getLogger(__name__)

TIMEOUT_MESSAGE = "The analysis is taking too long. Please try again."
PARSE_ERROR_MESSAGE = "Received an unexpected response. Please try again."
INTERNAL_ERROR_MESSAGE = "Something went wrong on our end. Please try again."

# Safe to show to users; never carries provider details
LLM_ERROR_MESSAGES: dict[LLMErrorType, str] = {
    "network": "Unable to connect. Please check your connection and try again.",
    "timeout": TIMEOUT_MESSAGE,
    "server": INTERNAL_ERROR_MESSAGE,
    "rate_limit": "Too many requests. Please wait a moment and try again.",
    "invalid_response": PARSE_ERROR_MESSAGE,
    "api_key_missing": INTERNAL_ERROR_MESSAGE,
}

# Substrings in the streamed JSON that advance the reported phase, in order
PHASE_MARKERS: tuple[tuple[str, AnalysisPhase], ...] = (
    ('"alignments"', AnalysisPhase.FINDING_ALIGNMENTS),
    ('"gaps"', AnalysisPhase.IDENTIFYING_GAPS),
    ('"recommendation"', AnalysisPhase.GENERATING_RECOMMENDATION),
)

AnalysisStreamEvent = ProgressEvent | CompleteEvent | ErrorEvent


@dataclass(frozen=True)
class _StreamEnd:
    """Queue sentinel: generation finished normally."""


@dataclass(frozen=True)
class _StreamFailure:
    """Queue sentinel: the producer raised."""

    error: BaseException


def _progress(phase: AnalysisPhase) -> ProgressEvent:
    return ProgressEvent.from_progress(AnalysisProgress.for_phase(phase))


def user_message_for_llm_error(error: LLMAppError) -> str:
    return LLM_ERROR_MESSAGES.get(error.error_type, INTERNAL_ERROR_MESSAGE)


class FitAnalysisService:
    """Streams a fit analysis for one job description at a time.

    The service is stateless across requests; every call to
    :meth:`stream_analysis` yields progress events followed by exactly one
    terminal ``complete`` or ``error`` event.

    Attributes:
        llm: LLM client used for streaming generation.
        content_store: Source of portfolio context.
        guardrails: Input/output safety validator, or None when disabled.
        guardrail_config: Checks, threshold and output moderation switch.
        owner: Candidate identity used in the prompt.
        timeout_seconds: Deadline covering prompt build plus generation.
    """

    def __init__(
        self,
        llm: AbstractLLMClient,
        content_store: AbstractContentStore,
        guardrails: GuardrailsService | None = None,
        guardrail_config: GuardrailConfig = FIT_ANALYSIS_GUARDRAIL_CONFIG,
        owner: PortfolioOwner | None = None,
        timeout_seconds: float | None = None,
        generate_id: Callable[[], str] = generate_unique_id,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self.llm = llm
        self.content_store = content_store
        self.guardrails = guardrails
        self.guardrail_config = guardrail_config
        self.owner = owner or PortfolioOwner.from_settings(settings.portfolio)
        self.timeout_seconds = (
            settings.app.analysis_timeout_seconds if timeout_seconds is None else timeout_seconds
        )
        self._generate_id = generate_id
        self._now = now

    def _parse_options(self, job_description: str) -> ParseOptions:
        if self._now is None:
            return ParseOptions(job_description=job_description, generate_id=self._generate_id)
        return ParseOptions(
            job_description=job_description,
            generate_id=self._generate_id,
            now=self._now,
        )

    async def _produce(self, job_description: str, queue: asyncio.Queue) -> None:
        """Build the prompt and push generated chunks onto ``queue``."""

        try:
            context = await self.content_store.load_context()
            prompt = build_analysis_prompt(job_description, context, self.owner)
            messages = [{"role": "user", "content": ANALYSIS_USER_MESSAGE}]
            generation = self.llm.stream_text(prompt, messages, response_format="json_object")
            async with aclosing(generation) as stream:
                async for chunk in stream:
                    await queue.put(chunk)
        except Exception as exc:  # noqa: BLE001
            await queue.put(_StreamFailure(exc))
            return
        await queue.put(_StreamEnd())

    async def _generate(self, job_description: str, chunks: list[str]) -> AsyncIterator[ProgressEvent]:
        """Run generation under the deadline, yielding phase progress.

        Generated text is appended to ``chunks``.

        Raises:
            asyncio.TimeoutError: If the deadline passes first.
            Exception: Whatever the producer raised.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout_seconds
        queue: asyncio.Queue = asyncio.Queue()
        producer = asyncio.create_task(self._produce(job_description, queue))
        accumulated = ""
        marker_index = -1

        try:
            while True:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    raise asyncio.TimeoutError
                item = await asyncio.wait_for(queue.get(), timeout=remaining)

                if isinstance(item, _StreamEnd):
                    return
                if isinstance(item, _StreamFailure):
                    raise item.error

                chunks.append(item)
                accumulated += item
                for index in range(marker_index + 1, len(PHASE_MARKERS)):
                    marker, phase = PHASE_MARKERS[index]
                    if marker in accumulated:
                        marker_index = index
                        yield _progress(phase)
        finally:
            if not producer.done():
                producer.cancel()
            await asyncio.gather(producer, return_exceptions=True)

    async def stream_analysis(
        self,
        job_description: str,
        request_id: str | None = None,
    ) -> AsyncIterator[AnalysisStreamEvent]:
        """Analyze a job description against the portfolio.

        Args:
            job_description: Non-empty job description text.
            request_id: Anonymized caller id used for security logging.

        Yields:
            Progress events in phase order, then one terminal event.
        """
        started = time.perf_counter()
        logger.info("analysis.started", extra={"input_length": len(job_description)})

        yield _progress(AnalysisPhase.PREPARING)

        try:
            if self.guardrails is not None:
                validation = await self.guardrails.validate_input(
                    job_description,
                    self.guardrail_config,
                    request_id=request_id,
                )
                if not validation.passed:
                    yield ErrorEvent(
                        code=ErrorCode.GUARDRAIL_BLOCKED,
                        message=validation.user_message or INTERNAL_ERROR_MESSAGE,
                    )
                    return

            yield _progress(AnalysisPhase.ANALYZING)

            chunks: list[str] = []
            async with aclosing(self._generate(job_description, chunks)) as events:
                async for event in events:
                    yield event
            raw_text = "".join(chunks)

            yield _progress(AnalysisPhase.FINALIZING)

            if self.guardrail_config.validate_output and self.guardrails is not None:
                output_check = await self.guardrails.validate_output(
                    raw_text,
                    self.guardrail_config,
                    request_id=request_id,
                )
                if not output_check.passed:
                    yield ErrorEvent(
                        code=ErrorCode.GUARDRAIL_BLOCKED,
                        message=output_check.user_message or INTERNAL_ERROR_MESSAGE,
                    )
                    return

            result = parse_analysis_response(raw_text, self._parse_options(job_description))
        except asyncio.TimeoutError:
            logger.warning("analysis.timeout", extra={"timeout_seconds": self.timeout_seconds})
            yield ErrorEvent(code=ErrorCode.TIMEOUT, message=TIMEOUT_MESSAGE)
            return
        except LLMAppError as exc:
            logger.error(
                "analysis.llm_failed",
                extra={
                    "error_type": exc.error_type,
                    "error_code": exc.code,
                    "upstream_status": (exc.details or {}).get("http_status"),
                },
            )
            if exc.error_type == "timeout":
                yield ErrorEvent(code=ErrorCode.TIMEOUT, message=TIMEOUT_MESSAGE)
            else:
                yield ErrorEvent(code=ErrorCode.LLM_ERROR, message=user_message_for_llm_error(exc))
            return
        except Exception as exc:  # noqa: BLE001
            logger.exception("analysis.internal_error", extra={"error_type": type(exc).__name__})
            yield ErrorEvent(code=ErrorCode.INTERNAL_ERROR, message=INTERNAL_ERROR_MESSAGE)
            return

        if isinstance(result, ParseFailure):
            logger.warning(
                "analysis.parse_failed",
                extra={"parse_error": result.error, "raw_length": len(raw_text)},
            )
            yield ErrorEvent(code=ErrorCode.PARSE_ERROR, message=PARSE_ERROR_MESSAGE)
            return

        assessment = result.assessment
        logger.info(
            "analysis.completed",
            extra={
                "confidence_score": assessment.confidence_score,
                "alignment_count": len(assessment.alignment_areas),
                "gap_count": len(assessment.gap_areas),
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
            },
        )
        yield ProgressEvent.from_progress(AnalysisProgress.completed())
        yield CompleteEvent(assessment=assessment)
