"""Client controller driving the analysis state machine from a transport."""

from __future__ import annotations

import logging
import uuid
from contextlib import aclosing
from typing import Callable

from pydantic import TypeAdapter, ValidationError

from app.client.state import (
    AnalysisFailed,
    AnalysisProgressed,
    AnalysisSucceeded,
    CancelAnalysis,
    ClearError,
    ClearHistory,
    FitAnalysisAction,
    FitAnalysisError,
    FitAnalysisErrorType,
    FitAnalysisState,
    LoadHistoryItem,
    RestoreSession,
    SetJobDescription,
    StartAnalysis,
    fit_analysis_reducer,
)
from app.client.storage import InMemorySessionStorage, KeyValueStorage, SessionHistoryStore
from app.client.transport import (
    GENERIC_MESSAGE,
    UNEXPECTED_RESPONSE_MESSAGE,
    AbstractAnalysisTransport,
    TransportError,
)
from app.core.errors import ErrorCode
from app.schemas.fit_analysis import (
    AnalysisEvent,
    AnalysisProgress,
    CompleteEvent,
    ErrorEvent,
    ProgressEvent,
)
from app.services.input_validation import validate_job_description

logger = logging.getLogger(__name__)

_EVENT_ADAPTER: TypeAdapter = TypeAdapter(AnalysisEvent)

ERROR_CODE_TYPES: dict[ErrorCode, FitAnalysisErrorType] = {
    ErrorCode.GUARDRAIL_BLOCKED: "guardrail",
    ErrorCode.TIMEOUT: "timeout",
    ErrorCode.PARSE_ERROR: "parse",
    ErrorCode.LLM_ERROR: "server",
    ErrorCode.INTERNAL_ERROR: "server",
    ErrorCode.EMPTY_JOB_DESCRIPTION: "validation",
    ErrorCode.INVALID_REQUEST: "validation",
}

_NON_RETRYABLE_TYPES: frozenset[str] = frozenset({"guardrail", "validation"})


def error_from_event(event: ErrorEvent) -> FitAnalysisError:
    """Classify a terminal error event for display."""

    error_type = ERROR_CODE_TYPES.get(event.code, "unknown")
    return FitAnalysisError(
        type=error_type,
        message=event.message,
        retryable=error_type not in _NON_RETRYABLE_TYPES,
    )


def _new_request_id() -> str:
    return uuid.uuid4().hex


class FitAnalysisController:
    """Owns the client state and persists history after every change.

    Attributes:
        transport: Delivers the event stream for a submission.
        history_store: Session persistence for completed analyses.
        state: Current immutable state.
    """

    def __init__(
        self,
        transport: AbstractAnalysisTransport,
        storage: KeyValueStorage | None = None,
        *,
        request_id_factory: Callable[[], str] = _new_request_id,
    ) -> None:
        self.transport = transport
        self.history_store = SessionHistoryStore(storage or InMemorySessionStorage())
        self.state = FitAnalysisState()
        self._request_id_factory = request_id_factory

        restored = self.history_store.load()
        if restored:
            self.state = fit_analysis_reducer(self.state, RestoreSession(restored))

    def dispatch(self, action: FitAnalysisAction) -> FitAnalysisState:
        previous = self.state
        self.state = fit_analysis_reducer(previous, action)
        if self.state.history is not previous.history:
            self.history_store.save(self.state.history)
        return self.state

    def set_job_description(self, text: str) -> FitAnalysisState:
        validation = validate_job_description(text)
        return self.dispatch(SetJobDescription(text, warning=validation.warning))

    async def submit(self) -> FitAnalysisState:
        """Validate the current text locally, then run one analysis."""

        text = self.state.job_description
        validation = validate_job_description(text)
        if not validation.is_valid:
            return self.dispatch(
                AnalysisFailed(
                    request_id=self.state.active_request_id,
                    error=FitAnalysisError("validation", validation.error or GENERIC_MESSAGE, retryable=False),
                    job_description=text,
                )
            )
        return await self._run(text)

    async def retry(self) -> FitAnalysisState:
        """Re-submit the exact text of the last failed analysis."""

        failed_text = self.state.last_failed_job_description
        if failed_text is None or self.state.is_analyzing:
            return self.state
        if self.state.error is not None and not self.state.error.retryable:
            return self.state
        self.dispatch(SetJobDescription(failed_text, warning=validate_job_description(failed_text).warning))
        return await self.submit()

    def cancel(self) -> FitAnalysisState:
        return self.dispatch(CancelAnalysis())

    def load_history_item(self, history_id: str) -> FitAnalysisState:
        return self.dispatch(LoadHistoryItem(history_id))

    def clear_history(self) -> FitAnalysisState:
        state = self.dispatch(ClearHistory())
        self.history_store.clear()
        return state

    def clear_error(self) -> FitAnalysisState:
        return self.dispatch(ClearError())

    def _fail(self, request_id: str, job_description: str, error: FitAnalysisError) -> FitAnalysisState:
        return self.dispatch(AnalysisFailed(request_id, error, job_description))

    async def _run(self, job_description: str) -> FitAnalysisState:
        request_id = self._request_id_factory()
        self.dispatch(StartAnalysis(request_id, job_description))

        try:
            async with aclosing(self.transport.stream(job_description)) as events:
                async for raw in events:
                    if self.state.active_request_id != request_id:
                        logger.debug("analysis.stream_abandoned", extra={"reason": "stale"})
                        return self.state

                    try:
                        event = _EVENT_ADAPTER.validate_python(raw)
                    except ValidationError:
                        return self._fail(
                            request_id,
                            job_description,
                            FitAnalysisError("parse", UNEXPECTED_RESPONSE_MESSAGE),
                        )

                    if isinstance(event, ProgressEvent):
                        progress = AnalysisProgress(
                            phase=event.phase,
                            message=event.message,
                            percent=event.percent,
                        )
                        self.dispatch(AnalysisProgressed(request_id, progress))
                    elif isinstance(event, CompleteEvent):
                        return self.dispatch(
                            AnalysisSucceeded(request_id, event.assessment, job_description)
                        )
                    else:
                        return self._fail(request_id, job_description, error_from_event(event))
        except TransportError as exc:
            return self._fail(
                request_id,
                job_description,
                FitAnalysisError(exc.error_type, exc.message, retryable=exc.retryable),
            )

        if self.state.active_request_id != request_id:
            return self.state
        logger.warning("analysis.stream_incomplete")
        return self._fail(request_id, job_description, FitAnalysisError("unknown", GENERIC_MESSAGE))
