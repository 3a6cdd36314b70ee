"""Analysis state machine: immutable state, actions and a pure reducer.

States move ``idle -> analyzing -> (success | error)``. Every response-type
action carries the request id it belongs to; anything that does not match
``active_request_id`` is stale and ignored.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Literal, Union

from app.schemas.fit_analysis import MAX_HISTORY_ITEMS, AnalysisProgress, MatchAssessment

AnalysisStatus = Literal["idle", "analyzing", "success", "error"]
FitAnalysisErrorType = Literal[
    "validation",
    "guardrail",
    "network",
    "timeout",
    "server",
    "parse",
    "unknown",
]


@dataclass(frozen=True)
class FitAnalysisError:
    type: FitAnalysisErrorType
    message: str
    retryable: bool = True


@dataclass(frozen=True)
class HistoryEntry:
    """A completed assessment plus the full text that produced it."""

    assessment: MatchAssessment
    job_description_full: str

    @property
    def id(self) -> str:
        return self.assessment.id


@dataclass(frozen=True)
class FitAnalysisState:
    job_description: str = ""
    status: AnalysisStatus = "idle"
    current_result: MatchAssessment | None = None
    history: tuple[HistoryEntry, ...] = ()
    error: FitAnalysisError | None = None
    last_failed_job_description: str | None = None
    active_request_id: str | None = None
    progress: AnalysisProgress | None = None
    warning: str | None = None

    @property
    def is_analyzing(self) -> bool:
        return self.status == "analyzing"


@dataclass(frozen=True)
class SetJobDescription:
    text: str
    warning: str | None = None


@dataclass(frozen=True)
class StartAnalysis:
    request_id: str
    job_description: str


@dataclass(frozen=True)
class AnalysisProgressed:
    request_id: str
    progress: AnalysisProgress


@dataclass(frozen=True)
class AnalysisSucceeded:
    request_id: str
    assessment: MatchAssessment
    job_description_full: str


@dataclass(frozen=True)
class AnalysisFailed:
    request_id: str | None
    error: FitAnalysisError
    job_description: str


@dataclass(frozen=True)
class CancelAnalysis:
    pass


@dataclass(frozen=True)
class LoadHistoryItem:
    id: str


@dataclass(frozen=True)
class ClearHistory:
    pass


@dataclass(frozen=True)
class ClearError:
    pass


@dataclass(frozen=True)
class ClearCurrentResult:
    pass


@dataclass(frozen=True)
class RestoreSession:
    history: tuple[HistoryEntry, ...]


FitAnalysisAction = Union[
    SetJobDescription,
    StartAnalysis,
    AnalysisProgressed,
    AnalysisSucceeded,
    AnalysisFailed,
    CancelAnalysis,
    LoadHistoryItem,
    ClearHistory,
    ClearError,
    ClearCurrentResult,
    RestoreSession,
]


def _settled_status(state: FitAnalysisState) -> AnalysisStatus:
    return "success" if state.current_result is not None else "idle"


def _is_stale(state: FitAnalysisState, request_id: str | None) -> bool:
    return request_id != state.active_request_id


def fit_analysis_reducer(state: FitAnalysisState, action: FitAnalysisAction) -> FitAnalysisState:
    """Return the next state for ``action``. Never mutates ``state``."""

    if isinstance(action, SetJobDescription):
        status = _settled_status(state) if state.status == "error" else state.status
        return replace(
            state,
            job_description=action.text,
            warning=action.warning,
            error=None,
            status=status,
        )

    if isinstance(action, StartAnalysis):
        return replace(
            state,
            status="analyzing",
            active_request_id=action.request_id,
            error=None,
            progress=None,
        )

    if isinstance(action, AnalysisProgressed):
        if _is_stale(state, action.request_id) or state.status != "analyzing":
            return state
        previous = state.progress.percent if state.progress is not None else 0
        if action.progress.percent < previous:
            return state
        return replace(state, progress=action.progress)

    if isinstance(action, AnalysisSucceeded):
        if _is_stale(state, action.request_id):
            return state
        entry = HistoryEntry(action.assessment, action.job_description_full)
        return replace(
            state,
            status="success",
            current_result=action.assessment,
            history=((entry,) + state.history)[:MAX_HISTORY_ITEMS],
            error=None,
            last_failed_job_description=None,
            active_request_id=None,
            progress=None,
        )

    if isinstance(action, AnalysisFailed):
        if _is_stale(state, action.request_id):
            return state
        return replace(
            state,
            status="error",
            error=action.error,
            last_failed_job_description=action.job_description,
            active_request_id=None,
            progress=None,
        )

    if isinstance(action, CancelAnalysis):
        if state.status != "analyzing":
            return state
        return replace(
            state,
            status=_settled_status(state),
            active_request_id=None,
            progress=None,
        )

    if isinstance(action, LoadHistoryItem):
        entry = next((item for item in state.history if item.id == action.id), None)
        if entry is None:
            return state
        return replace(
            state,
            current_result=entry.assessment,
            job_description=entry.job_description_full,
            error=None,
            status="success" if state.status != "analyzing" else state.status,
        )

    if isinstance(action, ClearHistory):
        return replace(state, history=())

    if isinstance(action, ClearError):
        status = _settled_status(state) if state.status == "error" else state.status
        return replace(state, error=None, status=status)

    if isinstance(action, ClearCurrentResult):
        status = "idle" if state.status != "analyzing" else state.status
        return replace(state, current_result=None, job_description="", error=None, status=status)

    if isinstance(action, RestoreSession):
        return replace(state, history=tuple(action.history)[:MAX_HISTORY_ITEMS])

    return state
