"""Pydantic schemas for fit analysis results, progress and stream events."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from app.core.errors import ErrorCode

ConfidenceLevel = Literal["strong_match", "partial_match", "limited_match"]
EvidenceType = Literal["experience", "project", "skill"]
GapSeverity = Literal["minor", "moderate", "significant"]
RecommendationType = Literal["proceed", "consider", "reconsider"]

PREVIEW_LENGTH = 100
MAX_HISTORY_ITEMS = 5
FIT_ANALYSIS_STORAGE_KEY = "portfolio-fit-analysis-session"


class AnalysisPhase(str, Enum):
    """Ordered phases reported while an analysis runs."""

    PREPARING = "preparing"
    ANALYZING = "analyzing"
    FINDING_ALIGNMENTS = "finding_alignments"
    IDENTIFYING_GAPS = "identifying_gaps"
    GENERATING_RECOMMENDATION = "generating_recommendation"
    FINALIZING = "finalizing"


# Display message and base percent per phase, in phase order
ANALYSIS_PHASE_DISPLAY: dict[AnalysisPhase, tuple[str, int]] = {
    AnalysisPhase.PREPARING: ("Preparing analysis...", 5),
    AnalysisPhase.ANALYZING: ("Analyzing fit...", 20),
    AnalysisPhase.FINDING_ALIGNMENTS: ("Finding alignments...", 40),
    AnalysisPhase.IDENTIFYING_GAPS: ("Identifying gaps...", 60),
    AnalysisPhase.GENERATING_RECOMMENDATION: ("Generating recommendation...", 80),
    AnalysisPhase.FINALIZING: ("Finalizing results...", 95),
}

# Sent once, immediately before a successful terminal event
COMPLETE_PROGRESS_MESSAGE = "Analysis complete."


class Evidence(BaseModel):
    """A cited fact from the portfolio supporting an alignment."""

    model_config = ConfigDict(frozen=True)

    type: EvidenceType
    title: str = Field(..., min_length=1)
    reference: str = Field(..., min_length=1)
    excerpt: str = Field(..., min_length=1)


class AlignmentArea(BaseModel):
    """A requirement the candidate's background matches, with evidence."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    evidence: tuple[Evidence, ...] = Field(..., min_length=1)


class GapArea(BaseModel):
    """A requirement where the candidate's background falls short."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    severity: GapSeverity


class Recommendation(BaseModel):
    """Overall verdict for the hiring side."""

    model_config = ConfigDict(frozen=True)

    type: RecommendationType
    summary: str = Field(..., min_length=1)
    details: str = Field(..., min_length=1)


class MatchAssessment(BaseModel):
    """Terminal artifact of a successful analysis run. Immutable."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    timestamp: datetime
    job_description_preview: str = Field(..., min_length=1, max_length=PREVIEW_LENGTH)
    confidence_score: ConfidenceLevel
    alignment_areas: tuple[AlignmentArea, ...] = ()
    gap_areas: tuple[GapArea, ...] = ()
    recommendation: Recommendation


class AnalysisProgress(BaseModel):
    """Progress snapshot for an in-flight analysis."""

    model_config = ConfigDict(frozen=True)

    phase: AnalysisPhase
    message: str
    percent: int = Field(..., ge=0, le=100)

    @classmethod
    def for_phase(cls, phase: AnalysisPhase) -> "AnalysisProgress":
        message, percent = ANALYSIS_PHASE_DISPLAY[phase]
        return cls(phase=phase, message=message, percent=percent)

    @classmethod
    def completed(cls) -> "AnalysisProgress":
        return cls(phase=AnalysisPhase.FINALIZING, message=COMPLETE_PROGRESS_MESSAGE, percent=100)


class AnalyzeRequest(BaseModel):
    """Request body for ``POST /v1/analyze``."""

    model_config = ConfigDict(extra="ignore")

    job_description: str = Field(
        ...,
        description="Job description text to analyze against the portfolio.",
    )


class ProgressEvent(BaseModel):
    type: Literal["progress"] = "progress"
    phase: AnalysisPhase
    message: str
    percent: int = Field(..., ge=0, le=100)

    @classmethod
    def from_progress(cls, progress: AnalysisProgress) -> "ProgressEvent":
        return cls(phase=progress.phase, message=progress.message, percent=progress.percent)


class CompleteEvent(BaseModel):
    type: Literal["complete"] = "complete"
    assessment: MatchAssessment


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    code: ErrorCode
    message: str


AnalysisEvent = Annotated[
    Union[ProgressEvent, CompleteEvent, ErrorEvent],
    Field(discriminator="type"),
]


def is_terminal_event(event: ProgressEvent | CompleteEvent | ErrorEvent) -> bool:
    """Return True for events after which the stream ends."""

    return event.type in ("complete", "error")


def to_json_line(event: ProgressEvent | CompleteEvent | ErrorEvent) -> str:
    """Serialize an event as one newline-terminated JSON line."""

    return event.model_dump_json() + "\n"


class SerializedAnalysisItem(BaseModel):
    """History entry as stored in session storage (timestamp as text)."""

    id: str
    timestamp: str
    job_description_preview: str
    job_description_full: str
    confidence_score: ConfidenceLevel
    alignment_areas: list[AlignmentArea] = Field(default_factory=list)
    gap_areas: list[GapArea] = Field(default_factory=list)
    recommendation: Recommendation


class StoredFitAnalysisSession(BaseModel):
    """Record persisted under ``FIT_ANALYSIS_STORAGE_KEY``."""

    analysis_history: list[SerializedAnalysisItem] = Field(default_factory=list)
    last_updated: str
