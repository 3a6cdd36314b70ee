"""Defensive parsing of model output into a MatchAssessment.

The model's JSON is treated as an untyped value and validated field by field:

1. JSON decode                          fail-fast
2. top-level shape                      fail-fast
3. alignments / gaps, item by item      fail-soft (bad items are dropped)
4. evidence, item by item               fail-soft (no evidence drops the alignment)
5. recommendation                       fail-fast
6. assembly (ids, timestamp, preview)

``parse_analysis_response`` never raises; it returns a tagged result.
"""

from __future__ import annotations

import json
import logging
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Literal, Mapping

from pydantic import ValidationError

from app.core.errors import ParseAppError
from app.schemas.fit_analysis import (
    PREVIEW_LENGTH,
    AlignmentArea,
    ConfidenceLevel,
    Evidence,
    EvidenceType,
    GapArea,
    MatchAssessment,
    Recommendation,
)

logger = logging.getLogger(__name__)

VALID_LLM_CONFIDENCE = ("strong", "partial", "limited")
VALID_SEVERITIES = ("minor", "moderate", "significant")
VALID_VERDICTS = ("proceed", "consider", "reconsider")
VALID_CONFIDENCE_SCORES = ("strong_match", "partial_match", "limited_match")
VALID_EVIDENCE_TYPES = ("experience", "project", "skill")

CONFIDENCE_MAP: dict[str, ConfidenceLevel] = {
    "strong": "strong_match",
    "partial": "partial_match",
    "limited": "limited_match",
}

_PROJECT_WORDS = ("project", "built", "developed", "created")
_EXPERIENCE_WORDS = ("role", "position", "worked", "experience", "job", "company")

_CODE_FENCE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL | re.IGNORECASE)


def generate_unique_id() -> str:
    return uuid.uuid4().hex


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ParseOptions:
    """Inputs to assembly that do not come from the model.

    Attributes:
        job_description: Original submitted text, used for the preview.
        generate_id: Id factory (injectable for deterministic tests).
        now: Clock for the assessment timestamp.
    """

    job_description: str
    generate_id: Callable[[], str] = field(default=generate_unique_id)
    now: Callable[[], datetime] = field(default=_utcnow)


@dataclass(frozen=True)
class ParseSuccess:
    assessment: MatchAssessment
    success: Literal[True] = True


@dataclass(frozen=True)
class ParseFailure:
    error: str
    success: Literal[False] = False


ParseResult = ParseSuccess | ParseFailure


class _ShapeError(ValueError):
    """Internal signal for fail-fast violations."""


def _is_non_empty_string(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def _is_object(value: Any) -> bool:
    return isinstance(value, Mapping)


def _is_array(value: Any) -> bool:
    return isinstance(value, (list, tuple))


def infer_evidence_type(source: str) -> EvidenceType:
    """Guess the evidence category from the wording of its source."""

    lowered = source.lower()
    if any(word in lowered for word in _PROJECT_WORDS):
        return "project"
    if any(word in lowered for word in _EXPERIENCE_WORDS):
        return "experience"
    return "skill"


def generate_reference(source: str) -> str:
    """Build a slug-like reference from an evidence title."""

    slug = re.sub(r"[^a-z0-9\s-]", "", source.lower())
    return re.sub(r"\s+", "-", slug)[:50]


def create_job_description_preview(job_description: str) -> str:
    """Return the trimmed text, cut to PREVIEW_LENGTH with a ``...`` suffix."""

    trimmed = job_description.strip()
    if len(trimmed) <= PREVIEW_LENGTH:
        return trimmed
    return trimmed[: PREVIEW_LENGTH - 3] + "..."


def _parse_evidence(item: Any) -> Evidence | None:
    if not _is_object(item):
        return None
    source, detail = item.get("source"), item.get("detail")
    if not _is_non_empty_string(source) or not _is_non_empty_string(detail):
        return None
    reference = generate_reference(source)
    if not reference:
        return None
    return Evidence(
        type=infer_evidence_type(source),
        title=source,
        reference=reference,
        excerpt=detail,
    )


def _parse_alignment(item: Any, generate_id: Callable[[], str]) -> AlignmentArea | None:
    if not _is_object(item):
        return None
    area, explanation, evidence = item.get("area"), item.get("explanation"), item.get("evidence")
    if not _is_non_empty_string(area) or not _is_non_empty_string(explanation):
        return None
    if not _is_array(evidence):
        return None

    parsed = [e for e in (_parse_evidence(entry) for entry in evidence) if e is not None]
    if not parsed:
        return None

    return AlignmentArea(
        id=generate_id(),
        title=area,
        description=explanation,
        evidence=tuple(parsed),
    )


def _parse_gap(item: Any, generate_id: Callable[[], str]) -> GapArea | None:
    if not _is_object(item):
        return None
    area, explanation, severity = item.get("area"), item.get("explanation"), item.get("severity")
    if not _is_non_empty_string(area) or not _is_non_empty_string(explanation):
        return None
    if severity not in VALID_SEVERITIES:
        return None
    return GapArea(id=generate_id(), title=area, description=explanation, severity=severity)


def _parse_recommendation(value: Any) -> Recommendation:
    if not _is_object(value):
        raise _ShapeError("Recommendation must be an object")

    verdict = value.get("verdict")
    if verdict not in VALID_VERDICTS:
        raise _ShapeError(
            f"Invalid recommendation verdict: {verdict!r}. "
            "Must be one of: proceed, consider, reconsider"
        )
    if not _is_non_empty_string(value.get("summary")):
        raise _ShapeError("Recommendation summary must be a non-empty string")
    if not _is_non_empty_string(value.get("reasoning")):
        raise _ShapeError("Recommendation reasoning must be a non-empty string")

    return Recommendation(type=verdict, summary=value["summary"], details=value["reasoning"])


def _validate_structure(data: Any) -> None:
    if not _is_object(data):
        raise _ShapeError("Response must be a JSON object")
    if data.get("confidence") not in VALID_LLM_CONFIDENCE:
        raise _ShapeError(
            f"Invalid confidence value: {data.get('confidence')!r}. "
            "Must be one of: strong, partial, limited"
        )
    if not _is_array(data.get("alignments")):
        raise _ShapeError("Alignments must be an array")
    if not _is_array(data.get("gaps")):
        raise _ShapeError("Gaps must be an array")
    if not _is_object(data.get("recommendation")):
        raise _ShapeError("Recommendation must be an object")


def _strip_code_fence(text: str) -> str:
    stripped = text.strip()
    match = _CODE_FENCE.match(stripped)
    return match.group(1) if match else stripped


def parse_analysis_response(raw_text: Any, options: ParseOptions) -> ParseResult:
    """Parse raw model output into a MatchAssessment.

    Args:
        raw_text: Text produced by the model.
        options: Job description and injectable id/clock factories.

    Returns:
        ParseSuccess with the assessment, or ParseFailure with a diagnostic.
    """
    if not isinstance(raw_text, str):
        return ParseFailure(error="Response text must be a string")

    try:
        data = json.loads(_strip_code_fence(raw_text))
    except json.JSONDecodeError as exc:
        return ParseFailure(error=f"Failed to parse JSON: {exc.msg}")
    except (ValueError, RecursionError) as exc:
        # Pathological nesting or huge integer literals
        return ParseFailure(error=f"Failed to parse JSON: {type(exc).__name__}")

    try:
        _validate_structure(data)
        recommendation = _parse_recommendation(data["recommendation"])
    except _ShapeError as exc:
        return ParseFailure(error=str(exc))

    alignments = [
        a
        for a in (_parse_alignment(item, options.generate_id) for item in data["alignments"])
        if a is not None
    ]
    gaps = [
        g
        for g in (_parse_gap(item, options.generate_id) for item in data["gaps"])
        if g is not None
    ]

    dropped = (len(data["alignments"]) - len(alignments)) + (len(data["gaps"]) - len(gaps))
    if dropped:
        logger.info("analysis.parse_items_dropped", extra={"dropped_count": dropped})

    try:
        assessment = MatchAssessment(
            id=options.generate_id(),
            timestamp=options.now(),
            job_description_preview=create_job_description_preview(options.job_description),
            confidence_score=CONFIDENCE_MAP[data["confidence"]],
            alignment_areas=tuple(alignments),
            gap_areas=tuple(gaps),
            recommendation=recommendation,
        )
    except ValidationError as exc:
        return ParseFailure(error=f"Assembled assessment is invalid: {exc.error_count()} error(s)")

    return ParseSuccess(assessment=assessment)


def parse_analysis_response_or_raise(raw_text: str, options: ParseOptions) -> MatchAssessment:
    """Like :func:`parse_analysis_response` but raises ParseAppError on failure."""

    result = parse_analysis_response(raw_text, options)
    if isinstance(result, ParseFailure):
        raise ParseAppError(code="analysis_parse_failed", message=result.error)
    return result.assessment


def _is_valid_timestamp(value: Any) -> bool:
    if isinstance(value, datetime):
        return True
    if not isinstance(value, str) or not value:
        return False
    try:
        datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return False
    return True


def _is_valid_evidence(value: Any) -> bool:
    return (
        _is_object(value)
        and value.get("type") in VALID_EVIDENCE_TYPES
        and _is_non_empty_string(value.get("title"))
        and _is_non_empty_string(value.get("reference"))
        and _is_non_empty_string(value.get("excerpt"))
    )


def _is_valid_alignment(value: Any) -> bool:
    if not _is_object(value):
        return False
    if not all(_is_non_empty_string(value.get(k)) for k in ("id", "title", "description")):
        return False
    evidence = value.get("evidence")
    return _is_array(evidence) and len(evidence) > 0 and all(_is_valid_evidence(e) for e in evidence)


def _is_valid_gap(value: Any) -> bool:
    return (
        _is_object(value)
        and all(_is_non_empty_string(value.get(k)) for k in ("id", "title", "description"))
        and value.get("severity") in VALID_SEVERITIES
    )


def is_valid_match_assessment(value: Any) -> bool:
    """Check an arbitrary value against every MatchAssessment invariant.

    Accepts a MatchAssessment instance or a mapping whose timestamp is either
    a datetime or ISO-8601 text (the persisted form).
    """
    if isinstance(value, MatchAssessment):
        value = value.model_dump()
    if not _is_object(value):
        return False

    if not _is_non_empty_string(value.get("id")):
        return False

    preview = value.get("job_description_preview")
    if not _is_non_empty_string(preview) or len(preview) > PREVIEW_LENGTH or preview != preview.strip():
        return False

    if not _is_valid_timestamp(value.get("timestamp")):
        return False
    if value.get("confidence_score") not in VALID_CONFIDENCE_SCORES:
        return False

    alignments, gaps = value.get("alignment_areas"), value.get("gap_areas")
    if not _is_array(alignments) or not all(_is_valid_alignment(a) for a in alignments):
        return False
    if not _is_array(gaps) or not all(_is_valid_gap(g) for g in gaps):
        return False

    rec = value.get("recommendation")
    return (
        _is_object(rec)
        and rec.get("type") in VALID_VERDICTS
        and _is_non_empty_string(rec.get("summary"))
        and _is_non_empty_string(rec.get("details"))
    )
