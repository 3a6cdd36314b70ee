"""Local validation of job description input before submission."""

from __future__ import annotations

from dataclasses import dataclass

from app.core.config import settings

EMPTY_INPUT_MESSAGE = "Please enter a job description to analyze."
SHORT_INPUT_WARNING = "Adding more detail may improve analysis quality."


def too_long_message(max_chars: int) -> str:
    return f"Job description is too long. Please limit it to {max_chars:,} characters."


@dataclass(frozen=True)
class InputValidation:
    """Outcome of validating a job description.

    ``error`` is set only when ``is_valid`` is False; ``warning`` is advisory.
    """

    is_valid: bool
    error: str | None = None
    warning: str | None = None


def validate_job_description(
    text: str | None,
    *,
    max_chars: int | None = None,
    min_chars_warning: int | None = None,
) -> InputValidation:
    """Validate a job description by its trimmed length.

    Args:
        text: Raw input text.
        max_chars: Hard maximum; defaults to ``APP_MAX_JOB_DESC_CHARS``.
        min_chars_warning: Length below which a warning is returned.

    Returns:
        InputValidation describing whether the text may be submitted.
    """
    max_chars = settings.app.max_job_desc_chars if max_chars is None else max_chars
    min_chars_warning = (
        settings.app.min_job_desc_chars_warning if min_chars_warning is None else min_chars_warning
    )

    trimmed = (text or "").strip()
    if not trimmed:
        return InputValidation(is_valid=False, error=EMPTY_INPUT_MESSAGE)
    if len(trimmed) > max_chars:
        return InputValidation(is_valid=False, error=too_long_message(max_chars))
    if len(trimmed) < min_chars_warning:
        return InputValidation(is_valid=True, warning=SHORT_INPUT_WARNING)
    return InputValidation(is_valid=True)
