"""Boundary tests for local job description validation."""

import pytest

from app.services.input_validation import (
    EMPTY_INPUT_MESSAGE,
    SHORT_INPUT_WARNING,
    validate_job_description,
)


@pytest.mark.parametrize("text", ["", "   ", "\n\t ", None])
def test_empty_or_whitespace_is_invalid(text):
    result = validate_job_description(text)

    assert result.is_valid is False
    assert result.error == EMPTY_INPUT_MESSAGE


def test_49_characters_is_valid_with_warning():
    result = validate_job_description("a" * 49)

    assert result.is_valid is True
    assert result.warning == SHORT_INPUT_WARNING


def test_50_characters_is_valid_without_warning():
    result = validate_job_description("a" * 50)

    assert result.is_valid is True
    assert result.warning is None


def test_10000_characters_is_valid():
    result = validate_job_description("a" * 10_000)

    assert result.is_valid is True
    assert result.error is None


def test_10001_characters_is_invalid():
    result = validate_job_description("a" * 10_001)

    assert result.is_valid is False
    assert "10,000" in result.error


def test_length_is_measured_after_trimming():
    result = validate_job_description("   " + "a" * 10_000 + "   ")

    assert result.is_valid is True


def test_limits_can_be_overridden():
    result = validate_job_description("a" * 11, max_chars=10)

    assert result.is_valid is False
