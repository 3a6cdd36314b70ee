"""Structured security event logging for guardrail decisions.

Entries are emitted as single JSON objects on the ``app.security`` logger so
an external sink can pick them up. Every entry is sanitized before emission:

- newline, carriage return and null bytes are replaced in every string field
- email addresses and IPv4 addresses are masked
- metadata is reduced to a fixed whitelist of numeric fields
- input text is never part of the entry
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
import secrets
from typing import Any, Mapping

from app.schemas.guardrails import SecurityEvent, SecurityEventMetadata, SecurityEventType

logger = logging.getLogger("app.security")

_LOG_INJECTION_CHARS = re.compile(r"[\n\r\0]")
EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")
IP_PATTERN = re.compile(r"\b(?:\d{1,3}\.){3}\d{1,3}\b")

# Fields that would carry user-provided text
FORBIDDEN_FIELDS = ("message", "content", "input", "query", "job_description")

_VALID_EVENT_TYPES: set[str] = {t.value for t in SecurityEventType}


def sanitize_log_string(value: Any) -> str:
    """Replace characters usable for log injection with spaces."""

    return _LOG_INJECTION_CHARS.sub(" ", str(value))


def remove_pii(value: Any) -> str:
    """Mask email and IP address patterns."""

    return IP_PATTERN.sub("[ip]", EMAIL_PATTERN.sub("[email]", str(value)))


def _clean(value: Any) -> str:
    return sanitize_log_string(remove_pii(value))


def sanitize_security_event(event: SecurityEvent) -> dict[str, Any]:
    """Build the emitted dict for an event, sanitizing every string field.

    Args:
        event: Event to sanitize.

    Returns:
        JSON-ready dict containing only whitelisted fields.
    """

    sanitized: dict[str, Any] = {
        "timestamp": _clean(event.timestamp),
        "event_type": event.event_type.value,
        "endpoint": _clean(event.endpoint),
        "confidence": max(0.0, min(1.0, float(event.confidence))),
        "blocked": bool(event.blocked),
        "request_id": _clean(event.request_id),
    }

    if event.metadata is not None:
        metadata: dict[str, Any] = {}
        if event.metadata.check_duration_ms is not None:
            metadata["check_duration_ms"] = event.metadata.check_duration_ms
        if event.metadata.input_length is not None:
            metadata["input_length"] = event.metadata.input_length
        sanitized["metadata"] = metadata

    return sanitized


def is_valid_security_event(entry: Any) -> bool:
    """Check that an emitted entry carries every required field."""

    if not isinstance(entry, Mapping):
        return False
    if not isinstance(entry.get("timestamp"), str) or not entry["timestamp"]:
        return False
    if entry.get("event_type") not in _VALID_EVENT_TYPES:
        return False
    if not isinstance(entry.get("endpoint"), str) or not entry["endpoint"]:
        return False
    confidence = entry.get("confidence")
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        return False
    if not 0.0 <= confidence <= 1.0:
        return False
    if not isinstance(entry.get("blocked"), bool):
        return False
    if not isinstance(entry.get("request_id"), str) or not entry["request_id"]:
        return False
    return True


def contains_pii(entry: Mapping[str, Any]) -> bool:
    """Return True if the serialized entry matches an email or IP pattern."""

    serialized = json.dumps(entry, default=str)
    return bool(EMAIL_PATTERN.search(serialized) or IP_PATTERN.search(serialized))


def contains_forbidden_fields(entry: Mapping[str, Any]) -> bool:
    """Return True if the entry has a non-empty user-content field."""

    return any(
        isinstance(entry.get(field), str) and bool(entry.get(field))
        for field in FORBIDDEN_FIELDS
    )


def log_security_event(event: SecurityEvent) -> dict[str, Any] | None:
    """Sanitize and emit a security event.

    Never raises; a failure to log must not affect the request.

    Returns:
        The emitted entry, or None when emission failed.
    """

    try:
        entry = sanitize_security_event(event)
        logger.warning(json.dumps(entry, ensure_ascii=True))
        return entry
    except Exception as exc:  # noqa: BLE001
        logger.error(
            "security_log.emit_failed",
            extra={"error_type": type(exc).__name__},
        )
        return None


def create_anonymized_request_id(ip: str | None, user_agent: str | None) -> str:
    """Derive a stable, non-reversible identifier from caller metadata.

    Args:
        ip: Caller address (forwarded header or socket peer).
        user_agent: Caller User-Agent header.

    Returns:
        First 16 hex characters of the SHA-256 of ``"{ip}:{user_agent}"``.
    """

    try:
        raw = f"{ip or 'unknown'}:{user_agent or 'unknown'}".encode("utf-8", errors="ignore")
        return hashlib.sha256(raw).hexdigest()[:16]
    except Exception:  # noqa: BLE001
        return secrets.token_hex(8)


def build_security_event(
    event_type: SecurityEventType,
    *,
    endpoint: str,
    confidence: float,
    request_id: str | None,
    check_duration_ms: float | None = None,
    input_length: int | None = None,
    timestamp: str,
) -> SecurityEvent:
    """Construct a blocking SecurityEvent with optional metadata."""

    metadata = None
    if check_duration_ms is not None or input_length is not None:
        metadata = SecurityEventMetadata(
            check_duration_ms=check_duration_ms,
            input_length=input_length,
        )
    return SecurityEvent(
        timestamp=timestamp,
        event_type=event_type,
        endpoint=endpoint,
        confidence=max(0.0, min(1.0, confidence)),
        blocked=True,
        request_id=request_id or "unknown",
        metadata=metadata,
    )
