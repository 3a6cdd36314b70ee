"""Structured logging for the fit analysis service.

Log records never carry job description text, prompts, model output or
credentials: known sensitive keys are replaced with ``[REDACTED]`` and any
other long free-text extra is truncated. Every record is stamped with the
correlation id of the request being served, including records emitted while
a streamed body is produced after the middleware has returned.
"""

from __future__ import annotations

import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from logging import LogRecord
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Iterable, Iterator, Mapping

from app.core.config import LogSettings, settings

REDACTED = "[REDACTED]"
SERVICE_NAME = "fit-analysis-api"

# Longer string extras are cut; event fields are ids, codes and counts
MAX_EXTRA_STRING_CHARS = 200

_request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)

SENSITIVE_KEYS_DEFAULT: frozenset[str] = frozenset(
    {
        "api_key",
        "llm_api_key",
        "authorization",
        "token",
        "secret",
        "password",
        "cookie",
        "set-cookie",
        "base_url",
        # free text from users or the model
        "job_description",
        "job_description_full",
        "input",
        "query",
        "content",
        "prompt",
        "system_prompt",
        "completion",
        "raw_response",
    }
)

# Third-party loggers that echo request URLs and bodies at INFO
_NOISY_LOGGERS = ("httpx", "httpcore", "openai")

_RECORD_ATTRS = frozenset(vars(LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime", "taskName"}


def set_request_id(request_id: str | None) -> Token:
    """Bind ``request_id`` to the current context; returns a reset token."""

    return _request_id_var.set(request_id)


def get_request_id() -> str | None:
    return _request_id_var.get()


def reset_request_id(token: Token) -> None:
    _request_id_var.reset(token)


@contextmanager
def request_context(request_id: str | None) -> Iterator[None]:
    """Scope a correlation id to a block, restoring the previous one after."""

    token = set_request_id(request_id)
    try:
        yield
    finally:
        reset_request_id(token)


def _scrub(key: str, value: Any, sensitive_keys: frozenset[str], truncate: bool) -> Any:
    if key.lower() in sensitive_keys:
        return REDACTED
    if isinstance(value, Mapping):
        return {k: _scrub(str(k), v, sensitive_keys, truncate) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_scrub("", v, sensitive_keys, truncate) for v in value]
    if truncate and isinstance(value, str) and len(value) > MAX_EXTRA_STRING_CHARS:
        return f"{value[:MAX_EXTRA_STRING_CHARS]}...[truncated {len(value) - MAX_EXTRA_STRING_CHARS} chars]"
    return value


def record_extras(
    record: LogRecord,
    sensitive_keys: frozenset[str] = SENSITIVE_KEYS_DEFAULT,
    *,
    truncate: bool = False,
) -> dict[str, Any]:
    """Return the ``extra=`` fields of a record with sensitive values scrubbed."""

    return {
        key: _scrub(key, value, sensitive_keys, truncate)
        for key, value in record.__dict__.items()
        if key not in _RECORD_ATTRS and not key.startswith("_")
    }


def _normalize_keys(keys: Iterable[str] | None) -> frozenset[str]:
    return frozenset(k.lower() for k in (keys or SENSITIVE_KEYS_DEFAULT))


class RequestIdFilter(logging.Filter):
    """Stamps records with the correlation id bound to the current context."""

    def filter(self, record: LogRecord) -> bool:
        if getattr(record, "request_id", None) is None:
            record.request_id = get_request_id()
        return True


class SensitiveDataFilter(logging.Filter):
    """Scrubs extras in place so every formatter sees the safe values."""

    def __init__(self, sensitive_keys: Iterable[str] | None = None) -> None:
        super().__init__()
        self.sensitive_keys = _normalize_keys(sensitive_keys)

    def filter(self, record: LogRecord) -> bool:
        for key, value in record_extras(record, self.sensitive_keys, truncate=True).items():
            setattr(record, key, value)
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line with service, level, event and extras."""

    def __init__(self, *, sensitive_keys: Iterable[str] | None = None, environment: str | None = None) -> None:
        super().__init__()
        self.sensitive_keys = _normalize_keys(sensitive_keys)
        self.environment = environment

    def format(self, record: LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "service": SERVICE_NAME,
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        if self.environment:
            payload["env"] = self.environment

        extras = record_extras(record, self.sensitive_keys)
        if extras.get("request_id") is None:
            extras.pop("request_id", None)
            if get_request_id():
                payload["request_id"] = get_request_id()
        payload.update(extras)

        if record.exc_info and record.exc_info[0] is not None:
            # Exception text may quote the input; only the type is emitted
            payload["exc_type"] = record.exc_info[0].__name__

        return json.dumps(payload, default=str)


def _build_handler(log_settings: LogSettings) -> logging.Handler:
    if log_settings.output.lower() != "file":
        return logging.StreamHandler(sys.stdout)

    file_path = Path(log_settings.file_path or "logs/fit-analysis.log")
    file_path.parent.mkdir(parents=True, exist_ok=True)
    if log_settings.max_bytes:
        return RotatingFileHandler(
            file_path,
            maxBytes=log_settings.max_bytes,
            backupCount=log_settings.backup_count,
            encoding="utf-8",
        )
    return logging.FileHandler(file_path, encoding="utf-8")


def _build_formatter(log_settings: LogSettings) -> logging.Formatter:
    if log_settings.format.lower() == "plain":
        return logging.Formatter("%(asctime)s %(levelname)s [%(request_id)s] %(name)s %(message)s")
    return JsonFormatter(environment=settings.app_env)


def configure_logging(log_settings: LogSettings | None = None) -> None:
    """Install the redacting handler on the root logger.

    Args:
        log_settings: Defaults to ``settings.log``.
    """

    cfg = log_settings or settings.log

    handler = _build_handler(cfg)
    handler.addFilter(RequestIdFilter())
    handler.addFilter(SensitiveDataFilter())
    handler.setFormatter(_build_formatter(cfg))

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, cfg.level.upper(), logging.INFO))

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(logging.WARNING, root_logger.level))
    logging.getLogger("uvicorn.access").propagate = False
