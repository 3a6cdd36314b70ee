"""Session persistence for analysis history."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Protocol

from pydantic import ValidationError

from app.client.state import HistoryEntry
from app.schemas.fit_analysis import (
    FIT_ANALYSIS_STORAGE_KEY,
    MAX_HISTORY_ITEMS,
    MatchAssessment,
    SerializedAnalysisItem,
    StoredFitAnalysisSession,
)
from app.services.analysis_parser import is_valid_match_assessment

logger = logging.getLogger(__name__)


class KeyValueStorage(Protocol):
    def get_item(self, key: str) -> str | None: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None: ...


class InMemorySessionStorage:
    """Process-local storage with session lifetime."""

    def __init__(self) -> None:
        self._items: dict[str, str] = {}

    def get_item(self, key: str) -> str | None:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)


def serialize_history_entry(entry: HistoryEntry) -> SerializedAnalysisItem:
    assessment = entry.assessment
    return SerializedAnalysisItem(
        id=assessment.id,
        timestamp=assessment.timestamp.isoformat(),
        job_description_preview=assessment.job_description_preview,
        job_description_full=entry.job_description_full,
        confidence_score=assessment.confidence_score,
        alignment_areas=list(assessment.alignment_areas),
        gap_areas=list(assessment.gap_areas),
        recommendation=assessment.recommendation,
    )


def deserialize_history_entry(item: object) -> HistoryEntry | None:
    """Rebuild a history entry; returns None for anything invalid."""

    if not isinstance(item, dict) or not is_valid_match_assessment(item):
        return None
    full_text = item.get("job_description_full")
    if not isinstance(full_text, str):
        return None
    try:
        assessment = MatchAssessment.model_validate(item)
    except ValidationError:
        return None
    return HistoryEntry(assessment=assessment, job_description_full=full_text)


class SessionHistoryStore:
    """Reads and writes the history record under one storage key.

    Attributes:
        storage: Backing key-value storage.
        key: Storage key for the session record.
    """

    def __init__(self, storage: KeyValueStorage, key: str = FIT_ANALYSIS_STORAGE_KEY) -> None:
        self.storage = storage
        self.key = key

    def load(self) -> tuple[HistoryEntry, ...]:
        """Return stored history; absent or unparsable data means no history."""

        try:
            raw = self.storage.get_item(self.key)
        except Exception as exc:  # noqa: BLE001
            logger.warning("history.load_failed", extra={"error_type": type(exc).__name__})
            return ()
        if not raw:
            return ()

        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("history.load_failed", extra={"error_type": "JSONDecodeError"})
            return ()
        if not isinstance(data, dict) or not isinstance(data.get("analysis_history"), list):
            return ()

        entries = [deserialize_history_entry(item) for item in data["analysis_history"]]
        valid = tuple(entry for entry in entries if entry is not None)
        skipped = len(entries) - len(valid)
        if skipped:
            logger.info("history.items_skipped", extra={"skipped_count": skipped})
        return valid[:MAX_HISTORY_ITEMS]

    def save(self, history: tuple[HistoryEntry, ...]) -> None:
        if not history:
            self.clear()
            return
        session = StoredFitAnalysisSession(
            analysis_history=[serialize_history_entry(entry) for entry in history],
            last_updated=datetime.now(timezone.utc).isoformat(),
        )
        try:
            self.storage.set_item(self.key, session.model_dump_json())
        except Exception as exc:  # noqa: BLE001
            logger.warning("history.save_failed", extra={"error_type": type(exc).__name__})

    def clear(self) -> None:
        try:
            self.storage.remove_item(self.key)
        except Exception as exc:  # noqa: BLE001
            logger.warning("history.clear_failed", extra={"error_type": type(exc).__name__})
