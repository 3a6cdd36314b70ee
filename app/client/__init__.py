"""Client-side analysis state machine, persistence and transports."""

from app.client.controller import FitAnalysisController
from app.client.state import (
    FitAnalysisError,
    FitAnalysisState,
    HistoryEntry,
    fit_analysis_reducer,
)
from app.client.storage import InMemorySessionStorage, KeyValueStorage, SessionHistoryStore
from app.client.transport import AbstractAnalysisTransport, HttpAnalysisTransport, TransportError

__all__ = [
    "AbstractAnalysisTransport",
    "FitAnalysisController",
    "FitAnalysisError",
    "FitAnalysisState",
    "HistoryEntry",
    "HttpAnalysisTransport",
    "InMemorySessionStorage",
    "KeyValueStorage",
    "SessionHistoryStore",
    "TransportError",
    "fit_analysis_reducer",
]
