"""Safety classifier adapters backing the input guardrails."""

from app.adapters.guardrails.base import AbstractSafetyClassifier, ClassifierVerdict
from app.adapters.guardrails.factory import create_safety_classifier
from app.adapters.guardrails.openai_classifier import OpenAISafetyClassifier

__all__ = [
    "AbstractSafetyClassifier",
    "ClassifierVerdict",
    "OpenAISafetyClassifier",
    "create_safety_classifier",
]
