"""Factory for the safety classifier used by the guardrails service."""

from app.adapters.guardrails.base import AbstractSafetyClassifier
from app.adapters.guardrails.openai_classifier import OpenAISafetyClassifier
from app.adapters.llm.factory import create_llm_client
from app.adapters.llm.openai_client import OpenAIClient
from app.core.config import settings
from app.core.errors import ValidationAppError


def create_safety_classifier() -> AbstractSafetyClassifier:
    """Build the classifier for the configured provider.

    Raises:
        LLMAppError: If credentials are missing.
        ValidationAppError: If the provider has no classifier implementation.
    """
    llm = create_llm_client(model=settings.guardrails.model)
    if isinstance(llm, OpenAIClient):
        return OpenAISafetyClassifier(llm, timeout_seconds=settings.guardrails.timeout_seconds)

    raise ValidationAppError(
        code="guardrail_unsupported_provider",
        message=f"No safety classifier for provider '{settings.llm.provider}'",
    )
