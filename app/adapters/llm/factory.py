"""Factory pattern for creating LLM client instances."""

from app.adapters.llm.base import AbstractLLMClient
from app.adapters.llm.openai_client import OpenAIClient
from app.core.config import settings
from app.core.errors import LLMAppError, ValidationAppError


def create_llm_client(model: str | None = None) -> AbstractLLMClient:
    """Instantiate the configured LLM client.

    Reads configuration from app.core.config.settings (Pydantic Settings).

    Args:
        model: Optional model override (used for the guardrail classifier).

    Returns:
        AbstractLLMClient: Configured LLM client instance.

    Raises:
        LLMAppError: If the provider credentials are missing.
        ValidationAppError: If the provider is unknown.
    """
    provider = settings.llm.provider.lower()

    if provider == "openai":
        if not settings.llm.api_key:
            raise LLMAppError(
                code="llm_missing_api_key",
                message="OpenAI provider requires LLM_API_KEY environment variable",
                error_type="api_key_missing",
                retryable=False,
            )
        return OpenAIClient(
            api_key=settings.llm.api_key,
            model=model or settings.llm.model,
            base_url=settings.llm.base_url,
            timeout_seconds=settings.llm.timeout_seconds,
            temperature=settings.llm.temperature,
            max_tokens=settings.llm.max_tokens,
        )

    raise ValidationAppError(
        code="llm_unknown_provider",
        message=(
            f"Unknown LLM provider: '{provider}'. Supported providers: openai"
        ),
    )
