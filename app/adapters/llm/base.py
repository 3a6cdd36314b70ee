from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Sequence

ChatMessage = dict[str, str]


class AbstractLLMClient(ABC):
    """Interface for LLM clients used by the analysis pipeline."""

    model: str

    @abstractmethod
    def stream_text(
        self,
        system_prompt: str,
        messages: Sequence[ChatMessage],
        **kwargs: Any,
    ) -> AsyncIterator[str]:
        """Stream generated text incrementally.

        Args:
            system_prompt: System prompt carrying context and instructions.
            messages: Conversation turns (``{"role", "content"}`` dicts).
            **kwargs: Provider-specific options (e.g., temperature, response_format).

        Yields:
            Text fragments in the order the provider produces them.

        Raises:
            LLMAppError: If the provider call fails; ``error_type`` says why.
        """
        ...

    @abstractmethod
    async def generate_json(
        self,
        prompt: str,
        *,
        schema: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> dict[str, Any]:
        """Generate a structured JSON response from the model.

        Raises:
            LLMAppError: If the provider call fails or the response is not a JSON object.
        """
        ...

    async def generate_text(
        self,
        system_prompt: str,
        messages: Sequence[ChatMessage],
        **kwargs: Any,
    ) -> str:
        """Collect a full completion from :meth:`stream_text`."""

        chunks = [chunk async for chunk in self.stream_text(system_prompt, messages, **kwargs)]
        return "".join(chunks)
