"""OpenAI LLM client adapter."""

import json
import logging
import time
from typing import Any, AsyncIterator, Sequence

import openai
from openai import AsyncOpenAI

from app.adapters.llm.base import AbstractLLMClient, ChatMessage
from app.core.errors import ErrorDetails, LLMAppError

logger = logging.getLogger(__name__)

# Newer model families reject max_tokens in favour of max_completion_tokens
_COMPLETION_TOKEN_MODEL_PREFIXES = ("gpt-5", "o1", "o3", "o4")


def to_llm_error(exc: Exception) -> LLMAppError:
    """Translate an OpenAI SDK exception into an LLMAppError.

    Order matters: APITimeoutError subclasses APIConnectionError.
    """

    if isinstance(exc, LLMAppError):
        return exc
    details: ErrorDetails | None = None
    if isinstance(exc, openai.APIStatusError):
        details = {"http_status": exc.status_code}
    if isinstance(exc, openai.APITimeoutError):
        return LLMAppError(code="llm_timeout", message=str(exc), error_type="timeout")
    if isinstance(exc, openai.APIConnectionError):
        return LLMAppError(code="llm_network", message=str(exc), error_type="network")
    if isinstance(exc, openai.RateLimitError):
        return LLMAppError(
            code="llm_rate_limited",
            message=str(exc),
            error_type="rate_limit",
            details=details,
        )
    if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
        return LLMAppError(
            code="llm_auth_failed",
            message=str(exc),
            error_type="api_key_missing",
            retryable=False,
            details=details,
        )
    if isinstance(exc, openai.APIStatusError):
        return LLMAppError(
            code="llm_server_error",
            message=str(exc),
            error_type="server",
            details=details,
        )
    return LLMAppError(code="llm_unexpected", message=str(exc), error_type="server")


class OpenAIClient(AbstractLLMClient):
    """Client for OpenAI chat completions, streaming or JSON mode."""

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str | None = None,
        timeout_seconds: float = 30.0,
        temperature: float = 0.7,
        max_tokens: int = 4096,
    ) -> None:
        """Initialize OpenAI async client.

        Args:
            api_key: OpenAI API key for authentication.
            model: Model name (e.g., "gpt-4o-mini").
            base_url: Optional custom base URL for OpenAI API.
            timeout_seconds: Timeout for requests in seconds.
            temperature: Default sampling temperature for streamed text.
            max_tokens: Default completion token budget.
        """
        self.client = AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            timeout=timeout_seconds,
        )
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens

    def _token_param(self, max_tokens: int) -> dict[str, int]:
        if self.model.startswith(_COMPLETION_TOKEN_MODEL_PREFIXES):
            return {"max_completion_tokens": max_tokens}
        return {"max_tokens": max_tokens}

    async def stream_text(
        self,
        system_prompt: str,
        messages: Sequence[ChatMessage],
        **kwargs: Any,
    ) -> AsyncIterator[str]:
        """Stream a chat completion, yielding content deltas.

        Args:
            system_prompt: System prompt with portfolio context.
            messages: Conversation turns after the system prompt.
            **kwargs: ``temperature``, ``max_tokens`` and ``response_format``
                ("json_object") overrides.

        Yields:
            Non-empty text fragments.

        Raises:
            LLMAppError: On any provider failure.
        """
        request_params: dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                *({"role": m["role"], "content": m["content"]} for m in messages),
            ],
            "temperature": kwargs.get("temperature", self.temperature),
            "stream": True,
            **self._token_param(kwargs.get("max_tokens", self.max_tokens)),
        }
        response_format = kwargs.get("response_format")
        if response_format:
            request_params["response_format"] = {"type": response_format}

        logger.info("llm.stream_started", extra={"model": self.model})
        started = time.perf_counter()
        chunk_count = 0

        try:
            stream = await self.client.chat.completions.create(**request_params)
            try:
                async for chunk in stream:
                    if not chunk.choices:
                        continue
                    text = getattr(chunk.choices[0].delta, "content", None)
                    if text:
                        chunk_count += 1
                        yield text
            finally:
                # Also runs on cancellation or early aclose(); releases the HTTP response
                await stream.close()
        except Exception as exc:
            error = to_llm_error(exc)
            logger.warning(
                "llm.stream_failed",
                extra={
                    "model": self.model,
                    "error_type": error.error_type,
                    "http_status": (error.details or {}).get("http_status"),
                },
            )
            raise error from exc

        logger.info(
            "llm.stream_finished",
            extra={
                "model": self.model,
                "chunk_count": chunk_count,
                "latency_ms": round((time.perf_counter() - started) * 1000, 2),
            },
        )

    async def generate_json(
        self,
        prompt: str,
        *,
        schema: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> dict[str, Any]:
        """Generate structured JSON using OpenAI chat completions.

        Args:
            prompt: User prompt to send to the model.
            schema: Optional JSON schema; when given json_object mode is enforced.
            **kwargs: Provider options (temperature, max_tokens, top_p, seed).

        Returns:
            dict[str, Any]: Parsed JSON object from the LLM response.

        Raises:
            LLMAppError: If the API call fails or the response is not valid JSON.
        """
        request_params: dict[str, Any] = {
            "model": self.model,
            "messages": [
                {
                    "role": "system",
                    "content": "Output JSON only. No extra text or markdown formatting.",
                },
                {"role": "user", "content": prompt},
            ],
            "temperature": kwargs.pop("temperature", 0.0),
        }
        if schema is not None:
            request_params["response_format"] = {"type": "json_object"}
        for param in ("top_p", "seed"):
            if param in kwargs:
                request_params[param] = kwargs[param]
        if "max_tokens" in kwargs:
            request_params.update(self._token_param(kwargs["max_tokens"]))

        try:
            response = await self.client.chat.completions.create(**request_params)
            content = response.choices[0].message.content
        except Exception as exc:
            raise to_llm_error(exc) from exc

        if content is None:
            raise LLMAppError(
                code="llm_empty_response",
                message="LLM returned empty response",
                error_type="invalid_response",
            )

        try:
            parsed = json.loads(content.strip())
        except json.JSONDecodeError as exc:
            raise LLMAppError(
                code="llm_invalid_json",
                message=f"LLM returned invalid JSON: {exc}",
                error_type="invalid_response",
            ) from exc

        if not isinstance(parsed, dict):
            raise LLMAppError(
                code="llm_invalid_json",
                message="LLM returned invalid JSON: expected an object",
                error_type="invalid_response",
            )
        return parsed
