"""
OpenAI LLM Provider Implementation.

Provides integration with OpenAI's API (GPT-4o, etc.) and with any
OpenAI-compatible endpoint such as OpenRouter via ``base_url``.
"""

import logging
from typing import Any

from openai import AsyncOpenAI

from ..errors import BackendUnavailableError, GenerationError
from ..memory.retry import with_retries
from .base import LLMProvider, LLMResponse, build_messages

logger = logging.getLogger("supermemory.llm.openai")


class OpenAIProvider(LLMProvider):
    """OpenAI API provider implementation."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        base_url: str | None = None,
        name: str = "OpenAI",
        timeout: float = 60.0,
        max_retries: int = 2,
    ):
        """
        Initialize the OpenAI provider.

        Args:
            api_key: OpenAI (or compatible provider) API key.
            model: Model to use (default: gpt-4o-mini).
            base_url: Alternative OpenAI-compatible endpoint (e.g. OpenRouter).
            name: Provider name reported in logs and errors.
            timeout: Per-attempt timeout in seconds.
            max_retries: Attempts for transient failures.
        """
        self._api_key = api_key
        self._model = model
        self._base_url = base_url
        self._name = name
        self._timeout = timeout
        self._max_retries = max_retries
        self._client: AsyncOpenAI | None = None

    @property
    def provider_name(self) -> str:
        return self._name

    @property
    def model_name(self) -> str:
        return self._model

    def is_configured(self) -> bool:
        return bool(self._api_key)

    def _get_client(self) -> AsyncOpenAI:
        """Get or create the async OpenAI client."""
        if self._client is None:
            if self._base_url:
                self._client = AsyncOpenAI(api_key=self._api_key, base_url=self._base_url)
            else:
                self._client = AsyncOpenAI(api_key=self._api_key)
        return self._client

    async def generate(
        self,
        prompt: str | None = None,
        messages: list[dict[str, Any]] | None = None,
        system_prompt: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 2000,
    ) -> LLMResponse:
        """
        Generate a response using the chat completions API.

        Args:
            prompt: The user prompt/question.
            messages: Conversation messages, used instead of prompt when given.
            system_prompt: Optional system prompt; ignored if messages already
                contain one.
            temperature: Creativity setting (0.0-1.0).
            max_tokens: Maximum tokens in response.

        Returns:
            LLMResponse containing the generated content.
        """
        client = self._get_client()

        chat = build_messages(prompt, messages, system_prompt)

        logger.debug(f"Sending request to {self._name} ({self._model})")

        try:
            response = await with_retries(
                self._name,
                "generate",
                lambda: client.chat.completions.create(
                    model=self._model,
                    messages=chat,  # type: ignore
                    temperature=temperature,
                    max_tokens=max_tokens,
                ),
                max_attempts=self._max_retries,
                timeout=self._timeout,
            )
        except BackendUnavailableError as e:
            logger.error(f"{self._name} API error: {e}")
            raise GenerationError(self._name, "generate", str(e.__cause__ or e)) from e

        if not response.choices:
            raise GenerationError(self._name, "generate", "response contained no choices")

        content = response.choices[0].message.content or ""
        usage = None
        if response.usage:
            usage = {
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
                "total_tokens": response.usage.total_tokens,
            }

        logger.debug(f"{self._name} response received, tokens used: {usage}")

        return LLMResponse(
            content=content,
            model=response.model,
            usage=usage,
            raw_response=response,
            provider=self._name,
        )
