"""
Google Generative AI (Gemini) LLM Provider Implementation.

Uses the google-genai SDK's native async client.
"""

import logging
from typing import Any

from google import genai
from google.genai import types

from ..errors import BackendUnavailableError, GenerationError
from ..memory.retry import with_retries
from .base import LLMProvider, LLMResponse

logger = logging.getLogger("supermemory.llm.google")


class GoogleProvider(LLMProvider):
    """Google Generative AI provider implementation."""

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-2.0-flash",
        timeout: float = 60.0,
        max_retries: int = 2,
    ):
        """
        Initialize the Google Generative AI provider.

        Args:
            api_key: Google API key.
            model: Model to use (default: gemini-2.0-flash).
            timeout: Per-attempt timeout in seconds.
            max_retries: Attempts for transient failures.
        """
        self._api_key = api_key
        self._model = model
        self._timeout = timeout
        self._max_retries = max_retries
        self._client = genai.Client(api_key=api_key) if api_key else None

    @property
    def provider_name(self) -> str:
        return "Google"

    @property
    def model_name(self) -> str:
        return self._model

    def is_configured(self) -> bool:
        return self._client is not None and bool(self._api_key)

    @staticmethod
    def _to_contents(
        prompt: str | None,
        messages: list[dict[str, Any]] | None,
    ) -> tuple[list[types.Content], str | None]:
        """Convert chat messages to Gemini contents; system messages are split out."""
        contents = []
        system_parts = []
        for message in messages or []:
            role = message.get("role", "user")
            text = str(message.get("content", ""))
            if role == "system":
                system_parts.append(text)
                continue
            contents.append(types.Content(
                role="model" if role == "assistant" else "user",
                parts=[types.Part(text=text)],
            ))
        if prompt is not None:
            contents.append(types.Content(role="user", parts=[types.Part(text=prompt)]))
        return contents, "\n\n".join(system_parts) or None

    async def generate(
        self,
        prompt: str | None = None,
        messages: list[dict[str, Any]] | None = None,
        system_prompt: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 2000,
    ) -> LLMResponse:
        """
        Generate a response using Google's Generative AI API.

        Args:
            prompt: The user prompt/question.
            messages: Conversation messages, used instead of prompt when given.
            system_prompt: Optional system instruction; a system message in
                ``messages`` takes precedence.
            temperature: Creativity setting (0.0-1.0).
            max_tokens: Maximum tokens in response.

        Returns:
            LLMResponse containing the generated content.
        """
        if self._client is None:
            raise GenerationError("Google", "generate", "GOOGLE_API_KEY not configured")

        contents, message_system = self._to_contents(prompt, messages)
        generation_config = types.GenerateContentConfig(
            temperature=temperature,
            max_output_tokens=max_tokens,
            system_instruction=message_system or system_prompt,
        )

        logger.debug(f"Sending request to Google ({self._model})")

        try:
            response = await with_retries(
                "Google",
                "generate",
                lambda: self._client.aio.models.generate_content(
                    model=self._model,
                    contents=contents,
                    config=generation_config,
                ),
                max_attempts=self._max_retries,
                timeout=self._timeout,
            )
        except BackendUnavailableError as e:
            logger.error(f"Google API error: {e}")
            raise GenerationError("Google", "generate", str(e.__cause__ or e)) from e

        content = response.text or ""

        # Extract usage metadata if available
        usage = None
        if getattr(response, "usage_metadata", None):
            usage = {
                "prompt_tokens": response.usage_metadata.prompt_token_count,
                "completion_tokens": response.usage_metadata.candidates_token_count,
                "total_tokens": response.usage_metadata.total_token_count,
            }

        logger.debug(f"Google response received, tokens used: {usage}")

        return LLMResponse(
            content=content,
            model=self._model,
            usage=usage,
            raw_response=response,
            provider="Google",
        )
