"""
LLM provider factory.

OpenRouter and a local Ollama server are served by ``OpenAIProvider``
pointed at their compatible endpoints, so the four configured names map
onto two implementations.
"""

import logging
from typing import Literal

from ..errors import ValidationError
from .base import LLMProvider
from .google_client import GoogleProvider
from .openai_client import OpenAIProvider

logger = logging.getLogger("supermemory.llm.factory")

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
OLLAMA_BASE_URL = "http://localhost:11434/v1"

ProviderName = Literal["openai", "openrouter", "google", "ollama"]


def _require_key(label: str, api_key: str) -> None:
    if not api_key:
        raise ValidationError(f"{label} API key is required when using {label} provider")


def create_llm_provider(
    provider: ProviderName,
    openai_api_key: str = "",
    openai_model: str = "gpt-4o-mini",
    openrouter_api_key: str = "",
    openrouter_model: str = "openai/gpt-4o-mini",
    openrouter_base_url: str = OPENROUTER_BASE_URL,
    google_api_key: str = "",
    google_model: str = "gemini-2.0-flash",
    ollama_model: str = "llama3.2",
    ollama_base_url: str = OLLAMA_BASE_URL,
    timeout: float = 60.0,
    max_retries: int = 2,
) -> LLMProvider:
    """
    Build the provider named by ``provider``.

    Only the selected provider's key is checked; Ollama needs none.
    ``timeout`` bounds each attempt and ``max_retries`` caps attempts on
    transient failures.

    Raises:
        ValidationError: Unknown provider or missing API key.
    """
    logger.info(f"Creating LLM provider: {provider}")

    if provider == "openai":
        _require_key("OpenAI", openai_api_key)
        return OpenAIProvider(
            api_key=openai_api_key,
            model=openai_model,
            timeout=timeout,
            max_retries=max_retries,
        )

    if provider == "openrouter":
        _require_key("OpenRouter", openrouter_api_key)
        return OpenAIProvider(
            api_key=openrouter_api_key,
            model=openrouter_model,
            base_url=openrouter_base_url,
            name="OpenRouter",
            timeout=timeout,
            max_retries=max_retries,
        )

    if provider == "google":
        _require_key("Google", google_api_key)
        return GoogleProvider(
            api_key=google_api_key,
            model=google_model,
            timeout=timeout,
            max_retries=max_retries,
        )

    if provider == "ollama":
        # The client requires a key; Ollama ignores it
        return OpenAIProvider(
            api_key="ollama",
            model=ollama_model,
            base_url=ollama_base_url,
            name="Ollama",
            timeout=timeout,
            max_retries=max_retries,
        )

    raise ValidationError(f"Unsupported LLM provider: {provider}")


def provider_from_config(cfg) -> LLMProvider:
    """Build the reply provider from a loaded ``Config``."""
    return create_llm_provider(
        provider=cfg.app.llm_provider,
        openai_api_key=cfg.openai.api_key,
        openai_model=cfg.openai.model,
        openrouter_api_key=cfg.openrouter.api_key,
        openrouter_model=cfg.openrouter.model,
        openrouter_base_url=cfg.openrouter.base_url,
        google_api_key=cfg.google.api_key,
        google_model=cfg.google.model,
        ollama_model=cfg.ollama.model,
        ollama_base_url=cfg.ollama.base_url,
        timeout=cfg.memory.timeout_seconds,
        max_retries=cfg.memory.max_retries,
    )
