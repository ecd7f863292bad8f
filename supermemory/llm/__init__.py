"""
Text-generation providers used for replies and storage decisions.

OpenAI and OpenRouter share the OpenAI-compatible client; Gemini uses
google-genai. ``create_llm_provider`` picks one from configuration.
"""

from .base import ChatMessage, LLMProvider, LLMResponse, build_messages
from .factory import create_llm_provider, provider_from_config
from .google_client import GoogleProvider
from .openai_client import OpenAIProvider

__all__ = [
    "ChatMessage",
    "LLMProvider",
    "LLMResponse",
    "GoogleProvider",
    "OpenAIProvider",
    "build_messages",
    "create_llm_provider",
    "provider_from_config",
]
