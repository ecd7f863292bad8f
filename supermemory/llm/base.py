"""
Text-generation provider interface.

The orchestrator and the memory filter only see ``LLMProvider.generate``;
vendor SDKs stay behind the implementations in this package.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Literal, TypedDict

ChatRole = Literal["system", "user", "assistant"]


class ChatMessage(TypedDict):
    role: ChatRole
    content: str


class Usage(TypedDict, total=False):
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


@dataclass
class LLMResponse:
    """A generated reply with the model that produced it."""
    content: str
    model: str
    usage: Usage | None = None
    raw_response: Any = None
    provider: str = ""

    @property
    def token_count(self) -> int:
        if self.usage:
            return self.usage.get("total_tokens", 0)
        return 0


def build_messages(
    prompt: str | None,
    messages: list[dict[str, Any]] | None,
    system_prompt: str | None,
) -> list[dict[str, Any]]:
    """
    Merge a prompt, prior messages and a system prompt into one chat list.

    The prompt is appended as the last user turn. ``system_prompt`` is
    prepended only when the messages carry no system message of their own.
    """
    chat: list[dict[str, Any]] = list(messages or [])
    if prompt is not None:
        chat.append({"role": "user", "content": prompt})
    if system_prompt and not any(m.get("role") == "system" for m in chat):
        chat.insert(0, {"role": "system", "content": system_prompt})
    return chat


class LLMProvider(ABC):
    """
    A text-generation backend.

    ``generate`` raises GenerationError naming the provider on failure;
    it never returns a fabricated reply.
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        pass

    @property
    @abstractmethod
    def model_name(self) -> str:
        pass

    @abstractmethod
    async def generate(
        self,
        prompt: str | None = None,
        messages: list[dict[str, Any]] | None = None,
        system_prompt: str | None = None,
        temperature: float = 0.7,
        max_tokens: int = 2000,
    ) -> LLMResponse:
        """
        Produce one reply.

        Args:
            prompt: Final user turn (the augmented memory prompt).
            messages: Earlier turns as ``{"role", "content"}`` dicts.
            system_prompt: Instruction used unless ``messages`` has one.
            temperature: Sampling temperature.
            max_tokens: Reply length cap.
        """

    @abstractmethod
    def is_configured(self) -> bool:
        """True when the provider has the credentials it needs."""
