"""
Test fixtures and sample data for Supermemory tests.
"""

import hashlib
import math
import re
from datetime import datetime, timezone
from typing import Optional

from supermemory.llm.base import LLMResponse
from supermemory.memory.base import MemoryMetadata, MemoryRecord
from supermemory.memory.embeddings import EmbeddingService

DIMENSION = 64

# Dimensions 0-7 are reserved for the fixed table; hashed texts use 8-63,
# so a fixed text and a hashed text always have cosine 0.
FIXED_DIMS = 8


def unit(components: dict[int, float], dimension: int = DIMENSION) -> list[float]:
    """Build a normalized vector from {index: value}."""
    vector = [0.0] * dimension
    for index, value in components.items():
        vector[index] = value
    norm = math.sqrt(sum(v * v for v in vector))
    return [v / norm for v in vector]


# Known texts with controlled similarities
FIXED_VECTORS = {
    # cosine("What is my name?", "My name is Shivansh") == 0.55
    "My name is Shivansh": unit({0: 1.0}),
    "What is my name?": unit({0: 0.55, 1: math.sqrt(1 - 0.55 ** 2)}),
    # Paraphrase vs unrelated text
    "The cat sat on the mat": unit({2: 1.0}),
    "A cat was sitting on the mat": unit({2: 0.9, 3: 0.436}),
    "Quarterly revenue grew 12 percent": unit({4: 1.0}),
}


class FakeEmbeddingService(EmbeddingService):
    """
    Deterministic embedder for tests.

    Texts in FIXED_VECTORS get their table vector; anything else gets a
    normalized bag-of-words hash vector (md5, stable across runs).
    """

    name = "fake"

    def __init__(self, dimension: int = DIMENSION, fail: Optional[Exception] = None):
        self._dimension = dimension
        self.fail = fail
        self.calls: list[str] = []

    @property
    def dimension(self) -> int:
        return self._dimension

    def vector_for(self, text: str) -> list[float]:
        if text in FIXED_VECTORS and self._dimension == DIMENSION:
            return list(FIXED_VECTORS[text])
        vector = [0.0] * self._dimension
        tokens = re.findall(r"[a-z0-9']+", text.lower()) or ["<empty>"]
        buckets = self._dimension - FIXED_DIMS
        for token in tokens:
            digest = int(hashlib.md5(token.encode()).hexdigest(), 16)
            vector[FIXED_DIMS + digest % buckets] += 1.0
        norm = math.sqrt(sum(v * v for v in vector))
        return [v / norm for v in vector]

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if self.fail is not None:
            raise self.fail
        return self.vector_for(text)

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        return [await self.embed(t) for t in texts]


def make_llm_response(content: str, model: str = "mock-model") -> LLMResponse:
    """Create an LLMResponse as returned by a provider."""
    return LLMResponse(
        content=content,
        model=model,
        usage={"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15},
    )


def make_metadata(
    owner_id: str = "alice",
    conversation_id: str = "default",
    role: str = "user",
    importance: float = 0.5,
    category: str = "general",
    tags: list[str] = None,
    **extra,
) -> MemoryMetadata:
    """Create MemoryMetadata for testing."""
    return MemoryMetadata(
        owner_id=owner_id,
        conversation_id=conversation_id,
        role=role,
        importance=importance,
        category=category,
        tags=tags or [],
        extra=extra,
    )


def make_record(
    id: str = "rec-1",
    text: str = "I love hiking in the Alps",
    vector: list[float] = None,
    metadata: MemoryMetadata = None,
    created_at: datetime = None,
) -> MemoryRecord:
    """Create a MemoryRecord for testing."""
    return MemoryRecord(
        id=id,
        text=text,
        vector=vector or FakeEmbeddingService().vector_for(text),
        metadata=metadata or make_metadata(),
        created_at=created_at or datetime(2026, 10, 18, 14, 3, 11, tzinfo=timezone.utc),
    )
