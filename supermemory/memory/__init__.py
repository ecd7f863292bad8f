"""
Vector Memory System.

Embeds texts, stores them in a pluggable vector backend and retrieves
them by semantic similarity, scoped per owner through metadata filters.
"""

from .base import (
    DEFAULT_MIN_SCORE,
    MAX_TOP_K,
    MemoryMetadata,
    MemoryRecord,
    SearchResult,
    StoreStats,
    VectorStore,
)
from .embeddings import (
    EmbeddingService,
    FallbackEmbeddingService,
    LocalEmbeddingService,
    OpenAIEmbeddingService,
    create_embedding_service,
)
from .local_store import InMemoryVectorStore
from .memory_service import (
    ComposedContext,
    ExchangeIds,
    MemoryRelationship,
    MemoryService,
    SearchOptions,
    StoreOutcome,
    detect_relationship,
    create_memory_service,
    create_vector_store,
)

__all__ = [
    "DEFAULT_MIN_SCORE",
    "MAX_TOP_K",
    "MemoryMetadata",
    "MemoryRecord",
    "SearchResult",
    "StoreStats",
    "VectorStore",
    "EmbeddingService",
    "FallbackEmbeddingService",
    "LocalEmbeddingService",
    "OpenAIEmbeddingService",
    "create_embedding_service",
    "InMemoryVectorStore",
    "ComposedContext",
    "ExchangeIds",
    "MemoryRelationship",
    "MemoryService",
    "SearchOptions",
    "StoreOutcome",
    "detect_relationship",
    "create_memory_service",
    "create_vector_store",
]
