"""
Memory Service - the facade callers use for vector memory.

It handles:
- Storing texts with metadata
- Semantic search with owner/metadata filters
- Formatting retrieved memories into a prompt block for the LLM
- Recording both turns of a conversation exchange
- Skipping near-duplicates and linking updates to what they supersede
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import timezone
from typing import Any, Literal, Optional, Sequence

from .base import (
    CATEGORIES,
    MemoryMetadata,
    MemoryRecord,
    MetadataFilter,
    MetadataLike,
    SearchResult,
    StoreStats,
    VectorStore,
    coerce_metadata,
    cosine_similarity,
    to_score,
)
from .embeddings import create_embedding_service

logger = logging.getLogger("supermemory.memory.service")

MEMORIES_HEADER = "=== RELEVANT MEMORIES ==="
MEMORIES_FOOTER = "=== END MEMORIES ==="
NO_MEMORIES = "No relevant memories found."

# A stored memory scoring above this is checked as a duplicate or an update
DUPLICATE_THRESHOLD = 0.85
# Candidate search used before storing
DEDUP_TOP_K = 5
DEDUP_MIN_SCORE = 0.7

UPDATE_KEYWORDS = frozenset({"now", "today", "currently", "update", "changed", "became"})

Relationship = Literal["duplicate", "update", "related", "different"]


@dataclass
class SearchOptions:
    """Retrieval options; ``min_score`` None means the store default."""
    top_k: int = 5
    filter: MetadataFilter = field(default_factory=dict)
    min_score: Optional[float] = None


@dataclass
class ComposedContext:
    prompt_text: str
    results: list[SearchResult]


@dataclass
class ExchangeIds:
    user_id: str
    assistant_id: str


@dataclass
class StoreOutcome:
    """What ``store_intelligently`` did with a text."""
    action: Literal["stored", "updated", "skipped"]
    record_id: str
    relationship: Relationship = "different"
    related: list[SearchResult] = field(default_factory=list)
    reasoning: str = ""


@dataclass
class MemoryRelationship:
    first_id: str
    second_id: str
    relationship: Relationship
    similarity: float


def _words(text: str) -> set[str]:
    return set(re.findall(r"[a-z0-9']+", text.lower()))


def detect_relationship(new_text: str, existing_text: str) -> Relationship:
    """
    Classify a new text against a similar stored one.

    - duplicate: equal ignoring case and surrounding whitespace
    - update: the new text uses a time-change word ("now", "changed", ...)
    - related: over half of the shorter text's words also appear in the other
    - different: anything else
    """
    if new_text.strip().lower() == existing_text.strip().lower():
        return "duplicate"

    new_words = _words(new_text)
    if new_words & UPDATE_KEYWORDS:
        return "update"

    existing_words = _words(existing_text)
    smaller = min(len(new_words), len(existing_words))
    if smaller and len(new_words & existing_words) / smaller > 0.5:
        return "related"
    return "different"


def format_timestamp(record: MemoryRecord) -> str:
    return record.created_at.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


def render_context(
    query: str,
    results: Sequence[SearchResult],
    system_prompt: Optional[str] = None,
) -> str:
    """
    Render ranked results into a prompt block.

    The header and footer markers are always present, even with no results,
    so downstream consumers can rely on them.
    """
    prompt = ""
    if system_prompt:
        prompt += f"{system_prompt}\n\n"

    prompt += f"{MEMORIES_HEADER}\n"
    if results:
        for rank, result in enumerate(results, start=1):
            record = result.record
            prompt += f"\n[Memory {rank}] (Relevance: {result.score * 100:.1f}%)\n"
            prompt += f"Time: {format_timestamp(record)}\n"
            if record.metadata.conversation_id != "default":
                prompt += f"Conversation: {record.metadata.conversation_id}\n"
            prompt += f"Content: {record.text}\n"
    else:
        prompt += f"\n{NO_MEMORIES}\n"
    prompt += f"\n{MEMORIES_FOOTER}\n\n"

    prompt += f"Current Query: {query}"
    return prompt


class MemoryService:
    """
    High-level memory operations over a single vector store.

    Holds no state of its own; errors from the embedder and the store
    propagate unchanged.
    """

    def __init__(self, vector_store: VectorStore, duplicate_threshold: float = DUPLICATE_THRESHOLD):
        self.vector_store = vector_store
        self.duplicate_threshold = duplicate_threshold
        logger.info(f"MemoryService created ({vector_store.backend_name} backend)")

    @property
    def embedding_service(self):
        return self.vector_store.embedding_service

    async def store(self, text: str, metadata: MetadataLike = None) -> str:
        """Store a memory and return its id."""
        return await self.vector_store.insert(text, metadata)

    async def store_intelligently(self, text: str, metadata: MetadataLike = None) -> StoreOutcome:
        """
        Store ``text`` unless the owner already has it.

        The closest stored memories of the same owner are looked up first.
        If the best one scores above ``duplicate_threshold``, an exact
        repeat is skipped (its id is returned) and a text announcing a
        change is stored with ``related_to`` and ``relationship`` extras
        pointing at the memory it supersedes. Everything else is stored as
        a new memory.
        """
        meta = coerce_metadata(metadata)
        similar = await self.search(text, SearchOptions(
            top_k=DEDUP_TOP_K,
            filter={"owner_id": meta.owner_id},
            min_score=DEDUP_MIN_SCORE,
        ))

        relationship: Relationship = "different"
        if similar and similar[0].score > self.duplicate_threshold:
            existing = similar[0].record
            relationship = detect_relationship(text, existing.text)
            if relationship == "duplicate":
                logger.info(f"Skipping duplicate of memory {existing.id[:8]}")
                return StoreOutcome(
                    action="skipped",
                    record_id=existing.id,
                    relationship=relationship,
                    related=similar,
                    reasoning="This information is already stored",
                )
            if relationship == "update":
                record_id = await self.store(
                    text, meta.merged(extra={"related_to": existing.id, "relationship": "update"})
                )
                logger.info(f"Stored memory {record_id[:8]} as an update to {existing.id[:8]}")
                return StoreOutcome(
                    action="updated",
                    record_id=record_id,
                    relationship=relationship,
                    related=similar,
                    reasoning="Stored as an update to an existing memory",
                )

        record_id = await self.store(text, meta)
        return StoreOutcome(
            action="stored",
            record_id=record_id,
            relationship=relationship,
            related=similar,
            reasoning="Stored as new memory",
        )

    async def find_duplicates(
        self,
        owner_id: str,
        threshold: Optional[float] = None,
    ) -> list[MemoryRelationship]:
        """
        Pairs of one owner's memories scoring above ``threshold``.

        Compares stored vectors pairwise; most similar pairs first.
        """
        threshold = self.duplicate_threshold if threshold is None else threshold
        records = await self.vector_store.list_records({"owner_id": owner_id})
        pairs = []
        for i, first in enumerate(records):
            for second in records[i + 1:]:
                similarity = to_score(cosine_similarity(first.vector, second.vector))
                if similarity > threshold:
                    pairs.append(MemoryRelationship(
                        first_id=first.id,
                        second_id=second.id,
                        relationship=detect_relationship(first.text, second.text),
                        similarity=similarity,
                    ))
        pairs.sort(key=lambda p: p.similarity, reverse=True)
        return pairs

    async def search(self, query: str, options: Optional[SearchOptions] = None) -> list[SearchResult]:
        """Embed ``query`` and return ranked matches."""
        options = options or SearchOptions()
        query_vector = await self.embedding_service.embed(query)
        results = await self.vector_store.query(
            query_vector,
            top_k=options.top_k,
            filter=options.filter,
            min_score=options.min_score,
        )
        logger.debug(f"Search returned {len(results)} memories (top_k={options.top_k})")
        return results

    async def compose_context(
        self,
        query: str,
        options: Optional[SearchOptions] = None,
        system_prompt: Optional[str] = None,
    ) -> ComposedContext:
        """Search, then render the results into prompt text."""
        results = await self.search(query, options)
        return ComposedContext(
            prompt_text=render_context(query, results, system_prompt),
            results=results,
        )

    async def record_exchange(
        self,
        user_text: str,
        assistant_text: str,
        conversation_id: str = "default",
        metadata: MetadataLike = None,
        deduplicate: bool = False,
    ) -> ExchangeIds:
        """
        Store both turns of an exchange under one conversation id.

        The user turn is written before the assistant turn. With
        ``deduplicate`` each turn goes through ``store_intelligently``, and a
        skipped turn reports the id of the memory it repeats.
        """
        base = coerce_metadata(metadata).merged(conversation_id=conversation_id)
        if deduplicate:
            user = await self.store_intelligently(user_text, base.merged(role="user"))
            assistant = await self.store_intelligently(assistant_text, base.merged(role="assistant"))
            user_id, assistant_id = user.record_id, assistant.record_id
        else:
            user_id = await self.store(user_text, base.merged(role="user"))
            assistant_id = await self.store(assistant_text, base.merged(role="assistant"))
        logger.info(f"Recorded exchange in conversation {conversation_id}")
        return ExchangeIds(user_id=user_id, assistant_id=assistant_id)

    async def update(self, record_id: str, text: str, metadata: MetadataLike = None) -> MemoryRecord:
        return await self.vector_store.update(record_id, text, metadata)

    async def get(self, record_id: str) -> MemoryRecord:
        return await self.vector_store.get(record_id)

    async def delete(self, record_id: str) -> None:
        await self.vector_store.delete(record_id)

    async def delete_for_owner(self, owner_id: str) -> int:
        """Forget everything stored for one owner."""
        return await self.vector_store.delete_by_filter({"owner_id": owner_id})

    async def list_memories(self, owner_id: str) -> dict[str, list[MemoryRecord]]:
        """
        Export all memories for one owner grouped by category.

        Every category is present as a key; each list is newest first.
        """
        records = await self.vector_store.list_records({"owner_id": owner_id})
        grouped: dict[str, list[MemoryRecord]] = {category: [] for category in CATEGORIES}
        for record in sorted(records, key=lambda r: r.created_at, reverse=True):
            grouped[record.metadata.category].append(record)
        return grouped

    async def stats(self) -> StoreStats:
        return await self.vector_store.stats()

    async def close(self) -> None:
        """Clean up resources."""
        await self.vector_store.close()
        logger.info("MemoryService closed")


def create_vector_store(memory_config, embedding_service) -> VectorStore:
    """Build the configured backend around an embedding service."""
    common: dict[str, Any] = {
        "default_min_score": memory_config.min_score,
        "timeout": memory_config.timeout_seconds,
        "max_retries": memory_config.max_retries,
        "retry_base_delay": memory_config.retry_base_delay,
    }
    store_type = memory_config.store_type

    if store_type == "local":
        from .local_store import InMemoryVectorStore
        return InMemoryVectorStore(
            embedding_service,
            storage_path=memory_config.storage_path,
            **common,
        )
    elif store_type == "chroma":
        from .chroma_store import ChromaVectorStore
        return ChromaVectorStore(
            embedding_service,
            collection_name=memory_config.collection_name,
            persist_directory=memory_config.chroma_path,
            host=memory_config.chroma_host,
            port=memory_config.chroma_port,
            **common,
        )
    elif store_type == "pinecone":
        from .pinecone_store import PineconeVectorStore
        return PineconeVectorStore(
            embedding_service,
            api_key=memory_config.pinecone_api_key,
            index_name=memory_config.pinecone_index,
            cloud=memory_config.pinecone_cloud,
            region=memory_config.pinecone_region,
            provision_timeout=memory_config.provision_timeout,
            poll_interval=memory_config.poll_interval,
            **common,
        )
    elif store_type == "pgvector":
        if not memory_config.postgres_url:
            raise ValueError("postgres_url required for pgvector store")
        from .pgvector_store import PgVectorStore
        return PgVectorStore(
            embedding_service,
            connection_string=memory_config.postgres_url,
            table_name=memory_config.collection_name,
            **common,
        )
    else:
        raise ValueError(f"Unknown store type: {store_type}")


def create_memory_service(config) -> MemoryService:
    """
    Factory function to create a configured MemoryService.

    Args:
        config: The application Config (memory settings and API keys)

    Returns:
        MemoryService; the backend initializes lazily on first use
    """
    memory_config = config.memory
    provider = memory_config.embedding_provider
    api_key = config.openrouter.api_key if provider == "openrouter" else config.openai.api_key

    embedding_service = create_embedding_service(
        provider=provider,
        api_key=api_key,
        model=memory_config.embedding_model,
        dimensions=memory_config.embedding_dimensions,
        timeout=memory_config.timeout_seconds,
        max_retries=memory_config.max_retries,
    )
    vector_store = create_vector_store(memory_config, embedding_service)
    return MemoryService(vector_store, duplicate_threshold=memory_config.duplicate_threshold)
