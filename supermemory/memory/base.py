"""
Base interfaces and data structures for vector memory.

Defines the record types and the abstract store contract that every
backend (in-process, Chroma, Pinecone, pgvector) implements. The uniform
semantics live here; backends only supply storage primitives.
"""

import asyncio
import logging
import math
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Literal, Mapping, Optional, Sequence, Union

from ..errors import NotFoundError, ValidationError
from .retry import with_retries

logger = logging.getLogger("supermemory.memory.store")

# Low default favouring recall: lexically different but related texts
# ("What is my name?" vs "My name is ...") typically score 0.4-0.6.
DEFAULT_MIN_SCORE = 0.3

# Result cap enforced for every backend (Pinecone's limit with metadata).
MAX_TOP_K = 1000

Category = Literal["personal", "preference", "project", "question", "casual", "important", "general"]
Role = Literal["user", "assistant", "system"]

CATEGORIES: tuple[str, ...] = (
    "personal", "preference", "project", "question", "casual", "important", "general",
)
ROLES: tuple[str, ...] = ("user", "assistant", "system")

MetadataValue = Union[str, int, float, bool]
MetadataFilter = dict[str, Union[MetadataValue, list[str]]]

CORE_KEYS = frozenset({"owner_id", "conversation_id", "role", "importance", "category", "tags"})
RESERVED_KEYS = frozenset({"text", "created_at"})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


@dataclass
class MemoryMetadata:
    """
    Typed metadata carried by every memory.

    The core fields are always present; ``extra`` holds caller-specific
    primitive values and is flattened next to them for backends and filters.
    """
    owner_id: str = "default"
    conversation_id: str = "default"
    role: Role = "user"
    importance: float = 0.5
    category: Category = "general"
    tags: list[str] = field(default_factory=list)
    extra: dict[str, MetadataValue] = field(default_factory=dict)

    def __post_init__(self) -> None:
        try:
            self.importance = float(self.importance)
        except (TypeError, ValueError):
            raise ValidationError(f"importance must be a number, got {self.importance!r}")
        if not 0.0 <= self.importance <= 1.0:
            raise ValidationError(f"importance must be within [0, 1], got {self.importance}")
        if self.role not in ROLES:
            raise ValidationError(f"Unknown role: {self.role!r}")
        if self.category not in CATEGORIES:
            raise ValidationError(f"Unknown category: {self.category!r}")
        self.tags = [str(t) for t in self.tags]
        for key, value in self.extra.items():
            if key in CORE_KEYS or key in RESERVED_KEYS:
                raise ValidationError(f"Extra metadata key collides with a reserved field: {key}")
            if not isinstance(value, (str, int, float, bool)):
                raise ValidationError(
                    f"Extra metadata values must be str, int, float or bool; {key}={value!r}"
                )

    def to_flat(self) -> dict[str, Any]:
        """Flatten into a single-level dict (core fields + extras)."""
        return {
            "owner_id": self.owner_id,
            "conversation_id": self.conversation_id,
            "role": self.role,
            "importance": self.importance,
            "category": self.category,
            "tags": list(self.tags),
            **self.extra,
        }

    @classmethod
    def from_flat(cls, flat: Mapping[str, Any]) -> "MemoryMetadata":
        """Rebuild from a flat dict; unknown keys become extras, reserved keys are dropped."""
        tags = flat.get("tags") or []
        if isinstance(tags, str):
            tags = [t for t in tags.split(",") if t]
        extra = {
            k: v for k, v in flat.items()
            if k not in CORE_KEYS and k not in RESERVED_KEYS
        }
        return cls(
            owner_id=str(flat.get("owner_id", "default")),
            conversation_id=str(flat.get("conversation_id", "default")),
            role=flat.get("role", "user"),
            importance=flat.get("importance", 0.5),
            category=flat.get("category", "general"),
            tags=list(tags),
            extra=extra,
        )

    def merged(self, **changes: Any) -> "MemoryMetadata":
        """Return a copy with the given core fields replaced and extras merged."""
        extra = dict(self.extra)
        extra.update(changes.pop("extra", {}) or {})
        return replace(self, extra=extra, **changes)


MetadataLike = Union[MemoryMetadata, Mapping[str, Any], None]


def coerce_metadata(metadata: MetadataLike) -> MemoryMetadata:
    """Accept a MemoryMetadata, a flat mapping, or None."""
    if metadata is None:
        return MemoryMetadata()
    if isinstance(metadata, MemoryMetadata):
        return metadata
    return MemoryMetadata.from_flat(metadata)



def merge_metadata(current: MemoryMetadata, changes: MetadataLike) -> MemoryMetadata:
    """
    Overlay ``changes`` on the metadata of a stored record.

    None keeps ``current`` as is. A mapping replaces only the flat keys it
    names (owner, category and extras it omits survive). A MemoryMetadata
    is complete, so it replaces ``current`` outright.
    """
    if changes is None:
        return current
    if isinstance(changes, MemoryMetadata):
        return changes
    flat = current.to_flat()
    flat.update(changes)
    return MemoryMetadata.from_flat(flat)


@dataclass
class MemoryRecord:
    """
    A single stored memory: the original text, its embedding and metadata.

    ``id`` and ``created_at`` never change once assigned; an update replaces
    text, vector and metadata under the same id.
    """
    id: str
    text: str
    vector: list[float]
    metadata: MemoryMetadata = field(default_factory=MemoryMetadata)
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        """Self-describing serialization carrying every field."""
        return {
            "id": self.id,
            "text": self.text,
            "vector": list(self.vector),
            "metadata": {
                "owner_id": self.metadata.owner_id,
                "conversation_id": self.metadata.conversation_id,
                "role": self.metadata.role,
                "importance": self.metadata.importance,
                "category": self.metadata.category,
                "tags": list(self.metadata.tags),
                "extra": dict(self.metadata.extra),
            },
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "MemoryRecord":
        meta = dict(data.get("metadata") or {})
        extra = meta.pop("extra", {}) or {}
        return cls(
            id=data["id"],
            text=data["text"],
            vector=[float(x) for x in data["vector"]],
            metadata=MemoryMetadata(**meta, extra=extra),
            created_at=parse_timestamp(data["created_at"]),
        )


@dataclass
class SearchResult:
    """A search result from the vector store."""
    record: MemoryRecord
    score: float  # 0-1, higher is more similar


@dataclass
class StoreStats:
    total_records: int
    dimension: int
    backend: str


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO string or epoch number into an aware UTC datetime."""
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)):
        dt = datetime.fromtimestamp(float(value), tz=timezone.utc)
    else:
        dt = datetime.fromisoformat(str(value))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """dot(a, b) / (|a| * |b|); 0.0 when either vector has zero norm."""
    if len(a) != len(b):
        raise ValidationError(f"Vectors must have the same dimension ({len(a)} != {len(b)})")
    dot = norm_a = norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y
    denominator = math.sqrt(norm_a) * math.sqrt(norm_b)
    return 0.0 if denominator == 0 else dot / denominator


def to_score(similarity: float) -> float:
    """Map a raw cosine similarity into [0, 1]; anti-parallel vectors score 0."""
    return min(1.0, max(0.0, float(similarity)))


def matches_filter(flat_metadata: Mapping[str, Any], filter: Optional[MetadataFilter]) -> bool:
    """
    Exact-match conjunction over flat metadata.

    ``tags`` is special: a string value requires that tag, a list requires
    any of the listed tags.
    """
    if not filter:
        return True
    for key, expected in filter.items():
        actual = flat_metadata.get(key)
        if key == "tags":
            tags = actual or []
            if isinstance(tags, str):
                tags = tags.split(",")
            wanted = expected if isinstance(expected, list) else [expected]
            if not any(tag in tags for tag in wanted):
                return False
        elif actual != expected:
            return False
    return True


def check_dimension(vector: Sequence[float], dimension: int, what: str = "vector") -> None:
    if len(vector) != dimension:
        raise ValidationError(
            f"Dimension mismatch: {what} has {len(vector)} dimensions, store expects {dimension}"
        )


class VectorStore(ABC):
    """
    Abstract vector record store.

    Implementations: InMemoryVectorStore (local), ChromaVectorStore,
    PineconeVectorStore, PgVectorStore.

    The public operations are implemented once here on top of a small set of
    backend primitives (``_upsert``, ``_fetch``, ``_query``, ...), so upsert
    semantics, result caps, thresholds and filter checks are identical for
    every backend. All operations are async; backends are initialized lazily
    on first use and exactly once.
    """

    backend_name: str = "abstract"
    # Maximum records per write call; None means unbounded.
    max_batch_size: Optional[int] = None

    def __init__(
        self,
        embedding_service,
        default_min_score: float = DEFAULT_MIN_SCORE,
        timeout: float = 30.0,
        max_retries: int = 3,
        retry_base_delay: float = 0.5,
    ):
        self.embedding_service = embedding_service
        self.default_min_score = default_min_score
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay
        self._initialized = False
        self._init_lock = asyncio.Lock()

    @property
    def dimension(self) -> int:
        return self.embedding_service.dimension

    # ------------------------------------------------------------------
    # Backend primitives
    # ------------------------------------------------------------------

    @abstractmethod
    async def _initialize_backend(self) -> None:
        """Connect and provision the underlying collection/index/table."""

    @abstractmethod
    async def _upsert(self, records: list[MemoryRecord]) -> None:
        """Write records, replacing any existing record with the same id."""

    @abstractmethod
    async def _fetch(self, ids: list[str]) -> list[MemoryRecord]:
        """Return the records that exist among ``ids``."""

    @abstractmethod
    async def _query(
        self,
        vector: list[float],
        top_k: int,
        filter: MetadataFilter,
    ) -> list[tuple[MemoryRecord, float]]:
        """Return up to ``top_k`` (record, raw cosine similarity) pairs."""

    @abstractmethod
    async def _delete_ids(self, ids: list[str]) -> None:
        """Delete the given ids; unknown ids are ignored."""

    @abstractmethod
    async def _list(self, filter: MetadataFilter) -> list[MemoryRecord]:
        """Return all records matching ``filter``."""

    @abstractmethod
    async def _count(self) -> int:
        """Return the total number of stored records."""

    async def _close(self) -> None:
        pass

    async def _call(self, operation: str, fn, *args, **kwargs):
        """Run a synchronous SDK call in a worker thread under the retry policy."""
        return await with_retries(
            self.backend_name,
            operation,
            lambda: asyncio.to_thread(fn, *args, **kwargs),
            max_attempts=self.max_retries,
            base_delay=self.retry_base_delay,
            timeout=self.timeout,
        )

    # ------------------------------------------------------------------
    # Public contract
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Initialize the backend once; safe to call repeatedly and concurrently."""
        if self._initialized:
            return
        async with self._init_lock:
            if self._initialized:
                return
            await self._initialize_backend()
            self._initialized = True
            logger.info(f"{self.backend_name} store ready (dimension={self.dimension})")

    async def _embed(self, text: str) -> list[float]:
        vector = await self.embedding_service.embed(text)
        check_dimension(vector, self.dimension, "embedding")
        return vector

    async def _write(self, records: list[MemoryRecord]) -> None:
        size = self.max_batch_size or len(records)
        for start in range(0, len(records), size):
            await self._upsert(records[start:start + size])

    async def insert(self, text: str, metadata: MetadataLike = None) -> str:
        """Embed ``text`` and store it under a fresh id."""
        await self.initialize()
        meta = coerce_metadata(metadata)
        record = MemoryRecord(id=new_id(), text=text, vector=await self._embed(text), metadata=meta)
        await self._upsert([record])
        logger.debug(f"Stored memory {record.id[:8]} ({self.backend_name})")
        return record.id

    async def insert_batch(self, items: Sequence[tuple[str, MetadataLike]]) -> list[str]:
        """
        Store many texts; returns ids in input order.

        Writes are chunked to the backend's ``max_batch_size``.
        """
        if not items:
            return []
        await self.initialize()
        metas = [coerce_metadata(m) for _, m in items]
        texts = [text for text, _ in items]
        vectors = await self.embedding_service.embed_batch(texts)
        if len(vectors) != len(texts):
            raise ValidationError(f"Embedder returned {len(vectors)} vectors for {len(texts)} texts")
        for vector in vectors:
            check_dimension(vector, self.dimension, "embedding")

        now = utcnow()
        records = [
            MemoryRecord(id=new_id(), text=text, vector=vector, metadata=meta, created_at=now)
            for text, vector, meta in zip(texts, vectors, metas)
        ]
        await self._write(records)
        logger.info(f"Stored {len(records)} memories ({self.backend_name})")
        return [r.id for r in records]

    async def update(self, record_id: str, text: str, metadata: MetadataLike = None) -> MemoryRecord:
        """
        Re-embed and replace a record (upsert).

        An existing record keeps its id and original ``created_at``, and its
        metadata is merged with ``metadata`` (see ``merge_metadata``). An
        unknown id is created as a new record under that id.
        """
        await self.initialize()
        vector = await self._embed(text)
        existing = await self._fetch([record_id])
        if existing:
            created_at = existing[0].created_at
            meta = merge_metadata(existing[0].metadata, metadata)
        else:
            created_at = utcnow()
            meta = coerce_metadata(metadata)
        record = MemoryRecord(
            id=record_id,
            text=text,
            vector=vector,
            metadata=meta,
            created_at=created_at,
        )
        await self._upsert([record])
        action = "Updated" if existing else "Upserted new"
        logger.debug(f"{action} memory {record_id[:8]} ({self.backend_name})")
        return record

    async def get(self, record_id: str) -> MemoryRecord:
        await self.initialize()
        found = await self._fetch([record_id])
        if not found:
            raise NotFoundError(record_id)
        return found[0]

    async def delete(self, record_id: str) -> None:
        """Delete one record; unknown ids are a no-op."""
        await self.delete_batch([record_id])

    async def delete_batch(self, ids: Sequence[str]) -> None:
        if not ids:
            return
        await self.initialize()
        await self._delete_ids(list(ids))
        logger.debug(f"Deleted up to {len(ids)} memories ({self.backend_name})")

    async def delete_by_filter(self, filter: MetadataFilter) -> int:
        """
        Delete every record matching ``filter``; returns how many were removed.

        An empty filter is rejected rather than treated as "delete all".
        """
        if not filter:
            raise ValidationError("delete_by_filter requires a non-empty filter")
        await self.initialize()
        deleted: set[str] = set()
        # Repeat until a listing turns up nothing new, so a backend whose
        # listing is paged or lags behind deletes still ends up empty
        while True:
            ids = [
                r.id for r in await self._list(filter)
                if r.id not in deleted and matches_filter(r.metadata.to_flat(), filter)
            ]
            if not ids:
                break
            size = self.max_batch_size or len(ids)
            for start in range(0, len(ids), size):
                await self._delete_ids(ids[start:start + size])
            deleted.update(ids)
        logger.info(f"Deleted {len(deleted)} memories matching {filter} ({self.backend_name})")
        return len(deleted)

    async def query(
        self,
        query_vector: Sequence[float],
        top_k: int = 5,
        filter: Optional[MetadataFilter] = None,
        min_score: Optional[float] = None,
    ) -> list[SearchResult]:
        """
        Return up to ``top_k`` records by descending similarity.

        Records not matching ``filter`` or scoring below ``min_score`` (the
        store default when None) are excluded. ``top_k`` is capped at
        MAX_TOP_K for every backend.
        """
        if top_k <= 0:
            return []
        check_dimension(query_vector, self.dimension, "query vector")
        await self.initialize()

        limit = min(top_k, MAX_TOP_K)
        threshold = self.default_min_score if min_score is None else min_score
        candidates = await self._query(list(query_vector), limit, dict(filter or {}))

        results = [
            SearchResult(record=record, score=to_score(similarity))
            for record, similarity in candidates
            if matches_filter(record.metadata.to_flat(), filter)
        ]
        results = [r for r in results if r.score >= threshold]
        results.sort(key=lambda r: r.score, reverse=True)
        return results[:limit]

    async def list_records(self, filter: Optional[MetadataFilter] = None) -> list[MemoryRecord]:
        """All records matching ``filter``."""
        await self.initialize()
        return [r for r in await self._list(dict(filter or {})) if matches_filter(r.metadata.to_flat(), filter)]

    async def count(self) -> int:
        await self.initialize()
        return await self._count()

    async def stats(self) -> StoreStats:
        return StoreStats(
            total_records=await self.count(),
            dimension=self.dimension,
            backend=self.backend_name,
        )

    async def close(self) -> None:
        """Clean up resources."""
        await self._close()
        self._initialized = False
        logger.info(f"{self.backend_name} store closed")
