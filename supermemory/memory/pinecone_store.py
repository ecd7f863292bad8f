"""
Pinecone Vector Store Implementation.

Uses a serverless index with the cosine metric. A missing index is created
on first use and polled until ready. Pinecone is eventually consistent: a
record written a moment ago may not be returned by an immediate query.
"""

import asyncio
import logging
import time
from typing import Any

from ..errors import ProvisioningTimeoutError, ValidationError
from .base import (
    MemoryMetadata,
    MemoryRecord,
    MetadataFilter,
    VectorStore,
    matches_filter,
    parse_timestamp,
)

logger = logging.getLogger("supermemory.memory.pinecone")


def _status_ready(description: Any) -> bool:
    status = getattr(description, "status", None)
    if status is None and isinstance(description, dict):
        status = description.get("status")
    if isinstance(status, dict):
        return bool(status.get("ready"))
    return bool(getattr(status, "ready", False))


def _dimension_of(description: Any) -> int | None:
    if isinstance(description, dict):
        return description.get("dimension")
    return getattr(description, "dimension", None)


class PineconeVectorStore(VectorStore):
    """
    Pinecone implementation of the vector store.

    Metadata is stored flat next to the text (Pinecone has no document
    field). Writes are chunked to 100 vectors per request.
    """

    backend_name = "pinecone"
    max_batch_size = 100

    def __init__(
        self,
        embedding_service,
        api_key: str,
        index_name: str = "supermemory",
        cloud: str = "aws",
        region: str = "us-east-1",
        provision_timeout: float = 60.0,
        poll_interval: float = 2.0,
        **kwargs,
    ):
        super().__init__(embedding_service, **kwargs)
        if not api_key:
            raise ValueError("Pinecone API key required")
        self.api_key = api_key
        self.index_name = index_name
        self.cloud = cloud
        self.region = region
        self.provision_timeout = provision_timeout
        self.poll_interval = poll_interval
        self._client = None
        self._index = None
        logger.info(f"PineconeVectorStore configured for index {index_name} ({cloud}/{region})")

    def _get_client(self):
        if self._client is None:
            try:
                from pinecone import Pinecone
            except ImportError:
                raise RuntimeError(
                    "pinecone not installed. Install with: pip install pinecone"
                )
            self._client = Pinecone(api_key=self.api_key)
        return self._client

    def _create_index(self) -> None:
        from pinecone import ServerlessSpec

        self._get_client().create_index(
            name=self.index_name,
            dimension=self.dimension,
            metric="cosine",
            spec=ServerlessSpec(cloud=self.cloud, region=self.region),
            # Return at once; readiness is polled under provision_timeout
            timeout=-1,
        )

    async def _wait_until_ready(self) -> Any:
        """Poll describe_index until the index reports ready."""
        client = self._get_client()
        deadline = time.monotonic() + self.provision_timeout
        while True:
            description = await self._call("describe_index", client.describe_index, self.index_name)
            if _status_ready(description):
                return description
            if time.monotonic() >= deadline:
                raise ProvisioningTimeoutError(
                    self.backend_name,
                    "initialize",
                    f"index {self.index_name} not ready after {self.provision_timeout:.0f}s",
                )
            logger.info(f"Waiting for Pinecone index {self.index_name} to be ready...")
            await asyncio.sleep(self.poll_interval)

    async def _initialize_backend(self) -> None:
        """Create the index if needed, wait for readiness and check its dimension."""
        client = self._get_client()
        exists = await self._call("has_index", client.has_index, self.index_name)
        if not exists:
            logger.info(f"Creating Pinecone index: {self.index_name} (dimension={self.dimension})")
            await self._call("create_index", self._create_index)

        description = await self._wait_until_ready()
        index_dim = _dimension_of(description)
        if index_dim is not None and int(index_dim) != self.dimension:
            raise ValidationError(
                f"Pinecone index {self.index_name} has dimension {index_dim}, "
                f"embedder produces {self.dimension}"
            )
        self._index = client.Index(self.index_name)
        logger.info(f"Pinecone index {self.index_name} ready")

    @staticmethod
    def _to_metadata(record: MemoryRecord) -> dict[str, Any]:
        flat = record.metadata.to_flat()
        flat["text"] = record.text
        flat["created_at"] = record.created_at.isoformat()
        return flat

    @staticmethod
    def _to_record(id: str, values, metadata: dict) -> MemoryRecord:
        metadata = dict(metadata or {})
        text = metadata.pop("text", "")
        created_at = metadata.pop("created_at", None)
        return MemoryRecord(
            id=id,
            text=text,
            vector=[float(x) for x in values or []],
            metadata=MemoryMetadata.from_flat(metadata),
            created_at=parse_timestamp(created_at) if created_at else parse_timestamp(0),
        )

    @staticmethod
    def _filter(filter: MetadataFilter) -> dict | None:
        """Translate an exact-match filter into Pinecone's filter syntax."""
        if not filter:
            return None
        translated = {}
        for key, value in filter.items():
            if key == "tags":
                wanted = value if isinstance(value, list) else [value]
                translated[key] = {"$in": list(wanted)}
            else:
                translated[key] = {"$eq": value}
        return translated

    async def _upsert(self, records: list[MemoryRecord]) -> None:
        vectors = [
            {"id": r.id, "values": r.vector, "metadata": self._to_metadata(r)}
            for r in records
        ]
        await self._call("upsert", self._index.upsert, vectors=vectors)

    async def _fetch(self, ids: list[str]) -> list[MemoryRecord]:
        response = await self._call("fetch", self._index.fetch, ids=ids)
        vectors = getattr(response, "vectors", None) or {}
        return [
            self._to_record(id, v.values, v.metadata)
            for id, v in vectors.items()
        ]

    async def _run_query(self, vector: list[float], top_k: int, filter: MetadataFilter):
        kwargs = {
            "vector": vector,
            "top_k": top_k,
            "include_metadata": True,
            "include_values": True,
        }
        pinecone_filter = self._filter(filter)
        if pinecone_filter:
            kwargs["filter"] = pinecone_filter
        response = await self._call("query", self._index.query, **kwargs)
        return getattr(response, "matches", None) or []

    async def _query(
        self,
        vector: list[float],
        top_k: int,
        filter: MetadataFilter,
    ) -> list[tuple[MemoryRecord, float]]:
        matches = await self._run_query(vector, top_k, filter)
        return [
            (self._to_record(m.id, m.values, m.metadata), float(m.score))
            for m in matches
        ]

    async def _delete_ids(self, ids: list[str]) -> None:
        await self._call("delete", self._index.delete, ids=ids)

    def _all_ids(self) -> list[str]:
        # Index.list pages through every id in the namespace
        return [id for page in self._index.list() for id in page]

    async def _list(self, filter: MetadataFilter) -> list[MemoryRecord]:
        """Page through every id, fetch in batches and filter client-side."""
        ids = await self._call("list", self._all_ids)
        records = []
        for start in range(0, len(ids), self.max_batch_size):
            records.extend(await self._fetch(ids[start:start + self.max_batch_size]))
        return [r for r in records if matches_filter(r.metadata.to_flat(), filter)]

    async def _count(self) -> int:
        stats = await self._call("describe_index_stats", self._index.describe_index_stats)
        return int(getattr(stats, "total_vector_count", 0) or 0)

    async def _close(self) -> None:
        self._index = None
        self._client = None
