"""
ChromaDB Vector Store Implementation.

Works against either a Chroma server (HttpClient, when a host is
configured) or a local persistent directory (PersistentClient).
The collection uses the cosine space, so similarity = 1 - distance.
"""

import logging
from pathlib import Path
from typing import Any, Optional

from .base import (
    MemoryMetadata,
    MemoryRecord,
    MetadataFilter,
    VectorStore,
    parse_timestamp,
)

logger = logging.getLogger("supermemory.memory.chroma")

INCLUDE = ["documents", "metadatas", "embeddings"]


class ChromaVectorStore(VectorStore):
    """
    ChromaDB implementation of the vector store.

    Chroma metadata only holds scalars, so tags are stored comma-joined and
    tag filters are applied client-side after an over-fetch.
    """

    backend_name = "chroma"

    def __init__(
        self,
        embedding_service,
        collection_name: str = "supermemory",
        persist_directory: str = "./data/chroma",
        host: Optional[str] = None,
        port: int = 8000,
        **kwargs,
    ):
        super().__init__(embedding_service, **kwargs)
        self.collection_name = collection_name
        self.persist_directory = Path(persist_directory)
        self.host = host
        self.port = port
        self._client = None
        self._collection = None
        target = f"{host}:{port}" if host else str(persist_directory)
        logger.info(f"ChromaVectorStore configured with {target}, collection: {collection_name}")

    def _connect(self):
        try:
            import chromadb
            from chromadb.config import Settings
        except ImportError:
            raise RuntimeError(
                "chromadb not installed. Install with: pip install chromadb"
            )

        settings = Settings(anonymized_telemetry=False)
        if self.host:
            client = chromadb.HttpClient(host=self.host, port=self.port, settings=settings)
        else:
            self.persist_directory.mkdir(parents=True, exist_ok=True)
            client = chromadb.PersistentClient(path=str(self.persist_directory), settings=settings)

        collection = client.get_or_create_collection(
            name=self.collection_name,
            metadata={"hnsw:space": "cosine", "description": "Supermemory vector store"},
        )
        return client, collection

    async def _initialize_backend(self) -> None:
        """Connect and get or create the collection."""
        self._client, self._collection = await self._call("initialize", self._connect)
        count = await self._count()
        logger.info(f"ChromaDB initialized with {count} existing memories")

    @staticmethod
    def _to_metadata(record: MemoryRecord) -> dict[str, Any]:
        flat = record.metadata.to_flat()
        flat["tags"] = ",".join(record.metadata.tags)
        flat["created_at"] = record.created_at.isoformat()
        return flat

    @staticmethod
    def _to_record(id: str, document: str, metadata: dict, embedding) -> MemoryRecord:
        metadata = dict(metadata or {})
        created_at = metadata.pop("created_at", None)
        return MemoryRecord(
            id=id,
            text=document or "",
            vector=[float(x) for x in embedding] if embedding is not None else [],
            metadata=MemoryMetadata.from_flat(metadata),
            created_at=parse_timestamp(created_at) if created_at else parse_timestamp(0),
        )

    @staticmethod
    def _where(filter: MetadataFilter) -> Optional[dict]:
        """Translate an exact-match filter into a Chroma where clause (tags excluded)."""
        clauses = [{k: v} for k, v in filter.items() if k != "tags"]
        if not clauses:
            return None
        if len(clauses) == 1:
            return clauses[0]
        return {"$and": clauses}

    def _records_from_get(self, results: dict) -> list[MemoryRecord]:
        embeddings = results.get("embeddings")
        records = []
        for i, id in enumerate(results.get("ids") or []):
            records.append(self._to_record(
                id=id,
                document=results["documents"][i],
                metadata=results["metadatas"][i],
                embedding=embeddings[i] if embeddings is not None else None,
            ))
        return records

    async def _upsert(self, records: list[MemoryRecord]) -> None:
        await self._call(
            "upsert",
            self._collection.upsert,
            ids=[r.id for r in records],
            embeddings=[r.vector for r in records],
            documents=[r.text for r in records],
            metadatas=[self._to_metadata(r) for r in records],
        )

    async def _fetch(self, ids: list[str]) -> list[MemoryRecord]:
        results = await self._call("get", self._collection.get, ids=ids, include=INCLUDE)
        return self._records_from_get(results)

    async def _query(
        self,
        vector: list[float],
        top_k: int,
        filter: MetadataFilter,
    ) -> list[tuple[MemoryRecord, float]]:
        total = await self._count()
        if total == 0:
            return []

        # Tag filters are checked client-side, so fetch extra candidates
        n_results = top_k * 3 if "tags" in filter else top_k
        results = await self._call(
            "query",
            self._collection.query,
            query_embeddings=[vector],
            n_results=min(n_results, total),
            where=self._where(filter),
            include=INCLUDE + ["distances"],
        )

        pairs = []
        ids = results.get("ids") or [[]]
        if not ids[0]:
            return pairs
        embeddings = results.get("embeddings")
        for i, id in enumerate(ids[0]):
            record = self._to_record(
                id=id,
                document=results["documents"][0][i],
                metadata=results["metadatas"][0][i],
                embedding=embeddings[0][i] if embeddings is not None else None,
            )
            # Cosine distance -> similarity
            pairs.append((record, 1.0 - float(results["distances"][0][i])))
        return pairs

    async def _delete_ids(self, ids: list[str]) -> None:
        await self._call("delete", self._collection.delete, ids=ids)

    async def _list(self, filter: MetadataFilter) -> list[MemoryRecord]:
        results = await self._call(
            "list", self._collection.get, where=self._where(filter), include=INCLUDE
        )
        return self._records_from_get(results)

    async def _count(self) -> int:
        return await self._call("count", self._collection.count)

    async def _close(self) -> None:
        # Chroma clients handle cleanup automatically
        self._client = None
        self._collection = None
