"""
In-process Vector Store Implementation.

A flat, exact-search store kept in memory:
- No server or native dependencies
- Cosine similarity over every record (fine for < 100K vectors)
- Optional JSON persistence with atomic replace, reloadable by any instance

Operations never suspend except for the embedding call, so each write is
atomic with respect to concurrent tasks on the same event loop.
"""

import json
import logging
import os
from pathlib import Path
from typing import Optional

from ..errors import ValidationError
from .base import (
    MemoryRecord,
    MetadataFilter,
    VectorStore,
    cosine_similarity,
    matches_filter,
)

logger = logging.getLogger("supermemory.memory.local")

FORMAT_VERSION = 1


class InMemoryVectorStore(VectorStore):
    """
    Flat in-process implementation of the vector store.

    When ``storage_path`` is set, records are loaded from
    ``<storage_path>/memories.json`` on initialization and written back
    after every mutation (``autosave``) or on ``persist()``.
    """

    backend_name = "local"

    def __init__(
        self,
        embedding_service,
        storage_path: Optional[str] = None,
        autosave: bool = True,
        **kwargs,
    ):
        super().__init__(embedding_service, **kwargs)
        self.storage_path = Path(storage_path) if storage_path else None
        self.autosave = autosave
        self._records: dict[str, MemoryRecord] = {}
        logger.info(f"InMemoryVectorStore configured (storage: {storage_path or 'none'})")

    @property
    def data_file(self) -> Optional[Path]:
        return self.storage_path / "memories.json" if self.storage_path else None

    async def _initialize_backend(self) -> None:
        """Load persisted memories, if any."""
        if self.storage_path is None:
            return
        self.storage_path.mkdir(parents=True, exist_ok=True)
        if not self.data_file.exists():
            return

        with open(self.data_file, encoding="utf-8") as f:
            data = json.load(f)

        stored_dim = data.get("dimension")
        if stored_dim is not None and stored_dim != self.dimension:
            raise ValidationError(
                f"{self.data_file} holds {stored_dim}-dimensional vectors, "
                f"embedder produces {self.dimension}"
            )
        records = [MemoryRecord.from_dict(item) for item in data.get("records", [])]
        self._records = {r.id: r for r in records}
        logger.info(f"Loaded {len(self._records)} memories from {self.data_file}")

    def persist(self) -> None:
        """Write all records to disk (atomic replace)."""
        if self.data_file is None:
            return
        self.storage_path.mkdir(parents=True, exist_ok=True)
        payload = {
            "version": FORMAT_VERSION,
            "dimension": self.dimension,
            "records": [r.to_dict() for r in self._records.values()],
        }
        tmp = self.data_file.with_suffix(".json.tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2)
        os.replace(tmp, self.data_file)
        logger.debug(f"Saved {len(self._records)} memories to {self.data_file}")

    def _changed(self) -> None:
        if self.autosave:
            self.persist()

    async def _upsert(self, records: list[MemoryRecord]) -> None:
        for record in records:
            self._records[record.id] = record
        self._changed()

    async def _fetch(self, ids: list[str]) -> list[MemoryRecord]:
        return [self._records[i] for i in ids if i in self._records]

    async def _query(
        self,
        vector: list[float],
        top_k: int,
        filter: MetadataFilter,
    ) -> list[tuple[MemoryRecord, float]]:
        scored = [
            (record, cosine_similarity(vector, record.vector))
            for record in self._records.values()
            if matches_filter(record.metadata.to_flat(), filter)
        ]
        scored.sort(key=lambda pair: pair[1], reverse=True)
        return scored[:top_k]

    async def _delete_ids(self, ids: list[str]) -> None:
        removed = 0
        for record_id in ids:
            if self._records.pop(record_id, None) is not None:
                removed += 1
        if removed:
            self._changed()

    async def _list(self, filter: MetadataFilter) -> list[MemoryRecord]:
        return [
            r for r in self._records.values()
            if matches_filter(r.metadata.to_flat(), filter)
        ]

    async def _count(self) -> int:
        return len(self._records)

    async def clear(self) -> None:
        """Remove every record."""
        await self.initialize()
        self._records.clear()
        self._changed()
        logger.info("All local memories cleared")

    async def _close(self) -> None:
        if self._initialized:
            self.persist()
