"""In-memory storage implementations for tests and the ``memory`` backend."""

from __future__ import annotations

import copy
from collections.abc import AsyncIterator

from kernel_memory.pipeline.constants import PIPELINE_STATUS_FILE
from kernel_memory.storage.models import MemoryFilter, MemoryRecord, matches_any
from kernel_memory.storage.simple_vector_db import rank_by_similarity
from kernel_memory.utils.exceptions import ArtifactNotFoundError, IndexNotFoundError


class InMemoryArtifactStore:
    """Artifact store keeping every file in a dictionary.

    Besides the protocol methods it counts writes per file name, which tests
    use to check that a step did not redo work.
    """

    def __init__(self) -> None:
        self.files: dict[tuple[str, str, str], bytes] = {}
        self.indexes: set[str] = set()
        self.documents: set[tuple[str, str]] = set()
        self.write_counts: dict[str, int] = {}

    async def create_index_directory(self, index: str) -> None:
        self.indexes.add(index)

    async def delete_index_directory(self, index: str) -> None:
        self.indexes.discard(index)
        self.documents = {d for d in self.documents if d[0] != index}
        self.files = {k: v for k, v in self.files.items() if k[0] != index}

    async def create_document_directory(self, index: str, document_id: str) -> None:
        self.indexes.add(index)
        self.documents.add((index, document_id))

    async def empty_document_directory(self, index: str, document_id: str) -> None:
        self.files = {
            k: v
            for k, v in self.files.items()
            if (k[0], k[1]) != (index, document_id) or k[2] == PIPELINE_STATUS_FILE
        }

    async def delete_document_directory(self, index: str, document_id: str) -> None:
        self.documents.discard((index, document_id))
        self.files = {k: v for k, v in self.files.items() if (k[0], k[1]) != (index, document_id)}

    async def write_file(self, index: str, document_id: str, file_name: str, content: bytes) -> None:
        await self.create_document_directory(index, document_id)
        self.files[(index, document_id, file_name)] = bytes(content)
        self.write_counts[file_name] = self.write_counts.get(file_name, 0) + 1

    async def read_file(self, index: str, document_id: str, file_name: str) -> bytes:
        try:
            return self.files[(index, document_id, file_name)]
        except KeyError as e:
            raise ArtifactNotFoundError(index, document_id, file_name) from e

    async def file_exists(self, index: str, document_id: str, file_name: str) -> bool:
        return (index, document_id, file_name) in self.files

    async def list_files(self, index: str, document_id: str) -> list[str]:
        return sorted(k[2] for k in self.files if (k[0], k[1]) == (index, document_id))

    async def delete_file(self, index: str, document_id: str, file_name: str) -> None:
        self.files.pop((index, document_id, file_name), None)


class InMemoryVectorStore:
    """Vector store keeping records in dictionaries.

    ``upsert_calls`` counts upserts per record id so tests can observe
    idempotent replays. ``fail_next_upserts`` makes the next N upserts raise.
    """

    def __init__(self, name: str = "memory") -> None:
        self._name = name
        self.indexes: dict[str, dict[str, MemoryRecord]] = {}
        self.dimensions: dict[str, int] = {}
        self.upsert_calls: dict[str, int] = {}
        self.fail_next_upserts = 0

    @property
    def name(self) -> str:
        return self._name

    def _require_index(self, index: str) -> dict[str, MemoryRecord]:
        try:
            return self.indexes[index]
        except KeyError as e:
            raise IndexNotFoundError(index, backend=self.name) from e

    async def create_index(self, index: str, dimension: int) -> None:
        if index not in self.indexes:
            self.indexes[index] = {}
            self.dimensions[index] = dimension

    async def delete_index(self, index: str) -> None:
        self._require_index(index)
        del self.indexes[index]
        self.dimensions.pop(index, None)

    async def get_indexes(self) -> list[str]:
        return sorted(self.indexes)

    async def upsert(self, index: str, record: MemoryRecord) -> str:
        records = self._require_index(index)
        if self.fail_next_upserts > 0:
            self.fail_next_upserts -= 1
            raise ConnectionError(f"Simulated failure writing {record.id}")
        records[record.id] = record.model_copy(deep=True)
        self.upsert_calls[record.id] = self.upsert_calls.get(record.id, 0) + 1
        return record.id

    async def get_list(
        self,
        index: str,
        filters: list[MemoryFilter] | None = None,
        limit: int = -1,
    ) -> AsyncIterator[MemoryRecord]:
        records = [r for _, r in sorted(self._require_index(index).items()) if matches_any(filters, r.tags)]
        if limit > 0:
            records = records[:limit]
        for record in records:
            yield copy.deepcopy(record)

    async def get_similar_list(
        self,
        index: str,
        vector: list[float],
        filters: list[MemoryFilter] | None = None,
        min_relevance: float = 0.0,
        limit: int = 1,
    ) -> AsyncIterator[tuple[MemoryRecord, float]]:
        records = [r for r in self._require_index(index).values() if matches_any(filters, r.tags)]
        for record, score in rank_by_similarity(vector, records, min_relevance, limit):
            yield copy.deepcopy(record), score

    async def delete(self, index: str, record: MemoryRecord) -> None:
        self._require_index(index).pop(record.id, None)
