"""Protocol definitions for storage components."""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Protocol, runtime_checkable

from kernel_memory.storage.models import MemoryFilter, MemoryRecord


@runtime_checkable
class ArtifactStoreProtocol(Protocol):
    """Protocol for the store holding uploaded and generated files.

    Files are addressed by ``(index, document_id, file_name)``. The pipeline
    status document lives in the same directory as the document files.
    """

    async def create_index_directory(self, index: str) -> None:
        """Create the directory of an index if it does not exist."""
        ...

    async def delete_index_directory(self, index: str) -> None:
        """Delete an index directory with every document in it."""
        ...

    async def create_document_directory(self, index: str, document_id: str) -> None:
        """Create the directory of a document if it does not exist."""
        ...

    async def empty_document_directory(self, index: str, document_id: str) -> None:
        """Delete every file of a document except the status document."""
        ...

    async def delete_document_directory(self, index: str, document_id: str) -> None:
        """Delete a document directory, status document included."""
        ...

    async def write_file(self, index: str, document_id: str, file_name: str, content: bytes) -> None:
        """Create or overwrite a file."""
        ...

    async def read_file(self, index: str, document_id: str, file_name: str) -> bytes:
        """Read a file.

        Raises:
            ArtifactNotFoundError: If the file does not exist
        """
        ...

    async def file_exists(self, index: str, document_id: str, file_name: str) -> bool:
        """Check whether a file exists."""
        ...

    async def list_files(self, index: str, document_id: str) -> list[str]:
        """List the file names of a document, sorted."""
        ...

    async def delete_file(self, index: str, document_id: str, file_name: str) -> None:
        """Delete a file; missing files are ignored."""
        ...


@runtime_checkable
class VectorStoreProtocol(Protocol):
    """Protocol for vector store implementations.

    Every method except ``create_index`` raises ``IndexNotFoundError`` when
    the index does not exist.
    """

    @property
    def name(self) -> str:
        """Backend name used in logs and errors."""
        ...

    async def create_index(self, index: str, dimension: int) -> None:
        """Create an index; an existing index is left untouched."""
        ...

    async def delete_index(self, index: str) -> None:
        """Delete an index with all its records."""
        ...

    async def get_indexes(self) -> list[str]:
        """List index names, sorted."""
        ...

    async def upsert(self, index: str, record: MemoryRecord) -> str:
        """Insert or replace a record, returning its id."""
        ...

    def get_list(
        self,
        index: str,
        filters: list[MemoryFilter] | None = None,
        limit: int = -1,
    ) -> AsyncIterator[MemoryRecord]:
        """Iterate over records matching any of *filters*."""
        ...

    def get_similar_list(
        self,
        index: str,
        vector: list[float],
        filters: list[MemoryFilter] | None = None,
        min_relevance: float = 0.0,
        limit: int = 1,
    ) -> AsyncIterator[tuple[MemoryRecord, float]]:
        """Iterate over ``(record, relevance)`` pairs, most relevant first."""
        ...

    async def delete(self, index: str, record: MemoryRecord) -> None:
        """Delete a record; a missing record is ignored."""
        ...
