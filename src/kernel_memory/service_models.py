"""Request and result models of the memory service."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from kernel_memory.storage.models import TagCollection


class DocumentUpload(BaseModel):
    """One file of a document import.

    Attributes:
        file_name: Name the file is stored under
        content: Raw file content
        mime_type: Content type; guessed from the extension when omitted
        tags: File level tags, copied onto the file's records
    """

    file_name: str
    content: bytes
    mime_type: str | None = None
    tags: TagCollection = Field(default_factory=dict)


class ImportRequest(BaseModel):
    """A document to ingest: one or more files sharing a document id."""

    files: list[DocumentUpload]
    document_id: str | None = None
    index: str | None = None
    tags: TagCollection = Field(default_factory=dict)
    steps: list[str] | None = None


class Partition(BaseModel):
    """A matching partition of a document."""

    text: str
    relevance: float
    partition_number: int = 0
    section_number: int = 0
    last_update: datetime | None = None
    tags: TagCollection = Field(default_factory=dict)


class Citation(BaseModel):
    """Matching partitions of one file of one document."""

    document_id: str
    file_id: str
    index: str
    source_name: str = ""
    source_content_type: str = ""
    partitions: list[Partition] = Field(default_factory=list)


class SearchResult(BaseModel):
    """Result of a similarity search."""

    query: str
    results: list[Citation] = Field(default_factory=list)

    @property
    def no_result(self) -> bool:
        return not self.results
