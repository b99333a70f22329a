"""Memory records, tag collections and record filters.

A ``MemoryRecord`` is the unit written to vector stores: one per embedded
partition. Reserved tags tie every record back to the document, file and
partition that produced it so a document can be replaced or deleted
without touching records of other documents.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import BaseModel, Field

TagCollection = dict[str, list[str]]


class ReservedTags:
    """Tag names managed by the pipeline; user tags may not use them."""

    PREFIX = "__"
    DOCUMENT_ID = "__document_id"
    FILE_ID = "__file_id"
    FILE_PART = "__file_part"
    PART_N = "__part_n"
    SECT_N = "__sect_n"
    FILE_TYPE = "__file_type"
    EXECUTION_ID = "__execution_id"

    ALL = frozenset(
        {DOCUMENT_ID, FILE_ID, FILE_PART, PART_N, SECT_N, FILE_TYPE, EXECUTION_ID}
    )

    @classmethod
    def is_reserved(cls, name: str) -> bool:
        return name.startswith(cls.PREFIX)


class ReservedPayload:
    """Payload keys written by the pipeline."""

    TEXT = "text"
    FILE = "file"
    LAST_UPDATE = "last_update"
    VECTOR_PROVIDER = "vector_provider"


def add_tag(tags: TagCollection, key: str, value: str) -> TagCollection:
    """Append *value* to *key* unless it is already present."""
    values = tags.setdefault(key, [])
    if value not in values:
        values.append(value)
    return tags


def merge_tags(tags: TagCollection, other: Mapping[str, Iterable[str] | str]) -> TagCollection:
    """Merge *other* into *tags*; plain strings count as single values."""
    for key, values in other.items():
        if isinstance(values, str):
            values = [values]
        for value in values:
            add_tag(tags, key, value)
    return tags


def record_id(document_id: str, file_id: str, partition_number: int) -> str:
    """Deterministic record id, so repeated upserts replace the same record."""
    return f"d={document_id}//f={file_id}//p={partition_number}"


class MemoryRecord(BaseModel):
    """A vector with its tags and payload.

    Attributes:
        id: Record id, unique inside an index
        vector: Embedding of the partition text
        tags: Multi-valued tags used for filtering
        payload: Free-form data returned with search results
    """

    id: str
    vector: list[float] = Field(default_factory=list)
    tags: TagCollection = Field(default_factory=dict)
    payload: dict[str, Any] = Field(default_factory=dict)

    @property
    def document_id(self) -> str | None:
        values = self.tags.get(ReservedTags.DOCUMENT_ID)
        return values[0] if values else None

    @property
    def text(self) -> str:
        return str(self.payload.get(ReservedPayload.TEXT, ""))


class MemoryFilter(BaseModel):
    """A set of tag conditions that must all hold (AND).

    A list of filters matches a record when any filter in the list matches
    (OR). An empty filter matches every record.
    """

    tags: TagCollection = Field(default_factory=dict)

    def by_tag(self, key: str, value: str) -> MemoryFilter:
        add_tag(self.tags, key, value)
        return self

    def by_document(self, document_id: str) -> MemoryFilter:
        return self.by_tag(ReservedTags.DOCUMENT_ID, document_id)

    def is_empty(self) -> bool:
        return not any(self.tags.values())

    def matches(self, record_tags: Mapping[str, list[str]]) -> bool:
        for key, values in self.tags.items():
            present = record_tags.get(key, [])
            if any(value not in present for value in values):
                return False
        return True


class MemoryFilters:
    """Shortcuts to build filters."""

    @staticmethod
    def by_document(document_id: str) -> MemoryFilter:
        return MemoryFilter().by_document(document_id)

    @staticmethod
    def by_tag(key: str, value: str) -> MemoryFilter:
        return MemoryFilter().by_tag(key, value)


def matches_any(filters: Iterable[MemoryFilter] | None, record_tags: Mapping[str, list[str]]) -> bool:
    """OR over *filters*; no filters, or only empty ones, match everything."""
    active = [f for f in filters or [] if not f.is_empty()]
    if not active:
        return True
    return any(f.matches(record_tags) for f in active)
