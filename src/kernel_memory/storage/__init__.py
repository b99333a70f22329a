"""Storage layer: artifact store, vector stores and memory records."""

from kernel_memory.storage.models import (
    MemoryFilter,
    MemoryFilters,
    MemoryRecord,
    ReservedPayload,
    ReservedTags,
    TagCollection,
)
from kernel_memory.storage.protocols import ArtifactStoreProtocol, VectorStoreProtocol

__all__ = [
    "ArtifactStoreProtocol",
    "MemoryFilter",
    "MemoryFilters",
    "MemoryRecord",
    "ReservedPayload",
    "ReservedTags",
    "TagCollection",
    "VectorStoreProtocol",
]
