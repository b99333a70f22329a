"""Kernel Memory Package

This package provides a durable, resumable document ingestion pipeline that
extracts, partitions and embeds documents and stores them as memory records
for retrieval augmented generation.
"""

from .config import KernelMemoryConfig
from .factory import ComponentOverrides, KernelMemoryFactory
from .memory import MemoryService

__version__ = "0.1.0"

__all__ = [
    "ComponentOverrides",
    "KernelMemoryConfig",
    "KernelMemoryFactory",
    "MemoryService",
]
