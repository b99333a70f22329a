"""Configuration for Kernel Memory."""

from kernel_memory.config.components import (
    EmbeddingConfig,
    PartitioningConfig,
    PipelineConfig,
    QueueConfig,
    StorageConfig,
    WorkerConfig,
)
from kernel_memory.config.main import KernelMemoryConfig

__all__ = [
    "EmbeddingConfig",
    "KernelMemoryConfig",
    "PartitioningConfig",
    "PipelineConfig",
    "QueueConfig",
    "StorageConfig",
    "WorkerConfig",
]
