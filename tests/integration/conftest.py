"""Shared fixtures for integration tests.

Integration tests use the durable backends (file system artifacts, the
SQLite work queue and SimpleVectorDb) in a temporary data directory. Only
the embedding generator is faked, so no network access is needed.
"""

from collections.abc import Callable, Generator

import pytest

from kernel_memory.config import (
    EmbeddingConfig,
    KernelMemoryConfig,
    PartitioningConfig,
    PipelineConfig,
    QueueConfig,
    StorageConfig,
    WorkerConfig,
)
from kernel_memory.factory import ComponentOverrides, KernelMemoryFactory


@pytest.fixture
def durable_config(tmp_path) -> KernelMemoryConfig:
    """Durable backends with four-word partitions and two step retries."""
    return KernelMemoryConfig(
        queue=QueueConfig(backend="sqlalchemy", nack_delay_secs=0.0),
        pipeline=PipelineConfig(max_step_retries=2),
        partitioning=PartitioningConfig(max_tokens_per_partition=4, overlapping_tokens=0),
        embedding=EmbeddingConfig(provider="fake", embedding_dimension=16, batch_size=4),
        storage=StorageConfig(data_dir=str(tmp_path / "km"), vector_stores=("simple_vector_db",)),
        worker=WorkerConfig(concurrency=2, poll_interval_secs=0.01),
    )


@pytest.fixture
def make_factory(durable_config, clock) -> Generator[Callable[..., KernelMemoryFactory], None, None]:
    """Build factories over the same data directory, closing them at teardown.

    Keyword arguments are passed to ``ComponentOverrides``; ``config``
    replaces the durable configuration.
    """
    factories: list[KernelMemoryFactory] = []

    def _make(config: KernelMemoryConfig | None = None, **overrides) -> KernelMemoryFactory:
        factory = KernelMemoryFactory(config or durable_config, ComponentOverrides(clock=clock, **overrides))
        factories.append(factory)
        return factory

    yield _make

    for factory in factories:
        factory.close()
