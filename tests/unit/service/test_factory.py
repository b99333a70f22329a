"""Tests for KernelMemoryFactory."""

from dataclasses import replace

import pytest

from kernel_memory.config import EmbeddingConfig, KernelMemoryConfig, QueueConfig, StorageConfig
from kernel_memory.embeddings.fakes import FakeEmbeddingGenerator
from kernel_memory.factory import ComponentOverrides, KernelMemoryFactory
from kernel_memory.pipeline.constants import DEFAULT_DELETE_STEPS, DEFAULT_INGESTION_STEPS
from kernel_memory.pipeline.handlers.base import StepResult
from kernel_memory.queue.in_memory import InMemoryQueue
from kernel_memory.queue.sqlalchemy_queue import SQLAlchemyQueue
from kernel_memory.storage.artifacts import FileSystemArtifactStore
from kernel_memory.storage.fakes import InMemoryVectorStore
from kernel_memory.storage.simple_vector_db import SimpleVectorDb
from kernel_memory.utils.exceptions import MissingConfigurationError


class NoopHandler:
    step_name = "noop"

    async def invoke(self, pipeline):
        return StepResult.create_success(pipeline)


@pytest.fixture
def durable_config(tmp_path) -> KernelMemoryConfig:
    return KernelMemoryConfig(
        queue=QueueConfig(backend="sqlalchemy"),
        embedding=EmbeddingConfig(provider="fake", embedding_dimension=8),
        storage=StorageConfig(data_dir=str(tmp_path / "data")),
    )


class TestKernelMemoryFactory:
    """Test component wiring."""

    def test_builds_durable_components(self, durable_config, tmp_path):
        factory = KernelMemoryFactory(durable_config)
        try:
            assert isinstance(factory.artifacts, FileSystemArtifactStore)
            assert factory.artifacts.root == tmp_path / "data" / "artifacts"
            assert isinstance(factory.queue, SQLAlchemyQueue)
            assert [type(s) for s in factory.vector_stores] == [SimpleVectorDb]
            assert isinstance(factory.embedding_generator, FakeEmbeddingGenerator)
            assert factory.embedding_generator.embedding_dimension == 8
        finally:
            factory.close()
        assert (tmp_path / "data" / "queue.db").exists()

    def test_memory_backends(self, durable_config):
        config = replace(
            durable_config,
            queue=QueueConfig(backend="memory"),
            storage=StorageConfig(vector_stores=("memory",)),
        )
        factory = KernelMemoryFactory(config)
        assert isinstance(factory.queue, InMemoryQueue)
        assert [type(s) for s in factory.vector_stores] == [InMemoryVectorStore]

    def test_components_are_created_once(self, factory):
        assert factory.queue is factory.queue
        assert factory.orchestrator is factory.orchestrator
        assert factory.create_memory_service() is factory.create_memory_service()

    def test_overrides_are_used(self, factory, queue, artifacts, vector_store, embedding_generator):
        assert factory.queue is queue
        assert factory.artifacts is artifacts
        assert factory.vector_stores == [vector_store]
        assert factory.embedding_generator is embedding_generator

    def test_handlers_cover_default_steps(self, factory):
        handlers = factory.create_handlers()
        assert set(DEFAULT_INGESTION_STEPS + DEFAULT_DELETE_STEPS) <= set(handlers)
        assert factory.orchestrator.handler_names == list(handlers)

    def test_extra_handlers(self, km_config):
        factory = KernelMemoryFactory(km_config, ComponentOverrides(handlers={"noop": NoopHandler()}))
        assert "noop" in factory.orchestrator.handler_names

    def test_worker_shares_the_queue(self, factory):
        worker = factory.create_worker()
        assert worker.queue is factory.queue
        assert worker.orchestrator is factory.orchestrator

    def test_openai_requires_api_key(self, km_config, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY")
        config = replace(km_config, embedding=EmbeddingConfig(provider="openai", openai_api_key=""))

        with pytest.raises(MissingConfigurationError):
            _ = KernelMemoryFactory(config).embedding_generator
