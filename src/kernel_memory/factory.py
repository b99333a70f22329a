"""Dependency injection factory for Kernel Memory components.

``KernelMemoryFactory`` builds and wires the artifact store, queue, vector
stores, embedding generator, step handlers, orchestrator, service and
worker from a ``KernelMemoryConfig``. Any component can be replaced through
``ComponentOverrides``, which is how tests inject fakes.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import TypeAlias

from kernel_memory.config import KernelMemoryConfig
from kernel_memory.decoders.registry import DecoderRegistry
from kernel_memory.embeddings.protocols import EmbeddingGeneratorProtocol
from kernel_memory.memory import MemoryService
from kernel_memory.pipeline.handlers import (
    DeleteDocumentHandler,
    ExtractTextHandler,
    GenerateEmbeddingsHandler,
    PartitionTextHandler,
    SaveRecordsHandler,
    StepHandlerProtocol,
)
from kernel_memory.pipeline.orchestrator import OrchestratorDependencies, PipelineOrchestrator
from kernel_memory.pipeline.worker import PipelineWorker
from kernel_memory.queue.protocols import QueueProtocol
from kernel_memory.storage.protocols import ArtifactStoreProtocol, VectorStoreProtocol
from kernel_memory.utils.clock import ClockProtocol, SystemClock
from kernel_memory.utils.exceptions import MissingConfigurationError

LogCallback: TypeAlias = Callable[[str, str, str], None]


@dataclass
class ComponentOverrides:
    """Optional component overrides for dependency injection.

    This allows for easy testing by injecting fake implementations.
    """

    artifacts: ArtifactStoreProtocol | None = None
    queue: QueueProtocol | None = None
    vector_stores: Sequence[VectorStoreProtocol] | None = None
    embedding_generator: EmbeddingGeneratorProtocol | None = None
    decoders: DecoderRegistry | None = None
    clock: ClockProtocol | None = None
    # Extra or replacement handlers, keyed by step name
    handlers: dict[str, StepHandlerProtocol] = field(default_factory=dict)


class KernelMemoryFactory:
    """Factory for creating and wiring Kernel Memory components."""

    def __init__(
        self,
        config: KernelMemoryConfig | None = None,
        overrides: ComponentOverrides | None = None,
        log_callback: LogCallback | None = None,
    ) -> None:
        """Initialize the factory with configuration and optional overrides.

        Args:
            config: Service configuration
            overrides: Optional component overrides for dependency injection
            log_callback: Optional callback passed to every component
        """
        self.config = config or KernelMemoryConfig()
        self.overrides = overrides or ComponentOverrides()
        self.log_callback = log_callback

        self._artifacts = self.overrides.artifacts
        self._queue = self.overrides.queue
        self._vector_stores = list(self.overrides.vector_stores) if self.overrides.vector_stores is not None else None
        self._embedding_generator = self.overrides.embedding_generator
        self._decoders = self.overrides.decoders
        self._clock = self.overrides.clock

        self._orchestrator: PipelineOrchestrator | None = None
        self._memory_service: MemoryService | None = None

    @property
    def clock(self) -> ClockProtocol:
        if self._clock is None:
            self._clock = SystemClock()
        return self._clock

    @property
    def artifacts(self) -> ArtifactStoreProtocol:
        """Get or create the artifact store."""
        if self._artifacts is None:
            from kernel_memory.storage.artifacts import FileSystemArtifactStore

            self._artifacts = FileSystemArtifactStore(self.config.artifacts_dir, log_callback=self.log_callback)
        return self._artifacts

    @property
    def queue(self) -> QueueProtocol:
        """Get or create the work queue."""
        if self._queue is None:
            if self.config.queue.backend == "memory":
                from kernel_memory.queue.in_memory import InMemoryQueue

                self._queue = InMemoryQueue(self.config.queue, self.clock)
            else:
                from kernel_memory.queue.sqlalchemy_queue import SQLAlchemyQueue

                self._queue = SQLAlchemyQueue(self.config.queue_database_url, self.config.queue, self.clock)
        return self._queue

    @property
    def vector_stores(self) -> list[VectorStoreProtocol]:
        """Get or create the configured vector stores."""
        if self._vector_stores is None:
            stores: list[VectorStoreProtocol] = []
            for backend in self.config.storage.vector_stores:
                if backend == "memory":
                    from kernel_memory.storage.fakes import InMemoryVectorStore

                    stores.append(InMemoryVectorStore())
                else:
                    from kernel_memory.storage.simple_vector_db import SimpleVectorDb

                    stores.append(SimpleVectorDb(self.config.vector_db_url))
            self._vector_stores = stores
        return self._vector_stores

    @property
    def embedding_generator(self) -> EmbeddingGeneratorProtocol:
        """Get or create the embedding generator.

        Raises:
            MissingConfigurationError: If the OpenAI provider has no API key
        """
        if self._embedding_generator is None:
            embedding = self.config.embedding
            if embedding.provider == "fake":
                from kernel_memory.embeddings.fakes import FakeEmbeddingGenerator

                self._embedding_generator = FakeEmbeddingGenerator(embedding.embedding_dimension)
            else:
                if not embedding.openai_api_key:
                    raise MissingConfigurationError("OPENAI_API_KEY")
                from kernel_memory.embeddings.openai_generator import OpenAIEmbeddingGenerator

                self._embedding_generator = OpenAIEmbeddingGenerator(
                    embedding.model,
                    embedding.openai_api_key,
                    max_retries=embedding.max_retries,
                    log_callback=self.log_callback,
                )
        return self._embedding_generator

    @property
    def decoders(self) -> DecoderRegistry:
        if self._decoders is None:
            self._decoders = DecoderRegistry.default()
        return self._decoders

    def create_handlers(self) -> dict[str, StepHandlerProtocol]:
        """Create the built-in step handlers plus any overrides."""
        handlers: list[StepHandlerProtocol] = [
            ExtractTextHandler(self.artifacts, self.decoders, self.log_callback),
            PartitionTextHandler(
                self.artifacts, self.embedding_generator, self.config.partitioning, self.log_callback
            ),
            GenerateEmbeddingsHandler(
                self.artifacts, self.embedding_generator, self.config.embedding, self.log_callback
            ),
            SaveRecordsHandler(self.artifacts, self.vector_stores, self.log_callback),
            DeleteDocumentHandler(self.artifacts, self.vector_stores, self.log_callback),
        ]
        registry = {handler.step_name: handler for handler in handlers}
        registry.update(self.overrides.handlers)
        return registry

    @property
    def orchestrator(self) -> PipelineOrchestrator:
        """Get or create the orchestrator."""
        if self._orchestrator is None:
            deps = OrchestratorDependencies(
                artifacts=self.artifacts,
                queue=self.queue,
                handlers=self.create_handlers(),
                clock=self.clock,
            )
            self._orchestrator = PipelineOrchestrator(deps, self.config.pipeline, self.log_callback)
        return self._orchestrator

    def create_memory_service(self) -> MemoryService:
        """Create the memory service with all dependencies wired."""
        if self._memory_service is None:
            self._memory_service = MemoryService(
                orchestrator=self.orchestrator,
                artifacts=self.artifacts,
                vector_stores=self.vector_stores,
                embedding_generator=self.embedding_generator,
                config=self.config.pipeline,
                log_callback=self.log_callback,
            )
        return self._memory_service

    def create_worker(self) -> PipelineWorker:
        """Create a worker sharing the orchestrator and queue of the service."""
        return PipelineWorker(self.orchestrator, self.queue, self.config.worker, self.log_callback)

    def close(self) -> None:
        """Release database connections of the SQL backed components."""
        for component in [self._queue, *(self._vector_stores or [])]:
            close = getattr(component, "close", None)
            if callable(close):
                close()
