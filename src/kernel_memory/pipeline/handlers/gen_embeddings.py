"""Embedding generation step."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from kernel_memory.config.components import EmbeddingConfig
from kernel_memory.embeddings.protocols import EmbeddingGeneratorProtocol
from kernel_memory.pipeline.constants import EMBEDDING_SUFFIX, GEN_EMBEDDINGS_STEP
from kernel_memory.pipeline.handlers.base import BaseStepHandler, StepResult
from kernel_memory.pipeline.models import ArtifactType, DataPipeline, FileDetails, GeneratedFileDetails
from kernel_memory.storage.protocols import ArtifactStoreProtocol
from kernel_memory.utils.async_utils import run_batches
from kernel_memory.utils.exceptions import EmbeddingError


@dataclass
class PendingPartition:
    """A partition still waiting for its embedding."""

    file: FileDetails
    partition: GeneratedFileDetails
    text: str

    @property
    def embedding_name(self) -> str:
        return f"{self.partition.name}{EMBEDDING_SUFFIX}"


class GenerateEmbeddingsHandler(BaseStepHandler):
    """Compute one embedding per text partition.

    Partitions are sent in batches; when a batch fails its partitions are
    retried one by one so a single bad chunk does not fail the others.
    Failed partitions are listed under ``artifacts["gen_embeddings"]`` and the
    step only fails (transiently) when their share exceeds
    ``max_failure_fraction``. Embeddings are written as
    ``<partition>.text_embedding`` files, which a retry reuses.
    """

    step_name = GEN_EMBEDDINGS_STEP

    def __init__(
        self,
        artifacts: ArtifactStoreProtocol,
        embedding_generator: EmbeddingGeneratorProtocol,
        config: EmbeddingConfig | None = None,
        log_callback: Callable[[str, str, str], None] | None = None,
        max_concurrency: int | None = None,
    ) -> None:
        super().__init__(artifacts, log_callback)
        self.embedding_generator = embedding_generator
        self.config = config or EmbeddingConfig()
        self.max_concurrency = max_concurrency

    @property
    def batch_size(self) -> int:
        return max(1, min(self.config.batch_size, self.embedding_generator.max_batch_size))

    async def invoke(self, pipeline: DataPipeline) -> StepResult:
        pending: list[PendingPartition] = []
        total = 0
        for file in pipeline.files:
            if file.is_skipped:
                continue
            for partition in file.generated_of_type(ArtifactType.TEXT_PARTITION):
                total += 1
                item = PendingPartition(file, partition, "")
                if await self.artifacts.file_exists(pipeline.index, pipeline.document_id, item.embedding_name):
                    # Written by an earlier attempt
                    data = await self.artifacts.read_file(pipeline.index, pipeline.document_id, item.embedding_name)
                    self._register(item, len(data))
                    continue
                item.text = await self._read_text(pipeline, partition.name)
                pending.append(item)

        async def embed(batch: list[PendingPartition]) -> list[dict[str, str] | None]:
            return await self._embed_batch(pipeline, batch)

        results = await run_batches(embed, pending, batch_size=self.batch_size, concurrency=self.max_concurrency)
        failed = [f for f in results if f is not None]

        for file in pipeline.files:
            if not file.is_skipped:
                file.mark_processed_by(self.step_name)

        pipeline.artifacts[self.step_name] = {
            "generator": self.embedding_generator.name,
            "total": total,
            "failed": failed,
        }

        if total and len(failed) / total > self.config.max_failure_fraction:
            message = (
                f"{len(failed)} of {total} partitions could not be embedded "
                f"(threshold {self.config.max_failure_fraction:.0%})"
            )
            self._log("WARNING", message)
            return StepResult.create_transient_failure(pipeline, message, "EmbeddingGenerationError")

        if failed:
            self._log("WARNING", f"Ignoring {len(failed)} of {total} partitions without embedding")
        self._log("INFO", f"Embedded {total - len(failed)} partitions with {self.embedding_generator.name}")
        return StepResult.create_success(pipeline)

    async def _embed_batch(
        self, pipeline: DataPipeline, batch: list[PendingPartition]
    ) -> list[dict[str, str] | None]:
        """Embed *batch*; returns a failure entry or ``None`` per partition."""
        try:
            vectors = await self.embedding_generator.generate_embeddings([item.text for item in batch])
        except EmbeddingError as e:
            if len(batch) == 1:
                return [self._failure(batch[0], e)]
            self._log("DEBUG", f"Batch of {len(batch)} failed ({e}), embedding one by one")
            results: list[dict[str, str] | None] = []
            for item in batch:
                try:
                    vector = await self.embedding_generator.generate_embedding(item.text)
                except EmbeddingError as item_error:
                    results.append(self._failure(item, item_error))
                    continue
                await self._save(pipeline, item, vector)
                results.append(None)
            return results

        for item, vector in zip(batch, vectors):
            await self._save(pipeline, item, vector)
        return [None] * len(batch)

    async def _save(self, pipeline: DataPipeline, item: PendingPartition, vector: list[float]) -> None:
        size = await self._write_json(
            pipeline,
            item.embedding_name,
            {
                "generator": self.embedding_generator.name,
                "source_partition_id": item.partition.id,
                "vector": vector,
            },
        )
        self._register(item, size)

    def _register(self, item: PendingPartition, size: int) -> None:
        name = item.embedding_name
        item.file.generated_files[name] = GeneratedFileDetails(
            id=name,
            name=name,
            mime_type="application/json",
            size=size,
            parent_id=item.file.id,
            source_partition_id=item.partition.id,
            artifact_type=ArtifactType.EMBEDDING,
            partition_number=item.partition.partition_number,
            section_number=item.partition.section_number,
        )

    def _failure(self, item: PendingPartition, error: Exception) -> dict[str, str]:
        self._log("WARNING", f"No embedding for {item.partition.name}: {error}")
        return {"file_id": item.file.id, "partition": item.partition.name, "error": str(error)}
