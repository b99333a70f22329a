"""Fixtures for step handler tests."""

from collections.abc import Awaitable, Callable

import pytest

from kernel_memory.config import PartitioningConfig
from kernel_memory.decoders.mime_types import get_mime_type
from kernel_memory.decoders.registry import DecoderRegistry
from kernel_memory.embeddings.fakes import FakeEmbeddingGenerator
from kernel_memory.pipeline.constants import DEFAULT_INGESTION_STEPS
from kernel_memory.pipeline.handlers import ExtractTextHandler, PartitionTextHandler
from kernel_memory.pipeline.models import DataPipeline, FileDetails
from kernel_memory.storage.fakes import InMemoryArtifactStore

UploadFactory = Callable[..., Awaitable[DataPipeline]]


@pytest.fixture
def upload(artifacts: InMemoryArtifactStore) -> UploadFactory:
    """Store files and return a pipeline for them; ``str`` content is UTF-8 encoded."""

    async def _upload(files: dict[str, str | bytes], tags: dict[str, list[str]] | None = None) -> DataPipeline:
        details = []
        for name, content in files.items():
            data = content.encode("utf-8") if isinstance(content, str) else content
            await artifacts.write_file("idx", "doc1", name, data)
            details.append(FileDetails(id=name, name=name, mime_type=get_mime_type(name), size=len(data)))
        return DataPipeline.create("idx", "doc1", DEFAULT_INGESTION_STEPS, files=details, tags=tags)

    return _upload


@pytest.fixture
def partitioned(
    artifacts: InMemoryArtifactStore, embedding_generator: FakeEmbeddingGenerator, upload: UploadFactory
) -> UploadFactory:
    """Like ``upload``, with the extract and partition steps already run.

    Partitions hold at most 4 words.
    """
    extract = ExtractTextHandler(artifacts, DecoderRegistry.default())
    partition = PartitionTextHandler(
        artifacts, embedding_generator, PartitioningConfig(max_tokens_per_partition=4, overlapping_tokens=0)
    )

    async def _partitioned(files: dict[str, str | bytes], tags: dict[str, list[str]] | None = None) -> DataPipeline:
        pipeline = (await extract.invoke(await upload(files, tags))).pipeline
        pipeline.move_to_next_step()
        pipeline = (await partition.invoke(pipeline)).pipeline
        pipeline.move_to_next_step()
        return pipeline

    return _partitioned
