"""Text partitioning step."""

from __future__ import annotations

import bisect
from collections.abc import Callable, Sequence
from typing import ClassVar

from langchain_text_splitters import RecursiveCharacterTextSplitter

from kernel_memory.config.components import PartitioningConfig
from kernel_memory.decoders.protocols import FileContent, FileSection
from kernel_memory.embeddings.protocols import EmbeddingGeneratorProtocol
from kernel_memory.pipeline.constants import EXTRACT_JSON_SUFFIX, PARTITION_INFIX, PARTITION_STEP
from kernel_memory.pipeline.handlers.base import BaseStepHandler, StepResult
from kernel_memory.pipeline.models import ArtifactType, DataPipeline, FileDetails, GeneratedFileDetails
from kernel_memory.storage.protocols import ArtifactStoreProtocol


class PartitionSplitter:
    """Token bounded splitter preferring paragraph, then sentence breaks."""

    DEFAULT_SEPARATORS: ClassVar[list[str]] = [
        "\n\n",  # Paragraphs
        "\n",  # Lines
        ". ",  # Sentences
        "! ",
        "? ",
        "; ",
        ": ",
        ", ",
        " ",
        "",
    ]

    def __init__(self, max_tokens: int, overlap_tokens: int, count_tokens: Callable[[str], int]) -> None:
        self.max_tokens = max_tokens
        # Overlap must stay below the partition size
        self.overlap_tokens = max(0, min(overlap_tokens, max_tokens // 2))
        self._splitter = RecursiveCharacterTextSplitter(
            chunk_size=max_tokens,
            chunk_overlap=self.overlap_tokens,
            length_function=count_tokens,
            separators=self.DEFAULT_SEPARATORS,
            keep_separator="end",
            add_start_index=True,
        )

    def split_text(self, text: str) -> list[str]:
        return [chunk for _, chunk in self.split_with_offsets(text)]

    def split_with_offsets(self, text: str) -> list[tuple[int, str]]:
        """Chunks of *text* with the offset each one starts at."""
        chunks = []
        for document in self._splitter.create_documents([text]):
            chunk = document.page_content.strip()
            if chunk:
                chunks.append((max(0, document.metadata.get("start_index", 0)), chunk))
        return chunks


def join_sections(sections: Sequence[FileSection]) -> list[tuple[str, list[tuple[int, int]]]]:
    """Merge sections that may end mid-sentence with the sections that follow.

    Returns:
        One ``(text, starts)`` pair per run of joined sections, where
        ``starts`` lists the offset and number of every section in ``text``
    """
    runs: list[tuple[str, list[tuple[int, int]]]] = []
    parts: list[str] = []
    starts: list[tuple[int, int]] = []
    offset = 0
    for section in sections:
        starts.append((offset, section.number))
        parts.append(section.content)
        offset += len(section.content) + 1
        if section.sentences_are_complete:
            runs.append(("\n".join(parts), starts))
            parts, starts, offset = [], [], 0
    if parts:
        runs.append(("\n".join(parts), starts))
    return runs


class PartitionTextHandler(BaseStepHandler):
    """Split the extracted text of each file into partitions.

    Partitions are bounded by ``max_tokens_per_partition`` and by the token
    limit of the embedding model, counted with the model tokenizer. Each
    partition is stored as ``<name>.partition.<n>.txt`` and remembers the
    section (page) it starts in. Sections that may end mid-sentence, like PDF
    pages, are joined with the following section before splitting, so page
    breaks are not partition boundaries.
    """

    step_name = PARTITION_STEP

    def __init__(
        self,
        artifacts: ArtifactStoreProtocol,
        embedding_generator: EmbeddingGeneratorProtocol,
        config: PartitioningConfig | None = None,
        log_callback: Callable[[str, str, str], None] | None = None,
    ) -> None:
        super().__init__(artifacts, log_callback)
        self.config = config or PartitioningConfig()
        self.embedding_generator = embedding_generator

    @property
    def max_tokens(self) -> int:
        return min(self.config.max_tokens_per_partition, self.embedding_generator.max_tokens)

    def create_splitter(self) -> PartitionSplitter:
        return PartitionSplitter(
            self.max_tokens,
            self.config.overlapping_tokens,
            self.embedding_generator.count_tokens,
        )

    async def invoke(self, pipeline: DataPipeline) -> StepResult:
        splitter = self.create_splitter()
        for file in pipeline.files:
            if file.is_skipped or file.already_processed_by(self.step_name):
                continue
            await self._partition(pipeline, file, splitter)
            file.mark_processed_by(self.step_name)
        return StepResult.create_success(pipeline)

    async def _partition(self, pipeline: DataPipeline, file: FileDetails, splitter: PartitionSplitter) -> None:
        content = FileContent.model_validate(await self._read_json(pipeline, f"{file.name}{EXTRACT_JSON_SUFFIX}"))

        # Drop partitions of an earlier attempt
        for key in [k for k, g in file.generated_files.items() if g.artifact_type == ArtifactType.TEXT_PARTITION]:
            del file.generated_files[key]

        partition_number = 0
        for text, starts in join_sections(content.sections):
            offsets = [start for start, _ in starts]
            for start, chunk in splitter.split_with_offsets(text):
                section_number = starts[max(0, bisect.bisect_right(offsets, start) - 1)][1]
                name = f"{file.name}{PARTITION_INFIX}{partition_number}.txt"
                size = await self._write_text(pipeline, name, chunk)
                file.generated_files[name] = GeneratedFileDetails(
                    id=name,
                    name=name,
                    mime_type="text/plain",
                    size=size,
                    parent_id=file.id,
                    artifact_type=ArtifactType.TEXT_PARTITION,
                    partition_number=partition_number,
                    section_number=section_number,
                )
                partition_number += 1

        self._log("INFO", f"Split {file.name} into {partition_number} partitions (max {splitter.max_tokens} tokens)")
