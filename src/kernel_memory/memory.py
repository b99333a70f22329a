"""Memory service: the public entry point for importing and searching documents.

The service stores uploads in the artifact store and hands pipelines to the
orchestrator; the steps themselves run in a ``PipelineWorker``, in this
process or in another one sharing the same storage and queue.
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Callable, Iterable, Mapping, Sequence
from datetime import datetime
from pathlib import Path
from typing import TypeAlias

from kernel_memory.config.components import PipelineConfig
from kernel_memory.decoders.mime_types import PLAIN_TEXT, get_mime_type, normalize_mime_type
from kernel_memory.embeddings.protocols import EmbeddingGeneratorProtocol
from kernel_memory.pipeline.constants import DELETE_DOCUMENT_STEP
from kernel_memory.pipeline.models import DataPipeline, FileDetails, PipelineStatus
from kernel_memory.pipeline.orchestrator import PipelineOrchestrator
from kernel_memory.queue.models import QueueMessage
from kernel_memory.service_models import Citation, DocumentUpload, ImportRequest, Partition, SearchResult
from kernel_memory.storage.models import MemoryFilter, MemoryRecord, ReservedPayload, ReservedTags, TagCollection
from kernel_memory.storage.protocols import ArtifactStoreProtocol, VectorStoreProtocol
from kernel_memory.utils.exceptions import IndexNotFoundError, InvalidPipelineError
from kernel_memory.utils.logging_utils import log_message

LogCallback: TypeAlias = Callable[[str, str, str], None]


def new_document_id() -> str:
    return uuid.uuid4().hex


def _first_tag(tags: Mapping[str, list[str]], key: str, default: str = "") -> str:
    values = tags.get(key)
    return values[0] if values else default


def _as_int(value: str) -> int:
    try:
        return int(value)
    except ValueError:
        return 0


class MemoryService:
    """Imports, deletes and searches documents."""

    def __init__(
        self,
        orchestrator: PipelineOrchestrator,
        artifacts: ArtifactStoreProtocol,
        vector_stores: Sequence[VectorStoreProtocol],
        embedding_generator: EmbeddingGeneratorProtocol,
        config: PipelineConfig | None = None,
        log_callback: LogCallback | None = None,
    ) -> None:
        """Initialize the service.

        Args:
            orchestrator: Orchestrator that starts and tracks pipelines
            artifacts: Store for uploaded and generated files
            vector_stores: Stores the records are written to; searches use
                the first one
            embedding_generator: Generator used to embed search queries
            config: Pipeline configuration (default index and steps)
            log_callback: Optional callback for logging
        """
        self.orchestrator = orchestrator
        self.artifacts = artifacts
        self.vector_stores = list(vector_stores)
        self.embedding_generator = embedding_generator
        self.config = config or PipelineConfig()
        self.log_callback = log_callback

    def _log(self, level: str, message: str) -> None:
        log_message(level, message, "Memory", self.log_callback)

    def _index(self, index: str | None) -> str:
        return index or self.config.default_index

    @staticmethod
    def _check_tags(tags: Mapping[str, Iterable[str]], index: str, document_id: str) -> None:
        reserved = sorted(key for key in tags if ReservedTags.is_reserved(key))
        if reserved:
            raise InvalidPipelineError(
                f"tags {reserved} use the reserved prefix '{ReservedTags.PREFIX}'",
                index=index,
                document_id=document_id,
            )

    # Import

    async def import_document(self, request: ImportRequest) -> str:
        """Upload the files of *request* and start its ingestion pipeline.

        Importing a document id that already exists replaces the document
        once the new pipeline completes.

        Returns:
            The document id

        Raises:
            InvalidPipelineError: If the request is not valid
            PipelineInProgressError: If the document is still being processed
        """
        index = self._index(request.index)
        document_id = request.document_id or new_document_id()

        self._check_tags(request.tags, index, document_id)
        names = [upload.file_name for upload in request.files]
        if len(set(names)) != len(names):
            raise InvalidPipelineError(f"duplicate file names in {names}", index=index, document_id=document_id)

        files: list[FileDetails] = []
        for upload in request.files:
            self._check_tags(upload.tags, index, document_id)
            files.append(
                FileDetails(
                    id=upload.file_name,
                    name=upload.file_name,
                    mime_type=normalize_mime_type(upload.mime_type) or get_mime_type(upload.file_name),
                    size=len(upload.content),
                    tags={k: list(v) for k, v in upload.tags.items()},
                )
            )

        pipeline = DataPipeline.create(
            index,
            document_id,
            request.steps or self.config.default_steps,
            files=files,
            tags=request.tags,
        )

        async def write_uploads() -> None:
            await self.artifacts.create_index_directory(index)
            await self.artifacts.create_document_directory(index, document_id)
            # Generated files of an earlier import must not leak into this one
            await self.artifacts.empty_document_directory(index, document_id)
            for upload in request.files:
                await self.artifacts.write_file(index, document_id, upload.file_name, upload.content)

        # Runs under the document lock, after the in-progress check
        await self.orchestrator.start(pipeline, prepare=write_uploads)
        self._log("INFO", f"Importing {len(files)} files as {index}/{document_id}")
        return document_id

    async def import_text(
        self,
        text: str,
        *,
        document_id: str | None = None,
        index: str | None = None,
        tags: TagCollection | None = None,
        file_name: str = "content.txt",
    ) -> str:
        """Import a plain text document."""
        return await self.import_document(
            ImportRequest(
                files=[DocumentUpload(file_name=file_name, content=text.encode("utf-8"), mime_type=PLAIN_TEXT)],
                document_id=document_id,
                index=index,
                tags=tags or {},
            )
        )

    async def import_files(
        self,
        paths: Sequence[str | Path],
        *,
        document_id: str | None = None,
        index: str | None = None,
        tags: TagCollection | None = None,
    ) -> str:
        """Import local files as one document."""
        uploads = []
        for path in paths:
            path = Path(path)
            content = await asyncio.to_thread(path.read_bytes)
            uploads.append(DocumentUpload(file_name=path.name, content=content))
        return await self.import_document(
            ImportRequest(files=uploads, document_id=document_id, index=index, tags=tags or {})
        )

    async def import_file(
        self,
        path: str | Path,
        *,
        document_id: str | None = None,
        index: str | None = None,
        tags: TagCollection | None = None,
    ) -> str:
        """Import a single local file."""
        return await self.import_files([path], document_id=document_id, index=index, tags=tags)

    # Status

    async def get_pipeline_status(self, document_id: str, index: str | None = None) -> DataPipeline | None:
        return await self.orchestrator.read_pipeline_status(self._index(index), document_id)

    async def is_document_ready(self, document_id: str, index: str | None = None) -> bool:
        """Whether the document was fully imported and not deleted since."""
        pipeline = await self.get_pipeline_status(document_id, index)
        return (
            pipeline is not None
            and pipeline.status == PipelineStatus.COMPLETED
            and DELETE_DOCUMENT_STEP not in pipeline.steps
        )

    async def poison_messages(self) -> list[QueueMessage]:
        return await self.orchestrator.queue.poison_messages()

    async def resume_document(self, document_id: str, index: str | None = None) -> DataPipeline:
        """Publish the current step of a running pipeline again.

        Recovers a pipeline whose step message was lost, e.g. when the queue
        was reset. Finished pipelines are returned unchanged.

        Raises:
            PipelineNotFoundError: If the document has no pipeline
        """
        pipeline = await self.orchestrator.resume(self._index(index), document_id)
        self._log("INFO", f"Resumed {pipeline.index}/{document_id} (status {pipeline.status.value})")
        return pipeline

    # Deletion

    async def delete_document(self, document_id: str, index: str | None = None) -> DataPipeline:
        """Start a pipeline removing the document's records and files.

        Raises:
            PipelineInProgressError: If the document is still being processed
        """
        index = self._index(index)
        pipeline = DataPipeline.create(index, document_id, self.config.delete_steps)
        await self.orchestrator.start(pipeline)
        self._log("INFO", f"Deleting {index}/{document_id}")
        return pipeline

    async def list_indexes(self) -> list[str]:
        indexes: set[str] = set()
        for store in self.vector_stores:
            indexes.update(await store.get_indexes())
        return sorted(indexes)

    async def delete_index(self, index: str | None = None) -> None:
        """Drop an index from every vector store along with its files."""
        index = self._index(index)
        for store in self.vector_stores:
            try:
                await store.delete_index(index)
            except IndexNotFoundError:
                self._log("DEBUG", f"Index {index} not found in {store.name}")
        await self.artifacts.delete_index_directory(index)
        self._log("INFO", f"Deleted index {index}")

    # Search

    async def search(
        self,
        query: str,
        *,
        index: str | None = None,
        filters: list[MemoryFilter] | None = None,
        min_relevance: float = 0.0,
        limit: int = 10,
    ) -> SearchResult:
        """Find the partitions most similar to *query*.

        Results are grouped by document and file, in order of the best
        partition of each.
        """
        index = self._index(index)
        result = SearchResult(query=query)
        if not self.vector_stores:
            return result

        vector = await self.embedding_generator.generate_embedding(query)
        store = self.vector_stores[0]
        citations: dict[tuple[str, str], Citation] = {}
        try:
            async for record, relevance in store.get_similar_list(
                index, vector, filters=filters, min_relevance=min_relevance, limit=limit
            ):
                citation = self._citation_for(citations, index, record)
                citation.partitions.append(self._partition_of(record, relevance))
        except IndexNotFoundError:
            self._log("DEBUG", f"Index {index} not found, empty search result")
            return result

        result.results = list(citations.values())
        return result

    @staticmethod
    def _citation_for(citations: dict[tuple[str, str], Citation], index: str, record: MemoryRecord) -> Citation:
        document_id = record.document_id or ""
        file_id = _first_tag(record.tags, ReservedTags.FILE_ID)
        key = (document_id, file_id)
        if key not in citations:
            citations[key] = Citation(
                document_id=document_id,
                file_id=file_id,
                index=index,
                source_name=str(record.payload.get(ReservedPayload.FILE, "")),
                source_content_type=_first_tag(record.tags, ReservedTags.FILE_TYPE),
            )
        return citations[key]

    @staticmethod
    def _partition_of(record: MemoryRecord, relevance: float) -> Partition:
        last_update = record.payload.get(ReservedPayload.LAST_UPDATE)
        return Partition(
            text=record.text,
            relevance=relevance,
            partition_number=_as_int(_first_tag(record.tags, ReservedTags.PART_N, "0")),
            section_number=_as_int(_first_tag(record.tags, ReservedTags.SECT_N, "0")),
            last_update=datetime.fromisoformat(last_update) if last_update else None,
            tags={k: list(v) for k, v in record.tags.items() if not ReservedTags.is_reserved(k)},
        )
