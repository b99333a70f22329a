"""Record saving step."""

from __future__ import annotations

from collections.abc import Callable, Sequence

from kernel_memory.pipeline.constants import SAVE_RECORDS_STEP
from kernel_memory.pipeline.handlers.base import BaseStepHandler, StepResult
from kernel_memory.pipeline.models import ArtifactType, DataPipeline, FileDetails, GeneratedFileDetails
from kernel_memory.storage.models import (
    MemoryFilters,
    MemoryRecord,
    ReservedPayload,
    ReservedTags,
    add_tag,
    merge_tags,
    record_id,
)
from kernel_memory.storage.protocols import ArtifactStoreProtocol, VectorStoreProtocol
from kernel_memory.utils.exceptions import IndexNotFoundError


class SaveRecordsHandler(BaseStepHandler):
    """Write one memory record per embedding to every vector store.

    Record ids are derived from document, file and partition, so replaying
    the step overwrites the same records. Records of the document left over
    from an earlier import are deleted afterwards.
    """

    step_name = SAVE_RECORDS_STEP

    def __init__(
        self,
        artifacts: ArtifactStoreProtocol,
        vector_stores: Sequence[VectorStoreProtocol],
        log_callback: Callable[[str, str, str], None] | None = None,
    ) -> None:
        super().__init__(artifacts, log_callback)
        self.vector_stores = list(vector_stores)

    async def invoke(self, pipeline: DataPipeline) -> StepResult:
        records: list[MemoryRecord] = []
        for file in pipeline.files:
            if file.is_skipped:
                continue
            for embedding in file.generated_of_type(ArtifactType.EMBEDDING):
                records.append(await self._build_record(pipeline, file, embedding))

        current_ids = {r.id for r in records}
        for store in self.vector_stores:
            if records:
                await store.create_index(pipeline.index, len(records[0].vector))
            for record in records:
                await store.upsert(pipeline.index, record)
            removed = await self._delete_stale(store, pipeline, current_ids)
            self._log(
                "INFO",
                f"Saved {len(records)} records to {store.name}/{pipeline.index}"
                + (f", removed {removed} stale" if removed else ""),
            )

        for file in pipeline.files:
            if not file.is_skipped:
                file.mark_processed_by(self.step_name)
        return StepResult.create_success(pipeline)

    async def _build_record(
        self, pipeline: DataPipeline, file: FileDetails, embedding: GeneratedFileDetails
    ) -> MemoryRecord:
        data = await self._read_json(pipeline, embedding.name)
        partition = file.generated_files.get(embedding.source_partition_id or "")
        text = await self._read_text(pipeline, partition.name) if partition else ""

        tags: dict[str, list[str]] = {}
        merge_tags(tags, pipeline.tags)
        merge_tags(tags, file.tags)
        add_tag(tags, ReservedTags.DOCUMENT_ID, pipeline.document_id)
        add_tag(tags, ReservedTags.EXECUTION_ID, pipeline.execution_id)
        add_tag(tags, ReservedTags.FILE_ID, file.id)
        add_tag(tags, ReservedTags.FILE_PART, embedding.source_partition_id or embedding.id)
        add_tag(tags, ReservedTags.PART_N, str(embedding.partition_number))
        add_tag(tags, ReservedTags.SECT_N, str(embedding.section_number))
        add_tag(tags, ReservedTags.FILE_TYPE, file.mime_type)

        return MemoryRecord(
            id=record_id(pipeline.document_id, file.id, embedding.partition_number),
            vector=data["vector"],
            tags=tags,
            payload={
                ReservedPayload.TEXT: text,
                ReservedPayload.FILE: file.name,
                ReservedPayload.LAST_UPDATE: pipeline.last_update.isoformat(),
                ReservedPayload.VECTOR_PROVIDER: data.get("generator", ""),
            },
        )

    async def _delete_stale(self, store: VectorStoreProtocol, pipeline: DataPipeline, current_ids: set[str]) -> int:
        stale: list[MemoryRecord] = []
        try:
            async for record in store.get_list(pipeline.index, [MemoryFilters.by_document(pipeline.document_id)]):
                if record.id not in current_ids:
                    stale.append(record)
        except IndexNotFoundError:
            return 0
        for record in stale:
            await store.delete(pipeline.index, record)
        return len(stale)
