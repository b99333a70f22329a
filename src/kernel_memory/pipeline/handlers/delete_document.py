"""Document deletion step."""

from __future__ import annotations

from collections.abc import Callable, Sequence

from kernel_memory.pipeline.constants import DELETE_DOCUMENT_STEP
from kernel_memory.pipeline.handlers.base import BaseStepHandler, StepResult
from kernel_memory.pipeline.models import DataPipeline
from kernel_memory.storage.models import MemoryFilters, MemoryRecord
from kernel_memory.storage.protocols import ArtifactStoreProtocol, VectorStoreProtocol
from kernel_memory.utils.exceptions import IndexNotFoundError


class DeleteDocumentHandler(BaseStepHandler):
    """Remove a document's records from every vector store and its artifacts.

    The status document is kept so the deletion itself can be tracked.
    """

    step_name = DELETE_DOCUMENT_STEP

    def __init__(
        self,
        artifacts: ArtifactStoreProtocol,
        vector_stores: Sequence[VectorStoreProtocol],
        log_callback: Callable[[str, str, str], None] | None = None,
    ) -> None:
        super().__init__(artifacts, log_callback)
        self.vector_stores = list(vector_stores)

    async def invoke(self, pipeline: DataPipeline) -> StepResult:
        for store in self.vector_stores:
            records: list[MemoryRecord] = []
            try:
                async for record in store.get_list(pipeline.index, [MemoryFilters.by_document(pipeline.document_id)]):
                    records.append(record)
            except IndexNotFoundError:
                self._log("DEBUG", f"Index {pipeline.index} not found in {store.name}, nothing to delete")
                continue
            for record in records:
                await store.delete(pipeline.index, record)
            self._log("INFO", f"Deleted {len(records)} records of {pipeline.document_id} from {store.name}")

        await self.artifacts.empty_document_directory(pipeline.index, pipeline.document_id)
        return StepResult.create_success(pipeline)
