"""Built-in step handlers."""

from kernel_memory.pipeline.handlers.base import (
    BaseStepHandler,
    StepHandlerProtocol,
    StepOutcome,
    StepResult,
)
from kernel_memory.pipeline.handlers.delete_document import DeleteDocumentHandler
from kernel_memory.pipeline.handlers.extract import ExtractTextHandler
from kernel_memory.pipeline.handlers.gen_embeddings import GenerateEmbeddingsHandler
from kernel_memory.pipeline.handlers.partition import PartitionSplitter, PartitionTextHandler
from kernel_memory.pipeline.handlers.save_records import SaveRecordsHandler

__all__ = [
    "BaseStepHandler",
    "DeleteDocumentHandler",
    "ExtractTextHandler",
    "GenerateEmbeddingsHandler",
    "PartitionSplitter",
    "PartitionTextHandler",
    "SaveRecordsHandler",
    "StepHandlerProtocol",
    "StepOutcome",
    "StepResult",
]
