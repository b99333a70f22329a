"""Document ingestion pipeline: data model, orchestrator, handlers and worker.

Only the data model and step names are imported eagerly; import the
orchestrator, handlers and worker from their modules.
"""

from kernel_memory.pipeline import constants
from kernel_memory.pipeline.models import (
    ArtifactType,
    DataPipeline,
    FileDetails,
    GeneratedFileDetails,
    PipelineFailure,
    PipelineRef,
    PipelineStatus,
)

__all__ = [
    "ArtifactType",
    "DataPipeline",
    "FileDetails",
    "GeneratedFileDetails",
    "PipelineFailure",
    "PipelineRef",
    "PipelineStatus",
    "constants",
]
