"""Pipeline data model.

A ``DataPipeline`` is the unit of work of the ingestion service: one
document, the ordered steps to run on it, and everything the steps have
produced so far. It is persisted as a JSON status document next to the
document artifacts and re-read on every step invocation.
"""

from __future__ import annotations

import enum
import uuid
from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from kernel_memory.storage.models import TagCollection, merge_tags
from kernel_memory.utils.clock import utc_now
from kernel_memory.utils.exceptions import PipelineContractError


class PipelineStatus(str, enum.Enum):
    """Lifecycle states of a pipeline."""

    CREATED = "created"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (PipelineStatus.COMPLETED, PipelineStatus.FAILED)


class ArtifactType(str, enum.Enum):
    """Kinds of files generated by the pipeline steps."""

    EXTRACTED_CONTENT = "extracted_content"
    TEXT_PARTITION = "text_partition"
    EMBEDDING = "embedding"


def new_execution_id() -> str:
    return uuid.uuid4().hex


class FileDetails(BaseModel):
    """An uploaded file and the files generated from it.

    Attributes:
        id: File id, unique within the pipeline
        name: File name in the artifact store
        mime_type: Declared or detected content type
        size: Size in bytes
        tags: File level tags
        processed_by: Steps that already handled this file
        skipped_reason: Why the file was skipped, if it was
        generated_files: Generated files keyed by their id
    """

    id: str
    name: str
    mime_type: str = ""
    size: int = 0
    tags: TagCollection = Field(default_factory=dict)
    processed_by: list[str] = Field(default_factory=list)
    skipped_reason: str | None = None
    generated_files: dict[str, GeneratedFileDetails] = Field(default_factory=dict)

    def already_processed_by(self, step: str) -> bool:
        return step in self.processed_by

    def mark_processed_by(self, step: str) -> None:
        if step not in self.processed_by:
            self.processed_by.append(step)

    @property
    def is_skipped(self) -> bool:
        return self.skipped_reason is not None

    def generated_of_type(self, artifact_type: ArtifactType) -> list[GeneratedFileDetails]:
        """Generated files of one type, ordered by partition number."""
        files = [f for f in self.generated_files.values() if f.artifact_type == artifact_type]
        return sorted(files, key=lambda f: (f.partition_number, f.name))


class GeneratedFileDetails(FileDetails):
    """A file produced by a step from an uploaded file.

    Attributes:
        parent_id: Id of the uploaded file this was generated from
        source_partition_id: Partition an embedding was computed from
        artifact_type: What the file contains
        partition_number: Position of the partition in the file
        section_number: Section (page) the partition comes from
    """

    parent_id: str
    source_partition_id: str | None = None
    artifact_type: ArtifactType
    partition_number: int = 0
    section_number: int = 0


FileDetails.model_rebuild()
GeneratedFileDetails.model_rebuild()


class PipelineFailure(BaseModel):
    """Details of the error that stopped or delayed a step."""

    step: str
    error_type: str
    message: str
    attempts: int = 1
    occurred_at: datetime = Field(default_factory=utc_now)


class PipelineRef(BaseModel):
    """Identity of one pipeline execution, carried in queue messages."""

    model_config = ConfigDict(frozen=True)

    index: str
    document_id: str
    execution_id: str


class DataPipeline(BaseModel):
    """Status and progress of one document ingestion (or deletion).

    Every step name is in exactly one of ``remaining_steps`` and
    ``completed_steps``. Only the orchestrator moves steps between the two.
    """

    index: str
    document_id: str
    execution_id: str = Field(default_factory=new_execution_id)
    steps: list[str] = Field(default_factory=list)
    remaining_steps: list[str] = Field(default_factory=list)
    completed_steps: list[str] = Field(default_factory=list)
    files: list[FileDetails] = Field(default_factory=list)
    tags: TagCollection = Field(default_factory=dict)
    status: PipelineStatus = PipelineStatus.CREATED
    creation: datetime = Field(default_factory=utc_now)
    last_update: datetime = Field(default_factory=utc_now)
    artifacts: dict[str, Any] = Field(default_factory=dict)
    step_retries: dict[str, int] = Field(default_factory=dict)
    failure: PipelineFailure | None = None
    previous_execution_ids: list[str] = Field(default_factory=list)

    @classmethod
    def create(
        cls,
        index: str,
        document_id: str,
        steps: Iterable[str],
        files: Iterable[FileDetails] = (),
        tags: Mapping[str, Iterable[str] | str] | None = None,
    ) -> DataPipeline:
        """Build a new pipeline with every step still to run."""
        steps = list(steps)
        pipeline = cls(
            index=index,
            document_id=document_id,
            steps=steps,
            remaining_steps=list(steps),
            files=list(files),
        )
        if tags:
            pipeline.with_tags(tags)
        return pipeline

    @property
    def current_step(self) -> str | None:
        return self.remaining_steps[0] if self.remaining_steps else None

    @property
    def is_complete(self) -> bool:
        return not self.remaining_steps

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def move_to_next_step(self) -> str:
        """Move the head of ``remaining_steps`` to ``completed_steps``.

        Returns:
            The step that was completed

        Raises:
            PipelineContractError: If there are no remaining steps
        """
        if not self.remaining_steps:
            raise PipelineContractError(
                f"Pipeline {self.index}/{self.document_id} has no remaining steps"
            )
        step = self.remaining_steps.pop(0)
        self.completed_steps.append(step)
        return step

    def with_tags(self, tags: Mapping[str, Iterable[str] | str]) -> DataPipeline:
        merge_tags(self.tags, tags)
        return self

    def ref(self) -> PipelineRef:
        return PipelineRef(index=self.index, document_id=self.document_id, execution_id=self.execution_id)

    def get_file(self, file_id: str) -> FileDetails:
        for file in self.files:
            if file.id == file_id:
                return file
        raise PipelineContractError(f"File {file_id} is not part of pipeline {self.index}/{self.document_id}")

    def step_artifacts(self, step: str) -> dict[str, Any]:
        """Mutable per-step context blob."""
        return self.artifacts.setdefault(step, {})

    def touch(self, now: datetime | None = None) -> None:
        self.last_update = now or utc_now()
