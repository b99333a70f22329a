"""Step handler contract."""

from __future__ import annotations

import enum
import json
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol, TypeAlias, runtime_checkable

from kernel_memory.pipeline.models import DataPipeline
from kernel_memory.storage.protocols import ArtifactStoreProtocol
from kernel_memory.utils.logging_utils import log_message

LogCallback: TypeAlias = Callable[[str, str, str], None]


class StepOutcome(str, enum.Enum):
    """How a step invocation ended."""

    SUCCESS = "success"
    TRANSIENT_FAILURE = "transient_failure"
    FATAL_FAILURE = "fatal_failure"


@dataclass
class StepResult:
    """Result of invoking a step handler."""

    outcome: StepOutcome
    pipeline: DataPipeline
    error_message: str | None = None
    error_type: str | None = None

    @property
    def success(self) -> bool:
        return self.outcome == StepOutcome.SUCCESS

    @classmethod
    def create_success(cls, pipeline: DataPipeline) -> StepResult:
        return cls(outcome=StepOutcome.SUCCESS, pipeline=pipeline)

    @classmethod
    def create_transient_failure(
        cls, pipeline: DataPipeline, error_message: str, error_type: str = "TransientFailure"
    ) -> StepResult:
        return cls(
            outcome=StepOutcome.TRANSIENT_FAILURE,
            pipeline=pipeline,
            error_message=error_message,
            error_type=error_type,
        )

    @classmethod
    def create_fatal_failure(
        cls, pipeline: DataPipeline, error_message: str, error_type: str = "FatalFailure"
    ) -> StepResult:
        return cls(
            outcome=StepOutcome.FATAL_FAILURE,
            pipeline=pipeline,
            error_message=error_message,
            error_type=error_type,
        )


@runtime_checkable
class StepHandlerProtocol(Protocol):
    """Protocol for pipeline step handlers.

    A handler works on one step of a pipeline and returns the updated
    pipeline; it never moves the step cursor. Handlers must tolerate being
    invoked again for the same step, since messages are delivered at least
    once.
    """

    step_name: str

    async def invoke(self, pipeline: DataPipeline) -> StepResult:
        """Run the step on *pipeline*."""
        ...


class BaseStepHandler:
    """Helpers shared by the built-in handlers."""

    step_name: str

    def __init__(self, artifacts: ArtifactStoreProtocol, log_callback: LogCallback | None = None) -> None:
        self.artifacts = artifacts
        self.log_callback = log_callback

    def _log(self, level: str, message: str, pipeline: DataPipeline | None = None) -> None:
        context = {"index": pipeline.index, "document_id": pipeline.document_id} if pipeline else {}
        log_message(level, message, f"Step:{self.step_name}", self.log_callback, **context)

    async def _read_text(self, pipeline: DataPipeline, file_name: str) -> str:
        data = await self.artifacts.read_file(pipeline.index, pipeline.document_id, file_name)
        return data.decode("utf-8")

    async def _write_text(self, pipeline: DataPipeline, file_name: str, text: str) -> int:
        data = text.encode("utf-8")
        await self.artifacts.write_file(pipeline.index, pipeline.document_id, file_name, data)
        return len(data)

    async def _read_json(self, pipeline: DataPipeline, file_name: str) -> Any:
        return json.loads(await self._read_text(pipeline, file_name))

    async def _write_json(self, pipeline: DataPipeline, file_name: str, value: Any) -> int:
        return await self._write_text(pipeline, file_name, json.dumps(value, ensure_ascii=False))
