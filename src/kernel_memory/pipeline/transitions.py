"""State transition service for pipeline status.

All status changes of a ``DataPipeline`` go through this service, which
validates them against the transition table and keeps the step cursor,
retry counters and failure details consistent.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar

from kernel_memory.pipeline.models import DataPipeline, PipelineFailure, PipelineStatus
from kernel_memory.utils.clock import ClockProtocol, SystemClock
from kernel_memory.utils.exceptions import StateTransitionError


@dataclass
class TransitionResult:
    """Result of a state transition."""

    previous_state: PipelineStatus
    new_state: PipelineStatus
    metadata: dict[str, Any] | None = None


class StateTransitionService:
    """Applies validated status changes to pipelines."""

    # Valid pipeline state transitions
    PIPELINE_TRANSITIONS: ClassVar[dict[PipelineStatus, list[PipelineStatus]]] = {
        PipelineStatus.CREATED: [PipelineStatus.RUNNING, PipelineStatus.FAILED],
        PipelineStatus.RUNNING: [
            PipelineStatus.RUNNING,  # advance or retry
            PipelineStatus.COMPLETED,
            PipelineStatus.FAILED,
        ],
        PipelineStatus.COMPLETED: [],  # Terminal state
        PipelineStatus.FAILED: [],  # Terminal state
    }

    def __init__(self, clock: ClockProtocol | None = None) -> None:
        self.clock = clock or SystemClock()

    def can_transition(self, current: PipelineStatus, new: PipelineStatus) -> bool:
        return new in self.PIPELINE_TRANSITIONS.get(current, [])

    def transition(self, pipeline: DataPipeline, new_state: PipelineStatus) -> TransitionResult:
        """Move *pipeline* to *new_state*.

        Raises:
            StateTransitionError: If the transition is not allowed
        """
        current = pipeline.status
        if not self.can_transition(current, new_state):
            raise StateTransitionError(current.value, new_state.value)
        pipeline.status = new_state
        pipeline.touch(self.clock.now())
        return TransitionResult(
            previous_state=current,
            new_state=new_state,
            metadata={"index": pipeline.index, "document_id": pipeline.document_id},
        )

    def start(self, pipeline: DataPipeline) -> TransitionResult:
        return self.transition(pipeline, PipelineStatus.RUNNING)

    def advance(self, pipeline: DataPipeline, step: str) -> TransitionResult:
        """Record the successful completion of *step*, the head of the pipeline.

        The pipeline becomes ``completed`` when no steps remain.
        """
        if pipeline.current_step != step:
            raise StateTransitionError(
                f"step {pipeline.current_step}", f"completion of {step}"
            )
        pipeline.move_to_next_step()
        pipeline.failure = None
        if pipeline.is_complete:
            return self.transition(pipeline, PipelineStatus.COMPLETED)
        return self.transition(pipeline, PipelineStatus.RUNNING)

    def should_retry(self, pipeline: DataPipeline, step: str, max_retries: int) -> bool:
        return pipeline.step_retries.get(step, 0) < max_retries

    def record_retry(self, pipeline: DataPipeline, step: str, error_type: str, message: str) -> int:
        """Count one more retry of *step* and keep the error; returns the count."""
        retries = pipeline.step_retries.get(step, 0) + 1
        pipeline.step_retries[step] = retries
        pipeline.failure = PipelineFailure(
            step=step,
            error_type=error_type,
            message=message,
            attempts=retries,
            occurred_at=self.clock.now(),
        )
        self.transition(pipeline, PipelineStatus.RUNNING)
        return retries

    def fail(self, pipeline: DataPipeline, step: str, error_type: str, message: str) -> TransitionResult:
        pipeline.failure = PipelineFailure(
            step=step,
            error_type=error_type,
            message=message,
            attempts=pipeline.step_retries.get(step, 0) + 1,
            occurred_at=self.clock.now(),
        )
        return self.transition(pipeline, PipelineStatus.FAILED)
