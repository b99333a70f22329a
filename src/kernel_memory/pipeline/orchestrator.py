"""Pipeline orchestrator.

The orchestrator owns the lifecycle of a ``DataPipeline``: it validates and
starts pipelines, turns queue messages into handler invocations, and records
each step outcome in the status document before the next step is
published. Handlers never see the queue and never move the step cursor.
"""

from __future__ import annotations

import asyncio
import re
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import TypeAlias

from kernel_memory.config.components import PipelineConfig
from kernel_memory.pipeline.constants import ID_PATTERN, MAX_ID_LENGTH, PIPELINE_STATUS_FILE
from kernel_memory.pipeline.handlers.base import StepHandlerProtocol, StepOutcome, StepResult
from kernel_memory.pipeline.models import DataPipeline, PipelineStatus
from kernel_memory.pipeline.transitions import StateTransitionService
from kernel_memory.queue.models import NackOutcome, QueueMessage
from kernel_memory.queue.protocols import QueueProtocol
from kernel_memory.storage.protocols import ArtifactStoreProtocol
from kernel_memory.utils.clock import ClockProtocol, SystemClock
from kernel_memory.utils.exceptions import (
    ArtifactNotFoundError,
    InvalidPipelineError,
    PipelineContractError,
    PipelineInProgressError,
    PipelineNotFoundError,
)
from kernel_memory.utils.logging_utils import log_message

LogCallback: TypeAlias = Callable[[str, str, str], None]

_ID_RE = re.compile(ID_PATTERN)


@dataclass
class OrchestratorDependencies:
    """Collaborators of the orchestrator."""

    artifacts: ArtifactStoreProtocol
    queue: QueueProtocol
    handlers: dict[str, StepHandlerProtocol] = field(default_factory=dict)
    clock: ClockProtocol = field(default_factory=SystemClock)


class PipelineOrchestrator:
    """Runs pipelines step by step over the work queue."""

    def __init__(
        self,
        deps: OrchestratorDependencies,
        config: PipelineConfig | None = None,
        log_callback: LogCallback | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            deps: Artifact store, queue, handlers and clock
            config: Pipeline configuration
            log_callback: Optional callback for logging
        """
        self.artifacts = deps.artifacts
        self.queue = deps.queue
        self.handlers = dict(deps.handlers)
        self.clock = deps.clock
        self.config = config or PipelineConfig()
        self.log_callback = log_callback
        self.transitions = StateTransitionService(self.clock)
        # Serializes status updates of one document within this process; an
        # entry lives only while a task holds or waits for it
        self._locks: dict[tuple[str, str], tuple[asyncio.Lock, int]] = {}
        self.queue.add_poison_listener(self.handle_poisoned_message)

    def _log(self, level: str, message: str, **context: str) -> None:
        log_message(level, message, "Orchestrator", self.log_callback, **context)

    @asynccontextmanager
    async def _document_lock(self, index: str, document_id: str) -> AsyncIterator[None]:
        key = (index, document_id)
        lock, users = self._locks.get(key, (asyncio.Lock(), 0))
        self._locks[key] = (lock, users + 1)
        try:
            async with lock:
                yield
        finally:
            lock, users = self._locks[key]
            if users == 1:
                del self._locks[key]
            else:
                self._locks[key] = (lock, users - 1)

    @property
    def handler_names(self) -> list[str]:
        return list(self.handlers)

    def add_handler(self, handler: StepHandlerProtocol) -> None:
        self.handlers[handler.step_name] = handler

    # Status document

    async def read_pipeline_status(self, index: str, document_id: str) -> DataPipeline | None:
        """Load the stored pipeline of a document, or ``None`` if there is none."""
        try:
            data = await self.artifacts.read_file(index, document_id, PIPELINE_STATUS_FILE)
        except ArtifactNotFoundError:
            return None
        return DataPipeline.model_validate_json(data)

    async def update_pipeline_status(self, pipeline: DataPipeline) -> None:
        """Persist *pipeline* as the status document of its document."""
        data = pipeline.model_dump_json(indent=2).encode("utf-8")
        await self.artifacts.write_file(pipeline.index, pipeline.document_id, PIPELINE_STATUS_FILE, data)

    # Starting and resuming

    def validate(self, pipeline: DataPipeline) -> None:
        """Check that *pipeline* can be started.

        Raises:
            InvalidPipelineError: If steps, handlers or identifiers are invalid
        """

        def invalid(message: str) -> InvalidPipelineError:
            return InvalidPipelineError(message, index=pipeline.index, document_id=pipeline.document_id)

        for label, value in (("index", pipeline.index), ("document id", pipeline.document_id)):
            if not value or len(value) > MAX_ID_LENGTH or not _ID_RE.match(value):
                raise invalid(
                    f"{label} '{value}' must be 1-{MAX_ID_LENGTH} characters of letters, digits, '.', '_' or '-'"
                )
        if not pipeline.steps:
            raise invalid("no steps to run")
        if len(set(pipeline.steps)) != len(pipeline.steps):
            raise invalid(f"duplicate steps in {pipeline.steps}")
        missing = [step for step in pipeline.steps if step not in self.handlers]
        if missing:
            raise invalid(f"no handler for steps {missing}")
        if pipeline.status != PipelineStatus.CREATED or pipeline.remaining_steps != pipeline.steps:
            raise invalid(f"pipeline already started (status {pipeline.status.value})")

    async def ensure_not_in_progress(self, index: str, document_id: str) -> DataPipeline | None:
        """Return the stored pipeline, refusing documents still being processed.

        Raises:
            PipelineInProgressError: If the stored pipeline is not terminal
        """
        existing = await self.read_pipeline_status(index, document_id)
        if existing is not None and not existing.is_terminal:
            raise PipelineInProgressError(index, document_id, existing.execution_id)
        return existing

    async def start(
        self,
        pipeline: DataPipeline,
        prepare: Callable[[], Awaitable[None]] | None = None,
    ) -> DataPipeline:
        """Validate and persist *pipeline*, then publish its first step.

        Args:
            pipeline: Pipeline in the ``created`` state
            prepare: Coroutine run after the in-progress check and before the
                status is saved, under the document lock; used to write the
                uploaded files

        Raises:
            InvalidPipelineError: If the pipeline is not valid
            PipelineInProgressError: If the document has a running pipeline
        """
        self.validate(pipeline)
        async with self._document_lock(pipeline.index, pipeline.document_id):
            existing = await self.ensure_not_in_progress(pipeline.index, pipeline.document_id)
            if prepare is not None:
                await prepare()
            if existing is not None and existing.execution_id != pipeline.execution_id:
                previous = [*existing.previous_execution_ids, existing.execution_id]
                pipeline.previous_execution_ids = [
                    e for e in previous if e not in pipeline.previous_execution_ids
                ] + pipeline.previous_execution_ids

            self.transitions.start(pipeline)
            await self.update_pipeline_status(pipeline)
            await self.queue.enqueue(pipeline.remaining_steps[0], pipeline.ref())

        self._log(
            "INFO",
            f"Started pipeline {pipeline.index}/{pipeline.document_id} "
            f"(execution {pipeline.execution_id}, steps {pipeline.steps})",
        )
        return pipeline

    async def resume(self, index: str, document_id: str) -> DataPipeline:
        """Publish the current step of a stored pipeline again.

        Completed and failed pipelines are returned unchanged.

        Raises:
            PipelineNotFoundError: If the document has no status document
        """
        async with self._document_lock(index, document_id):
            pipeline = await self.read_pipeline_status(index, document_id)
            if pipeline is None:
                raise PipelineNotFoundError(index, document_id)
            if pipeline.is_terminal:
                self._log("DEBUG", f"Pipeline {index}/{document_id} is {pipeline.status.value}, nothing to resume")
                return pipeline

            if pipeline.status == PipelineStatus.CREATED:
                self.transitions.start(pipeline)
                await self.update_pipeline_status(pipeline)
            if pipeline.is_complete:
                self.transitions.transition(pipeline, PipelineStatus.COMPLETED)
                await self.update_pipeline_status(pipeline)
                return pipeline

            await self.queue.enqueue(pipeline.remaining_steps[0], pipeline.ref())
        self._log("INFO", f"Resumed pipeline {index}/{document_id} at step {pipeline.current_step}")
        return pipeline

    # Step execution

    async def process_message(self, message: QueueMessage) -> DataPipeline | None:
        """Run the step a queue message asks for and record its outcome.

        Deliveries for another execution, for a finished pipeline, or for a
        step that is not next are acknowledged without running anything.

        Returns:
            The pipeline after the step, or ``None`` if the message was dropped

        Raises:
            PipelineContractError: If the step has no handler or the handler
                reports a contract violation; the pipeline is failed first
        """
        step = message.queue_name
        ref = message.ref
        async with self._document_lock(ref.index, ref.document_id):
            pipeline = await self.read_pipeline_status(ref.index, ref.document_id)
            if pipeline is None:
                self._log("WARNING", f"No pipeline for {ref.index}/{ref.document_id}, dropping {step} message")
                await self.queue.ack(message)
                return None
            if pipeline.execution_id != ref.execution_id:
                self._log("INFO", f"Dropping {step} message of stale execution {ref.execution_id}")
                await self.queue.ack(message)
                return None
            if pipeline.is_terminal:
                self._log("DEBUG", f"Pipeline {ref.index}/{ref.document_id} is {pipeline.status.value}, dropping {step}")
                await self.queue.ack(message)
                return None
            if pipeline.current_step != step:
                if pipeline.completed_steps and pipeline.completed_steps[-1] == step:
                    # The step was recorded but its consumer may have died before
                    # publishing the next one
                    await self.queue.enqueue(pipeline.remaining_steps[0], pipeline.ref())
                    self._log(
                        "INFO",
                        f"Redelivered {step} for {ref.index}/{ref.document_id} is done, "
                        f"published {pipeline.current_step} again",
                    )
                else:
                    self._log(
                        "INFO",
                        f"Dropping duplicate {step} message for {ref.index}/{ref.document_id} "
                        f"(current step {pipeline.current_step})",
                    )
                await self.queue.ack(message)
                return None

            if message.is_expired(self.clock.time()):
                reason = f"Message for step {step} expired"
                self.transitions.fail(pipeline, step, "MessageExpired", reason)
                await self.update_pipeline_status(pipeline)
                await self.queue.poison(message, reason)
                self._log("ERROR", f"Pipeline {ref.index}/{ref.document_id} failed: {reason}")
                return pipeline

            handler = self.handlers.get(step)
            if handler is None:
                error = PipelineContractError(f"No handler registered for step '{step}'", step=step)
                await self._complete_step(
                    pipeline, step, StepResult.create_fatal_failure(pipeline, str(error), type(error).__name__), message
                )
                raise error

            self._log(
                "DEBUG",
                f"Running {step} (delivery {message.delivery_count})",
                index=ref.index,
                document_id=ref.document_id,
                step=step,
            )
            # The handler works on a copy; only a success replaces the stored pipeline
            working = pipeline.model_copy(deep=True)
            try:
                result = await handler.invoke(working)
            except asyncio.CancelledError:
                await self.queue.nack(message, f"Step {step} cancelled")
                raise
            except PipelineContractError as e:
                await self._complete_step(
                    pipeline, step, StepResult.create_fatal_failure(pipeline, str(e), type(e).__name__), message
                )
                raise
            except Exception as e:
                self._log(
                    "WARNING",
                    f"Step {step} raised {type(e).__name__}: {e}",
                    index=ref.index,
                    document_id=ref.document_id,
                    step=step,
                )
                result = StepResult.create_transient_failure(pipeline, str(e), type(e).__name__)

            return await self._complete_step(pipeline, step, result, message)

    async def handle_poisoned_message(self, message: QueueMessage) -> DataPipeline | None:
        """Fail the pipeline whose current step message the queue gave up on.

        The queue poisons a message while dequeuing when it reached the
        delivery limit or expired, typically after consumers died without
        settling it.

        Returns:
            The failed pipeline, or ``None`` if the message was not the
            current step of a running pipeline
        """
        ref = message.ref
        step = message.queue_name
        async with self._document_lock(ref.index, ref.document_id):
            pipeline = await self.read_pipeline_status(ref.index, ref.document_id)
            if (
                pipeline is None
                or pipeline.execution_id != ref.execution_id
                or pipeline.is_terminal
                or pipeline.current_step != step
            ):
                return None
            error_type = "MessageExpired" if message.is_expired(self.clock.time()) else "DeliveryLimitExceeded"
            reason = message.poison_reason or f"Message for step {step} was poisoned"
            self.transitions.fail(pipeline, step, error_type, reason)
            await self.update_pipeline_status(pipeline)
        self._log("ERROR", f"Pipeline {ref.index}/{ref.document_id} failed at {step}: {reason}")
        return pipeline

    async def handle_step_completion(
        self,
        pipeline: DataPipeline,
        step: str,
        result: StepResult,
        message: QueueMessage,
    ) -> DataPipeline:
        """Record the outcome of *step* and settle *message*.

        On success the handler's pipeline is advanced, persisted and the next
        step published. A transient failure is retried while the step has
        retries left, otherwise the pipeline fails and the message is
        poisoned; a fatal failure does the same immediately.
        """
        async with self._document_lock(pipeline.index, pipeline.document_id):
            return await self._complete_step(pipeline, step, result, message)

    async def _complete_step(
        self,
        pipeline: DataPipeline,
        step: str,
        result: StepResult,
        message: QueueMessage,
    ) -> DataPipeline:
        name = f"{pipeline.index}/{pipeline.document_id}"

        if result.outcome == StepOutcome.SUCCESS:
            updated = result.pipeline
            if (updated.index, updated.document_id, updated.execution_id) != (
                pipeline.index,
                pipeline.document_id,
                pipeline.execution_id,
            ):
                error = PipelineContractError(f"Handler for {step} returned a different pipeline", step=step)
                await self._complete_step(
                    pipeline, step, StepResult.create_fatal_failure(pipeline, str(error), type(error).__name__), message
                )
                raise error
            self.transitions.advance(updated, step)
            await self.update_pipeline_status(updated)
            if updated.is_complete:
                self._log("INFO", f"Pipeline {name} completed")
            else:
                await self.queue.enqueue(updated.remaining_steps[0], updated.ref())
                self._log("INFO", f"Step {step} of {name} done, next {updated.current_step}")
            await self.queue.ack(message)
            return updated

        error_type = result.error_type or "StepFailure"
        error_message = result.error_message or f"Step {step} failed"

        if result.outcome == StepOutcome.TRANSIENT_FAILURE and self.transitions.should_retry(
            pipeline, step, self.config.max_step_retries
        ):
            retries = self.transitions.record_retry(pipeline, step, error_type, error_message)
            await self.update_pipeline_status(pipeline)
            self._log(
                "WARNING",
                f"Step {step} of {name} failed ({error_message}), retry {retries}/{self.config.max_step_retries}",
            )
            if await self.queue.nack(message, error_message) == NackOutcome.POISONED:
                self.transitions.fail(pipeline, step, error_type, f"{error_message} (message poisoned)")
                await self.update_pipeline_status(pipeline)
                self._log("ERROR", f"Pipeline {name} failed at {step}: queue gave up on the message")
            return pipeline

        self.transitions.fail(pipeline, step, error_type, error_message)
        await self.update_pipeline_status(pipeline)
        reason = (
            f"Step {step} failed: {error_message}"
            if result.outcome == StepOutcome.FATAL_FAILURE
            else f"Step {step} failed after {self.config.max_step_retries} retries: {error_message}"
        )
        await self.queue.poison(message, reason)
        self._log("ERROR", f"Pipeline {name} failed. {reason}")
        return pipeline
