"""Queue worker driving the orchestrator."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import TypeAlias

from kernel_memory.config.components import WorkerConfig
from kernel_memory.pipeline.orchestrator import PipelineOrchestrator
from kernel_memory.queue.protocols import QueueProtocol
from kernel_memory.utils.logging_utils import log_message

LogCallback: TypeAlias = Callable[[str, str, str], None]


class PipelineWorker:
    """Pulls step messages and hands them to the orchestrator.

    ``concurrency`` asyncio tasks each process one message at a time. An
    error in one message is logged and never stops the worker; the queue
    redelivers or poisons the message as configured.
    """

    def __init__(
        self,
        orchestrator: PipelineOrchestrator,
        queue: QueueProtocol,
        config: WorkerConfig | None = None,
        log_callback: LogCallback | None = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.queue = queue
        self.config = config or WorkerConfig()
        self.log_callback = log_callback
        self._running = False

    def _log(self, level: str, message: str) -> None:
        log_message(level, message, "Worker", self.log_callback)

    @property
    def queue_names(self) -> list[str]:
        return self.orchestrator.handler_names

    @property
    def is_running(self) -> bool:
        return self._running

    async def process_next(self) -> bool:
        """Process one message if one is visible.

        Returns:
            True if a message was received
        """
        message = await self.queue.dequeue(self.queue_names)
        if message is None:
            return False
        try:
            await self.orchestrator.process_message(message)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._log(
                "ERROR",
                f"Message {message.id} ({message.queue_name} for "
                f"{message.ref.index}/{message.ref.document_id}) failed: {type(e).__name__}: {e}",
            )
        return True

    async def _drain(self) -> int:
        processed = 0
        while await self.process_next():
            processed += 1
        return processed

    async def run_until_idle(self, wait_for_delayed: bool = False) -> int:
        """Process messages until no message is visible.

        Args:
            wait_for_delayed: Keep polling while delayed or in-flight
                messages are still queued

        Returns:
            Number of messages processed
        """
        processed = 0
        while True:
            counts = await asyncio.gather(*(self._drain() for _ in range(max(1, self.config.concurrency))))
            processed += sum(counts)
            if not wait_for_delayed or await self.queue.size() == 0:
                break
            await asyncio.sleep(self.config.poll_interval_secs)
        self._log("DEBUG", f"Queue idle after {processed} messages")
        return processed

    async def _poll(self) -> None:
        while self._running:
            if not await self.process_next():
                await asyncio.sleep(self.config.poll_interval_secs)

    async def run_forever(self) -> None:
        """Poll the queue until :meth:`stop` is called."""
        self._running = True
        concurrency = max(1, self.config.concurrency)
        self._log("INFO", f"Worker started with {concurrency} tasks on {self.queue_names}")
        tasks = [asyncio.create_task(self._poll(), name=f"km-worker-{i}") for i in range(concurrency)]
        try:
            await asyncio.gather(*tasks)
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            self._running = False
            self._log("INFO", "Worker stopped")

    def stop(self) -> None:
        self._running = False
