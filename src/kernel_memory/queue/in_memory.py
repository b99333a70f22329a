"""In-process queue for tests, the CLI and single process deployments."""

from __future__ import annotations

import asyncio
import itertools
from collections.abc import Sequence

from kernel_memory.config.components import QueueConfig
from kernel_memory.pipeline.models import PipelineRef
from kernel_memory.queue.base import QueueBase
from kernel_memory.queue.models import NackOutcome, QueueMessage
from kernel_memory.utils.clock import ClockProtocol


class InMemoryQueue(QueueBase):
    """Queue held in a dictionary, guarded by an asyncio lock.

    Messages are lost when the process exits; use ``SQLAlchemyQueue`` for a
    durable queue.
    """

    def __init__(self, config: QueueConfig | None = None, clock: ClockProtocol | None = None) -> None:
        super().__init__(config, clock)
        self._messages: dict[str, QueueMessage] = {}
        self._order: dict[str, int] = {}
        self._poisoned: list[QueueMessage] = []
        self._sequence = itertools.count()
        self._lock = asyncio.Lock()

    async def enqueue(self, queue_name: str, ref: PipelineRef, delay: float = 0) -> QueueMessage:
        now = self.clock.time()
        message = QueueMessage(
            queue_name=queue_name,
            ref=ref,
            enqueued_at=now,
            expires_at=now + self.config.message_ttl_secs,
            visible_at=now + max(0.0, delay),
        )
        async with self._lock:
            self._messages[message.id] = message
            self._order[message.id] = next(self._sequence)
        self._log("DEBUG", f"Enqueued {queue_name} for {ref.index}/{ref.document_id}")
        return message.model_copy()

    async def dequeue(self, queue_names: Sequence[str]) -> QueueMessage | None:
        names = set(queue_names)
        poisoned: list[QueueMessage] = []
        delivered: QueueMessage | None = None
        async with self._lock:
            now = self.clock.time()
            visible = sorted(
                (m for m in self._messages.values() if m.queue_name in names and m.visible_at <= now),
                key=lambda m: (m.visible_at, self._order[m.id]),
            )
            for message in visible:
                reason = self.poison_reason_on_dequeue(message, now)
                if reason is not None:
                    self._move_to_poison(message, reason)
                    poisoned.append(message.model_copy())
                    continue
                message.delivery_count += 1
                message.visible_at = now + self.config.visibility_timeout_secs
                delivered = message.model_copy()
                break
        await self._notify_poisoned(poisoned)
        return delivered

    async def ack(self, message: QueueMessage) -> None:
        async with self._lock:
            self._messages.pop(message.id, None)
            self._order.pop(message.id, None)

    async def nack(self, message: QueueMessage, error: str) -> NackOutcome:
        async with self._lock:
            stored = self._messages.get(message.id)
            if stored is None:
                # Already acked or poisoned
                return NackOutcome.POISONED if self._is_poisoned(message.id) else NackOutcome.REQUEUED
            now = self.clock.time()
            stored.last_error = error
            reason = self.poison_reason_on_nack(stored, now)
            if reason is None:
                stored.visible_at = now + self.config.nack_delay_secs
                return NackOutcome.REQUEUED
            self._move_to_poison(stored, f"{reason}. Last error: {error}")
            return NackOutcome.POISONED

    async def poison(self, message: QueueMessage, reason: str) -> None:
        async with self._lock:
            stored = self._messages.get(message.id)
            if stored is None:
                if self._is_poisoned(message.id):
                    return
                stored = message.model_copy()
            self._move_to_poison(stored, reason)

    async def poison_messages(self, queue_name: str | None = None) -> list[QueueMessage]:
        async with self._lock:
            return [
                m.model_copy()
                for m in self._poisoned
                if queue_name is None or m.queue_name == queue_name
            ]

    async def size(self, queue_name: str | None = None) -> int:
        async with self._lock:
            return sum(1 for m in self._messages.values() if queue_name is None or m.queue_name == queue_name)

    def _is_poisoned(self, message_id: str) -> bool:
        return any(m.id == message_id for m in self._poisoned)

    def _move_to_poison(self, message: QueueMessage, reason: str) -> None:
        self._messages.pop(message.id, None)
        self._order.pop(message.id, None)
        message.poison_reason = reason
        self._poisoned.append(message)
        self._log(
            "ERROR",
            f"Moved message {message.id} to {self.poison_queue_name(message.queue_name)}: {reason}",
        )
