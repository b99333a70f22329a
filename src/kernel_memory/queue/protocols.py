"""Queue protocol."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from typing import Protocol, runtime_checkable

from kernel_memory.pipeline.models import PipelineRef
from kernel_memory.queue.models import NackOutcome, QueueMessage


@runtime_checkable
class QueueProtocol(Protocol):
    """At-least-once work queue with delayed redelivery and a poison queue.

    A dequeued message stays hidden for the visibility timeout; if it is
    neither acked nor nacked in that time it is delivered again. Every
    delivery increments ``delivery_count``.
    """

    async def enqueue(self, queue_name: str, ref: PipelineRef, delay: float = 0) -> QueueMessage:
        """Publish a message, visible after *delay* seconds."""
        ...

    async def dequeue(self, queue_names: Sequence[str]) -> QueueMessage | None:
        """Receive the next visible message of any of *queue_names*."""
        ...

    async def ack(self, message: QueueMessage) -> None:
        """Remove a processed message."""
        ...

    async def nack(self, message: QueueMessage, error: str) -> NackOutcome:
        """Schedule a retry, or poison the message when it ran out of retries."""
        ...

    async def poison(self, message: QueueMessage, reason: str) -> None:
        """Move a message to the poison queue of its queue."""
        ...

    async def poison_messages(self, queue_name: str | None = None) -> list[QueueMessage]:
        """List poisoned messages, optionally of one source queue."""
        ...

    async def size(self, queue_name: str | None = None) -> int:
        """Count messages that are not poisoned."""
        ...

    def add_poison_listener(self, listener: Callable[[QueueMessage], Awaitable[None]]) -> None:
        """Register a coroutine called with each message poisoned by ``dequeue``.

        ``dequeue`` poisons visible messages that reached the delivery limit
        or expired instead of handing them out again.
        """
        ...