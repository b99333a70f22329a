"""Delivery rules shared by the queue implementations."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from typing import TypeAlias

from kernel_memory.config.components import QueueConfig
from kernel_memory.queue.models import QueueMessage
from kernel_memory.utils.clock import ClockProtocol, SystemClock
from kernel_memory.utils.logging_utils import log_message

PoisonListener: TypeAlias = Callable[[QueueMessage], Awaitable[None]]


class QueueBase:
    """Holds the configuration and clock, and decides retry versus poison."""

    def __init__(self, config: QueueConfig | None = None, clock: ClockProtocol | None = None) -> None:
        self.config = config or QueueConfig()
        self.config.validate()
        self.clock = clock or SystemClock()
        self._poison_listeners: list[PoisonListener] = []

    def _log(self, level: str, message: str) -> None:
        log_message(level, message, "Queue")

    def poison_queue_name(self, queue_name: str) -> str:
        return f"{queue_name}{self.config.poison_queue_suffix}"

    def poison_reason_on_nack(self, message: QueueMessage, now: float) -> str | None:
        """Reason to poison a nacked message instead of retrying it, if any."""
        if message.delivery_count >= self.config.max_retries_before_poison_queue:
            return (
                f"Delivered {message.delivery_count} times, limit is "
                f"{self.config.max_retries_before_poison_queue}"
            )
        if message.is_expired(now):
            return f"Message expired after {self.config.message_ttl_secs:g}s"
        return None

    def poison_reason_on_dequeue(self, message: QueueMessage, now: float) -> str | None:
        """Reason to poison a visible message instead of delivering it again, if any.

        Covers messages whose consumer died without settling them: they come
        back after the visibility timeout until the delivery limit or the TTL
        is reached.
        """
        return self.poison_reason_on_nack(message, now)

    def add_poison_listener(self, listener: PoisonListener) -> None:
        """Call *listener* for every message poisoned while looking for work."""
        self._poison_listeners.append(listener)

    async def _notify_poisoned(self, messages: Sequence[QueueMessage]) -> None:
        for message in messages:
            for listener in self._poison_listeners:
                try:
                    await listener(message)
                except Exception as e:
                    self._log("ERROR", f"Poison listener failed for message {message.id}: {type(e).__name__}: {e}")
