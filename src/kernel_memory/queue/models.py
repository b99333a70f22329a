"""Queue message model."""

from __future__ import annotations

import enum
import uuid

from pydantic import BaseModel, Field

from kernel_memory.pipeline.models import PipelineRef


class NackOutcome(str, enum.Enum):
    """What happened to a nacked message."""

    REQUEUED = "requeued"
    POISONED = "poisoned"


def new_message_id() -> str:
    return uuid.uuid4().hex


class QueueMessage(BaseModel):
    """A work item: run step ``queue_name`` for the referenced pipeline.

    Attributes:
        id: Message id
        queue_name: Queue the message was published to; the step name
        ref: Pipeline execution the work belongs to
        delivery_count: Times the message has been dequeued
        enqueued_at: Publication time (Unix timestamp)
        expires_at: Time after which the message is not retried any more
        visible_at: Time from which the message can be dequeued
        last_error: Error recorded by the last nack
        poison_reason: Why the message was moved to the poison queue
    """

    id: str = Field(default_factory=new_message_id)
    queue_name: str
    ref: PipelineRef
    delivery_count: int = 0
    enqueued_at: float
    expires_at: float
    visible_at: float
    last_error: str | None = None
    poison_reason: str | None = None

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at
