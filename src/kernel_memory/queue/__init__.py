"""Work queue used to dispatch pipeline steps to workers."""

from kernel_memory.queue.in_memory import InMemoryQueue
from kernel_memory.queue.models import NackOutcome, QueueMessage
from kernel_memory.queue.protocols import QueueProtocol
from kernel_memory.queue.sqlalchemy_queue import SQLAlchemyQueue

__all__ = ["InMemoryQueue", "NackOutcome", "QueueMessage", "QueueProtocol", "SQLAlchemyQueue"]
