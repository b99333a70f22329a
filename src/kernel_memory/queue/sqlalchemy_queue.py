"""Durable queue stored in a SQL table.

Several worker processes may share one database: a message is claimed with
a conditional update on its visibility time, so only one worker wins each
delivery.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from pathlib import Path

from sqlalchemy import Boolean, Float, Index, Integer, String, Text, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column

from kernel_memory.config.components import QueueConfig
from kernel_memory.pipeline.models import PipelineRef
from kernel_memory.queue.base import QueueBase
from kernel_memory.queue.models import NackOutcome, QueueMessage, new_message_id
from kernel_memory.storage.database import SessionProvider
from kernel_memory.utils.clock import ClockProtocol
from kernel_memory.utils.exceptions import QueueError


class QueueBaseModel(DeclarativeBase):
    """Base class for queue tables."""

    pass


class QueueMessageRow(QueueBaseModel):
    """One queue message, live or poisoned."""

    __tablename__ = "km_queue_messages"

    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    queue_name: Mapped[str] = mapped_column(String, nullable=False)
    index_name: Mapped[str] = mapped_column(String, nullable=False)
    document_id: Mapped[str] = mapped_column(String, nullable=False)
    execution_id: Mapped[str] = mapped_column(String, nullable=False)
    delivery_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    enqueued_at: Mapped[float] = mapped_column(Float, nullable=False)
    expires_at: Mapped[float] = mapped_column(Float, nullable=False)
    visible_at: Mapped[float] = mapped_column(Float, nullable=False)
    last_error: Mapped[str | None] = mapped_column(Text)
    poisoned: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    poison_reason: Mapped[str | None] = mapped_column(Text)

    __table_args__ = (Index("idx_km_queue_visible", "poisoned", "queue_name", "visible_at"),)

    def to_message(self) -> QueueMessage:
        return QueueMessage(
            id=self.id,
            queue_name=self.queue_name,
            ref=PipelineRef(
                index=self.index_name,
                document_id=self.document_id,
                execution_id=self.execution_id,
            ),
            delivery_count=self.delivery_count,
            enqueued_at=self.enqueued_at,
            expires_at=self.expires_at,
            visible_at=self.visible_at,
            last_error=self.last_error,
            poison_reason=self.poison_reason,
        )


class SQLAlchemyQueue(QueueBase):
    """Queue persisted with SQLAlchemy (SQLite by default).

    Database work runs in a worker thread so that queue calls do not block
    the event loop; the asyncio lock keeps one database call per process in
    flight, as an in-memory SQLite database shares a single connection.
    """

    def __init__(
        self,
        db_path: str | Path,
        config: QueueConfig | None = None,
        clock: ClockProtocol | None = None,
    ) -> None:
        """Initialize the queue and create its table.

        Args:
            db_path: SQLite file path or SQLAlchemy database URL
            config: Queue configuration
            clock: Clock used for visibility and expiry
        """
        super().__init__(config, clock)
        self._db = SessionProvider(db_path)
        QueueBaseModel.metadata.create_all(self._db.engine)
        self._lock = asyncio.Lock()

    async def enqueue(self, queue_name: str, ref: PipelineRef, delay: float = 0) -> QueueMessage:
        async with self._lock:
            try:
                message = await asyncio.to_thread(self._insert, queue_name, ref, delay)
            except SQLAlchemyError as e:
                raise QueueError(f"Failed to enqueue: {e}", queue_name=queue_name) from e
        self._log("DEBUG", f"Enqueued {queue_name} for {ref.index}/{ref.document_id}")
        return message

    async def dequeue(self, queue_names: Sequence[str]) -> QueueMessage | None:
        if not queue_names:
            return None
        async with self._lock:
            try:
                message, poisoned = await asyncio.to_thread(self._claim_next, list(queue_names))
            except SQLAlchemyError as e:
                raise QueueError(f"Failed to dequeue: {e}") from e
        await self._notify_poisoned(poisoned)
        return message

    async def ack(self, message: QueueMessage) -> None:
        async with self._lock:
            await asyncio.to_thread(self._delete, message.id)

    async def nack(self, message: QueueMessage, error: str) -> NackOutcome:
        async with self._lock:
            return await asyncio.to_thread(self._settle_nack, message.id, error)

    async def poison(self, message: QueueMessage, reason: str) -> None:
        async with self._lock:
            await asyncio.to_thread(self._poison_row, message, reason)

    async def poison_messages(self, queue_name: str | None = None) -> list[QueueMessage]:
        async with self._lock:
            return await asyncio.to_thread(self._list_poisoned, queue_name)

    async def size(self, queue_name: str | None = None) -> int:
        async with self._lock:
            return await asyncio.to_thread(self._count_live, queue_name)

    def close(self) -> None:
        self._db.dispose()

    # Blocking helpers, run through asyncio.to_thread

    def _insert(self, queue_name: str, ref: PipelineRef, delay: float) -> QueueMessage:
        now = self.clock.time()
        row = QueueMessageRow(
            id=new_message_id(),
            queue_name=queue_name,
            index_name=ref.index,
            document_id=ref.document_id,
            execution_id=ref.execution_id,
            delivery_count=0,
            enqueued_at=now,
            expires_at=now + self.config.message_ttl_secs,
            visible_at=now + max(0.0, delay),
            poisoned=False,
        )
        with self._db.get_session() as session:
            session.add(row)
            session.commit()
            return row.to_message()

    def _claim_next(self, queue_names: list[str]) -> tuple[QueueMessage | None, list[QueueMessage]]:
        """Claim the next visible message, poisoning exhausted ones on the way.

        A row is claimed with an update conditioned on its visibility time,
        so when another process wins the row the lookup is retried.
        """
        poisoned: list[QueueMessage] = []
        lost_claims = 0
        with self._db.get_session() as session:
            while lost_claims < 5:
                now = self.clock.time()
                row = session.scalars(
                    select(QueueMessageRow)
                    .where(
                        QueueMessageRow.poisoned.is_(False),
                        QueueMessageRow.queue_name.in_(queue_names),
                        QueueMessageRow.visible_at <= now,
                    )
                    .order_by(QueueMessageRow.visible_at, QueueMessageRow.seq)
                    .limit(1)
                    .execution_options(populate_existing=True)
                ).first()
                if row is None:
                    return None, poisoned

                reason = self.poison_reason_on_dequeue(row.to_message(), now)
                if reason is not None:
                    values = {"poisoned": True, "poison_reason": reason}
                else:
                    values = {
                        "visible_at": now + self.config.visibility_timeout_secs,
                        "delivery_count": QueueMessageRow.delivery_count + 1,
                    }
                claimed = session.execute(
                    update(QueueMessageRow)
                    .where(
                        QueueMessageRow.seq == row.seq,
                        QueueMessageRow.visible_at == row.visible_at,
                        QueueMessageRow.poisoned.is_(False),
                    )
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                session.commit()
                if claimed.rowcount != 1:
                    lost_claims += 1
                    continue

                session.refresh(row)
                if reason is None:
                    return row.to_message(), poisoned
                self._log_poisoned(row.id, row.queue_name, reason)
                poisoned.append(row.to_message())
        return None, poisoned

    def _delete(self, message_id: str) -> None:
        with self._db.get_session() as session:
            row = self._get_row(session, message_id)
            if row is not None and not row.poisoned:
                session.delete(row)
                session.commit()

    def _settle_nack(self, message_id: str, error: str) -> NackOutcome:
        with self._db.get_session() as session:
            row = self._get_row(session, message_id)
            if row is None:
                return NackOutcome.REQUEUED
            if row.poisoned:
                return NackOutcome.POISONED
            now = self.clock.time()
            row.last_error = error
            reason = self.poison_reason_on_nack(row.to_message(), now)
            if reason is None:
                row.visible_at = now + self.config.nack_delay_secs
                session.commit()
                return NackOutcome.REQUEUED
            self._mark_poisoned(row, f"{reason}. Last error: {error}")
            session.commit()
            return NackOutcome.POISONED

    def _poison_row(self, message: QueueMessage, reason: str) -> None:
        with self._db.get_session() as session:
            row = self._get_row(session, message.id)
            if row is None:
                row = QueueMessageRow(
                    id=message.id,
                    queue_name=message.queue_name,
                    index_name=message.ref.index,
                    document_id=message.ref.document_id,
                    execution_id=message.ref.execution_id,
                    delivery_count=message.delivery_count,
                    enqueued_at=message.enqueued_at,
                    expires_at=message.expires_at,
                    visible_at=message.visible_at,
                    last_error=message.last_error,
                )
                session.add(row)
            elif row.poisoned:
                return
            self._mark_poisoned(row, reason)
            session.commit()

    def _list_poisoned(self, queue_name: str | None) -> list[QueueMessage]:
        with self._db.get_session() as session:
            stmt = select(QueueMessageRow).where(QueueMessageRow.poisoned.is_(True))
            if queue_name is not None:
                stmt = stmt.where(QueueMessageRow.queue_name == queue_name)
            return [row.to_message() for row in session.scalars(stmt.order_by(QueueMessageRow.seq))]

    def _count_live(self, queue_name: str | None) -> int:
        with self._db.get_session() as session:
            stmt = select(func.count()).select_from(QueueMessageRow).where(QueueMessageRow.poisoned.is_(False))
            if queue_name is not None:
                stmt = stmt.where(QueueMessageRow.queue_name == queue_name)
            return int(session.scalar(stmt) or 0)

    @staticmethod
    def _get_row(session: Session, message_id: str) -> QueueMessageRow | None:
        return session.scalars(select(QueueMessageRow).where(QueueMessageRow.id == message_id)).first()

    def _mark_poisoned(self, row: QueueMessageRow, reason: str) -> None:
        row.poisoned = True
        row.poison_reason = reason
        self._log_poisoned(row.id, row.queue_name, reason)

    def _log_poisoned(self, message_id: str, queue_name: str, reason: str) -> None:
        self._log("ERROR", f"Moved message {message_id} to {self.poison_queue_name(queue_name)}: {reason}")
