"""Persistent vector store on top of SQLAlchemy.

Records are stored as JSON rows; similarity is computed in process with
numpy. This keeps the service self-contained for small and medium corpora
without an external vector database.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable, Sequence
from datetime import datetime
from pathlib import Path
from typing import Any, TypeVar

import numpy as np
from sqlalchemy import JSON, DateTime, ForeignKey, Index, Integer, String, delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from kernel_memory.storage.database import SessionProvider
from kernel_memory.storage.models import MemoryFilter, MemoryRecord, matches_any
from kernel_memory.utils.clock import utc_now
from kernel_memory.utils.exceptions import IndexNotFoundError, StoreUnavailableError
from kernel_memory.utils.logging_utils import get_logger

logger = get_logger()

T = TypeVar("T")


class VectorDbBase(DeclarativeBase):
    """Base class for vector store tables."""

    pass


class VectorIndexRow(VectorDbBase):
    """An index and the dimension of its vectors."""

    __tablename__ = "km_vector_indexes"

    name: Mapped[str] = mapped_column(String, primary_key=True)
    dimension: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)


class VectorRecordRow(VectorDbBase):
    """One memory record."""

    __tablename__ = "km_vector_records"

    index_name: Mapped[str] = mapped_column(
        String, ForeignKey("km_vector_indexes.name", ondelete="CASCADE"), primary_key=True
    )
    id: Mapped[str] = mapped_column(String, primary_key=True)
    document_id: Mapped[str | None] = mapped_column(String)
    vector: Mapped[list[float]] = mapped_column(JSON, nullable=False, default=list)
    tags: Mapped[dict[str, list[str]]] = mapped_column(JSON, nullable=False, default=dict)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (Index("idx_km_vector_records_document", "index_name", "document_id"),)

    def to_record(self) -> MemoryRecord:
        return MemoryRecord(
            id=self.id,
            vector=list(self.vector or []),
            tags={k: list(v) for k, v in (self.tags or {}).items()},
            payload=dict(self.payload or {}),
        )


def cosine_similarity(query: Sequence[float], vectors: np.ndarray) -> np.ndarray:
    """Cosine similarity of *query* against each row of *vectors*."""
    q = np.asarray(query, dtype=np.float64)
    if vectors.size == 0:
        return np.zeros(0)
    q_norm = np.linalg.norm(q)
    v_norms = np.linalg.norm(vectors, axis=1)
    denom = v_norms * q_norm
    with np.errstate(divide="ignore", invalid="ignore"):
        scores = np.where(denom > 0, vectors @ q / denom, 0.0)
    return scores


def rank_by_similarity(
    vector: Sequence[float],
    records: list[MemoryRecord],
    min_relevance: float,
    limit: int,
) -> list[tuple[MemoryRecord, float]]:
    """Score, filter and order *records*; ``limit <= 0`` means no limit."""
    candidates = [r for r in records if len(r.vector) == len(vector)]
    if not candidates:
        return []
    matrix = np.asarray([r.vector for r in candidates], dtype=np.float64)
    scores = cosine_similarity(vector, matrix)
    ranked = sorted(
        ((record, float(score)) for record, score in zip(candidates, scores, strict=True)),
        key=lambda pair: pair[1],
        reverse=True,
    )
    ranked = [pair for pair in ranked if pair[1] >= min_relevance]
    return ranked[:limit] if limit > 0 else ranked


class SimpleVectorDb:
    """Vector store persisted with SQLAlchemy (SQLite by default).

    Database work runs in a worker thread, one call at a time per store, so
    searches and upserts do not block the event loop.
    """

    def __init__(self, db_path: str | Path) -> None:
        """Initialize the store and create its tables.

        Args:
            db_path: SQLite file path or SQLAlchemy database URL
        """
        self._db = SessionProvider(db_path)
        VectorDbBase.metadata.create_all(self._db.engine)
        self._lock = asyncio.Lock()

    @property
    def name(self) -> str:
        return "simple_vector_db"

    async def _run(self, func: Callable[..., T], *args: Any) -> T:
        async with self._lock:
            return await asyncio.to_thread(func, *args)

    def _require_index(self, session: Any, index: str) -> VectorIndexRow:
        row = session.get(VectorIndexRow, index)
        if row is None:
            raise IndexNotFoundError(index, backend=self.name)
        return row

    async def create_index(self, index: str, dimension: int) -> None:
        try:
            created = await self._run(self._create_index, index, dimension)
        except SQLAlchemyError as e:
            raise StoreUnavailableError(self.name, "create_index failed", original_error=e) from e
        if created:
            logger.info(f"Created vector index '{index}' (dimension {dimension})", subsystem="VectorDB")

    async def delete_index(self, index: str) -> None:
        await self._run(self._delete_index, index)
        logger.info(f"Deleted vector index '{index}'", subsystem="VectorDB")

    async def get_indexes(self) -> list[str]:
        return await self._run(self._get_indexes)

    async def upsert(self, index: str, record: MemoryRecord) -> str:
        try:
            await self._run(self._upsert, index, record)
        except SQLAlchemyError as e:
            raise StoreUnavailableError(self.name, "upsert failed", original_error=e) from e
        return record.id

    async def get_list(
        self,
        index: str,
        filters: list[MemoryFilter] | None = None,
        limit: int = -1,
    ) -> AsyncIterator[MemoryRecord]:
        records = await self._run(self._load, index, filters)
        if limit > 0:
            records = records[:limit]
        for record in records:
            yield record

    async def get_similar_list(
        self,
        index: str,
        vector: list[float],
        filters: list[MemoryFilter] | None = None,
        min_relevance: float = 0.0,
        limit: int = 1,
    ) -> AsyncIterator[tuple[MemoryRecord, float]]:
        records = await self._run(self._load, index, filters)
        ranked = await asyncio.to_thread(rank_by_similarity, vector, records, min_relevance, limit)
        for pair in ranked:
            yield pair

    async def delete(self, index: str, record: MemoryRecord) -> None:
        await self._run(self._delete, index, record.id)

    def close(self) -> None:
        self._db.dispose()

    # Blocking helpers, run through asyncio.to_thread

    def _create_index(self, index: str, dimension: int) -> bool:
        with self._db.get_session() as session:
            if session.get(VectorIndexRow, index) is not None:
                return False
            session.add(VectorIndexRow(name=index, dimension=dimension, created_at=utc_now()))
            session.commit()
            return True

    def _delete_index(self, index: str) -> None:
        with self._db.get_session() as session:
            self._require_index(session, index)
            session.execute(delete(VectorRecordRow).where(VectorRecordRow.index_name == index))
            session.execute(delete(VectorIndexRow).where(VectorIndexRow.name == index))
            session.commit()

    def _get_indexes(self) -> list[str]:
        with self._db.get_session() as session:
            return sorted(session.scalars(select(VectorIndexRow.name)).all())

    def _upsert(self, index: str, record: MemoryRecord) -> None:
        with self._db.get_session() as session:
            self._require_index(session, index)
            row = session.get(VectorRecordRow, (index, record.id))
            if row is None:
                row = VectorRecordRow(index_name=index, id=record.id)
                session.add(row)
            row.document_id = record.document_id
            row.vector = list(record.vector)
            row.tags = {k: list(v) for k, v in record.tags.items()}
            row.payload = dict(record.payload)
            row.updated_at = utc_now()
            session.commit()

    def _load(self, index: str, filters: list[MemoryFilter] | None) -> list[MemoryRecord]:
        with self._db.get_session() as session:
            self._require_index(session, index)
            rows = session.scalars(
                select(VectorRecordRow).where(VectorRecordRow.index_name == index).order_by(VectorRecordRow.id)
            ).all()
            records = [row.to_record() for row in rows]
        return [r for r in records if matches_any(filters, r.tags)]

    def _delete(self, index: str, record_id: str) -> None:
        with self._db.get_session() as session:
            self._require_index(session, index)
            session.execute(
                delete(VectorRecordRow).where(VectorRecordRow.index_name == index, VectorRecordRow.id == record_id)
            )
            session.commit()
