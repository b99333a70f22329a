"""Tests for the vector stores."""

import asyncio
import threading
from collections.abc import Generator

import numpy as np
import pytest

from kernel_memory.storage.fakes import InMemoryVectorStore
from kernel_memory.storage.models import MemoryFilters, MemoryRecord, ReservedTags
from kernel_memory.storage.simple_vector_db import SimpleVectorDb, cosine_similarity, rank_by_similarity
from kernel_memory.utils.exceptions import IndexNotFoundError


def make_record(record_id: str, vector: list[float], document_id: str = "doc1", **tags: str) -> MemoryRecord:
    record = MemoryRecord(id=record_id, vector=vector, payload={"text": record_id})
    record.tags[ReservedTags.DOCUMENT_ID] = [document_id]
    for key, value in tags.items():
        record.tags[key] = [value]
    return record


@pytest.fixture(params=["simple_vector_db", "memory"])
def store(request, tmp_path) -> Generator:
    if request.param == "memory":
        yield InMemoryVectorStore()
        return
    db = SimpleVectorDb(tmp_path / "vectors.db")
    yield db
    db.close()


async def collect(iterator) -> list:
    return [item async for item in iterator]


class TestVectorStores:
    """Behavior shared by every vector store."""

    @pytest.mark.asyncio
    async def test_indexes(self, store):
        await store.create_index("b", 3)
        await store.create_index("a", 3)
        await store.create_index("a", 3)

        assert await store.get_indexes() == ["a", "b"]

        await store.delete_index("a")
        assert await store.get_indexes() == ["b"]

    @pytest.mark.asyncio
    async def test_missing_index(self, store):
        with pytest.raises(IndexNotFoundError):
            await store.upsert("nope", make_record("r", [1.0]))
        with pytest.raises(IndexNotFoundError):
            await collect(store.get_list("nope"))
        with pytest.raises(IndexNotFoundError):
            await store.delete_index("nope")

    @pytest.mark.asyncio
    async def test_upsert_replaces(self, store):
        await store.create_index("idx", 2)
        await store.upsert("idx", make_record("r1", [1.0, 0.0]))
        await store.upsert("idx", make_record("r1", [0.0, 1.0]))

        records = await collect(store.get_list("idx"))

        assert len(records) == 1
        assert records[0].vector == [0.0, 1.0]
        assert records[0].document_id == "doc1"

    @pytest.mark.asyncio
    async def test_get_list_filters(self, store):
        await store.create_index("idx", 2)
        await store.upsert("idx", make_record("r1", [1.0, 0.0], user="alice"))
        await store.upsert("idx", make_record("r2", [1.0, 0.0], document_id="doc2", user="bob"))
        await store.upsert("idx", make_record("r3", [1.0, 0.0], user="bob"))

        by_document = await collect(store.get_list("idx", [MemoryFilters.by_document("doc1")]))
        assert [r.id for r in by_document] == ["r1", "r3"]

        either = [MemoryFilters.by_tag("user", "alice"), MemoryFilters.by_document("doc2")]
        assert [r.id for r in await collect(store.get_list("idx", either))] == ["r1", "r2"]
        assert len(await collect(store.get_list("idx", limit=2))) == 2

    @pytest.mark.asyncio
    async def test_similarity_search(self, store):
        await store.create_index("idx", 2)
        await store.upsert("idx", make_record("east", [1.0, 0.0]))
        await store.upsert("idx", make_record("north", [0.0, 1.0]))
        await store.upsert("idx", make_record("north-east", [1.0, 1.0]))

        results = await collect(store.get_similar_list("idx", [1.0, 0.1], limit=2))

        assert [r.id for r, _ in results] == ["east", "north-east"]
        assert results[0][1] > results[1][1]

    @pytest.mark.asyncio
    async def test_similarity_search_min_relevance_and_filters(self, store):
        await store.create_index("idx", 2)
        await store.upsert("idx", make_record("east", [1.0, 0.0], user="alice"))
        await store.upsert("idx", make_record("north", [0.0, 1.0], user="bob"))

        relevant = await collect(store.get_similar_list("idx", [1.0, 0.0], min_relevance=0.5, limit=10))
        assert [r.id for r, _ in relevant] == ["east"]

        filtered = await collect(
            store.get_similar_list("idx", [1.0, 0.0], filters=[MemoryFilters.by_tag("user", "bob")], limit=10)
        )
        assert [r.id for r, _ in filtered] == ["north"]

    @pytest.mark.asyncio
    async def test_delete_record(self, store):
        await store.create_index("idx", 2)
        record = make_record("r1", [1.0, 0.0])
        await store.upsert("idx", record)

        await store.delete("idx", record)
        await store.delete("idx", record)

        assert await collect(store.get_list("idx")) == []


class TestSimpleVectorDb:
    """Persistence of the SQL vector store."""

    @pytest.mark.asyncio
    async def test_records_survive_reopen(self, tmp_path):
        first = SimpleVectorDb(tmp_path / "vectors.db")
        await first.create_index("idx", 2)
        await first.upsert("idx", make_record("r1", [0.5, 0.5], user="alice"))
        first.close()

        second = SimpleVectorDb(tmp_path / "vectors.db")
        records = await collect(second.get_list("idx"))
        second.close()

        assert records[0].tags["user"] == ["alice"]
        assert records[0].payload == {"text": "r1"}

    @pytest.mark.asyncio
    async def test_database_calls_leave_the_event_loop_thread(self, tmp_path, monkeypatch):
        db = SimpleVectorDb(tmp_path / "vectors.db")
        await db.create_index("idx", 2)
        threads: list[int] = []
        upsert = db._upsert

        def recording_upsert(index: str, record: MemoryRecord) -> None:
            threads.append(threading.get_ident())
            upsert(index, record)

        monkeypatch.setattr(db, "_upsert", recording_upsert)
        await db.upsert("idx", make_record("r1", [1.0, 0.0]))
        db.close()

        assert threads and threading.get_ident() not in threads

    @pytest.mark.asyncio
    async def test_concurrent_writes_on_in_memory_database(self):
        db = SimpleVectorDb("sqlite:///:memory:")
        await db.create_index("idx", 2)

        await asyncio.gather(*(db.upsert("idx", make_record(f"r{i}", [1.0, float(i)])) for i in range(20)))
        records = await collect(db.get_list("idx"))
        similar = await collect(db.get_similar_list("idx", [1.0, 0.0], limit=1))
        db.close()

        assert len(records) == 20
        assert similar[0][0].id == "r0"


class TestSimilarity:
    """Test the scoring helpers."""

    def test_cosine_similarity(self):
        scores = cosine_similarity([1.0, 0.0], np.asarray([[1.0, 0.0], [0.0, 2.0], [0.0, 0.0]]))
        assert scores.tolist() == pytest.approx([1.0, 0.0, 0.0])

    def test_rank_skips_other_dimensions(self):
        records = [make_record("short", [1.0]), make_record("ok", [1.0, 0.0])]
        assert [r.id for r, _ in rank_by_similarity([1.0, 0.0], records, 0.0, 0)] == ["ok"]
