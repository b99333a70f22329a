"""Tests for SaveRecordsHandler and DeleteDocumentHandler."""

import pytest

from kernel_memory.config import EmbeddingConfig
from kernel_memory.pipeline.handlers import (
    DeleteDocumentHandler,
    GenerateEmbeddingsHandler,
    SaveRecordsHandler,
    StepOutcome,
)
from kernel_memory.storage.fakes import InMemoryVectorStore
from kernel_memory.storage.models import MemoryFilters, MemoryRecord, ReservedTags, record_id

TEXT = " ".join(f"w{i}" for i in range(12))


@pytest.fixture
def embedded(artifacts, embedding_generator, partitioned):
    """Pipeline with three embedded partitions of ``a.txt``."""
    handler = GenerateEmbeddingsHandler(artifacts, embedding_generator, EmbeddingConfig(provider="fake"))

    async def _embedded(tags=None):
        pipeline = await partitioned({"a.txt": TEXT}, tags)
        pipeline = (await handler.invoke(pipeline)).pipeline
        pipeline.move_to_next_step()
        return pipeline

    return _embedded


async def records_of(store: InMemoryVectorStore, document_id: str = "doc1") -> list[MemoryRecord]:
    return [r async for r in store.get_list("idx", [MemoryFilters.by_document(document_id)])]


class TestSaveRecordsHandler:
    """Test writing records to the vector stores."""

    @pytest.mark.asyncio
    async def test_saves_one_record_per_partition(self, artifacts, vector_store, embedded):
        pipeline = await embedded(tags={"user": ["alice"]})
        handler = SaveRecordsHandler(artifacts, [vector_store])

        result = await handler.invoke(pipeline)

        assert result.outcome == StepOutcome.SUCCESS
        records = await records_of(vector_store)
        assert [r.id for r in records] == [record_id("doc1", "a.txt", n) for n in range(3)]
        first = next(r for r in records if r.id == record_id("doc1", "a.txt", 0))
        assert first.text == "w0 w1 w2 w3"
        assert len(first.vector) == 16
        assert first.tags["user"] == ["alice"]
        assert first.tags[ReservedTags.DOCUMENT_ID] == ["doc1"]
        assert first.tags[ReservedTags.EXECUTION_ID] == [pipeline.execution_id]
        assert first.tags[ReservedTags.FILE_ID] == ["a.txt"]
        assert first.tags[ReservedTags.FILE_PART] == ["a.txt.partition.0.txt"]
        assert first.tags[ReservedTags.PART_N] == ["0"]
        assert first.tags[ReservedTags.SECT_N] == ["1"]
        assert first.tags[ReservedTags.FILE_TYPE] == ["text/plain"]
        assert first.payload["file"] == "a.txt"
        assert first.payload["vector_provider"] == "fake/dim-16"
        assert vector_store.dimensions["idx"] == 16
        assert result.pipeline.files[0].already_processed_by("save_records")

    @pytest.mark.asyncio
    async def test_replay_overwrites_same_records(self, artifacts, vector_store, embedded):
        pipeline = await embedded()
        handler = SaveRecordsHandler(artifacts, [vector_store])

        await handler.invoke(pipeline)
        await handler.invoke(pipeline)

        assert len(await records_of(vector_store)) == 3
        assert set(vector_store.upsert_calls.values()) == {2}

    @pytest.mark.asyncio
    async def test_writes_to_every_store(self, artifacts, embedded):
        stores = [InMemoryVectorStore("one"), InMemoryVectorStore("two")]

        await SaveRecordsHandler(artifacts, stores).invoke(await embedded())

        for store in stores:
            assert len(await records_of(store)) == 3

    @pytest.mark.asyncio
    async def test_stale_records_of_document_are_removed(self, artifacts, vector_store, embedded):
        await vector_store.create_index("idx", 16)
        stale = MemoryRecord(id=record_id("doc1", "old.txt", 0), vector=[0.0] * 16)
        stale.tags[ReservedTags.DOCUMENT_ID] = ["doc1"]
        other = MemoryRecord(id=record_id("doc2", "b.txt", 0), vector=[0.0] * 16)
        other.tags[ReservedTags.DOCUMENT_ID] = ["doc2"]
        await vector_store.upsert("idx", stale)
        await vector_store.upsert("idx", other)

        await SaveRecordsHandler(artifacts, [vector_store]).invoke(await embedded())

        ids = {r.id for r in await records_of(vector_store)}
        assert stale.id not in ids
        assert len(ids) == 3
        assert len(await records_of(vector_store, "doc2")) == 1

    @pytest.mark.asyncio
    async def test_store_error_propagates(self, artifacts, vector_store, embedded):
        pipeline = await embedded()
        vector_store.fail_next_upserts = 1

        with pytest.raises(ConnectionError):
            await SaveRecordsHandler(artifacts, [vector_store]).invoke(pipeline)


class TestDeleteDocumentHandler:
    """Test document deletion."""

    @pytest.mark.asyncio
    async def test_removes_records_and_files(self, artifacts, vector_store, embedded):
        pipeline = await embedded()
        await SaveRecordsHandler(artifacts, [vector_store]).invoke(pipeline)
        await artifacts.write_file("idx", "doc1", "__pipeline_status.json", b"{}")

        result = await DeleteDocumentHandler(artifacts, [vector_store]).invoke(pipeline)

        assert result.outcome == StepOutcome.SUCCESS
        assert await records_of(vector_store) == []
        assert await artifacts.list_files("idx", "doc1") == ["__pipeline_status.json"]

    @pytest.mark.asyncio
    async def test_missing_index_is_not_an_error(self, artifacts, vector_store, upload):
        pipeline = await upload({"a.txt": "text"})

        result = await DeleteDocumentHandler(artifacts, [vector_store]).invoke(pipeline)

        assert result.outcome == StepOutcome.SUCCESS
