"""Tests for memory records, tags and filters."""

from kernel_memory.storage.models import (
    MemoryFilter,
    MemoryFilters,
    MemoryRecord,
    ReservedTags,
    add_tag,
    matches_any,
    merge_tags,
    record_id,
)


class TestTags:
    """Test tag collection helpers."""

    def test_add_tag_skips_duplicates(self):
        tags = {}
        add_tag(tags, "user", "alice")
        add_tag(tags, "user", "alice")
        add_tag(tags, "user", "bob")
        assert tags == {"user": ["alice", "bob"]}

    def test_merge_tags_accepts_strings_and_lists(self):
        tags = {"type": ["news"]}
        merge_tags(tags, {"type": "blog", "user": ["alice", "bob"]})
        assert tags == {"type": ["news", "blog"], "user": ["alice", "bob"]}

    def test_reserved_prefix(self):
        assert ReservedTags.is_reserved(ReservedTags.DOCUMENT_ID)
        assert ReservedTags.is_reserved("__custom")
        assert not ReservedTags.is_reserved("user")
        assert all(ReservedTags.is_reserved(name) for name in ReservedTags.ALL)


class TestMemoryRecord:
    """Test record helpers."""

    def test_record_id_is_deterministic(self):
        assert record_id("doc1", "a.txt", 3) == record_id("doc1", "a.txt", 3)
        assert record_id("doc1", "a.txt", 3) != record_id("doc1", "a.txt", 4)

    def test_document_id_and_text(self):
        record = MemoryRecord(id="r", tags={ReservedTags.DOCUMENT_ID: ["doc1"]}, payload={"text": "hello"})
        assert record.document_id == "doc1"
        assert record.text == "hello"
        assert MemoryRecord(id="r").document_id is None


class TestFilters:
    """Test AND within a filter and OR across filters."""

    TAGS = {"user": ["alice"], "type": ["news", "blog"]}

    def test_filter_requires_all_tags(self):
        assert MemoryFilter().by_tag("user", "alice").by_tag("type", "news").matches(self.TAGS)
        assert not MemoryFilter().by_tag("user", "alice").by_tag("type", "email").matches(self.TAGS)

    def test_any_filter_matches(self):
        filters = [MemoryFilters.by_tag("user", "bob"), MemoryFilters.by_tag("type", "blog")]
        assert matches_any(filters, self.TAGS)
        assert not matches_any([MemoryFilters.by_tag("user", "bob")], self.TAGS)

    def test_no_or_empty_filters_match_everything(self):
        assert matches_any(None, self.TAGS)
        assert matches_any([], self.TAGS)
        assert matches_any([MemoryFilter()], self.TAGS)

    def test_by_document(self):
        f = MemoryFilters.by_document("doc1")
        assert f.tags == {ReservedTags.DOCUMENT_ID: ["doc1"]}
        assert not f.is_empty()
