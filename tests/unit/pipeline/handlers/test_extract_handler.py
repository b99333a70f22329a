"""Tests for ExtractTextHandler."""

import json

import pytest

from kernel_memory.decoders.registry import DecoderRegistry
from kernel_memory.pipeline.handlers import ExtractTextHandler, StepOutcome
from kernel_memory.pipeline.models import ArtifactType


@pytest.fixture
def handler(artifacts) -> ExtractTextHandler:
    return ExtractTextHandler(artifacts, DecoderRegistry.default())


class TestExtractTextHandler:
    """Test text extraction."""

    @pytest.mark.asyncio
    async def test_extracts_text_files(self, handler, artifacts, upload):
        pipeline = await upload({"notes.txt": "  Hello world.  "})

        result = await handler.invoke(pipeline)

        assert result.outcome == StepOutcome.SUCCESS
        file = result.pipeline.files[0]
        assert file.processed_by == ["extract"]
        assert set(file.generated_files) == {"notes.txt.extract.json", "notes.txt.extract.txt"}
        for generated in file.generated_files.values():
            assert generated.artifact_type == ArtifactType.EXTRACTED_CONTENT
            assert generated.parent_id == "notes.txt"

        text = await artifacts.read_file("idx", "doc1", "notes.txt.extract.txt")
        assert text == b"Hello world."
        content = json.loads(await artifacts.read_file("idx", "doc1", "notes.txt.extract.json"))
        assert content["sections"][0]["content"] == "Hello world."
        assert content["sections"][0]["number"] == 1

    @pytest.mark.asyncio
    async def test_html_markup_is_removed(self, handler, artifacts, upload):
        pipeline = await upload({"page.html": "<html><script>x()</script><body><p>Visible</p></body></html>"})

        await handler.invoke(pipeline)

        assert await artifacts.read_file("idx", "doc1", "page.html.extract.txt") == b"Visible"

    @pytest.mark.asyncio
    async def test_unsupported_file_is_skipped(self, handler, upload):
        pipeline = await upload({"notes.txt": "text", "image.png": b"\x89PNG"})

        result = await handler.invoke(pipeline)

        assert result.outcome == StepOutcome.SUCCESS
        image = result.pipeline.get_file("image.png")
        assert image.is_skipped
        assert "application/octet-stream" in image.skipped_reason
        assert image.generated_files == {}

    @pytest.mark.asyncio
    async def test_undecodable_file_is_skipped(self, handler, upload):
        pipeline = await upload({"notes.txt": "text", "broken.txt": b"\xff\xfe\xfa\xfb"})

        result = await handler.invoke(pipeline)

        assert result.outcome == StepOutcome.SUCCESS
        assert result.pipeline.get_file("broken.txt").is_skipped
        assert not result.pipeline.get_file("notes.txt").is_skipped

    @pytest.mark.asyncio
    async def test_unreadable_pdf_next_to_valid_pdf(self, handler, artifacts, upload, make_pdf):
        pipeline = await upload(
            {
                "report.pdf": make_pdf([["Quarterly report."], ["Revenue grew."]]),
                "broken.pdf": b"",
                "header.pdf": b"%PDF-1.4\n",
            }
        )

        result = await handler.invoke(pipeline)

        assert result.outcome == StepOutcome.SUCCESS
        assert result.pipeline.get_file("broken.pdf").is_skipped
        assert result.pipeline.get_file("header.pdf").is_skipped
        report = result.pipeline.get_file("report.pdf")
        assert not report.is_skipped
        assert report.processed_by == ["extract"]
        content = json.loads(await artifacts.read_file("idx", "doc1", "report.pdf.extract.json"))
        assert [s["number"] for s in content["sections"]] == [1, 2]
        assert "Revenue grew." in content["sections"][1]["content"]

    @pytest.mark.asyncio
    async def test_all_files_skipped_is_fatal(self, handler, upload):
        pipeline = await upload({"image.png": b"\x89PNG", "archive.zip": b"PK"})

        result = await handler.invoke(pipeline)

        assert result.outcome == StepOutcome.FATAL_FAILURE
        assert result.error_type == "UnsupportedFormatError"
        assert "image.png" in result.error_message

    @pytest.mark.asyncio
    async def test_processed_files_are_not_extracted_again(self, handler, artifacts, upload):
        pipeline = await upload({"notes.txt": "text"})
        await handler.invoke(pipeline)

        await handler.invoke(pipeline)

        assert artifacts.write_counts["notes.txt.extract.json"] == 1
