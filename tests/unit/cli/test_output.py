"""Tests for CLI output rendering."""

import json

import pytest

from kernel_memory.cli.output import Error, TableData, is_pipeline_summary, set_json_mode, to_json, write

SUMMARY = {
    "index": "default",
    "document_id": "doc1",
    "execution_id": "e1",
    "status": "failed",
    "completed_steps": ["extract"],
    "remaining_steps": ["partition", "gen_embeddings"],
    "failure": {"step": "partition", "error_type": "FatalFailure", "message": "boom"},
    "skipped_files": {"a.bin": "no decoder"},
}


@pytest.fixture(autouse=True)
def rich_mode():
    set_json_mode(False)
    yield
    set_json_mode(False)


class TestJson:
    """Test JSON documents."""

    def test_payload_shapes(self):
        table = TableData(title="Indexes", columns=["Index"], rows=[["a"]])
        assert json.loads(to_json("hi")) == {"message": "hi"}
        assert json.loads(to_json(Error("bad"))) == {"error": "bad"}
        assert json.loads(to_json(table)) == {"table": table}
        assert json.loads(to_json({"processed_messages": 3})) == {"processed_messages": 3}

    def test_write_prints_one_line(self, capsys):
        set_json_mode(True)
        write(SUMMARY)
        out = capsys.readouterr().out
        assert out.count("\n") == 1
        assert json.loads(out)["status"] == "failed"


class TestRich:
    """Test human readable rendering."""

    def test_pipeline_summary(self, capsys):
        assert is_pipeline_summary(SUMMARY)
        assert not is_pipeline_summary({"document_id": "doc1"})

        write(SUMMARY)

        out = capsys.readouterr().out
        assert "default/doc1" in out
        assert "done" in out
        assert "pending" in out
        assert "FatalFailure in partition" in out
        assert "Skipped a.bin" in out

    def test_error_goes_to_stderr(self, capsys):
        write(Error("bad thing"))
        captured = capsys.readouterr()
        assert "bad thing" in captured.err
        assert captured.out == ""
