"""Tests for the command line entry point."""
import json
from contextlib import contextmanager

import pytest

from study_ingest import cli
from study_ingest.config import Settings
from study_ingest.context import PipelineContext
from study_ingest.errors import InvalidConfiguration
from study_ingest.retry import RetryPolicy
from study_ingest.search_cache import SearchCache
from study_ingest.text_splitter import TextSplitter

from conftest import TextExtractor


@pytest.fixture
def context(embedder, memory_vector_store, record_store, two_chapter_text):
    return PipelineContext(
        settings=Settings(store_dir=""),
        retry_policy=RetryPolicy(max_retries=0),
        splitter=TextSplitter(chunk_size=300, overlap=50),
        embedding_client=embedder,
        vector_store=memory_vector_store,
        record_store=record_store,
        cache=SearchCache(),
        extractor=TextExtractor(two_chapter_text, page_count=2),
    )


@pytest.fixture
def run(monkeypatch, context):
    """Run the CLI against in-memory collaborators."""
    @contextmanager
    def fake_open_context(settings=None):
        yield context

    monkeypatch.setattr(cli, "open_context", fake_open_context)
    monkeypatch.setattr(cli, "configure_logging", lambda *args, **kwargs: None)
    monkeypatch.setattr(cli.Settings, "from_env", classmethod(lambda cls, dotenv=True: Settings()))
    return cli.main


class TestParser:
    def test_ask(self):
        args = cli.build_parser().parse_args(["ask", "doc1", "What is osmosis?", "--top-k", "3"])
        assert (args.command, args.document_id, args.question, args.top_k) == ("ask", "doc1", "What is osmosis?", 3)

    def test_reindex_full(self):
        args = cli.build_parser().parse_args(["reindex", "doc1", "--full"])
        assert args.full is True

    def test_command_required(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args([])


class TestMain:
    def test_ingest_list_show_ask_delete(self, run, record_store, sample_upload, capsys):
        assert run(["ingest", sample_upload, "--title", "Biology"]) == 0
        out = capsys.readouterr().out
        assert "Processing Summary:" in out
        assert "Status: READY" in out

        document = record_store.list_documents()[0]
        assert document.title == "Biology"

        assert run(["list"]) == 0
        assert document.document_id in capsys.readouterr().out

        assert run(["show", document.document_id]) == 0
        out = capsys.readouterr().out
        payload = json.loads(out[out.index("{"):])
        assert [c["title"] for c in payload["chapters"]] == ["Intro", "Core"]
        assert payload["chunks"] >= 3

        assert run(["ask", document.document_id, "intro5 intro6"]) == 0
        assert "[Page " in capsys.readouterr().out

        assert run(["reindex", document.document_id]) == 0
        assert "Rebuilt" in capsys.readouterr().out

        assert run(["delete", document.document_id]) == 0
        assert record_store.list_documents() == []

    def test_ingest_failure_exit_code(self, run, context, sample_upload):
        context.extractor.error = InvalidConfiguration("bad file")
        assert run(["ingest", sample_upload]) == 1

    def test_missing_file_exit_code(self, run, tmp_path, capsys):
        assert run(["ingest", str(tmp_path / "missing.pdf")]) == 1
        assert "Error:" in capsys.readouterr().err

    def test_unknown_document(self, run, capsys):
        assert run(["ask", "missing", "What is a cell?"]) == 1
        assert "Error:" in capsys.readouterr().err

    def test_configuration_error(self, monkeypatch, capsys):
        def broken(cls, dotenv=True):
            raise InvalidConfiguration("CHUNK_SIZE must be an integer")

        monkeypatch.setattr(cli.Settings, "from_env", classmethod(broken))

        assert cli.main(["list"]) == 2
        assert "Configuration error" in capsys.readouterr().err
