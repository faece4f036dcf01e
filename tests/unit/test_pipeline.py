"""Unit tests for the ingestion pipeline."""

from __future__ import annotations

import warnings

import pytest
from tenacity import RetryCallState

from roleplay_rag.errors import ParseFailure
from roleplay_rag.ingestion.chunker import ChunkOptions
from roleplay_rag.ingestion.pipeline import IngestionPipeline
from roleplay_rag.retrieval.local_store import LocalBruteForceStore
from roleplay_rag.storage.database import session_scope
from roleplay_rag.storage.models import DocumentRecord
from roleplay_rag.storage.repository import ChunkRepository

TEXT = "\n\n".join(
    [
        "Open with a question about the customer's goals.",
        "Listen for the pain points before pitching.",
        "Handle the price objection by restating value.",
        "Summarise the agreed next steps.",
        "Close by confirming the follow-up meeting.",
    ]
)
SMALL = ChunkOptions(chunk_size=60, chunk_overlap=0)


def _pipeline(gateway, store, **kwargs) -> IngestionPipeline:
    kwargs.setdefault("retry_initial_wait", 0)
    kwargs.setdefault("retry_max_wait", 0)
    return IngestionPipeline(gateway, store, **kwargs)


class TestIngestionPipeline:
    def test_all_chunks_stored(self, gateway, memory_store) -> None:
        result = _pipeline(gateway, memory_store).run("doc1", TEXT, "playbook.txt", SMALL)

        assert result.success
        assert result.inserted_count == 5
        assert result.failed_count == 0
        assert result.chunk_count == 5
        assert sorted(memory_store.records) == [f"doc1_chunk_{i}" for i in range(5)]

    def test_metadata_is_echoed(self, gateway, memory_store) -> None:
        _pipeline(gateway, memory_store).run("doc1", TEXT, "Playbook.TXT", SMALL, document_name="Sales playbook")

        meta = memory_store.records["doc1_chunk_2"]["metadata"]
        assert meta["documentId"] == "doc1"
        assert meta["documentName"] == "Sales playbook"
        assert meta["chunkIndex"] == 2
        assert meta["totalChunks"] == 5
        assert meta["fileType"] == ".txt"
        assert meta["endOffset"] > meta["startOffset"]

    def test_document_name_defaults_to_file_name(self, gateway, memory_store) -> None:
        _pipeline(gateway, memory_store).run("doc1", TEXT, "playbook.txt", SMALL)
        assert memory_store.records["doc1_chunk_0"]["metadata"]["documentName"] == "playbook.txt"

    def test_partial_failure_is_isolated(self, gateway, memory_store) -> None:
        gateway.fail_on = {"price objection", "next steps"}

        result = _pipeline(gateway, memory_store, retry_attempts=1).run("doc1", TEXT, "p.txt", SMALL)

        assert not result.success
        assert result.inserted_count == 3
        assert result.failed_count == 2
        assert result.inserted_count + result.failed_count == 5
        assert len(result.errors) == 2
        assert result.errors[0].startswith("Chunk doc1_chunk_2: ")
        assert result.errors[1].startswith("Chunk doc1_chunk_3: ")
        assert "doc1_chunk_2" not in memory_store.records

    def test_every_chunk_failing(self, gateway, memory_store) -> None:
        gateway.fail_on = {" "}
        result = _pipeline(gateway, memory_store, retry_attempts=1).run("doc1", TEXT, "p.txt", SMALL)
        assert result.inserted_count == 0
        assert result.failed_count == 5

    def test_transient_failures_are_retried(self, gateway, memory_store) -> None:
        gateway.flaky = {"pain points": 2}

        result = _pipeline(gateway, memory_store, retry_attempts=3).run("doc1", TEXT, "p.txt", SMALL)

        assert result.success
        assert sum("pain points" in call for call in gateway.calls) == 3

    def test_retries_are_bounded(self, gateway, memory_store) -> None:
        gateway.fail_on = {"pain points"}

        result = _pipeline(gateway, memory_store, retry_attempts=2).run("doc1", TEXT, "p.txt", SMALL)

        assert result.failed_count == 1
        assert sum("pain points" in call for call in gateway.calls) == 2

    def test_backoff_is_bounded_and_warning_free(self, gateway, memory_store) -> None:
        pipeline = IngestionPipeline(gateway, memory_store, retry_initial_wait=0.5, retry_max_wait=2.0)

        with warnings.catch_warnings():
            warnings.simplefilter("error")
            retrying = pipeline._retrying()

        state = RetryCallState(retrying, fn=None, args=(), kwargs={})
        for attempt in range(1, 8):
            state.attempt_number = attempt
            assert 0 <= retrying.wait(state) <= 2.5

    @pytest.mark.parametrize("text", ["", "   \n\n  "])
    def test_empty_text_raises(self, gateway, memory_store, text: str) -> None:
        with pytest.raises(ParseFailure):
            _pipeline(gateway, memory_store).run("doc1", text, "p.txt", SMALL)
        assert gateway.calls == []

    def test_dimension_change_within_run_fails_chunk(self, memory_store) -> None:
        class ShrinkingGateway:
            def __init__(self) -> None:
                self.size = 4

            def embed(self, text: str) -> list[float]:
                self.size -= 1
                return [1.0] * (self.size + 1)

        result = _pipeline(ShrinkingGateway(), memory_store, retry_attempts=1).run("doc1", TEXT, "p.txt", SMALL)

        assert result.inserted_count == 1
        assert result.failed_count == 4
        assert "dimension mismatch" in result.errors[0]

    def test_parallel_workers_keep_chunk_order(self, gateway, memory_store) -> None:
        gateway.fail_on = {"Summarise"}
        result = _pipeline(gateway, memory_store, max_workers=4, retry_attempts=1).run("doc1", TEXT, "p.txt", SMALL)

        assert result.inserted_count == 4
        assert len(result.errors) == 1
        assert result.errors[0].startswith("Chunk doc1_chunk_3: ")


class TestChunkRows:
    @pytest.fixture()
    def document(self, session_factory) -> str:
        with session_scope(session_factory) as session:
            session.add(
                DocumentRecord(
                    id="doc1", name="p", original_name="p.txt", file_type=".txt", file_path="/tmp/p.txt", file_size=1
                )
            )
        return "doc1"

    def test_rows_replaced_on_each_run(self, gateway, session_factory, document) -> None:
        store = LocalBruteForceStore(session_factory)
        repo = ChunkRepository(session_factory)
        pipeline = _pipeline(gateway, store, chunk_repository=repo)

        pipeline.run(document, TEXT, "p.txt", SMALL)
        assert repo.count_for_document(document) == 5

        pipeline.run(document, TEXT, "p.txt", ChunkOptions(chunk_size=1000, chunk_overlap=0))
        assert repo.count_for_document(document) == 1

    def test_failed_chunks_keep_rows_without_embedding(self, gateway, session_factory, document) -> None:
        gateway.fail_on = {"Summarise"}
        store = LocalBruteForceStore(session_factory)
        repo = ChunkRepository(session_factory)

        result = _pipeline(gateway, store, chunk_repository=repo, retry_attempts=1).run(document, TEXT, "p.txt", SMALL)

        assert result.failed_count == 1
        assert repo.count_for_document(document) == 5
        assert store.count() == 4
