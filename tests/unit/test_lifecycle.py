"""Unit tests for the document lifecycle manager."""

from __future__ import annotations

import threading
import time
from pathlib import Path

import pytest
from sqlalchemy import select

from roleplay_rag.errors import DocumentBusyError, NotFoundError, ParseFailure, ValidationError
from roleplay_rag.ingestion.pipeline import IngestionPipeline
from roleplay_rag.lifecycle.manager import DocumentLifecycleManager
from roleplay_rag.lifecycle.queue import IngestionQueue
from roleplay_rag.retrieval.local_store import LocalBruteForceStore
from roleplay_rag.storage.database import session_scope
from roleplay_rag.storage.models import ChunkRecord, DocumentRecord, DocumentStatus
from roleplay_rag.storage.repository import ChunkRepository

PLAYBOOK = "\n\n".join(
    [
        "Open with a question about the customer's goals.",
        "Listen for the pain points before pitching.",
        "Handle the price objection by restating value.",
        "Summarise the agreed next steps.",
        "Close by confirming the follow-up meeting.",
    ]
).encode()


class GatedParser:
    """Reads the uploaded file as UTF-8; blocks while ``gate`` is cleared."""

    def __init__(self) -> None:
        self.gate = threading.Event()
        self.gate.set()
        self.error: Exception | None = None

    def __call__(self, file_path: str, file_type: str) -> str:
        self.gate.wait(10)
        if self.error is not None:
            raise self.error
        return Path(file_path).read_text(encoding="utf-8")


@pytest.fixture()
def parser() -> GatedParser:
    return GatedParser()


@pytest.fixture()
def make_manager(file_session_factory, gateway, parser, tmp_path):
    queues: list[IngestionQueue] = []

    def factory(store=None) -> DocumentLifecycleManager:
        store = store or LocalBruteForceStore(file_session_factory)
        pipeline = IngestionPipeline(
            gateway, store, chunk_repository=ChunkRepository(file_session_factory), retry_attempts=1
        )
        queue = IngestionQueue(max_workers=1)
        queues.append(queue)
        return DocumentLifecycleManager(
            file_session_factory,
            store,
            pipeline,
            queue,
            upload_dir=tmp_path / "uploads",
            max_file_size=4096,
            parser=parser,
        )

    yield factory
    parser.gate.set()
    for queue in queues:
        queue.shutdown(wait=True)


@pytest.fixture()
def manager(make_manager) -> DocumentLifecycleManager:
    return make_manager()


def _upload(manager, content: bytes = PLAYBOOK, filename: str = "playbook.txt", **kwargs) -> dict:
    kwargs.setdefault("chunk_size", 60)
    kwargs.setdefault("chunk_overlap", 0)
    kwargs.setdefault("auto_process", False)
    return manager.upload(content, filename, **kwargs)


def _wait_for_status(manager, document_id: str, *statuses: str, timeout: float = 5.0) -> dict:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        doc = manager.get(document_id)
        if doc["status"] in statuses:
            return doc
        time.sleep(0.01)
    raise AssertionError(f"document {document_id} never reached {statuses}")


def _chunk_rows(session_factory, document_id: str) -> list[ChunkRecord]:
    with session_scope(session_factory) as session:
        return list(
            session.scalars(
                select(ChunkRecord).where(ChunkRecord.document_id == document_id).order_by(ChunkRecord.chunk_index)
            ).all()
        )


# ── Upload ─────────────────────────────────────────────────────────────


class TestUpload:
    def test_creates_pending_document(self, manager, tmp_path) -> None:
        doc = _upload(manager, description="Discovery call basics")

        assert doc["status"] == "PENDING"
        assert doc["name"] == "playbook.txt"
        assert doc["originalName"] == "playbook.txt"
        assert doc["fileType"] == ".txt"
        assert doc["fileSize"] == len(PLAYBOOK)
        assert doc["description"] == "Discovery call basics"
        assert (tmp_path / "uploads" / f"{doc['id']}.txt").read_bytes() == PLAYBOOK

    def test_display_name(self, manager) -> None:
        assert _upload(manager, name="Sales playbook")["name"] == "Sales playbook"

    def test_extension_is_case_insensitive(self, manager) -> None:
        assert _upload(manager, filename="Deck.PDF")["fileType"] == ".pdf"

    def test_unsupported_type(self, manager, tmp_path) -> None:
        with pytest.raises(ValidationError, match="Unsupported file type"):
            _upload(manager, filename="malware.exe")
        assert not (tmp_path / "uploads").exists()

    def test_file_too_large(self, manager) -> None:
        with pytest.raises(ValidationError, match="too large"):
            _upload(manager, content=b"x" * 5000)

    @pytest.mark.parametrize("size, overlap", [(0, 0), (100, -1)])
    def test_invalid_chunk_settings(self, manager, size: int, overlap: int) -> None:
        with pytest.raises(ValidationError):
            _upload(manager, chunk_size=size, chunk_overlap=overlap)

    def test_auto_process(self, manager) -> None:
        doc = _upload(manager, auto_process=True)
        done = _wait_for_status(manager, doc["id"], "COMPLETED", "FAILED")
        assert done["status"] == "COMPLETED"
        assert done["chunkCount"] == 5


# ── Processing ─────────────────────────────────────────────────────────


class TestProcess:
    def test_success(self, manager, file_session_factory) -> None:
        doc = _upload(manager)

        result = manager.process(doc["id"])

        assert result is not None and result.success
        done = manager.get(doc["id"])
        assert done["status"] == "COMPLETED"
        assert done["chunkCount"] == 5
        assert done["vectorCount"] == 5
        assert done["errorMessage"] is None
        assert done["processedAt"] is not None
        rows = _chunk_rows(file_session_factory, doc["id"])
        assert [r.id for r in rows] == [f"{doc['id']}_chunk_{i}" for i in range(5)]
        assert all(r.embedding is not None for r in rows)

    def test_partial_failure_marks_failed(self, manager, gateway) -> None:
        gateway.fail_on = {"price objection"}
        doc = _upload(manager)

        manager.process(doc["id"])

        done = manager.get(doc["id"])
        assert done["status"] == "FAILED"
        assert done["chunkCount"] == 5
        assert done["vectorCount"] == 4
        assert done["errorMessage"].startswith(f"Chunk {doc['id']}_chunk_2: ")
        assert done["processedAt"] is not None

    def test_failed_chunk_errors_are_joined(self, manager, gateway) -> None:
        gateway.fail_on = {"price objection", "next steps"}
        doc = _upload(manager)
        manager.process(doc["id"])
        assert manager.get(doc["id"])["errorMessage"].count("; ") == 1

    def test_empty_document_fails(self, manager) -> None:
        doc = _upload(manager, content=b"   \n\n  ")

        assert manager.process(doc["id"]) is None

        done = manager.get(doc["id"])
        assert done["status"] == "FAILED"
        assert done["errorMessage"] == "Document is empty or could not be parsed"
        assert done["chunkCount"] == 0
        assert done["processedAt"] is not None

    def test_parse_failure_message_is_stored(self, manager, parser) -> None:
        parser.error = ParseFailure("Document parsing failed: bad xref table")
        doc = _upload(manager)
        manager.process(doc["id"])
        assert manager.get(doc["id"])["errorMessage"] == "Document parsing failed: bad xref table"

    def test_unknown_document_is_skipped(self, manager) -> None:
        assert manager.process("missing") is None

    def test_schedule_unknown_document(self, manager) -> None:
        with pytest.raises(NotFoundError):
            manager.schedule("missing")


class TestReprocess:
    def test_replaces_chunks(self, manager, file_session_factory) -> None:
        doc = _upload(manager)
        manager.schedule(doc["id"]).result(timeout=10)
        assert len(_chunk_rows(file_session_factory, doc["id"])) == 5

        manager.reprocess(doc["id"], chunk_size=100).result(timeout=10)

        done = manager.get(doc["id"])
        assert done["status"] == "COMPLETED"
        assert done["chunkSize"] == 100
        assert done["chunkCount"] == 3
        rows = _chunk_rows(file_session_factory, doc["id"])
        assert [r.chunk_index for r in rows] == [0, 1, 2]
        assert all(r.total_chunks == 3 for r in rows)
        assert manager.statistics()["vectorStore"]["storedVectors"] == 3

    def test_clears_previous_error(self, manager, gateway) -> None:
        gateway.fail_on = {"price objection"}
        doc = _upload(manager)
        manager.process(doc["id"])
        gateway.fail_on = set()

        manager.reprocess(doc["id"]).result(timeout=10)

        done = manager.get(doc["id"])
        assert done["status"] == "COMPLETED"
        assert done["errorMessage"] is None
        assert done["vectorCount"] == 5

    def test_deletes_vectors_first(self, make_manager, memory_store) -> None:
        manager = make_manager(memory_store)
        doc = _upload(manager)
        manager.process(doc["id"])

        manager.reprocess(doc["id"]).result(timeout=10)

        assert memory_store.deleted == [doc["id"]]
        assert len(memory_store.records) == 5

    def test_vector_delete_failure_is_tolerated(self, make_manager, memory_store) -> None:
        manager = make_manager(memory_store)
        memory_store.fail_delete = True
        doc = _upload(manager)

        manager.reprocess(doc["id"]).result(timeout=10)

        assert manager.get(doc["id"])["status"] == "COMPLETED"

    def test_rejected_while_busy(self, manager, parser) -> None:
        parser.gate.clear()
        doc = _upload(manager, auto_process=True)
        _wait_for_status(manager, doc["id"], "PROCESSING")

        with pytest.raises(DocumentBusyError):
            manager.reprocess(doc["id"])

        parser.gate.set()
        assert _wait_for_status(manager, doc["id"], "COMPLETED", "FAILED")["status"] == "COMPLETED"

    def test_rejected_when_row_is_processing(self, manager, file_session_factory) -> None:
        doc = _upload(manager)
        with session_scope(file_session_factory) as session:
            session.get(DocumentRecord, doc["id"]).status = DocumentStatus.PROCESSING

        with pytest.raises(DocumentBusyError):
            manager.reprocess(doc["id"])

    def test_invalid_override(self, manager) -> None:
        doc = _upload(manager)
        with pytest.raises(ValidationError):
            manager.reprocess(doc["id"], chunk_size=0)
        assert manager.get(doc["id"])["chunkSize"] == 60

    def test_unknown_document(self, manager) -> None:
        with pytest.raises(NotFoundError):
            manager.reprocess("missing")


class TestCancelAndRecover:
    def test_cancel_queued_job(self, manager, parser) -> None:
        parser.gate.clear()
        first = _upload(manager, auto_process=True)
        second = _upload(manager, auto_process=True)
        _wait_for_status(manager, first["id"], "PROCESSING")

        assert manager.cancel(second["id"]) is True
        cancelled = manager.get(second["id"])
        assert cancelled["status"] == "FAILED"
        assert "cancelled" in cancelled["errorMessage"]

        parser.gate.set()
        _wait_for_status(manager, first["id"], "COMPLETED")

    def test_cancel_without_job(self, manager) -> None:
        doc = _upload(manager)
        assert manager.cancel(doc["id"]) is False
        assert manager.get(doc["id"])["status"] == "PENDING"

    def test_recover_interrupted(self, manager, file_session_factory) -> None:
        stuck = _upload(manager)
        pending = _upload(manager)
        with session_scope(file_session_factory) as session:
            session.get(DocumentRecord, stuck["id"]).status = DocumentStatus.PROCESSING

        assert manager.recover_interrupted() == 1

        recovered = manager.get(stuck["id"])
        assert recovered["status"] == "FAILED"
        assert "interrupted" in recovered["errorMessage"]
        assert manager.get(pending["id"])["status"] == "PENDING"


# ── Delete / update / reads ────────────────────────────────────────────


class TestDelete:
    def test_removes_everything(self, manager, file_session_factory, tmp_path) -> None:
        doc = _upload(manager)
        manager.process(doc["id"])

        manager.delete(doc["id"])

        with pytest.raises(NotFoundError):
            manager.get(doc["id"])
        assert _chunk_rows(file_session_factory, doc["id"]) == []
        assert not (tmp_path / "uploads" / f"{doc['id']}.txt").exists()

    def test_remote_chunks_cascade(self, make_manager, memory_store, file_session_factory) -> None:
        manager = make_manager(memory_store)
        doc = _upload(manager)
        manager.process(doc["id"])

        manager.delete(doc["id"])

        assert memory_store.records == {}
        assert _chunk_rows(file_session_factory, doc["id"]) == []

    def test_best_effort_cleanup(self, make_manager, memory_store, tmp_path) -> None:
        manager = make_manager(memory_store)
        memory_store.fail_delete = True
        doc = _upload(manager)
        (tmp_path / "uploads" / f"{doc['id']}.txt").unlink()

        manager.delete(doc["id"])

        with pytest.raises(NotFoundError):
            manager.get(doc["id"])

    def test_unknown_document(self, manager) -> None:
        with pytest.raises(NotFoundError):
            manager.delete("missing")

    @pytest.mark.parametrize("backend", ["local", "memory"])
    def test_delete_during_run_leaves_no_vectors(
        self, make_manager, gateway, memory_store, file_session_factory, monkeypatch, backend: str
    ) -> None:
        store = LocalBruteForceStore(file_session_factory) if backend == "local" else memory_store
        manager = make_manager(store)
        reached, release = threading.Event(), threading.Event()
        embed = gateway.embed

        def blocking_embed(text: str) -> list[float]:
            if len(gateway.calls) == 1:
                reached.set()
                release.wait(10)
            return embed(text)

        monkeypatch.setattr(gateway, "embed", blocking_embed)
        doc = _upload(manager)
        job = manager.schedule(doc["id"])
        assert reached.wait(10)

        manager.delete(doc["id"])
        release.set()
        job.result(timeout=10)

        assert _chunk_rows(file_session_factory, doc["id"]) == []
        assert store.query(embed("price objection"), top_k=10) == []
        with pytest.raises(NotFoundError):
            manager.get(doc["id"])


class TestReads:
    def test_update(self, manager) -> None:
        doc = _upload(manager)
        updated = manager.update(doc["id"], name="Renamed", tags=["objections", "pricing"])
        assert updated["name"] == "Renamed"
        assert updated["tags"] == ["objections", "pricing"]
        assert updated["description"] is None

    def test_update_unknown(self, manager) -> None:
        with pytest.raises(NotFoundError):
            manager.update("missing", name="x")

    def test_get_with_chunks(self, manager) -> None:
        doc = _upload(manager)
        manager.process(doc["id"])
        full = manager.get(doc["id"], include_chunks=True)
        assert [c["chunkIndex"] for c in full["chunks"]] == [0, 1, 2, 3, 4]
        assert "hasEmbedding" not in full["chunks"][0]

    def test_list_chunks(self, manager, gateway) -> None:
        gateway.fail_on = {"Summarise"}
        doc = _upload(manager)
        manager.process(doc["id"])

        page = manager.list_chunks(doc["id"], page=2, page_size=2)

        assert page["total"] == 5
        assert page["totalPages"] == 3
        assert [c["chunkIndex"] for c in page["chunks"]] == [2, 3]
        assert [c["hasEmbedding"] for c in page["chunks"]] == [True, False]
        assert page["document"]["chunkCount"] == 5

    def test_list_chunks_unknown(self, manager) -> None:
        with pytest.raises(NotFoundError):
            manager.list_chunks("missing")

    def test_list_documents(self, manager) -> None:
        _upload(manager, name="Pricing objections", filename="pricing.md")
        _upload(manager, name="Discovery questions", filename="discovery.txt")
        processed = _upload(manager, name="Closing", filename="closing.txt")
        manager.process(processed["id"])

        assert manager.list_documents()["total"] == 3
        assert manager.list_documents(page_size=2)["totalPages"] == 2
        assert len(manager.list_documents(page=2, page_size=2)["items"]) == 1
        assert [d["name"] for d in manager.list_documents(file_type=".md")["items"]] == ["Pricing objections"]
        assert [d["name"] for d in manager.list_documents(search="discovery")["items"]] == ["Discovery questions"]
        assert [d["id"] for d in manager.list_documents(status="completed")["items"]] == [processed["id"]]

    def test_list_documents_bad_status(self, manager) -> None:
        with pytest.raises(ValidationError):
            manager.list_documents(status="archived")

    def test_statistics(self, manager) -> None:
        done = _upload(manager)
        manager.process(done["id"])
        _upload(manager, filename="notes.md")

        stats = manager.statistics()

        assert stats["totalDocuments"] == 2
        assert stats["byStatus"] == {"pending": 1, "processing": 0, "completed": 1, "failed": 0}
        assert stats["totalChunks"] == 5
        assert stats["totalVectors"] == 5
        assert sorted((e["fileType"], e["count"]) for e in stats["byFileType"]) == [(".md", 1), (".txt", 1)]
        assert ".pdf" in stats["supportedFileTypes"]
        assert stats["maxFileSize"] == 4096
        assert stats["vectorStore"] == {"backend": "LocalBruteForceStore", "storedVectors": 5}
