"""Shared pytest configuration and fixtures."""

from __future__ import annotations

from collections.abc import Iterator
from typing import Any

import pytest
from sqlalchemy.orm import Session, sessionmaker

from roleplay_rag.errors import RemoteServiceError
from roleplay_rag.ingestion.embedder import EmbeddingGateway
from roleplay_rag.retrieval.base import VectorStoreBase
from roleplay_rag.retrieval.models import QueryHit
from roleplay_rag.storage.database import create_db_engine, create_session_factory, init_db


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: marks tests requiring external services")


# ── Fakes ───────────────────────────────────────────────────────────────

_VOCAB = "abcdefghijklmnopqrstuvwxyz"


class FakeGateway(EmbeddingGateway):
    """Deterministic letter-count embeddings.

    Texts containing any string in ``fail_on`` raise
    :class:`RemoteServiceError`; ``flaky`` maps a text fragment to the
    number of failures before it starts succeeding.
    """

    def __init__(self) -> None:
        self.calls: list[str] = []
        self.fail_on: set[str] = set()
        self.flaky: dict[str, int] = {}

    def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        for marker in self.fail_on:
            if marker in text:
                raise RemoteServiceError("embedding", f"refused {marker!r}", 500)
        for marker, remaining in self.flaky.items():
            if marker in text and remaining > 0:
                self.flaky[marker] = remaining - 1
                raise RemoteServiceError("embedding", "temporarily unavailable", 503)
        lowered = text.lower()
        return [float(lowered.count(ch)) for ch in _VOCAB] + [1.0]


class InMemoryStore(VectorStoreBase):
    """Dict-backed store recording every call."""

    def __init__(self) -> None:
        super().__init__("test-collection")
        self.records: dict[str, dict[str, Any]] = {}
        self.deleted: list[str] = []
        self.fail_delete = False

    def upsert(self, id: str, vector: list[float], text: str, metadata: dict[str, Any]) -> None:
        self.records[id] = {"vector": list(vector), "text": text, "metadata": dict(metadata)}

    def delete_by_document(self, document_id: str) -> None:
        if self.fail_delete:
            raise RemoteServiceError("vector-store", "delete refused", 500)
        self.deleted.append(document_id)
        self.records = {
            k: v for k, v in self.records.items() if v["metadata"].get("documentId") != document_id
        }

    def query(self, vector: list[float], top_k: int = 5) -> list[QueryHit]:
        scored = [
            QueryHit(
                id=k,
                score=sum(a * b for a, b in zip(vector, v["vector"])),
                text=v["text"],
                metadata=v["metadata"],
            )
            for k, v in self.records.items()
        ]
        scored.sort(key=lambda h: h.score, reverse=True)
        return scored[:top_k]

    def health_check(self) -> bool:
        return True

    def count(self) -> int:
        return len(self.records)


# ── Fixtures ────────────────────────────────────────────────────────────


@pytest.fixture()
def session_factory() -> Iterator[sessionmaker[Session]]:
    engine = create_db_engine("sqlite://")
    init_db(engine)
    yield create_session_factory(engine)
    engine.dispose()


@pytest.fixture()
def file_session_factory(tmp_path) -> Iterator[sessionmaker[Session]]:
    """File-backed SQLite for tests where ingestion runs on worker threads."""
    engine = create_db_engine(f"sqlite:///{tmp_path / 'rag.db'}")
    init_db(engine)
    yield create_session_factory(engine)
    engine.dispose()


@pytest.fixture()
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture()
def memory_store() -> InMemoryStore:
    return InMemoryStore()
