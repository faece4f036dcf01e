"""Brute-force vector store on top of the relational chunk table.

Vectors live in ``rag_chunks.embedding``; a query loads every embedded
chunk and ranks them by cosine similarity.  O(n) per query, which is fine
for the admin-sized corpora this backend is meant for.
"""

from __future__ import annotations

import logging
from typing import Any

import numpy as np
from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session, sessionmaker

from roleplay_rag.errors import DimensionMismatchError
from roleplay_rag.retrieval.base import VectorStoreBase
from roleplay_rag.retrieval.models import QueryHit, VectorMetadata
from roleplay_rag.storage.database import session_scope
from roleplay_rag.storage.models import ChunkRecord, DocumentRecord

logger = logging.getLogger(__name__)


def cosine_similarity(a: Any, b: Any) -> float:
    """Cosine similarity of two vectors, clamped to ``[-1, 1]``.

    A zero-magnitude vector on either side scores exactly ``0.0``.
    """
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape:
        raise DimensionMismatchError(expected=va.size, actual=vb.size)

    norm_a = np.linalg.norm(va)
    norm_b = np.linalg.norm(vb)
    if norm_a == 0 or norm_b == 0:
        return 0.0

    score = float(np.dot(va, vb) / (norm_a * norm_b))
    return max(-1.0, min(1.0, score))


class LocalBruteForceStore(VectorStoreBase):
    """Vector store persisting embeddings in the chunk rows.

    Parameters
    ----------
    session_factory:
        Factory for short-lived SQLAlchemy sessions.
    collection_name:
        Informational only; the table is fixed.
    """

    def __init__(self, session_factory: sessionmaker[Session], collection_name: str = "rag_chunks") -> None:
        super().__init__(collection_name)
        self._session_factory = session_factory

    # -- VectorStoreBase overrides --------------------------------------------

    def upsert(self, id: str, vector: list[float], text: str, metadata: dict[str, Any]) -> None:
        meta = VectorMetadata.model_validate(metadata)
        fields = {**metadata, **meta.to_fields()}

        # One transaction per chunk: readers see the old vector or the new one.
        with session_scope(self._session_factory) as session:
            row = session.scalar(
                select(ChunkRecord).where(
                    ChunkRecord.document_id == meta.document_id,
                    ChunkRecord.chunk_index == meta.chunk_index,
                )
            )
            if row is None:
                if session.get(DocumentRecord, meta.document_id) is None:
                    logger.warning("Skipping vector %s: document %s no longer exists", id, meta.document_id)
                    return
                row = ChunkRecord(id=id, document_id=meta.document_id, chunk_index=meta.chunk_index)
                session.add(row)
            row.text = text
            row.start_offset = meta.start_offset
            row.end_offset = meta.end_offset
            row.total_chunks = meta.total_chunks
            row.embedding = [float(x) for x in vector]
            row.chunk_metadata = fields
        logger.debug("Stored local vector %s (dim=%d)", id, len(vector))

    def delete_by_document(self, document_id: str) -> None:
        with session_scope(self._session_factory) as session:
            removed = session.execute(
                delete(ChunkRecord).where(ChunkRecord.document_id == document_id)
            ).rowcount
        logger.info("Deleted %s local chunk rows for document %s", removed, document_id)

    def query(self, vector: list[float], top_k: int = 5) -> list[QueryHit]:
        with session_scope(self._session_factory) as session:
            rows = session.execute(
                select(ChunkRecord.id, ChunkRecord.text, ChunkRecord.embedding, ChunkRecord.chunk_metadata)
                .where(ChunkRecord.embedding.is_not(None))
            ).all()

        query_vec = np.asarray(vector, dtype=np.float64)
        hits: list[QueryHit] = []
        for row_id, text, embedding, meta in rows:
            # JSON null can still come back as None on some dialects.
            if embedding is None:
                continue
            if len(embedding) != query_vec.size:
                raise DimensionMismatchError(expected=len(embedding), actual=query_vec.size)
            hits.append(
                QueryHit(
                    id=row_id,
                    score=cosine_similarity(query_vec, embedding),
                    text=text,
                    metadata=dict(meta or {}),
                )
            )

        hits.sort(key=lambda h: h.score, reverse=True)
        logger.info("Local query scanned %d vectors, returning top %d", len(hits), min(top_k, len(hits)))
        return hits[:top_k]

    def health_check(self) -> bool:
        try:
            with session_scope(self._session_factory) as session:
                session.execute(select(1))
            return True
        except Exception:
            logger.warning("Local vector store health-check failed", exc_info=True)
            return False

    def count(self) -> int:
        with session_scope(self._session_factory) as session:
            return session.scalar(
                select(func.count()).select_from(ChunkRecord).where(ChunkRecord.embedding.is_not(None))
            ) or 0
