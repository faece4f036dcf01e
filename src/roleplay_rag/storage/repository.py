"""Chunk-row persistence used by the ingestion pipeline."""

from __future__ import annotations

import logging
from typing import Any, Callable

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session, sessionmaker

from roleplay_rag.ingestion.chunker import Chunk
from roleplay_rag.retrieval.models import make_chunk_id
from roleplay_rag.storage.database import session_scope
from roleplay_rag.storage.models import ChunkRecord

logger = logging.getLogger(__name__)


class ChunkRepository:
    """Reads and rewrites the ``rag_chunks`` rows of a document.

    Parameters
    ----------
    session_factory:
        Factory producing short-lived sessions.
    """

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def replace_chunks(
        self,
        document_id: str,
        chunks: list[Chunk],
        metadata_for: Callable[[Chunk], dict[str, Any]] | None = None,
    ) -> int:
        """Delete every existing chunk row of *document_id*, then insert *chunks*.

        Rows are written without embeddings; the local vector store fills
        them in one by one as chunks are embedded.
        """
        with session_scope(self._session_factory) as session:
            removed = session.execute(
                delete(ChunkRecord).where(ChunkRecord.document_id == document_id)
            ).rowcount
            session.add_all(
                ChunkRecord(
                    id=make_chunk_id(document_id, chunk.chunk_index),
                    document_id=document_id,
                    chunk_index=chunk.chunk_index,
                    text=chunk.text,
                    start_offset=chunk.start_offset,
                    end_offset=chunk.end_offset,
                    total_chunks=chunk.total_chunks,
                    embedding=None,
                    chunk_metadata=metadata_for(chunk) if metadata_for else {},
                )
                for chunk in chunks
            )
        logger.info(
            "Replaced chunk rows for document %s: removed %s, inserted %d",
            document_id, removed, len(chunks),
        )
        return len(chunks)

    def delete_for_document(self, document_id: str) -> int:
        with session_scope(self._session_factory) as session:
            return session.execute(
                delete(ChunkRecord).where(ChunkRecord.document_id == document_id)
            ).rowcount or 0

    def count_for_document(self, document_id: str) -> int:
        with session_scope(self._session_factory) as session:
            return session.scalar(
                select(func.count()).select_from(ChunkRecord).where(ChunkRecord.document_id == document_id)
            ) or 0
