"""Ingestion pipeline — chunk, embed and store one document.

A run never aborts because of a single chunk: each chunk is embedded and
upserted independently (with its own retries) and failures are collected
into the returned :class:`IngestionResult`.  Only document-level problems,
such as empty parsed text, raise.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field
from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from roleplay_rag.errors import DimensionMismatchError, ParseFailure, RemoteServiceError
from roleplay_rag.ingestion.chunker import Chunk, ChunkOptions, chunk_text
from roleplay_rag.ingestion.embedder import EmbeddingGateway
from roleplay_rag.retrieval.base import VectorStoreBase
from roleplay_rag.retrieval.models import VectorMetadata, make_chunk_id

if TYPE_CHECKING:
    from roleplay_rag.storage.repository import ChunkRepository

logger = logging.getLogger(__name__)


class IngestionResult(BaseModel):
    """Outcome of one ingestion run."""

    inserted_count: int = 0
    failed_count: int = 0
    errors: list[str] = Field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.failed_count == 0

    @property
    def chunk_count(self) -> int:
        return self.inserted_count + self.failed_count


class _RunDimension:
    """Pins the vector dimension of the first embedded chunk of a run."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.value: int | None = None

    def check(self, vector: list[float]) -> None:
        with self._lock:
            if self.value is None:
                self.value = len(vector)
            elif len(vector) != self.value:
                raise DimensionMismatchError(expected=self.value, actual=len(vector))


class IngestionPipeline:
    """Chunk → embed → upsert, with per-chunk failure isolation.

    Parameters
    ----------
    gateway:
        Embedding gateway.
    store:
        Active vector store.
    chunk_repository:
        When given, the document's chunk rows are replaced with the fresh
        chunks before embedding starts.
    retry_attempts:
        Attempts per chunk for :class:`RemoteServiceError` (1 = no retry).
    retry_initial_wait / retry_max_wait:
        Exponential back-off bounds in seconds.
    max_workers:
        Chunks processed concurrently; 1 keeps strictly sequential order.
    """

    def __init__(
        self,
        gateway: EmbeddingGateway,
        store: VectorStoreBase,
        *,
        chunk_repository: ChunkRepository | None = None,
        retry_attempts: int = 3,
        retry_initial_wait: float = 0.5,
        retry_max_wait: float = 8.0,
        max_workers: int = 1,
    ) -> None:
        self._gateway = gateway
        self._store = store
        self._chunks = chunk_repository
        self.retry_attempts = max(1, retry_attempts)
        self.retry_initial_wait = retry_initial_wait
        self.retry_max_wait = retry_max_wait
        self.max_workers = max(1, max_workers)

    # -- public API -----------------------------------------------------------

    def run(
        self,
        document_id: str,
        parsed_text: str,
        file_name: str,
        options: ChunkOptions | None = None,
        *,
        document_name: str | None = None,
    ) -> IngestionResult:
        """Ingest *parsed_text* for *document_id*.

        Parameters
        ----------
        document_id:
            Owning document.
        parsed_text:
            Plain text produced by the parser.
        file_name:
            Original file name; its extension is echoed as ``fileType``.
        options:
            Chunking parameters.
        document_name:
            Display name echoed into vector metadata (defaults to *file_name*).

        Raises
        ------
        ParseFailure
            If *parsed_text* is empty or whitespace-only.
        """
        if not parsed_text or not parsed_text.strip():
            raise ParseFailure("Document is empty or could not be parsed")

        options = options or ChunkOptions()
        file_type = Path(file_name).suffix.lower()
        chunks = chunk_text(parsed_text, options)
        logger.info("Document %s: processing %d chunks", document_id, len(chunks))

        def metadata_for(chunk: Chunk) -> dict[str, Any]:
            return VectorMetadata(
                document_id=document_id,
                document_name=document_name or file_name,
                chunk_index=chunk.chunk_index,
                total_chunks=chunk.total_chunks,
                file_type=file_type,
                start_offset=chunk.start_offset,
                end_offset=chunk.end_offset,
            ).to_fields()

        if self._chunks is not None:
            self._chunks.replace_chunks(document_id, chunks, metadata_for)

        dimension = _RunDimension()

        def process(chunk: Chunk) -> str | None:
            chunk_id = make_chunk_id(document_id, chunk.chunk_index)
            try:
                self._store_chunk(chunk_id, chunk, metadata_for(chunk), dimension)
            except Exception as exc:
                logger.error("Failed to process chunk %s: %s", chunk_id, exc)
                return f"Chunk {chunk_id}: {exc}"
            logger.info("Chunk %d/%d stored (%s)", chunk.chunk_index + 1, chunk.total_chunks, chunk_id)
            return None

        if self.max_workers > 1 and len(chunks) > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="embed") as pool:
                outcomes = list(pool.map(process, chunks))
        else:
            outcomes = [process(chunk) for chunk in chunks]

        result = IngestionResult()
        for error in outcomes:
            if error is None:
                result.inserted_count += 1
            else:
                result.failed_count += 1
                result.errors.append(error)

        logger.info(
            "Document %s ingested: inserted=%d failed=%d",
            document_id, result.inserted_count, result.failed_count,
        )
        return result

    # -- internals ------------------------------------------------------------

    def _retrying(self) -> Retrying:
        return Retrying(
            retry=retry_if_exception_type(RemoteServiceError),
            stop=stop_after_attempt(self.retry_attempts),
            wait=wait_exponential(multiplier=self.retry_initial_wait, max=self.retry_max_wait)
            + wait_random(0, self.retry_initial_wait),
            reraise=True,
        )

    def _store_chunk(
        self,
        chunk_id: str,
        chunk: Chunk,
        metadata: dict[str, Any],
        dimension: _RunDimension,
    ) -> None:
        for attempt in self._retrying():
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.warning(
                        "Retrying chunk %s (attempt %d/%d)",
                        chunk_id, attempt.retry_state.attempt_number, self.retry_attempts,
                    )
                vector = self._gateway.embed(chunk.text)
                dimension.check(vector)
                self._store.upsert(chunk_id, vector, chunk.text, metadata)
