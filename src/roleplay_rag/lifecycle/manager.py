"""Document lifecycle — upload, (re)process, delete and report on documents.

This is the entry point used by the admin HTTP layer.  It owns the
``rag_documents`` / ``rag_chunks`` rows and keeps them in step with the
vector store; the two are *not* updated atomically, so every vector / file
clean-up step is best-effort and logged.

State machine per document::

    upload ──► PENDING ──► PROCESSING ──► COMPLETED
                  ▲             │
                  │             └──────► FAILED
                  └── reprocess ◄────────────┘
"""

from __future__ import annotations

import logging
import math
import threading
import uuid
from concurrent.futures import Future
from pathlib import Path
from typing import Any, Callable

from sqlalchemy import delete, func, or_, select
from sqlalchemy.orm import Session, sessionmaker

from roleplay_rag.errors import DocumentBusyError, NotFoundError, ValidationError
from roleplay_rag.ingestion.chunker import DEFAULT_CHUNK_OVERLAP, DEFAULT_CHUNK_SIZE, DEFAULT_SEPARATOR, ChunkOptions
from roleplay_rag.ingestion.loader import SUPPORTED_FILE_TYPES, get_mime_type, is_supported, parse_document
from roleplay_rag.ingestion.pipeline import IngestionPipeline, IngestionResult
from roleplay_rag.lifecycle.queue import IngestionQueue
from roleplay_rag.retrieval.base import VectorStoreBase
from roleplay_rag.storage.database import session_scope, utcnow
from roleplay_rag.storage.models import ChunkRecord, DocumentRecord, DocumentStatus

logger = logging.getLogger(__name__)

Parser = Callable[[str, str], str]


def _page_count(total: int, page_size: int) -> int:
    return math.ceil(total / page_size) if page_size else 0


class DocumentLifecycleManager:
    """Owns document records and drives ingestion runs through the queue.

    Parameters
    ----------
    session_factory:
        Factory for short-lived SQLAlchemy sessions.
    store:
        Active vector store.
    pipeline:
        Ingestion pipeline bound to the same store.
    queue:
        Background queue; guarantees one run per document at a time.
    upload_dir:
        Directory receiving uploaded files as ``<id><ext>``.
    max_file_size:
        Upload limit in bytes.
    parser:
        ``(file_path, file_type) -> text``; defaults to :func:`parse_document`.
    separator:
        Chunk separator used for every run.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        store: VectorStoreBase,
        pipeline: IngestionPipeline,
        queue: IngestionQueue,
        *,
        upload_dir: str | Path,
        max_file_size: int,
        parser: Parser = parse_document,
        separator: str = DEFAULT_SEPARATOR,
    ) -> None:
        self._session_factory = session_factory
        self._store = store
        self._pipeline = pipeline
        self._queue = queue
        self._parser = parser
        self.upload_dir = Path(upload_dir)
        self.max_file_size = max_file_size
        self.separator = separator
        self._submit_lock = threading.Lock()

    # -- upload / processing ----------------------------------------------------

    def upload(
        self,
        content: bytes,
        filename: str,
        *,
        name: str | None = None,
        description: str | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
        auto_process: bool = True,
    ) -> dict[str, Any]:
        """Store an uploaded file and create its PENDING record.

        When *auto_process* is true an ingestion job is queued; this call
        does not wait for it.

        Raises
        ------
        ValidationError
            Unsupported extension, oversized file or invalid chunk settings.
        """
        ext = Path(filename).suffix.lower()
        if not is_supported(filename):
            raise ValidationError(
                f"Unsupported file type. Supported types: {', '.join(SUPPORTED_FILE_TYPES)}"
            )
        if len(content) > self.max_file_size:
            raise ValidationError(f"File too large. Maximum size: {self.max_file_size / 1024 / 1024:g}MB")
        self._validate_chunk_settings(chunk_size, chunk_overlap)

        document_id = uuid.uuid4().hex
        self.upload_dir.mkdir(parents=True, exist_ok=True)
        file_path = self.upload_dir / f"{document_id}{ext}"
        file_path.write_bytes(content)

        with session_scope(self._session_factory) as session:
            document = DocumentRecord(
                id=document_id,
                name=name or filename,
                original_name=filename,
                file_type=ext,
                file_path=str(file_path),
                file_size=len(content),
                mime_type=get_mime_type(ext),
                status=DocumentStatus.PENDING,
                chunk_size=chunk_size,
                chunk_overlap=chunk_overlap,
                description=description,
                tags=[],
            )
            session.add(document)
            session.flush()
            summary = document.to_summary()

        logger.info("Document uploaded: id=%s file=%s size=%d", document_id, filename, len(content))

        if auto_process:
            self.schedule(document_id)
        return summary

    def schedule(self, document_id: str) -> Future[Any]:
        """Queue an ingestion run for an existing document."""
        self._require(document_id)
        return self._queue.submit(document_id, self.process, document_id)

    def process(self, document_id: str) -> IngestionResult | None:
        """Run one ingestion for *document_id* and record the outcome.

        This is the queued job body: every failure is written to the
        document row rather than raised.
        """
        with session_scope(self._session_factory) as session:
            document = session.get(DocumentRecord, document_id)
            if document is None:
                logger.warning("Skipping ingestion: document %s no longer exists", document_id)
                return None
            document.status = DocumentStatus.PROCESSING
            document.error_message = None
            file_path = document.file_path
            file_type = document.file_type
            original_name = document.original_name
            display_name = document.name
            options = ChunkOptions(
                chunk_size=document.chunk_size,
                chunk_overlap=document.chunk_overlap,
                separator=self.separator,
            )

        logger.info("Starting ingestion for document %s (%s)", document_id, original_name)
        try:
            text = self._parser(file_path, file_type)
            result = self._pipeline.run(
                document_id, text, original_name, options, document_name=display_name
            )
        except Exception as exc:
            logger.error("Ingestion failed for document %s: %s", document_id, exc)
            self._record_outcome(
                document_id,
                status=DocumentStatus.FAILED,
                chunk_count=0,
                vector_count=0,
                error_message=str(exc),
            )
            return None

        self._record_outcome(
            document_id,
            status=DocumentStatus.COMPLETED if result.success else DocumentStatus.FAILED,
            chunk_count=result.chunk_count,
            vector_count=result.inserted_count,
            error_message="; ".join(result.errors) or None,
        )
        logger.info(
            "Ingestion finished for document %s: success=%s inserted=%d failed=%d",
            document_id, result.success, result.inserted_count, result.failed_count,
        )
        return result

    def reprocess(
        self,
        document_id: str,
        *,
        chunk_size: int | None = None,
        chunk_overlap: int | None = None,
    ) -> Future[Any]:
        """Reset *document_id* to PENDING and queue a full delete-and-redo run.

        Raises
        ------
        DocumentBusyError
            A run for this document is already queued or in progress.
        """
        with self._submit_lock:
            self._queue.reserve(document_id)
            with session_scope(self._session_factory) as session:
                document = session.get(DocumentRecord, document_id)
                if document is None:
                    raise NotFoundError(document_id)
                if document.status is DocumentStatus.PROCESSING:
                    raise DocumentBusyError(document_id)
                self._validate_chunk_settings(
                    document.chunk_size if chunk_size is None else chunk_size,
                    document.chunk_overlap if chunk_overlap is None else chunk_overlap,
                )
                document.status = DocumentStatus.PENDING
                document.error_message = None
                if chunk_size is not None:
                    document.chunk_size = chunk_size
                if chunk_overlap is not None:
                    document.chunk_overlap = chunk_overlap

            logger.info("Reprocessing document %s", document_id)
            return self._queue.submit(document_id, self._reprocess_job, document_id)

    def _reprocess_job(self, document_id: str) -> IngestionResult | None:
        self._delete_vectors(document_id)
        return self.process(document_id)

    def cancel(self, document_id: str) -> bool:
        """Cancel a queued run that has not started; the document becomes FAILED."""
        self._require(document_id)
        if not self._queue.cancel(document_id):
            return False
        self._record_outcome(
            document_id,
            status=DocumentStatus.FAILED,
            error_message="Ingestion cancelled before it started",
        )
        return True

    def recover_interrupted(self) -> int:
        """Mark documents left PROCESSING by a previous process as FAILED.

        Called once at startup, before any job is queued.
        """
        with session_scope(self._session_factory) as session:
            stuck = session.scalars(
                select(DocumentRecord).where(DocumentRecord.status == DocumentStatus.PROCESSING)
            ).all()
            for document in stuck:
                document.status = DocumentStatus.FAILED
                document.error_message = "Ingestion interrupted by a restart; reprocess to retry"
                document.processed_at = utcnow()
        if stuck:
            logger.warning("Marked %d interrupted ingestion runs as FAILED", len(stuck))
        return len(stuck)

    # -- delete / update ---------------------------------------------------------

    def delete(self, document_id: str) -> None:
        """Remove vectors, file and record.  Vector and file clean-up are best-effort."""
        with session_scope(self._session_factory) as session:
            document = session.get(DocumentRecord, document_id)
            if document is None:
                raise NotFoundError(document_id)
            file_path = document.file_path

        self._queue.cancel(document_id)
        self._delete_vectors(document_id)

        try:
            Path(file_path).unlink()
        except OSError as exc:
            logger.warning("Failed to delete file %s from disk: %s", file_path, exc)

        with session_scope(self._session_factory) as session:
            document = session.get(DocumentRecord, document_id)
            if document is not None:
                session.delete(document)
        logger.info("Document deleted: %s", document_id)

    def update(
        self,
        document_id: str,
        *,
        name: str | None = None,
        description: str | None = None,
        tags: list[str] | None = None,
    ) -> dict[str, Any]:
        with session_scope(self._session_factory) as session:
            document = session.get(DocumentRecord, document_id)
            if document is None:
                raise NotFoundError(document_id)
            if name is not None:
                document.name = name
            if description is not None:
                document.description = description
            if tags is not None:
                document.tags = list(tags)
            session.flush()
            return document.to_summary()

    # -- reads -------------------------------------------------------------------

    def get(self, document_id: str, *, include_chunks: bool = False) -> dict[str, Any]:
        with session_scope(self._session_factory) as session:
            document = session.get(DocumentRecord, document_id)
            if document is None:
                raise NotFoundError(document_id)
            data = document.to_summary()
            if include_chunks:
                data["chunks"] = [c.to_summary(include_embedding_flag=False) for c in document.chunks]
            return data

    def list_documents(
        self,
        *,
        page: int = 1,
        page_size: int = 20,
        status: str | None = None,
        file_type: str | None = None,
        search: str | None = None,
    ) -> dict[str, Any]:
        page, page_size = max(1, page), max(1, page_size)
        conditions = []
        if status:
            try:
                conditions.append(DocumentRecord.status == DocumentStatus(status.upper()))
            except ValueError as exc:
                raise ValidationError(f"Unknown status {status!r}") from exc
        if file_type:
            conditions.append(DocumentRecord.file_type == file_type.lower())
        if search:
            pattern = f"%{search}%"
            conditions.append(
                or_(
                    DocumentRecord.name.ilike(pattern),
                    DocumentRecord.original_name.ilike(pattern),
                    DocumentRecord.description.ilike(pattern),
                )
            )

        with session_scope(self._session_factory) as session:
            total = session.scalar(select(func.count()).select_from(DocumentRecord).where(*conditions)) or 0
            documents = session.scalars(
                select(DocumentRecord)
                .where(*conditions)
                .order_by(DocumentRecord.created_at.desc())
                .offset((page - 1) * page_size)
                .limit(page_size)
            ).all()
            items = [d.to_summary() for d in documents]

        return {
            "items": items,
            "total": total,
            "page": page,
            "pageSize": page_size,
            "totalPages": _page_count(total, page_size),
        }

    def list_chunks(self, document_id: str, *, page: int = 1, page_size: int = 20) -> dict[str, Any]:
        page, page_size = max(1, page), max(1, page_size)
        with session_scope(self._session_factory) as session:
            document = session.get(DocumentRecord, document_id)
            if document is None:
                raise NotFoundError(document_id)
            total = session.scalar(
                select(func.count()).select_from(ChunkRecord).where(ChunkRecord.document_id == document_id)
            ) or 0
            chunks = session.scalars(
                select(ChunkRecord)
                .where(ChunkRecord.document_id == document_id)
                .order_by(ChunkRecord.chunk_index)
                .offset((page - 1) * page_size)
                .limit(page_size)
            ).all()
            return {
                "document": {"id": document.id, "name": document.name, "chunkCount": document.chunk_count},
                "chunks": [c.to_summary() for c in chunks],
                "total": total,
                "page": page,
                "pageSize": page_size,
                "totalPages": _page_count(total, page_size),
            }

    def statistics(self) -> dict[str, Any]:
        with session_scope(self._session_factory) as session:
            by_status = dict(
                session.execute(
                    select(DocumentRecord.status, func.count()).group_by(DocumentRecord.status)
                ).all()
            )
            chunk_sum, vector_sum = session.execute(
                select(
                    func.coalesce(func.sum(DocumentRecord.chunk_count), 0),
                    func.coalesce(func.sum(DocumentRecord.vector_count), 0),
                )
            ).one()
            by_file_type = session.execute(
                select(DocumentRecord.file_type, func.count()).group_by(DocumentRecord.file_type)
            ).all()

        try:
            stored_vectors = self._store.count()
        except Exception as exc:
            logger.warning("Could not read vector count from store: %s", exc)
            stored_vectors = None

        return {
            "totalDocuments": sum(by_status.values()),
            "byStatus": {s.value.lower(): by_status.get(s, 0) for s in DocumentStatus},
            "totalChunks": int(chunk_sum),
            "totalVectors": int(vector_sum),
            "byFileType": [{"fileType": ft, "count": n} for ft, n in by_file_type],
            "supportedFileTypes": list(SUPPORTED_FILE_TYPES),
            "maxFileSize": self.max_file_size,
            "vectorStore": {"backend": type(self._store).__name__, "storedVectors": stored_vectors},
        }

    # -- internals ---------------------------------------------------------------

    def _require(self, document_id: str) -> None:
        with session_scope(self._session_factory) as session:
            if session.get(DocumentRecord, document_id) is None:
                raise NotFoundError(document_id)

    def _delete_vectors(self, document_id: str) -> None:
        try:
            self._store.delete_by_document(document_id)
        except Exception as exc:
            logger.warning("Failed to delete vectors for document %s: %s", document_id, exc)

    def _record_outcome(
        self,
        document_id: str,
        *,
        status: DocumentStatus,
        error_message: str | None,
        chunk_count: int | None = None,
        vector_count: int | None = None,
    ) -> None:
        with session_scope(self._session_factory) as session:
            document = session.get(DocumentRecord, document_id)
            if document is not None:
                document.status = status
                document.error_message = error_message
                if chunk_count is not None:
                    document.chunk_count = chunk_count
                if vector_count is not None:
                    document.vector_count = vector_count
                document.processed_at = utcnow()
                return

        # Deleted mid-run: anything the run wrote after the delete is orphaned.
        logger.warning("Document %s deleted while processing; purging its chunks and vectors", document_id)
        self._delete_vectors(document_id)
        with session_scope(self._session_factory) as session:
            session.execute(delete(ChunkRecord).where(ChunkRecord.document_id == document_id))

    @staticmethod
    def _validate_chunk_settings(chunk_size: int, chunk_overlap: int) -> None:
        if chunk_size < 1:
            raise ValidationError(f"chunkSize must be >= 1, got {chunk_size}")
        if chunk_overlap < 0:
            raise ValidationError(f"chunkOverlap must be >= 0, got {chunk_overlap}")
