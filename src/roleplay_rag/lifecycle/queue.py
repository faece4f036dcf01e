"""Background ingestion queue with a per-document single-flight guard.

Upload and reprocess requests submit a job here instead of spawning a
detached task.  The returned ``Future`` is the in-process handle; callers
outside the process poll the document's status instead.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable

from roleplay_rag.errors import DocumentBusyError

logger = logging.getLogger(__name__)


class IngestionQueue:
    """Bounded worker pool running at most one job per document.

    Parameters
    ----------
    max_workers:
        Number of documents ingested concurrently.
    """

    def __init__(self, max_workers: int = 2) -> None:
        self._executor = ThreadPoolExecutor(max_workers=max(1, max_workers), thread_name_prefix="ingest")
        self._lock = threading.Lock()
        self._active: dict[str, Future[Any]] = {}

    def submit(self, document_id: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future[Any]:
        """Schedule ``fn(*args, **kwargs)`` for *document_id*.

        Raises
        ------
        DocumentBusyError
            A job for the same document is still queued or running.
        """
        with self._lock:
            current = self._active.get(document_id)
            if current is not None and not current.done():
                raise DocumentBusyError(document_id)
            future = self._executor.submit(fn, *args, **kwargs)
            self._active[document_id] = future

        future.add_done_callback(lambda f: self._release(document_id, f))
        logger.info("Queued ingestion job for document %s", document_id)
        return future

    def reserve(self, document_id: str) -> None:
        """Fail fast with :class:`DocumentBusyError` if *document_id* has a live job."""
        if self.is_active(document_id):
            raise DocumentBusyError(document_id)

    def is_active(self, document_id: str) -> bool:
        with self._lock:
            future = self._active.get(document_id)
            return future is not None and not future.done()

    def cancel(self, document_id: str) -> bool:
        """Cancel a job that has not started yet.  Running jobs are never interrupted."""
        with self._lock:
            future = self._active.get(document_id)
        if future is None:
            return False
        cancelled = future.cancel()
        if cancelled:
            logger.info("Cancelled queued ingestion job for document %s", document_id)
        return cancelled

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait, cancel_futures=not wait)

    def _release(self, document_id: str, future: Future[Any]) -> None:
        with self._lock:
            if self._active.get(document_id) is future:
                del self._active[document_id]
        if not future.cancelled() and future.exception() is not None:
            logger.error(
                "Ingestion job for document %s raised: %s", document_id, future.exception()
            )
