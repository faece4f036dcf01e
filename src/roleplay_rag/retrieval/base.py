"""Abstract base class for vector-store backends.

Exactly two backends exist, :class:`~roleplay_rag.retrieval.remote_store.RemoteANNStore`
and :class:`~roleplay_rag.retrieval.local_store.LocalBruteForceStore`,
and the choice between them is made once, in
:func:`~roleplay_rag.retrieval.factory.build_vector_store`.  Business
logic only ever sees this interface.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from roleplay_rag.retrieval.models import QueryHit


class VectorStoreBase(ABC):
    """Backend-agnostic vector-store interface.

    Parameters
    ----------
    collection_name:
        Logical name of the collection / table the vectors live in.
    """

    def __init__(self, collection_name: str) -> None:
        self.collection_name = collection_name

    # -- required overrides ---------------------------------------------------

    @abstractmethod
    def upsert(
        self,
        id: str,
        vector: list[float],
        text: str,
        metadata: dict[str, Any],
    ) -> None:
        """Insert or overwrite one vector.

        Parameters
        ----------
        id:
            ``<documentId>_chunk_<chunkIndex>``.
        vector:
            Embedding of *text*.
        text:
            Chunk text, returned verbatim by :meth:`query`.
        metadata:
            camelCase metadata (``documentId``, ``chunkIndex``,
            ``totalChunks``, ``fileType``, offsets ...).
        """
        ...

    @abstractmethod
    def delete_by_document(self, document_id: str) -> None:
        """Remove every vector belonging to *document_id*."""
        ...

    @abstractmethod
    def query(self, vector: list[float], top_k: int = 5) -> list[QueryHit]:
        """Return the *top_k* stored vectors most similar to *vector*.

        Results are ordered by descending ``score``; ties keep the
        backend's native order.
        """
        ...

    @abstractmethod
    def health_check(self) -> bool:
        """Return ``True`` when the backend is reachable and ready."""
        ...

    # -- optional overrides ---------------------------------------------------

    def count(self) -> int | None:
        """Number of stored vectors, or ``None`` when the backend cannot tell."""
        return None
