"""Query engine — embed a question, ask the vector store for neighbours.

Usage::

    from roleplay_rag.retrieval.retriever import QueryEngine

    engine  = QueryEngine(gateway, store)
    results = engine.query("How do I handle a price objection?", top_k=5)
    for r in results:
        print(r.score, r.document_name, r.text[:80])
"""

from __future__ import annotations

import logging

from roleplay_rag.errors import DimensionMismatchError
from roleplay_rag.ingestion.embedder import EmbeddingGateway
from roleplay_rag.retrieval.base import VectorStoreBase
from roleplay_rag.retrieval.models import QueryResult

logger = logging.getLogger(__name__)


class QueryEngine:
    """Top-K semantic search over the active vector store.

    No caching and no re-ranking: results come back in the backend's own
    order, so equal scores may be returned in any order.

    Parameters
    ----------
    gateway:
        Embedding gateway used for the query text.
    store:
        The vector store chosen at startup.
    default_top_k:
        Number of results when the caller does not say.
    expected_dimension:
        When set, query vectors of any other length are rejected.
    """

    def __init__(
        self,
        gateway: EmbeddingGateway,
        store: VectorStoreBase,
        *,
        default_top_k: int = 5,
        expected_dimension: int | None = None,
    ) -> None:
        self._gateway = gateway
        self._store = store
        self.default_top_k = default_top_k
        self.expected_dimension = expected_dimension

    def query(self, text: str, top_k: int | None = None) -> list[QueryResult]:
        """Return the chunks most similar to *text*, best first.

        Raises
        ------
        ValueError
            Blank query text or ``top_k < 1``.
        RemoteServiceError
            Propagated unchanged from the embedding gateway or remote store.
        DimensionMismatchError
            Query vector length disagrees with the stored vectors.
        """
        if not text or not text.strip():
            raise ValueError("Query text is required")
        top_k = self.default_top_k if top_k is None else top_k
        if top_k < 1:
            raise ValueError(f"top_k must be >= 1, got {top_k}")

        vector = self._gateway.embed(text)
        if self.expected_dimension is not None and len(vector) != self.expected_dimension:
            raise DimensionMismatchError(expected=self.expected_dimension, actual=len(vector))

        hits = self._store.query(vector, top_k=top_k)
        logger.info("Query returned %d results (top_k=%d)", len(hits), top_k)
        return [QueryResult.from_hit(hit) for hit in hits]
