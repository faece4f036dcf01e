"""
Retrieval — vector storage backends and similarity queries.

Public surface
--------------
- :class:`QueryEngine` — embed a query and return ranked chunks.
- :class:`VectorStoreBase` — abstract backend.
- :class:`RemoteANNStore` / :class:`LocalBruteForceStore` — the two backends.
- :func:`build_vector_store` — startup-time backend selection.
- :class:`QueryHit`, :class:`QueryResult`, :class:`MetadataFilter` — data models.
"""

from roleplay_rag.retrieval.base import VectorStoreBase
from roleplay_rag.retrieval.factory import VectorStoreBackend, build_vector_store, resolve_backend
from roleplay_rag.retrieval.models import MetadataFilter, QueryHit, QueryResult, make_chunk_id
from roleplay_rag.retrieval.retriever import QueryEngine

__all__ = [
    "LocalBruteForceStore",
    "MetadataFilter",
    "QueryEngine",
    "QueryHit",
    "QueryResult",
    "RemoteANNStore",
    "VectorStoreBackend",
    "VectorStoreBase",
    "build_vector_store",
    "make_chunk_id",
    "resolve_backend",
]


def __getattr__(name: str):  # noqa: ANN001
    """Lazy-import the concrete backends so numpy / requests load on demand."""
    if name == "RemoteANNStore":
        from roleplay_rag.retrieval.remote_store import RemoteANNStore

        return RemoteANNStore
    if name == "LocalBruteForceStore":
        from roleplay_rag.retrieval.local_store import LocalBruteForceStore

        return LocalBruteForceStore
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
