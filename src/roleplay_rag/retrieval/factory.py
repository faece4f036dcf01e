"""Vector-store backend selection.

The backend is resolved once at startup into a :class:`VectorStoreBackend`
and then built into a concrete store.  This is the only place in the code
base that knows whether remote credentials are configured.
"""

from __future__ import annotations

import enum
import logging
from typing import TYPE_CHECKING

from roleplay_rag.errors import ConfigurationError
from roleplay_rag.retrieval.base import VectorStoreBase

if TYPE_CHECKING:
    from sqlalchemy.orm import Session, sessionmaker

    from roleplay_rag.config import Settings

logger = logging.getLogger(__name__)


class VectorStoreBackend(str, enum.Enum):
    REMOTE = "remote"
    LOCAL = "local"


def resolve_backend(settings: Settings) -> VectorStoreBackend:
    """Pick the backend from configuration.

    ``vector_store_backend="auto"`` selects :attr:`VectorStoreBackend.REMOTE`
    when both the endpoint and the API key are set, otherwise
    :attr:`VectorStoreBackend.LOCAL`.  An explicit ``"remote"`` without
    credentials is a :class:`ConfigurationError`.
    """
    choice = settings.vector_store_backend.strip().lower()
    has_remote = bool(settings.dashvector_endpoint and settings.dashvector_api_key)

    if choice == "auto":
        return VectorStoreBackend.REMOTE if has_remote else VectorStoreBackend.LOCAL
    if choice == VectorStoreBackend.REMOTE.value:
        if not has_remote:
            raise ConfigurationError(
                "vector_store_backend='remote' requires DASHVECTOR_ENDPOINT and DASHVECTOR_API_KEY"
            )
        return VectorStoreBackend.REMOTE
    if choice == VectorStoreBackend.LOCAL.value:
        return VectorStoreBackend.LOCAL
    raise ConfigurationError(
        f"Invalid vector_store_backend {settings.vector_store_backend!r}; expected 'auto', 'remote' or 'local'"
    )


def build_vector_store(
    settings: Settings,
    session_factory: sessionmaker[Session],
    backend: VectorStoreBackend | None = None,
) -> VectorStoreBase:
    """Instantiate the vector store for *backend* (resolved from *settings* when omitted)."""
    backend = backend or resolve_backend(settings)

    if backend is VectorStoreBackend.REMOTE:
        from roleplay_rag.retrieval.remote_store import RemoteANNStore

        logger.info("Using remote ANN vector store (collection=%s)", settings.rag_collection_name)
        return RemoteANNStore(
            endpoint=settings.dashvector_endpoint,
            api_key=settings.dashvector_api_key,
            collection_name=settings.rag_collection_name,
            timeout=settings.vector_store_timeout,
        )

    from roleplay_rag.retrieval.local_store import LocalBruteForceStore

    logger.info("Using local brute-force vector store")
    return LocalBruteForceStore(session_factory)
