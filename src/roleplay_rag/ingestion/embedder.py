"""Embedding gateway — text in, vector out.

The provider client is built from an explicit :class:`GatewayConfig`
rather than module-level credentials.  Clients are cached per config so
repeated calls with the same credentials reuse one connection pool, while
per-model credentials simply produce a second cache entry.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from typing import Any

from langchain_core.embeddings import Embeddings
from pydantic import BaseModel, ConfigDict

from roleplay_rag.errors import ConfigurationError, RemoteServiceError

logger = logging.getLogger(__name__)

SUPPORTED_PROVIDERS = ("openai", "huggingface")


class GatewayConfig(BaseModel):
    """Immutable, hashable description of one embedding endpoint.

    Attributes
    ----------
    provider:
        ``"openai"`` for any OpenAI-compatible HTTP endpoint (OpenAI,
        DashScope compatible mode, vLLM ...) or ``"huggingface"`` for a
        local sentence-transformer.
    model:
        Model identifier understood by the provider.
    api_key:
        Credential for the endpoint (ignored by ``huggingface``).
    base_url:
        Endpoint override; empty means the provider default.
    timeout:
        Per-request timeout in seconds.
    dimensions:
        Optional output dimensionality requested from the provider.
    """

    model_config = ConfigDict(frozen=True)

    provider: str = "openai"
    model: str = "text-embedding-v2"
    api_key: str = ""
    base_url: str = ""
    timeout: float = 30.0
    dimensions: int | None = None


# -- client cache ------------------------------------------------------------

_client_cache: dict[GatewayConfig, Embeddings] = {}
_cache_lock = threading.Lock()


def _build_client(config: GatewayConfig) -> Embeddings:
    if config.provider == "openai":
        from langchain_openai import OpenAIEmbeddings

        if not config.api_key:
            raise ConfigurationError("Embedding provider 'openai' requires an API key")
        kwargs: dict[str, Any] = {
            "model": config.model,
            "api_key": config.api_key,
            "timeout": config.timeout,
            # Let the endpoint tokenize; compatible-mode providers reject token arrays.
            "check_embedding_ctx_length": False,
            "max_retries": 0,
        }
        if config.base_url:
            kwargs["base_url"] = config.base_url
        if config.dimensions:
            kwargs["dimensions"] = config.dimensions
        return OpenAIEmbeddings(**kwargs)

    if config.provider == "huggingface":
        from langchain_huggingface import HuggingFaceEmbeddings

        return HuggingFaceEmbeddings(model_name=config.model)

    raise ConfigurationError(
        f"Unsupported embedding provider {config.provider!r}; expected one of {SUPPORTED_PROVIDERS}"
    )


def get_embedding_client(config: GatewayConfig) -> Embeddings:
    """Return the cached LangChain embeddings client for *config*."""
    with _cache_lock:
        client = _client_cache.get(config)
        if client is None:
            logger.info("Creating %s embedding client for model=%s", config.provider, config.model)
            client = _build_client(config)
            _client_cache[config] = client
        return client


def clear_client_cache() -> None:
    with _cache_lock:
        _client_cache.clear()


# -- gateway -----------------------------------------------------------------


class EmbeddingGateway(ABC):
    """Turns one piece of text into a fixed-length float vector."""

    @abstractmethod
    def embed(self, text: str) -> list[float]:
        """Embed *text*.  Raises :class:`RemoteServiceError` on any failure."""
        ...


class LangChainEmbeddingGateway(EmbeddingGateway):
    """Gateway backed by a LangChain ``Embeddings`` client.

    Parameters
    ----------
    config:
        Endpoint description; the client is looked up in the shared cache.
    client:
        Explicit client, bypassing the cache (useful for tests).
    """

    def __init__(self, config: GatewayConfig, *, client: Embeddings | None = None) -> None:
        self.config = config
        self._client = client

    @property
    def client(self) -> Embeddings:
        if self._client is None:
            self._client = get_embedding_client(self.config)
        return self._client

    def embed(self, text: str) -> list[float]:
        try:
            vector = self.client.embed_query(text)
        except (RemoteServiceError, ConfigurationError):
            raise
        except Exception as exc:
            status = getattr(exc, "status_code", None)
            raise RemoteServiceError("embedding", str(exc), status) from exc

        if not vector:
            raise RemoteServiceError("embedding", "provider returned an empty embedding")
        try:
            return [float(x) for x in vector]
        except (TypeError, ValueError) as exc:
            raise RemoteServiceError("embedding", f"malformed embedding payload: {exc}") from exc
