"""Remote ANN implementation of the vector-store abstraction.

Talks to a DashVector-compatible HTTP service::

    POST   {endpoint}/v1/collections/{collection}/docs/upsert
    DELETE {endpoint}/v1/collections/{collection}/docs      {"filter": "..."}
    POST   {endpoint}/v1/collections/{collection}/query
    GET    {endpoint}/v1/collections/{collection}/stats

Every failure (transport error, timeout, non-2xx, non-zero ``code``,
malformed body) is raised as :class:`~roleplay_rag.errors.RemoteServiceError`.
Nothing is retried here; the ingestion pipeline retries per chunk.
"""

from __future__ import annotations

import logging
from typing import Any

import requests

from roleplay_rag.errors import ConfigurationError, RemoteServiceError
from roleplay_rag.retrieval.base import VectorStoreBase
from roleplay_rag.retrieval.models import MetadataFilter, QueryHit

logger = logging.getLogger(__name__)

_SERVICE = "vector-store"

_OP_MAP = {
    "eq": "=",
    "ne": "!=",
    "gt": ">",
    "gte": ">=",
    "lt": "<",
    "lte": "<=",
}


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return repr(value)
    escaped = str(value).replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


def build_filter_expression(filters: list[MetadataFilter]) -> str | None:
    """Convert :class:`MetadataFilter` values into a SQL-like filter string.

    ``MetadataFilter.equals("documentId", "abc")`` → ``documentId = 'abc'``.
    Multiple filters are joined with ``and``; ``in`` becomes a
    parenthesised ``or`` group.
    """
    if not filters:
        return None

    clauses: list[str] = []
    for f in filters:
        if f.operator == "in":
            values = list(f.value or [])
            if not values:
                raise ValueError(f"Filter on {f.field!r} with operator 'in' needs at least one value")
            group = " or ".join(f"{f.field} = {_format_value(v)}" for v in values)
            clauses.append(f"({group})" if len(values) > 1 else group)
            continue
        op = _OP_MAP.get(f.operator)
        if op is None:
            raise ValueError(f"Unsupported filter operator: {f.operator!r}")
        clauses.append(f"{f.field} {op} {_format_value(f.value)}")

    return " and ".join(clauses)


def distance_to_similarity(score: float, metric: str) -> float:
    """Map the service's native score onto "higher = more similar"."""
    if metric == "cosine":
        # The service reports cosine distance (1 - similarity).
        return 1.0 - score
    if metric == "euclidean":
        return 1.0 / (1.0 + score)
    return score


class RemoteANNStore(VectorStoreBase):
    """Vector store delegating storage and search to a remote ANN service.

    Parameters
    ----------
    endpoint:
        Cluster endpoint, e.g. ``https://vrs-cn-xxx.dashvector.aliyuncs.com``.
    api_key:
        Value of the ``dashvector-auth-token`` header.
    collection_name:
        Target collection.
    timeout:
        Per-request timeout in seconds.
    metric:
        Distance metric the collection was created with
        (``cosine`` | ``dotproduct`` | ``euclidean``).
    session:
        Optional pre-built ``requests.Session``.
    """

    def __init__(
        self,
        endpoint: str,
        api_key: str,
        collection_name: str,
        *,
        timeout: float = 30.0,
        metric: str = "cosine",
        session: requests.Session | None = None,
    ) -> None:
        if not endpoint or not api_key:
            raise ConfigurationError("Remote vector store requires both an endpoint and an API key")
        super().__init__(collection_name)
        if not endpoint.startswith(("http://", "https://")):
            endpoint = f"https://{endpoint}"
        self._base_url = f"{endpoint.rstrip('/')}/v1/collections/{collection_name}"
        self._timeout = timeout
        self._metric = metric
        self._session = session or requests.Session()
        self._session.headers.update(
            {"dashvector-auth-token": api_key, "Content-Type": "application/json"}
        )

    # -- HTTP plumbing --------------------------------------------------------

    def _request(self, method: str, path: str, payload: dict[str, Any] | None = None) -> dict[str, Any]:
        url = f"{self._base_url}{path}"
        try:
            resp = self._session.request(method, url, json=payload, timeout=self._timeout)
        except requests.Timeout as exc:
            raise RemoteServiceError(_SERVICE, f"timed out after {self._timeout}s: {method} {path}") from exc
        except requests.RequestException as exc:
            raise RemoteServiceError(_SERVICE, f"network error: {exc}") from exc

        if not 200 <= resp.status_code < 300:
            raise RemoteServiceError(_SERVICE, resp.text[:500] or resp.reason or "", resp.status_code)

        try:
            body = resp.json()
        except ValueError as exc:
            raise RemoteServiceError(_SERVICE, "response body is not valid JSON", resp.status_code) from exc
        if not isinstance(body, dict):
            raise RemoteServiceError(_SERVICE, f"unexpected response payload: {body!r}", resp.status_code)

        code = body.get("code", 0)
        if code not in (0, None):
            raise RemoteServiceError(_SERVICE, f"code={code} message={body.get('message', '')}", resp.status_code)
        return body

    # -- VectorStoreBase overrides --------------------------------------------

    def upsert(self, id: str, vector: list[float], text: str, metadata: dict[str, Any]) -> None:
        self._request(
            "POST",
            "/docs/upsert",
            {"docs": [{"id": id, "vector": list(vector), "fields": {"text": text, **metadata}}]},
        )
        logger.debug("Upserted remote vector %s (dim=%d)", id, len(vector))

    def delete_by_document(self, document_id: str) -> None:
        expression = build_filter_expression([MetadataFilter.equals("documentId", document_id)])
        self._request("DELETE", "/docs", {"filter": expression})
        logger.info("Deleted remote vectors for document %s", document_id)

    def query(self, vector: list[float], top_k: int = 5) -> list[QueryHit]:
        body = self._request(
            "POST",
            "/query",
            {"vector": list(vector), "topk": top_k, "include_vector": False},
        )
        output = body.get("output") or []
        if not isinstance(output, list):
            raise RemoteServiceError(_SERVICE, f"malformed query output: {output!r}")

        hits: list[QueryHit] = []
        for doc in output:
            try:
                fields = dict(doc.get("fields") or {})
                text = fields.pop("text", "")
                hits.append(
                    QueryHit(
                        id=str(doc["id"]),
                        score=distance_to_similarity(float(doc.get("score", 0.0)), self._metric),
                        text=text or "",
                        metadata=fields,
                    )
                )
            except (AttributeError, KeyError, TypeError, ValueError) as exc:
                raise RemoteServiceError(_SERVICE, f"malformed query hit {doc!r}: {exc}") from exc
        return hits[:top_k]

    def health_check(self) -> bool:
        try:
            self._request("GET", "/stats")
            return True
        except RemoteServiceError:
            logger.warning("Remote vector store health-check failed", exc_info=True)
            return False

    def count(self) -> int | None:
        body = self._request("GET", "/stats")
        total = (body.get("output") or {}).get("total_doc_count")
        return int(total) if total is not None else None
