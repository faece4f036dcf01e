"""Domain models for vector records, query hits and metadata filters."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


def make_chunk_id(document_id: str, chunk_index: int) -> str:
    """Vector / chunk id shared by every backend: ``<documentId>_chunk_<index>``."""
    return f"{document_id}_chunk_{chunk_index}"


class MetadataFilter(BaseModel):
    """Declarative metadata filter for vector-store operations.

    Attributes
    ----------
    field:
        The metadata key to filter on (e.g. ``"documentId"``).
    operator:
        Comparison operator — one of ``eq``, ``ne``, ``gt``, ``gte``,
        ``lt``, ``lte``, ``in``.
    value:
        The value (or list of values for ``in``) to compare against.
    """

    field: str
    operator: str = "eq"
    value: Any = None

    @classmethod
    def equals(cls, field: str, value: Any) -> MetadataFilter:
        return cls(field=field, operator="eq", value=value)

    @classmethod
    def one_of(cls, field: str, values: list[Any]) -> MetadataFilter:
        return cls(field=field, operator="in", value=values)


class VectorMetadata(BaseModel):
    """Metadata echoed next to every stored vector.

    Field aliases match the camelCase keys persisted by the remote
    vector service, so ``model_dump(by_alias=True)`` is the wire form.
    """

    model_config = {"populate_by_name": True}

    document_id: str = Field(alias="documentId")
    document_name: str = Field(default="", alias="documentName")
    chunk_index: int = Field(alias="chunkIndex")
    total_chunks: int = Field(alias="totalChunks")
    file_type: str = Field(default="", alias="fileType")
    start_offset: int = Field(default=0, alias="startOffset")
    end_offset: int = Field(default=0, alias="endOffset")

    def to_fields(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class QueryHit(BaseModel):
    """One raw result returned by a vector-store backend."""

    id: str
    score: float
    text: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)


class QueryResult(BaseModel):
    """A ranked chunk as returned to query callers."""

    id: str
    score: float
    text: str
    document_id: str | None = None
    document_name: str = "unknown"
    chunk_index: int | None = None
    file_type: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_hit(cls, hit: QueryHit) -> QueryResult:
        meta = hit.metadata
        return cls(
            id=hit.id,
            score=hit.score,
            text=hit.text,
            document_id=meta.get("documentId"),
            document_name=meta.get("documentName") or "unknown",
            chunk_index=meta.get("chunkIndex"),
            file_type=meta.get("fileType"),
            metadata=meta,
        )

    def to_response(self) -> dict[str, Any]:
        """camelCase payload used by the HTTP layer."""
        return {
            "id": self.id,
            "score": self.score,
            "text": self.text,
            "documentName": self.document_name,
            "chunkIndex": self.chunk_index,
            "fileType": self.file_type,
        }
