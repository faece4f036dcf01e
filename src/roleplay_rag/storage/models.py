"""ORM models for uploaded documents and their chunks."""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Enum, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from roleplay_rag.storage.database import Base, TimestampMixin, utcnow


class DocumentStatus(str, enum.Enum):
    """Document ingestion lifecycle states.

    PENDING: uploaded or reset, waiting for an ingestion run
    PROCESSING: an ingestion run is in flight
    COMPLETED: every chunk was embedded and stored
    FAILED: parsing failed, the run threw, or some chunks failed
    """

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class DocumentRecord(Base, TimestampMixin):
    """An uploaded document and the outcome of its last ingestion run."""

    __tablename__ = "rag_documents"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    original_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_type: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    file_path: Mapped[str] = mapped_column(String(1024), nullable=False)
    file_size: Mapped[int] = mapped_column(Integer, nullable=False)
    mime_type: Mapped[str] = mapped_column(String(128), nullable=False, default="application/octet-stream")

    status: Mapped[DocumentStatus] = mapped_column(
        Enum(DocumentStatus, native_enum=False),
        nullable=False,
        default=DocumentStatus.PENDING,
        index=True,
    )
    chunk_size: Mapped[int] = mapped_column(Integer, nullable=False, default=500)
    chunk_overlap: Mapped[int] = mapped_column(Integer, nullable=False, default=50)
    chunk_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    vector_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    tags: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    chunks: Mapped[list[ChunkRecord]] = relationship(
        back_populates="document",
        cascade="all, delete-orphan",
        order_by="ChunkRecord.chunk_index",
    )

    def to_summary(self) -> dict[str, Any]:
        """camelCase view used by the admin API."""
        return {
            "id": self.id,
            "name": self.name,
            "originalName": self.original_name,
            "fileType": self.file_type,
            "fileSize": self.file_size,
            "status": self.status.value,
            "chunkSize": self.chunk_size,
            "chunkOverlap": self.chunk_overlap,
            "chunkCount": self.chunk_count,
            "vectorCount": self.vector_count,
            "errorMessage": self.error_message,
            "description": self.description,
            "tags": list(self.tags or []),
            "processedAt": self.processed_at.isoformat() if self.processed_at else None,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self) -> str:
        return f"<DocumentRecord(id={self.id!r}, name={self.name!r}, status={self.status.value})>"


class ChunkRecord(Base):
    """One chunk of a document; ``embedding`` is filled by the local vector store."""

    __tablename__ = "rag_chunks"
    __table_args__ = (UniqueConstraint("document_id", "chunk_index", name="uq_rag_chunk_document_index"),)

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    document_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("rag_documents.id", ondelete="CASCADE"), nullable=False, index=True
    )
    chunk_index: Mapped[int] = mapped_column(Integer, nullable=False)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    start_offset: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    end_offset: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_chunks: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    embedding: Mapped[list[float] | None] = mapped_column(JSON(none_as_null=True), nullable=True)
    # ``metadata`` is reserved on declarative classes.
    chunk_metadata: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    document: Mapped[DocumentRecord] = relationship(back_populates="chunks")

    def to_summary(self, *, include_embedding_flag: bool = True) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "chunkIndex": self.chunk_index,
            "text": self.text,
            "startOffset": self.start_offset,
            "endOffset": self.end_offset,
            "metadata": dict(self.chunk_metadata or {}),
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
        if include_embedding_flag:
            data["hasEmbedding"] = self.embedding is not None
        return data
