"""Exception hierarchy for the ingestion and retrieval engine.

Every error carries a human-readable ``message`` plus an optional
``details`` dict so callers (HTTP layer, logs) can report context without
parsing strings.
"""

from __future__ import annotations

from typing import Any


class RagEngineError(Exception):
    """Base class for all engine errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        return self.message


class ParseFailure(RagEngineError):
    """Text could not be extracted from a document; fatal to an ingestion run."""

    def __init__(self, message: str, file_type: str | None = None) -> None:
        super().__init__(message, {"file_type": file_type} if file_type else None)


class RemoteServiceError(RagEngineError):
    """An outbound call (embedding provider, remote vector store) failed.

    Parameters
    ----------
    service:
        Short name of the upstream service, e.g. ``"embedding"``.
    message:
        Upstream error description.
    status_code:
        HTTP status returned by the upstream, when there was one.
    """

    def __init__(self, service: str, message: str, status_code: int | None = None) -> None:
        self.service = service
        self.status_code = status_code
        prefix = f"{service} error"
        if status_code is not None:
            prefix = f"{prefix} ({status_code})"
        super().__init__(f"{prefix}: {message}", {"service": service, "status_code": status_code})


class ConfigurationError(RagEngineError):
    """Selected backend or provider is missing required configuration."""


class NotFoundError(RagEngineError):
    """Operation on an unknown document id."""

    def __init__(self, document_id: str) -> None:
        self.document_id = document_id
        super().__init__(f"Document not found: {document_id}", {"document_id": document_id})


class ValidationError(RagEngineError, ValueError):
    """Rejected input (unsupported file type, file too large, ...)."""


class DocumentBusyError(RagEngineError):
    """An ingestion run for the document is already queued or running."""

    def __init__(self, document_id: str) -> None:
        self.document_id = document_id
        super().__init__(
            f"Document {document_id} is already being processed",
            {"document_id": document_id},
        )


class DimensionMismatchError(RagEngineError, ValueError):
    """Query and stored vectors do not share the same dimensionality."""

    def __init__(self, expected: int, actual: int) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Vector dimension mismatch: expected {expected}, got {actual}",
            {"expected": expected, "actual": actual},
        )
