"""FastAPI application exposing document management and retrieval as a REST API."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from fastapi import APIRouter, Depends, FastAPI, File, Form, Query, Request, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from roleplay_rag.config import settings
from roleplay_rag.errors import (
    ConfigurationError,
    DocumentBusyError,
    NotFoundError,
    RagEngineError,
    RemoteServiceError,
)
from roleplay_rag.ingestion.chunker import DEFAULT_CHUNK_OVERLAP, DEFAULT_CHUNK_SIZE
from roleplay_rag.service import RagService, build_service

logger = logging.getLogger(__name__)


# ── Request schemas ───────────────────────────────────────────────────
class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class QueryRequest(_CamelModel):
    """Similarity search over the ingested chunks."""

    query: str
    top_k: int = Field(default=5, alias="topK")


class UpdateDocumentRequest(_CamelModel):
    name: str | None = None
    description: str | None = None
    tags: list[str] | None = None


class ReprocessRequest(_CamelModel):
    chunk_size: int | None = Field(default=None, alias="chunkSize")
    chunk_overlap: int | None = Field(default=None, alias="chunkOverlap")


def _ok(data: Any = None, message: str | None = None, status_code: int = 200) -> JSONResponse:
    body: dict[str, Any] = {"success": True}
    if message is not None:
        body["message"] = message
    if data is not None:
        body["data"] = data
    return JSONResponse(status_code=status_code, content=body)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


def get_service(request: Request) -> RagService:
    return request.app.state.service


# ── Routes ────────────────────────────────────────────────────────────
router = APIRouter(prefix="/api/admin/rag")


@router.post("/upload", status_code=201)
def upload_document(
    file: UploadFile = File(...),
    name: str | None = Form(None),
    description: str | None = Form(None),
    chunk_size: int = Form(DEFAULT_CHUNK_SIZE, alias="chunkSize"),
    chunk_overlap: int = Form(DEFAULT_CHUNK_OVERLAP, alias="chunkOverlap"),
    auto_process: bool = Form(True, alias="autoProcess"),
    service: RagService = Depends(get_service),
) -> JSONResponse:
    """Store an uploaded file and (optionally) queue its ingestion."""
    content = file.file.read()
    document = service.manager.upload(
        content,
        file.filename or "upload",
        name=name,
        description=description,
        chunk_size=chunk_size,
        chunk_overlap=chunk_overlap,
        auto_process=auto_process,
    )
    message = "Document uploaded and processing started" if auto_process else "Document uploaded successfully"
    return _ok(document, message, status_code=201)


@router.get("/documents")
def list_documents(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100, alias="pageSize"),
    status: str | None = None,
    file_type: str | None = Query(None, alias="fileType"),
    search: str | None = None,
    service: RagService = Depends(get_service),
) -> JSONResponse:
    return _ok(
        service.manager.list_documents(
            page=page, page_size=page_size, status=status, file_type=file_type, search=search
        )
    )


@router.get("/documents/{document_id}")
def get_document(
    document_id: str,
    include_chunks: bool = Query(False, alias="includeChunks"),
    service: RagService = Depends(get_service),
) -> JSONResponse:
    return _ok(service.manager.get(document_id, include_chunks=include_chunks))


@router.get("/documents/{document_id}/chunks")
def list_document_chunks(
    document_id: str,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100, alias="pageSize"),
    service: RagService = Depends(get_service),
) -> JSONResponse:
    return _ok(service.manager.list_chunks(document_id, page=page, page_size=page_size))


@router.put("/documents/{document_id}")
def update_document(
    document_id: str,
    request: UpdateDocumentRequest,
    service: RagService = Depends(get_service),
) -> JSONResponse:
    return _ok(
        service.manager.update(
            document_id, name=request.name, description=request.description, tags=request.tags
        )
    )


@router.post("/documents/{document_id}/reprocess", status_code=202)
def reprocess_document(
    document_id: str,
    request: ReprocessRequest | None = None,
    service: RagService = Depends(get_service),
) -> JSONResponse:
    """Queue a full delete-and-redo ingestion run; 409 while one is pending."""
    request = request or ReprocessRequest()
    service.manager.reprocess(
        document_id, chunk_size=request.chunk_size, chunk_overlap=request.chunk_overlap
    )
    return _ok(message="Document reprocessing started", status_code=202)


@router.delete("/documents/{document_id}")
def delete_document(document_id: str, service: RagService = Depends(get_service)) -> JSONResponse:
    service.manager.delete(document_id)
    return _ok(message="Document deleted successfully")


@router.post("/query")
def query_documents(request: QueryRequest, service: RagService = Depends(get_service)) -> JSONResponse:
    """Return the chunks most similar to the query text."""
    results = service.query_engine.query(request.query, top_k=request.top_k)
    return _ok({"query": request.query, "results": [r.to_response() for r in results]})


@router.get("/statistics")
def get_statistics(service: RagService = Depends(get_service)) -> JSONResponse:
    return _ok(service.manager.statistics())


# ── Application ───────────────────────────────────────────────────────
def create_app(service: RagService | None = None) -> FastAPI:
    """Build the FastAPI app.

    When *service* is omitted the engine is built from ``settings`` at
    startup and shut down with the app.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        owned = service is None
        if owned:
            logging.basicConfig(level=settings.log_level.upper())
            app.state.service = build_service(settings)
        try:
            yield
        finally:
            if owned:
                app.state.service.shutdown(wait=False)

    app = FastAPI(
        title="Roleplay RAG API",
        version="0.1.0",
        description="Document ingestion and semantic retrieval for the sales roleplay platform.",
        lifespan=lifespan,
    )
    if service is not None:
        app.state.service = service

    @app.exception_handler(NotFoundError)
    async def _not_found(request: Request, exc: NotFoundError) -> JSONResponse:
        return _error(404, str(exc))

    @app.exception_handler(DocumentBusyError)
    async def _busy(request: Request, exc: DocumentBusyError) -> JSONResponse:
        return _error(409, str(exc))

    @app.exception_handler(RemoteServiceError)
    async def _upstream(request: Request, exc: RemoteServiceError) -> JSONResponse:
        logger.error("Upstream failure on %s: %s", request.url.path, exc)
        return _error(502, str(exc))

    @app.exception_handler(ConfigurationError)
    async def _misconfigured(request: Request, exc: ConfigurationError) -> JSONResponse:
        logger.error("Configuration error on %s: %s", request.url.path, exc)
        return _error(503, str(exc))

    @app.exception_handler(RagEngineError)
    async def _engine_error(request: Request, exc: RagEngineError) -> JSONResponse:
        return _error(400, str(exc))

    @app.exception_handler(ValueError)
    async def _bad_value(request: Request, exc: ValueError) -> JSONResponse:
        return _error(400, str(exc))

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Liveness probe."""
        return {"status": "ok"}

    app.include_router(router)
    return app


app = create_app()
