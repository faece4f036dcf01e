"""Wires settings into a ready-to-use engine.

Usage::

    from roleplay_rag.service import build_service

    service = build_service()
    service.manager.upload(data, "playbook.pdf")
    service.query_engine.query("How do I open a cold call?")
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from roleplay_rag.config import Settings, settings as default_settings
from roleplay_rag.ingestion.embedder import EmbeddingGateway, LangChainEmbeddingGateway
from roleplay_rag.ingestion.loader import parse_document
from roleplay_rag.ingestion.pipeline import IngestionPipeline
from roleplay_rag.lifecycle.manager import DocumentLifecycleManager, Parser
from roleplay_rag.lifecycle.queue import IngestionQueue
from roleplay_rag.retrieval.base import VectorStoreBase
from roleplay_rag.retrieval.factory import build_vector_store
from roleplay_rag.retrieval.retriever import QueryEngine
from roleplay_rag.storage.database import create_db_engine, create_session_factory, init_db
from roleplay_rag.storage.repository import ChunkRepository

logger = logging.getLogger(__name__)


@dataclass
class RagService:
    """Every long-lived component of one running engine."""

    settings: Settings
    engine: Engine
    session_factory: sessionmaker[Session]
    gateway: EmbeddingGateway
    store: VectorStoreBase
    pipeline: IngestionPipeline
    queue: IngestionQueue
    manager: DocumentLifecycleManager
    query_engine: QueryEngine

    def shutdown(self, wait: bool = True) -> None:
        self.queue.shutdown(wait=wait)
        self.engine.dispose()


def build_service(
    config: Settings | None = None,
    *,
    gateway: EmbeddingGateway | None = None,
    store: VectorStoreBase | None = None,
    parser: Parser = parse_document,
    recover: bool = True,
) -> RagService:
    """Create the database schema, pick the vector store and assemble the engine.

    Parameters
    ----------
    config:
        Settings to use; defaults to the module-level singleton.
    gateway / store:
        Pre-built collaborators, mostly for tests.  When omitted they are
        built from *config*.
    parser:
        File-to-text function handed to the lifecycle manager.
    recover:
        Mark runs interrupted by a previous process as FAILED.
    """
    config = config or default_settings

    engine = create_db_engine(config.database_url, echo=config.database_echo)
    init_db(engine)
    session_factory = create_session_factory(engine)

    gateway = gateway or LangChainEmbeddingGateway(config.gateway_config())
    store = store or build_vector_store(config, session_factory)

    pipeline = IngestionPipeline(
        gateway,
        store,
        chunk_repository=ChunkRepository(session_factory),
        retry_attempts=config.chunk_retry_attempts,
        retry_initial_wait=config.chunk_retry_initial_wait,
        retry_max_wait=config.chunk_retry_max_wait,
        max_workers=config.ingest_max_workers,
    )
    queue = IngestionQueue(max_workers=config.ingest_queue_workers)
    manager = DocumentLifecycleManager(
        session_factory,
        store,
        pipeline,
        queue,
        upload_dir=config.upload_dir,
        max_file_size=config.max_file_size,
        parser=parser,
        separator=config.default_separator,
    )
    query_engine = QueryEngine(gateway, store, expected_dimension=config.embedding_dimensions)

    if recover:
        manager.recover_interrupted()

    logger.info("RAG engine ready (store=%s)", type(store).__name__)
    return RagService(
        settings=config,
        engine=engine,
        session_factory=session_factory,
        gateway=gateway,
        store=store,
        pipeline=pipeline,
        queue=queue,
        manager=manager,
        query_engine=query_engine,
    )
