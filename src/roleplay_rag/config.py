"""Shared configuration loaded from environment / .env file."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings

from roleplay_rag.ingestion.embedder import GatewayConfig


class Settings(BaseSettings):
    """Application-wide settings, populated from env vars or .env file."""

    # Relational store
    database_url: str = Field(
        default="sqlite:///./roleplay_rag.db",
        description="SQLAlchemy URL for document / chunk metadata",
    )
    database_echo: bool = False

    # Uploads
    upload_dir: str = "./uploads/rag"
    max_file_size: int = Field(default=52_428_800, description="Maximum upload size in bytes (50MB)")

    # Chunking defaults
    default_chunk_size: int = 500
    default_chunk_overlap: int = 50
    default_separator: str = "\n\n"

    # Embedding
    embedding_provider: str = Field(default="openai", description="'openai' (any compatible endpoint) or 'huggingface'")
    embedding_model: str = "text-embedding-v2"
    embedding_api_key: str = ""
    embedding_base_url: str = Field(
        default="",
        description=(
            "Base URL of an OpenAI-compatible embedding endpoint. Leave empty to use "
            "OpenAI cloud, e.g. 'https://dashscope.aliyuncs.com/compatible-mode/v1'"
        ),
    )
    embedding_dimensions: int | None = None
    embedding_timeout: float = 30.0

    # Vector store
    vector_store_backend: str = Field(default="auto", description="'auto', 'remote' or 'local'")
    dashvector_endpoint: str = ""
    dashvector_api_key: str = ""
    rag_collection_name: str = "bettermeCollection"
    vector_store_timeout: float = 30.0

    # Ingestion
    ingest_queue_workers: int = Field(default=2, description="Documents ingested concurrently")
    ingest_max_workers: int = Field(default=1, description="Chunks embedded concurrently within one run")
    chunk_retry_attempts: int = 3
    chunk_retry_initial_wait: float = 0.5
    chunk_retry_max_wait: float = 8.0

    log_level: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    def gateway_config(self) -> GatewayConfig:
        """Build the embedding :class:`GatewayConfig` from these settings."""
        return GatewayConfig(
            provider=self.embedding_provider,
            model=self.embedding_model,
            api_key=self.embedding_api_key,
            base_url=self.embedding_base_url,
            timeout=self.embedding_timeout,
            dimensions=self.embedding_dimensions,
        )


# Shared instance: import `settings` wherever needed.
settings = Settings()
