"""
Storage — relational document and chunk records (SQLAlchemy).
"""

from roleplay_rag.storage.database import Base, create_db_engine, create_session_factory, init_db, session_scope
from roleplay_rag.storage.models import ChunkRecord, DocumentRecord, DocumentStatus
from roleplay_rag.storage.repository import ChunkRepository

__all__ = [
    "Base",
    "ChunkRecord",
    "ChunkRepository",
    "DocumentRecord",
    "DocumentStatus",
    "create_db_engine",
    "create_session_factory",
    "init_db",
    "session_scope",
]
