"""
Lifecycle — document records and the background ingestion queue.

Public surface
--------------
- :class:`DocumentLifecycleManager` — upload, (re)process, delete, list, statistics.
- :class:`IngestionQueue` — bounded worker pool with a per-document guard.
"""

from roleplay_rag.lifecycle.manager import DocumentLifecycleManager
from roleplay_rag.lifecycle.queue import IngestionQueue

__all__ = ["DocumentLifecycleManager", "IngestionQueue"]
