"""
Ingestion — document parsing, chunking, embedding and storage.

This module turns an uploaded file into chunk rows and vectors:
parse (``loader``) → split (``chunker``) → embed (``embedder``) →
upsert into the active vector store (``pipeline``).
"""
