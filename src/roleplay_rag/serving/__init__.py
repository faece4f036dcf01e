"""
Serving — FastAPI application for document management and retrieval.

Run with ``uvicorn roleplay_rag.serving.app:app``.
"""
