"""Document parsing — thin wrappers around LangChain document loaders.

Turns an uploaded file into plain text for the chunker.  Any loader
failure is re-raised as :class:`~roleplay_rag.errors.ParseFailure`, which
aborts the ingestion run.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Callable

from langchain_community.document_loaders import (
    Docx2txtLoader,
    PyPDFLoader,
    TextLoader,
    UnstructuredExcelLoader,
    UnstructuredPowerPointLoader,
)

from roleplay_rag.errors import ParseFailure

if TYPE_CHECKING:
    from langchain_core.document_loaders import BaseLoader

logger = logging.getLogger(__name__)

SUPPORTED_FILE_TYPES = (
    ".txt", ".csv", ".md",
    ".pdf",
    ".doc", ".docx",
    ".ppt", ".pptx",
    ".xls", ".xlsx",
)

MIME_TYPES = {
    ".txt": "text/plain",
    ".csv": "text/csv",
    ".md": "text/markdown",
    ".pdf": "application/pdf",
    ".doc": "application/msword",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ".ppt": "application/vnd.ms-powerpoint",
    ".pptx": "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    ".xls": "application/vnd.ms-excel",
    ".xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}


def _text_loader(path: str) -> BaseLoader:
    return TextLoader(path, encoding="utf-8", autodetect_encoding=True)


_LOADERS: dict[str, Callable[[str], BaseLoader]] = {
    ".txt": _text_loader,
    ".csv": _text_loader,
    ".md": _text_loader,
    ".pdf": PyPDFLoader,
    ".doc": Docx2txtLoader,
    ".docx": Docx2txtLoader,
    ".ppt": UnstructuredPowerPointLoader,
    ".pptx": UnstructuredPowerPointLoader,
    ".xls": UnstructuredExcelLoader,
    ".xlsx": UnstructuredExcelLoader,
}


def normalize_file_type(file_type: str) -> str:
    """Return the lower-case extension with a leading dot (``"PDF"`` → ``".pdf"``)."""
    ext = file_type.strip().lower()
    return ext if ext.startswith(".") else f".{ext}"


def get_mime_type(file_type: str) -> str:
    return MIME_TYPES.get(normalize_file_type(file_type), "application/octet-stream")


def is_supported(filename: str) -> bool:
    return Path(filename).suffix.lower() in SUPPORTED_FILE_TYPES


def parse_document(file_path: str | Path, file_type: str) -> str:
    """Extract plain text from *file_path*.

    Unknown extensions are read as plain text.  Pages / sheets / slides
    are joined with blank lines so the chunker's default separator sees
    them as segment boundaries.

    Raises
    ------
    ParseFailure
        When the file is missing or the loader fails.
    """
    ext = normalize_file_type(file_type)
    loader_factory = _LOADERS.get(ext, _text_loader)
    try:
        pages = loader_factory(str(file_path)).load()
    except Exception as exc:
        logger.error("Failed to parse document %s: %s", file_path, exc)
        raise ParseFailure(f"Document parsing failed: {exc}", file_type=ext) from exc

    text = "\n\n".join(page.page_content.strip() for page in pages if page.page_content)
    logger.info("Parsed %s (%s): %d pages, %d chars", file_path, ext, len(pages), len(text))
    return text.strip()
