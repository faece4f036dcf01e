"""Text chunking with character overlap.

Text is first split on a separator (a blank line by default).  When the
separator does not occur, the text is split after sentence-ending
punctuation instead.  Segments are then packed greedily into chunks of at
most ``chunk_size`` characters, each new chunk starting with the tail of
the previous one.

Known boundary: ``chunk_overlap >= chunk_size`` is accepted but every new
chunk then starts with (almost) the whole previous chunk, producing
near-duplicate chunks.
"""

from __future__ import annotations

import logging
import re

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 500
DEFAULT_CHUNK_OVERLAP = 50
DEFAULT_SEPARATOR = "\n\n"

_SENTENCE_BREAK = re.compile(r"(?<=[.!?。！？])\s+")


class ChunkOptions(BaseModel):
    """Chunking parameters for one ingestion run."""

    chunk_size: int = Field(default=DEFAULT_CHUNK_SIZE, ge=1)
    chunk_overlap: int = Field(default=DEFAULT_CHUNK_OVERLAP, ge=0)
    separator: str = DEFAULT_SEPARATOR


class Chunk(BaseModel):
    """A contiguous slice of a document's text.

    Attributes
    ----------
    text:
        Trimmed chunk content.
    start_offset / end_offset:
        Character range ``[start, end)`` in the source text.  The range
        may include surrounding whitespace that ``text`` has trimmed.
    chunk_index:
        Zero-based position within the run.
    total_chunks:
        Number of chunks produced by the same ``split`` call.
    """

    text: str
    start_offset: int
    end_offset: int
    chunk_index: int
    total_chunks: int = 0


def _segment_spans(text: str, pattern: re.Pattern[str]) -> list[tuple[int, int]]:
    """Return ``(start, end)`` spans of the pieces between *pattern* matches."""
    spans: list[tuple[int, int]] = []
    cursor = 0
    for match in pattern.finditer(text):
        if match.end() == match.start():
            continue
        spans.append((cursor, match.start()))
        cursor = match.end()
    spans.append((cursor, len(text)))
    return spans


def split(
    text: str,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
    separator: str = DEFAULT_SEPARATOR,
) -> list[Chunk]:
    """Split *text* into ordered, overlapping chunks.

    Parameters
    ----------
    text:
        Plain text extracted from a document.
    chunk_size:
        Target maximum characters per chunk.  A single segment longer than
        this is emitted as its own oversized chunk rather than cut.
    chunk_overlap:
        Characters carried over from the end of one chunk into the next.
    separator:
        Primary split boundary.

    Returns
    -------
    list[Chunk]
        Chunks in order; empty for empty or whitespace-only input.
    """
    if chunk_size < 1:
        raise ValueError(f"chunk_size must be >= 1, got {chunk_size}")
    if chunk_overlap < 0:
        raise ValueError(f"chunk_overlap must be >= 0, got {chunk_overlap}")
    if not text or not text.strip():
        return []

    spans = _segment_spans(text, re.compile(re.escape(separator))) if separator else [(0, len(text))]
    if len(spans) == 1:
        spans = _segment_spans(text, _SENTENCE_BREAK)

    chunks: list[Chunk] = []
    buf_start, buf_end = 0, 0

    def _close(start: int, end: int) -> None:
        chunks.append(
            Chunk(
                text=text[start:end].strip(),
                start_offset=start,
                end_offset=end,
                chunk_index=len(chunks),
            )
        )

    for _seg_start, seg_end in spans:
        has_content = bool(text[buf_start:buf_end].strip())
        if has_content and seg_end - buf_start > chunk_size:
            _close(buf_start, buf_end)
            carry = min(chunk_overlap, buf_end - buf_start)
            buf_start = buf_end - carry
        buf_end = seg_end

    if text[buf_start:].strip():
        _close(buf_start, len(text))
    elif chunks:
        # Trailing whitespace belongs to the last chunk's span.
        chunks[-1].end_offset = len(text)

    total = len(chunks)
    for chunk in chunks:
        chunk.total_chunks = total

    logger.info(
        "Split %d chars into %d chunks (chunk_size=%d, overlap=%d)",
        len(text), total, chunk_size, chunk_overlap,
    )
    return chunks


def chunk_text(text: str, options: ChunkOptions | None = None) -> list[Chunk]:
    """Convenience wrapper around :func:`split` taking a :class:`ChunkOptions`."""
    options = options or ChunkOptions()
    return split(
        text,
        chunk_size=options.chunk_size,
        chunk_overlap=options.chunk_overlap,
        separator=options.separator,
    )
