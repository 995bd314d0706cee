"""Deterministic, sentence-aware text chunking.

Chunk boundaries depend only on the input text and options, so re-chunking
unchanged content reproduces the same chunk list and therefore the same
chunk IDs (upserts stay idempotent).
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass

from rag_ingest.index.models import ChunkDocument

DEFAULT_CHUNK_SIZE = 800
DEFAULT_CHUNK_OVERLAP = 100
MIN_CHUNK_LENGTH = 50

# How far back from the window end to look for a sentence boundary.
_BOUNDARY_WINDOW = 100
_SENTENCE_END = re.compile(r"[.!?]\s")


@dataclass(frozen=True)
class ChunkOptions:
    chunk_size: int = DEFAULT_CHUNK_SIZE
    overlap: int = DEFAULT_CHUNK_OVERLAP
    min_length: int = MIN_CHUNK_LENGTH


def chunk_text(
    text: str,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    overlap: int = DEFAULT_CHUNK_OVERLAP,
    min_length: int = MIN_CHUNK_LENGTH,
) -> list[str]:
    """Split *text* into overlapping chunks for embedding.

    Parameters
    ----------
    text:
        Cleaned document text.
    chunk_size:
        Maximum number of characters per chunk window.
    overlap:
        Characters shared between consecutive windows.
    min_length:
        Chunks shorter than this (after stripping) are dropped.

    Returns
    -------
    list[str]
        Chunk texts in document order.
    """
    if overlap >= chunk_size:
        raise ValueError(f"overlap ({overlap}) must be < chunk_size ({chunk_size})")

    if len(text) <= chunk_size:
        stripped = text.strip()
        return [stripped] if len(stripped) >= min_length else []

    chunks: list[str] = []
    length = len(text)
    start = 0

    while start < length:
        end = start + chunk_size

        if end < length:
            search_start = max(end - _BOUNDARY_WINDOW, start)
            match = _SENTENCE_END.search(text, search_start, end)
            if match is not None:
                end = match.start() + 2
            else:
                last_space = text.rfind(" ", 0, end + 1)
                if last_space > start + overlap:
                    end = last_space

        chunk = text[start:end].strip()
        if len(chunk) >= min_length:
            chunks.append(chunk)
        if end >= length:
            break

        next_start = end - overlap
        # Always move forward, even on text with no usable boundary.
        start = next_start if next_start > start else start + chunk_size - overlap

    return chunks


def hash_string(value: str, length: int = 16) -> str:
    """First *length* hex characters of the MD5 digest of *value*."""
    return hashlib.md5(value.encode("utf-8")).hexdigest()[:length]


def generate_chunk_id(prefix: str, url: str, chunk_index: int) -> str:
    """Stable chunk ID: ``<prefix>_<md5(url)[:16]>_chunk_<index>``."""
    return f"{prefix}_{hash_string(url)}_chunk_{chunk_index}"


def create_chunk_docs(
    text: str,
    *,
    id_prefix: str,
    url: str,
    source: str,
    options: ChunkOptions | None = None,
) -> list[ChunkDocument]:
    """Chunk *text* and wrap every piece in a :class:`ChunkDocument`."""
    options = options or ChunkOptions()
    pieces = chunk_text(
        text,
        chunk_size=options.chunk_size,
        overlap=options.overlap,
        min_length=options.min_length,
    )
    return [
        ChunkDocument(id=generate_chunk_id(id_prefix, url, idx), text=piece, source=source, url=url)
        for idx, piece in enumerate(pieces)
    ]
