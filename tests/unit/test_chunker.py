"""Unit tests for the chunker module."""

from __future__ import annotations

import pytest

from rag_ingest.ingestion.chunker import (
    ChunkOptions,
    chunk_text,
    create_chunk_docs,
    generate_chunk_id,
    hash_string,
)

PROSE = " ".join(
    f"Sentence number {i} explains one more detail about the ingestion pipeline." for i in range(60)
)


def test_short_text_below_min_length_is_dropped() -> None:
    assert chunk_text("short text", chunk_size=800, min_length=50) == []


def test_text_that_fits_is_one_trimmed_chunk() -> None:
    text = "a" * 60
    assert chunk_text(f"  {text}  ", chunk_size=800, min_length=50) == [text]


def test_long_text_is_split_within_size() -> None:
    chunks = chunk_text(PROSE, chunk_size=300, overlap=50)
    assert len(chunks) > 1
    assert all(len(c) <= 300 for c in chunks)


def test_cuts_on_sentence_boundaries() -> None:
    chunks = chunk_text(PROSE, chunk_size=300, overlap=50)
    assert all(c.endswith(".") for c in chunks[:-1])


def test_consecutive_chunks_overlap_and_cover_the_text() -> None:
    chunks = chunk_text(PROSE, chunk_size=300, overlap=50)
    position = 0
    for chunk in chunks:
        found = PROSE.find(chunk, max(position - 300, 0))
        assert found != -1
        assert found <= position + 1
        position = found + len(chunk)
    assert position == len(PROSE)


def test_space_backoff_without_punctuation() -> None:
    text = " ".join(["word"] * 400)
    chunks = chunk_text(text, chunk_size=200, overlap=20)
    assert all(not c.startswith("ord") for c in chunks)
    assert all(c.split() == ["word"] * len(c.split()) for c in chunks)


def test_terminates_without_whitespace() -> None:
    text = "x" * 10_000
    chunks = chunk_text(text, chunk_size=800, overlap=100)
    assert len(chunks) <= len(text) // (800 - 100) + 1
    assert all(len(c) <= 800 for c in chunks)


def test_is_deterministic() -> None:
    assert chunk_text(PROSE, 400, 80) == chunk_text(PROSE, 400, 80)


def test_overlap_must_be_smaller_than_size() -> None:
    with pytest.raises(ValueError):
        chunk_text(PROSE, chunk_size=100, overlap=100)


def test_chunk_ids_are_stable() -> None:
    first = generate_chunk_id("url", "https://example.com/a", 3)
    assert first == generate_chunk_id("url", "https://example.com/a", 3)
    assert first == f"url_{hash_string('https://example.com/a')}_chunk_3"
    assert len(hash_string("anything")) == 16
    assert generate_chunk_id("url", "https://example.com/b", 3) != first


def test_create_chunk_docs_carries_metadata() -> None:
    docs = create_chunk_docs(
        PROSE,
        id_prefix="sitemap",
        url="https://example.com/guide",
        source="Docs - /guide",
        options=ChunkOptions(chunk_size=300, overlap=50),
    )
    assert len(docs) > 1
    assert [d.id for d in docs] == [
        generate_chunk_id("sitemap", "https://example.com/guide", i) for i in range(len(docs))
    ]
    assert all(d.source == "Docs - /guide" and d.url == "https://example.com/guide" for d in docs)
    assert docs[0].metadata() == {"source": "Docs - /guide", "url": "https://example.com/guide"}


def test_create_chunk_docs_empty_input() -> None:
    assert create_chunk_docs("", id_prefix="url", url="u", source="s") == []
