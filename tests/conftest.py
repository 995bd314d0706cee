"""Shared pytest configuration and fixtures."""

from __future__ import annotations

from typing import Sequence

import pytest

from rag_ingest.errors import IndexClientError
from rag_ingest.index.base import IndexClient
from rag_ingest.index.models import ChunkDocument, CollectionStats, QueryResult


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: marks tests requiring external services")


# ── Fake index for deterministic testing ───────────────────────────────


class FakeIndexClient(IndexClient):
    """In-memory index that records every upsert call.

    ``fail_on`` makes any upsert containing a chunk whose ID starts with
    one of the given prefixes raise :class:`IndexClientError`.
    """

    def __init__(self, fail_on: Sequence[str] = ()) -> None:
        super().__init__("test-collection")
        self.docs: dict[str, ChunkDocument] = {}
        self.upsert_calls: list[list[ChunkDocument]] = []
        self.fail_on = tuple(fail_on)

    def embed(self, text: str) -> list[float]:
        return [float(len(text)), 0.0, 1.0]

    def upsert(self, docs: Sequence[ChunkDocument]) -> int:
        if any(d.id.startswith(self.fail_on) for d in docs):
            raise IndexClientError("simulated upsert failure")
        self.upsert_calls.append(list(docs))
        for doc in docs:
            self.docs[doc.id] = doc
        return len(docs)

    def query(self, text: str, top_k: int = 8) -> list[QueryResult]:
        hits = [d for d in self.docs.values() if text.lower() in d.text.lower()]
        return [QueryResult(text=d.text, source=d.source, url=d.url, score=1.0) for d in hits[:top_k]]

    def stats(self) -> CollectionStats:
        return CollectionStats(count=len(self.docs), name=self.collection_name)

    def peek(self, limit: int = 10) -> list[ChunkDocument]:
        return list(self.docs.values())[:limit]

    def reset(self) -> bool:
        existed = bool(self.docs)
        self.docs.clear()
        return existed

    @property
    def total_upserted(self) -> int:
        return sum(len(call) for call in self.upsert_calls)


@pytest.fixture()
def fake_index() -> FakeIndexClient:
    return FakeIndexClient()
