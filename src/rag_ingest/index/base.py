"""Abstract base class for the vector index consumed by the ingesters.

The ingestion pipeline only needs a narrow surface: embed, upsert,
query and stats.  Adding a new backend only requires subclassing
:class:`IndexClient` and implementing the abstract methods.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Sequence

from rag_ingest.index.models import ChunkDocument, CollectionStats, QueryResult


class IndexClient(ABC):
    """Backend-agnostic index interface.

    Parameters
    ----------
    collection_name:
        Logical name of the collection / index / namespace.
    """

    def __init__(self, collection_name: str) -> None:
        self.collection_name = collection_name

    # -- required overrides ---------------------------------------------------

    @abstractmethod
    def embed(self, text: str) -> list[float]:
        """Return the embedding vector for *text*.

        Raises :class:`~rag_ingest.errors.IndexClientError` on failure.
        """
        ...

    @abstractmethod
    def upsert(self, docs: Sequence[ChunkDocument]) -> int:
        """Insert or overwrite *docs* by ID and return how many were written.

        Raises :class:`~rag_ingest.errors.IndexClientError` on failure; the
        caller treats that as fatal for the current item or batch.
        """
        ...

    @abstractmethod
    def query(self, text: str, top_k: int = 8) -> list[QueryResult]:
        """Return the *top_k* nearest chunks to *text*.

        Failures are logged and yield ``[]`` so chat callers degrade
        gracefully.
        """
        ...

    @abstractmethod
    def stats(self) -> CollectionStats:
        """Return the document count of the collection."""
        ...

    # -- optional overrides ---------------------------------------------------

    def health_check(self) -> bool:
        """Return ``True`` when the backend is reachable and ready."""
        return True

    def peek(self, limit: int = 10) -> list[ChunkDocument]:
        """Return up to *limit* stored chunks.  Optional; raises by default."""
        raise NotImplementedError(f"{type(self).__name__} does not support peek")

    def reset(self) -> bool:
        """Drop the whole collection.  Optional; raises by default."""
        raise NotImplementedError(f"{type(self).__name__} does not support reset")
