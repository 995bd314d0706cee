"""
Index — the narrow interface to the external vector store.

Public surface
--------------
- :class:`IndexClient` — abstract backend (subclass for other stores).
- :class:`ChromaIndexClient` — default Chroma backend.
- :class:`ChunkDocument`, :class:`QueryResult`, :class:`CollectionStats` — data models.
"""

from rag_ingest.index.base import IndexClient
from rag_ingest.index.models import ChunkDocument, CollectionStats, QueryResult

__all__ = [
    "ChromaIndexClient",
    "ChunkDocument",
    "CollectionStats",
    "IndexClient",
    "QueryResult",
]


def __getattr__(name: str):  # noqa: ANN001
    """Lazy-import ChromaIndexClient to avoid pulling in chromadb at import time."""
    if name == "ChromaIndexClient":
        from rag_ingest.index.chroma_store import ChromaIndexClient

        return ChromaIndexClient
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
