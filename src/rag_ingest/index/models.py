"""Domain models exchanged with the vector index."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class ChunkDocument(BaseModel):
    """One embeddable chunk, keyed by a deterministic ID.

    Attributes
    ----------
    id:
        Stable identifier derived from source, URL and chunk index, so
        re-ingesting unchanged content overwrites instead of duplicating.
    text:
        Chunk content.
    source:
        Human-readable source label (shown as a citation downstream).
    url:
        Canonical link back to the original document; may be empty.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    text: str
    source: str = ""
    url: str = ""

    def metadata(self) -> dict[str, str]:
        """Flat metadata stored next to the vector."""
        return {"source": self.source, "url": self.url}


class QueryResult(BaseModel):
    """A single nearest-neighbour hit."""

    text: str
    source: str | None = None
    url: str | None = None
    score: float

    def __str__(self) -> str:  # noqa: D105
        return f"[{self.score:.4f}] {self.source or 'unknown'}: {self.text[:120]}…"


class CollectionStats(BaseModel):
    count: int
    name: str
