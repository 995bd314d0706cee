"""Exception taxonomy for the ingestion pipeline.

Item-level errors (:class:`FetchError`, :class:`ExtractionTooShort`,
:class:`ParseError`) are caught by the source adapters and turned into a
counted outcome.  Setup-level errors (:class:`ConfigError`,
:class:`DiscoveryError`, :class:`CacheCorruptError`) abort the run.
"""

from __future__ import annotations

from pathlib import Path


class IngestError(Exception):
    """Base class for every error raised by :mod:`rag_ingest`."""


class ConfigError(IngestError):
    """A configuration file is missing or fails validation."""


class DiscoveryError(IngestError):
    """The discovery endpoint of a source could not be reached or read."""


class FetchError(IngestError):
    """An HTTP GET failed after every retry attempt.

    Attributes
    ----------
    url:
        The URL that was requested (without the cache-busting parameter).
    cause:
        The last underlying exception.
    """

    def __init__(self, url: str, cause: BaseException | None = None) -> None:
        self.url = url
        self.cause = cause
        detail = str(cause) if cause is not None else "unknown fetch error"
        super().__init__(f"Failed to fetch {url}: {detail}")


class ExtractionTooShort(IngestError):
    """Extracted text is below the minimum length worth indexing."""

    def __init__(self, location: str, length: int, minimum: int = 100) -> None:
        self.location = location
        self.length = length
        self.minimum = minimum
        super().__init__(f"{location}: extracted {length} chars (< {minimum})")


class ParseError(IngestError):
    """Malformed upstream JSON or XML for a single item."""

    def __init__(self, location: str, detail: str) -> None:
        self.location = location
        self.detail = detail
        super().__init__(f"Could not parse {location}: {detail}")


class CacheCorruptError(IngestError):
    """The cache file exists but cannot be decoded.

    Never auto-recovered: resetting the cache silently would hide the loss.
    """

    def __init__(self, path: str | Path, detail: str) -> None:
        self.path = Path(path)
        self.detail = detail
        super().__init__(f"Cache file {self.path} is corrupt: {detail}")


class WorkerFailure(IngestError):
    """A shard worker exited non-zero or produced unreadable output."""

    def __init__(self, shard: str | Path, detail: str) -> None:
        self.shard = Path(shard)
        self.detail = detail
        super().__init__(f"Shard {self.shard.name} failed: {detail}")


class IndexClientError(IngestError):
    """The vector index rejected an embed or upsert call."""
