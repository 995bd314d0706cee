"""Abstract source adapter and the run template shared by every ingester.

A run goes through the same steps for every source::

    discover → --filter → skip unchanged → (dry run: report and stop)
      → process with bounded concurrency → upsert in sub-batches
      → update cache (only after a successful upsert) → save cache → summary

Subclasses implement :meth:`SourceAdapter.discover`,
:meth:`SourceAdapter.should_skip` and :meth:`SourceAdapter.process`.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, ClassVar, Literal, Sequence

from rag_ingest.config import settings
from rag_ingest.errors import (
    ExtractionTooShort,
    FetchError,
    IndexClientError,
    IngestError,
)
from rag_ingest.index.base import IndexClient
from rag_ingest.index.models import ChunkDocument
from rag_ingest.ingestion.cache import CacheStore
from rag_ingest.ingestion.fetcher import process_concurrent

logger = logging.getLogger(__name__)

DRY_RUN_PREVIEW = 20

ItemStatus = Literal["processed", "cached", "too_short", "error"]


@dataclass
class DiscoveredItem:
    """Something a source found and may ingest.

    Attributes
    ----------
    location:
        URL or file name; also the cache key.
    change_signal:
        Remote hash or last-modified date, when the source exposes one.
    meta:
        Adapter-specific payload carried through to :meth:`SourceAdapter.process`.
    """

    location: str
    change_signal: str | None = None
    meta: Any = None


@dataclass
class ItemOutcome:
    item: DiscoveredItem
    status: ItemStatus
    docs: list[ChunkDocument] = field(default_factory=list)
    content_hash: str | None = None
    remote_hash: str | None = None
    last_modified: str | None = None
    error: str | None = None


@dataclass
class RunOptions:
    force: bool = False
    dry_run: bool = False
    filter: str | None = None
    concurrency: int | None = None
    process_only: bool = False


@dataclass
class IngestSummary:
    processed: int = 0
    cached: int = 0
    errors: int = 0
    too_short: int = 0
    chunks_added: int = 0
    total_in_index: int | None = None
    unprocessed_shards: int = 0

    def __iadd__(self, other: IngestSummary) -> IngestSummary:
        self.processed += other.processed
        self.cached += other.cached
        self.errors += other.errors
        self.too_short += other.too_short
        self.chunks_added += other.chunks_added
        self.unprocessed_shards += other.unprocessed_shards
        if other.total_in_index is not None:
            self.total_in_index = other.total_in_index
        return self

    def log_summary(self, title: str) -> None:
        logger.info("%s complete", title)
        logger.info("  Processed:        %d", self.processed)
        logger.info("  Cached (skipped): %d", self.cached)
        logger.info("  Too short:        %d", self.too_short)
        logger.info("  Errors:           %d", self.errors)
        logger.info("  Chunks added:     %d", self.chunks_added)
        if self.total_in_index is not None:
            logger.info("  Total in index:   %d docs", self.total_in_index)
        if self.unprocessed_shards:
            logger.warning(
                "  %d shard file(s) left for retry; rerun with --process-only",
                self.unprocessed_shards,
            )


class SourceAdapter(ABC):
    """Base class for the per-source ingesters.

    Parameters
    ----------
    index:
        Vector index receiving the chunks.
    cache:
        Change-detection cache, or ``None`` for sources that are always
        re-ingested.
    options:
        Per-run flags.
    upsert_batch_size:
        Maximum number of chunks per ``index.upsert`` call.
    """

    kind: ClassVar[str]
    title: ClassVar[str]

    def __init__(
        self,
        index: IndexClient,
        cache: CacheStore | None = None,
        options: RunOptions | None = None,
        *,
        upsert_batch_size: int | None = None,
    ) -> None:
        self.index = index
        self.cache = cache
        self.options = options or RunOptions()
        self.upsert_batch_size = upsert_batch_size or settings.upsert_batch_size

    # -- required overrides ---------------------------------------------------

    @abstractmethod
    def discover(self) -> list[DiscoveredItem]:
        """List the items this source could ingest.

        Raises :class:`~rag_ingest.errors.DiscoveryError` when the
        discovery endpoint is unusable.
        """
        ...

    @abstractmethod
    def should_skip(self, item: DiscoveredItem) -> bool:
        """Decide from cheap signals alone whether *item* is unchanged."""
        ...

    @abstractmethod
    def process(self, item: DiscoveredItem) -> ItemOutcome:
        """Fetch / parse *item* and turn it into chunk documents.

        May raise :class:`~rag_ingest.errors.FetchError`,
        :class:`~rag_ingest.errors.ParseError` or
        :class:`~rag_ingest.errors.ExtractionTooShort`; the run turns
        those into a counted outcome.
        """
        ...

    # -- hooks ----------------------------------------------------------------

    def matches_filter(self, item: DiscoveredItem, needle: str) -> bool:
        return needle in item.location.lower()

    def process_all(self, items: Sequence[DiscoveredItem]) -> list[ItemOutcome]:
        """Process *items* with bounded concurrency, order preserved."""
        return process_concurrent(
            items,
            lambda item, _index: self._process_safely(item),
            concurrency=self.options.concurrency,
        )

    # -- run template ---------------------------------------------------------

    def run(self) -> IngestSummary:
        summary = IngestSummary()
        items = self.apply_filter(self.discover())
        to_process, cached = self.partition(items)
        summary.cached += len(cached)
        logger.info("%d item(s) found, %d cached, %d to process", len(items), len(cached), len(to_process))

        if self.options.dry_run:
            self.report_dry_run(to_process)
            return summary

        for outcome in self.process_all(to_process):
            self.commit(outcome, summary)

        if self.cache is not None:
            self.cache.save()
        summary.total_in_index = self.index_count()
        return summary

    def apply_filter(self, items: list[DiscoveredItem]) -> list[DiscoveredItem]:
        if not self.options.filter:
            return items
        needle = self.options.filter.lower()
        kept = [item for item in items if self.matches_filter(item, needle)]
        logger.info("Filter *%s*: %d of %d item(s)", self.options.filter, len(kept), len(items))
        return kept

    def partition(
        self, items: Sequence[DiscoveredItem]
    ) -> tuple[list[DiscoveredItem], list[DiscoveredItem]]:
        """Split *items* into ``(to_process, skipped)``; ``--force`` skips nothing."""
        if self.options.force:
            return list(items), []
        to_process: list[DiscoveredItem] = []
        skipped: list[DiscoveredItem] = []
        for item in items:
            (skipped if self.should_skip(item) else to_process).append(item)
        return to_process, skipped

    def report_dry_run(self, items: Sequence[DiscoveredItem]) -> None:
        logger.info("Dry run: %d item(s) would be processed", len(items))
        for item in items[:DRY_RUN_PREVIEW]:
            logger.info("  - %s", item.location)
        if len(items) > DRY_RUN_PREVIEW:
            logger.info("  ... and %d more", len(items) - DRY_RUN_PREVIEW)

    def upsert(self, docs: Sequence[ChunkDocument]) -> int:
        """Upsert *docs* in sub-batches of ``upsert_batch_size``."""
        added = 0
        for start in range(0, len(docs), self.upsert_batch_size):
            added += self.index.upsert(docs[start : start + self.upsert_batch_size])
        return added

    def commit(self, outcome: ItemOutcome, summary: IngestSummary) -> None:
        """Upsert a processed outcome, then record it in the cache and *summary*."""
        location = outcome.item.location
        if outcome.status == "cached":
            summary.cached += 1
            return
        if outcome.status == "too_short":
            summary.too_short += 1
            return
        if outcome.status == "error":
            summary.errors += 1
            logger.warning("Failed %s: %s", location, outcome.error)
            return

        try:
            added = self.upsert(outcome.docs)
        except IndexClientError as exc:
            summary.errors += 1
            logger.warning("Upsert failed for %s: %s", location, exc)
            return

        summary.processed += 1
        summary.chunks_added += added
        logger.debug("%s: %d chunk(s)", location, added)
        if self.cache is not None and outcome.content_hash is not None:
            self.cache.update(
                location,
                outcome.content_hash,
                remote_hash=outcome.remote_hash,
                last_modified=outcome.last_modified,
            )

    def index_count(self) -> int | None:
        try:
            return self.index.stats().count
        except Exception:  # noqa: BLE001
            logger.warning("Could not read index stats", exc_info=True)
            return None

    # -- internals ------------------------------------------------------------

    def _process_safely(self, item: DiscoveredItem) -> ItemOutcome:
        try:
            return self.process(item)
        except ExtractionTooShort as exc:
            logger.debug("%s", exc)
            return ItemOutcome(item, "too_short", error=str(exc))
        except FetchError as exc:
            return ItemOutcome(item, "error", error=str(exc.cause or exc))
        except IngestError as exc:
            return ItemOutcome(item, "error", error=str(exc))
