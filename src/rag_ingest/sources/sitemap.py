"""Sitemap ingester: crawl XML sitemaps and index the pages they list.

Discovery follows sitemap indexes recursively (each sitemap URL is visited
at most once).  Pages are filtered by include / exclude path globs and
skipped when their ``<lastmod>`` is not newer than the cached one.

Indexing goes through the resumable batch path in
:mod:`rag_ingest.ingestion.batch`: pages are downloaded into shard files,
then each shard is indexed by an isolated worker process.  Leftover shard
files from an interrupted run are processed before anything new is
downloaded.
"""

from __future__ import annotations

import logging
import re
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Sequence

from rag_ingest.config import SitemapEntry, settings
from rag_ingest.errors import DiscoveryError, ExtractionTooShort, FetchError, ParseError
from rag_ingest.index.base import IndexClient
from rag_ingest.ingestion.batch import (
    MIN_TEXT_LENGTH,
    BatchProcessor,
    ShardRunner,
    ShardStore,
    download_shards,
)
from rag_ingest.ingestion.cache import CacheStore, hash_content
from rag_ingest.ingestion.chunker import create_chunk_docs
from rag_ingest.ingestion.content import extract_content
from rag_ingest.ingestion.fetcher import fetch_url
from rag_ingest.ingestion.globs import filter_urls, url_path
from rag_ingest.sources.base import (
    DiscoveredItem,
    IngestSummary,
    ItemOutcome,
    RunOptions,
    SourceAdapter,
)

logger = logging.getLogger(__name__)

SITEMAP_ACCEPT = "application/xml,text/xml"
ID_PREFIX = "sitemap"


# ---------------------------------------------------------------------------
# Sitemap parsing
# ---------------------------------------------------------------------------


def _local(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _child_text(element: ET.Element, name: str) -> str | None:
    for child in element:
        if _local(child.tag) == name:
            text = (child.text or "").strip()
            return text or None
    return None


def parse_sitemap(xml: str, location: str = "<sitemap>") -> tuple[str, list[DiscoveredItem]]:
    """Parse a sitemap document.

    Returns
    -------
    tuple[str, list[DiscoveredItem]]
        ``("sitemapindex", children)`` for an index, where each child's
        location is a nested sitemap URL, or ``("urlset", pages)`` with
        each page's ``<lastmod>`` as its change signal.

    Raises
    ------
    ParseError
        The document is not well-formed XML.
    """
    try:
        root = ET.fromstring(xml.strip())
    except ET.ParseError as exc:
        raise ParseError(location, str(exc)) from exc

    kind = _local(root.tag)
    child_tag = "sitemap" if kind == "sitemapindex" else "url"
    items: list[DiscoveredItem] = []
    for element in root:
        if _local(element.tag) != child_tag:
            continue
        loc = _child_text(element, "loc")
        if loc:
            items.append(DiscoveredItem(location=loc, change_signal=_child_text(element, "lastmod")))
    return ("sitemapindex" if kind == "sitemapindex" else "urlset"), items


def fetch_sitemap(url: str, *, visited: set[str] | None = None) -> list[DiscoveredItem]:
    """Fetch *url* and return every page it lists, following sitemap indexes.

    A child sitemap that cannot be fetched or parsed is logged and
    skipped.  Errors on *url* itself propagate.
    """
    visited = set() if visited is None else visited
    if url in visited:
        logger.debug("Already visited %s", url)
        return []
    visited.add(url)

    kind, items = parse_sitemap(fetch_url(url, accept=SITEMAP_ACCEPT), url)
    if kind == "urlset":
        return items

    logger.info("Sitemap index %s lists %d sitemap(s)", url, len(items))
    pages: list[DiscoveredItem] = []
    for child in items:
        try:
            pages.extend(fetch_sitemap(child.location, visited=visited))
        except (FetchError, ParseError) as exc:
            logger.warning("Skipping child sitemap %s: %s", child.location, exc)
    return pages


def shard_dir_name(name: str) -> str:
    """Filesystem-safe directory name for a sitemap entry."""
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")
    return slug or "default"


# ---------------------------------------------------------------------------
# Ingester
# ---------------------------------------------------------------------------


class SitemapIngester(SourceAdapter):
    """Ingest every page reachable from the configured sitemaps.

    :meth:`run` drives each entry through the batch path (:meth:`run_entry`).
    :meth:`discover` and :meth:`process` are the in-process equivalents for
    callers that want one page at a time; :meth:`run` does not use them.

    Parameters
    ----------
    index:
        Vector index for in-process work (stats, :meth:`process`).  Shard
        workers build their own client.
    cache:
        The sitemap cache; receives the workers' commits.
    entries:
        Sitemaps to crawl.
    options:
        Per-run flags.  ``filter`` matches entry names here.
    shard_root:
        Parent directory of the per-entry shard directories.
    runner:
        Shard runner passed to :class:`BatchProcessor` (tests use an
        in-process one).
    """

    kind = "sitemap"
    title = "Sitemap ingestion"

    def __init__(
        self,
        index: IndexClient,
        cache: CacheStore,
        entries: Sequence[SitemapEntry],
        options: RunOptions | None = None,
        *,
        shard_root: str | Path | None = None,
        runner: ShardRunner | None = None,
        parallel_shards: int | None = None,
        upsert_batch_size: int | None = None,
    ) -> None:
        super().__init__(index, cache, options, upsert_batch_size=upsert_batch_size)
        self.cache: CacheStore = cache
        self.entries = list(entries)
        self.shard_root = Path(shard_root) if shard_root is not None else settings.shard_dir
        self.runner = runner
        self.parallel_shards = parallel_shards

    # -- SourceAdapter overrides ----------------------------------------------

    def discover(self) -> list[DiscoveredItem]:
        items: list[DiscoveredItem] = []
        for entry in self.selected_entries():
            items.extend(self.discover_entry(entry))
        return items

    def should_skip(self, item: DiscoveredItem) -> bool:
        return self.cache.should_skip_last_modified(
            item.location, item.change_signal, force=self.options.force
        )

    def process(self, item: DiscoveredItem) -> ItemOutcome:
        """Fetch, extract and chunk a single page in-process."""
        entry: SitemapEntry | None = item.meta
        html = fetch_url(item.location)
        text = extract_content(html, entry.selector if entry else None, silent=True)
        if len(text) < MIN_TEXT_LENGTH:
            raise ExtractionTooShort(item.location, len(text), MIN_TEXT_LENGTH)
        name = entry.name if entry else "sitemap"
        docs = create_chunk_docs(
            text,
            id_prefix=ID_PREFIX,
            url=item.location,
            source=f"{name} - {url_path(item.location)}",
        )
        return ItemOutcome(
            item,
            "processed",
            docs=docs,
            content_hash=hash_content(html),
            last_modified=item.change_signal,
        )

    def run(self) -> IngestSummary:
        """Run every selected entry in turn.

        An entry whose root sitemap cannot be read is logged, counted as an
        error and skipped.  :class:`DiscoveryError` is raised only when every
        selected entry failed that way.
        """
        summary = IngestSummary()
        entries = self.selected_entries()
        logger.info("Sitemaps: %d", len(entries))
        failures: list[DiscoveryError] = []
        for entry in entries:
            try:
                summary += self.run_entry(entry)
            except DiscoveryError as exc:
                logger.warning("Failed %s: %s", entry.name, exc)
                summary.errors += 1
                failures.append(exc)
        if entries and len(failures) == len(entries):
            raise failures[0]

        if not self.options.dry_run:
            self._cleanup_root()
            summary.total_in_index = self.index_count()
        return summary

    # -- per entry ------------------------------------------------------------

    def selected_entries(self) -> list[SitemapEntry]:
        if not self.options.filter:
            return self.entries
        needle = self.options.filter.lower()
        return [entry for entry in self.entries if needle in entry.name.lower()]

    def discover_entry(self, entry: SitemapEntry) -> list[DiscoveredItem]:
        """Fetch the entry's sitemap and apply its include / exclude globs.

        Raises
        ------
        DiscoveryError
            The root sitemap could not be fetched or parsed.
        """
        try:
            pages = fetch_sitemap(entry.url)
        except (FetchError, ParseError) as exc:
            raise DiscoveryError(f"Sitemap {entry.url} for {entry.name!r}: {exc}") from exc
        logger.info("Found %d URL(s) in %s", len(pages), entry.url)

        filtered = filter_urls(pages, entry.include, entry.exclude, key=lambda item: item.location)
        logger.info("After filtering: %d URL(s)", len(filtered))
        for item in filtered:
            item.meta = entry
        return filtered

    def shard_store(self, entry: SitemapEntry) -> ShardStore:
        return ShardStore(self.shard_root / shard_dir_name(entry.name))

    def run_entry(self, entry: SitemapEntry) -> IngestSummary:
        summary = IngestSummary()
        concurrency = entry.concurrency or self.options.concurrency or settings.concurrency
        rate_limit_ms = entry.rate_limit_ms if entry.rate_limit_ms is not None else settings.rate_limit_ms
        store = self.shard_store(entry)
        logger.info(
            "Processing %s (%s), concurrency %d, rate limit %dms",
            entry.name,
            entry.url,
            concurrency,
            rate_limit_ms,
        )

        pending = store.list_shards()
        if pending:
            logger.info("Resuming %d shard file(s) from a previous run", len(pending))
        elif self.options.process_only:
            logger.info("No shard files to process for %s", entry.name)
            return summary
        else:
            to_download, cached = self.partition(self.discover_entry(entry))
            summary.cached += len(cached)
            logger.info("Already cached: %d, to download: %d", len(cached), len(to_download))

            if self.options.dry_run:
                self.report_dry_run(to_download)
                return summary
            if not to_download:
                logger.info("All URLs cached, nothing to download")
                return summary

            report = download_shards(
                to_download,
                store,
                selector=entry.selector,
                concurrency=concurrency,
                rate_limit_ms=rate_limit_ms,
            )
            logger.info(
                "Downloaded %d page(s) into %d shard(s); %d too short, %d error(s)",
                report.downloaded,
                len(report.shards),
                report.too_short,
                report.errors,
            )
            summary.too_short += report.too_short
            summary.errors += report.errors
            self.cache.save()
            pending = store.list_shards()

        if self.options.dry_run:
            logger.info("Dry run: %d shard file(s) would be processed", len(pending))
            return summary

        processor = BatchProcessor(
            store, self.cache, parallel=self.parallel_shards, runner=self.runner
        )
        batch = processor.process(entry.name, pending)
        summary.processed += batch.processed
        summary.chunks_added += batch.chunks_added
        summary.unprocessed_shards += len(batch.failures)
        store.cleanup()
        logger.info("Processed %d page(s), %d chunk(s) added", batch.processed, batch.chunks_added)
        return summary

    def _cleanup_root(self) -> None:
        if self.shard_root.is_dir() and not any(self.shard_root.iterdir()):
            self.shard_root.rmdir()
