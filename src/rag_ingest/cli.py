"""Command-line entry point.

Usage::

    rag-ingest sitemap [--force] [--dry-run] [--filter NAME] [--concurrency N] [--process-only]
    rag-ingest urls    [--force] [--dry-run] [--filter TEXT] [--concurrency N]
    rag-ingest openapi [--force] [--dry-run] [--filter TEXT] [--concurrency N]
    rag-ingest manual  [--dry-run] [--filter TEXT]
    rag-ingest sync    [--force] [--dry-run]
    rag-ingest inspect [QUERY] [--limit N]
    rag-ingest reset

Exit status is 0 when a run completes, even if some items failed, and 1
on a setup error (missing or invalid config, unreachable discovery
endpoint, corrupt cache file, unreachable index).
"""

from __future__ import annotations

import argparse
import logging
import shutil
import sys
from typing import Sequence

from rag_ingest import __version__
from rag_ingest.config import load_source_config, settings
from rag_ingest.errors import ConfigError, IngestError
from rag_ingest.index.base import IndexClient
from rag_ingest.ingestion.cache import CacheStore
from rag_ingest.sources.base import IngestSummary, RunOptions, SourceAdapter
from rag_ingest.sources.manual import ManualIngester
from rag_ingest.sources.openapi import OpenApiIngester
from rag_ingest.sources.sitemap import SitemapIngester
from rag_ingest.sources.urls import UrlListIngester

logger = logging.getLogger(__name__)

SOURCE_KINDS = ("sitemap", "urls", "openapi", "manual")
SYNC_ORDER = ("manual", "urls", "openapi", "sitemap")


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    _setup_logging(args.verbose)

    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    try:
        return args.func(args)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130
    except IngestError as exc:
        logger.error("Fatal error: %s", exc, exc_info=args.verbose)
        return 1


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else settings.log_level,
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid int value: {value!r}") from None
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {number}")
    return number


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rag-ingest",
        description=f"rag-ingest v{__version__}: documentation ingestion into a vector index",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command")

    run_flags = argparse.ArgumentParser(add_help=False)
    run_flags.add_argument("--force", action="store_true", help="Ignore every cache check")
    run_flags.add_argument(
        "--dry-run", action="store_true", help="Report planned work without side effects"
    )
    run_flags.add_argument("--filter", default=None, help="Only items containing this text")
    run_flags.add_argument("--concurrency", type=_positive_int, default=None, help="Parallel requests")

    helps = {
        "sitemap": "Crawl sitemaps from sitemap-config.json",
        "urls": "Ingest the pages listed in urls.json",
        "openapi": "Ingest OpenAPI schemas from the configured GitHub repo",
        "manual": "Ingest hand-written notes from manual-docs.json",
    }
    for kind in SOURCE_KINDS:
        sub = subparsers.add_parser(kind, parents=[run_flags], help=helps[kind])
        if kind == "sitemap":
            sub.add_argument(
                "--process-only",
                action="store_true",
                help="Skip discovery and download; process leftover shard files",
            )
        sub.set_defaults(func=_cmd_ingest, kind=kind)

    p_sync = subparsers.add_parser("sync", help="Run manual, urls, openapi and sitemap in order")
    p_sync.add_argument("--force", action="store_true", help="Ignore every cache check")
    p_sync.add_argument("--dry-run", action="store_true", help="Report planned work only")
    p_sync.set_defaults(func=_cmd_sync)

    p_inspect = subparsers.add_parser("inspect", help="Show collection stats and sample chunks")
    p_inspect.add_argument("query", nargs="?", default=None, help="Optional search query")
    p_inspect.add_argument("--limit", type=int, default=10, help="Number of chunks to show")
    p_inspect.set_defaults(func=_cmd_inspect)

    p_reset = subparsers.add_parser("reset", help="Delete the collection and every cache file")
    p_reset.set_defaults(func=_cmd_reset)

    return parser


# -- wiring ---------------------------------------------------------------


def _index_client() -> IndexClient:
    from rag_ingest.index.chroma_store import get_index_client

    return get_index_client()


def _index_reachable(index: IndexClient) -> bool:
    if index.health_check():
        return True
    logger.error("Cannot connect to the index at %s:%s", settings.chroma_host, settings.chroma_port)
    return False


def _load_cache(kind: str) -> CacheStore:
    return CacheStore.load(settings.cache_path(kind), ttl_days=settings.cache_ttl_days)


def build_ingester(kind: str, index: IndexClient, options: RunOptions) -> SourceAdapter:
    """Load the config for *kind* and build its ingester.

    Raises
    ------
    ConfigError
        The config file is missing or invalid.
    CacheCorruptError
        The source's cache file cannot be decoded.
    """
    config = load_source_config(kind)
    if kind == "sitemap":
        return SitemapIngester(index, _load_cache(kind), config.entries, options)
    if kind == "urls":
        return UrlListIngester(index, _load_cache(kind), config.entries, options)
    if kind == "openapi":
        return OpenApiIngester(index, _load_cache(kind), config, options)
    if kind == "manual":
        return ManualIngester(index, config.docs, options)
    raise ConfigError(f"Unknown source kind {kind!r}")


def _options(args: argparse.Namespace) -> RunOptions:
    return RunOptions(
        force=getattr(args, "force", False),
        dry_run=getattr(args, "dry_run", False),
        filter=getattr(args, "filter", None),
        concurrency=getattr(args, "concurrency", None),
        process_only=getattr(args, "process_only", False),
    )


def _run(ingester: SourceAdapter, options: RunOptions) -> IngestSummary:
    logger.info("%s", ingester.title)
    if options.force:
        logger.info("Mode: FORCE (ignoring cache)")
    if options.dry_run:
        logger.info("Mode: DRY RUN")
    summary = ingester.run()
    if options.dry_run:
        logger.info("Dry run complete")
    else:
        summary.log_summary(ingester.title)
    return summary


# -- commands -------------------------------------------------------------


def _cmd_ingest(args: argparse.Namespace) -> int:
    options = _options(args)
    index = _index_client()
    if not options.dry_run and not _index_reachable(index):
        return 1
    _run(build_ingester(args.kind, index, options), options)
    return 0


def _cmd_sync(args: argparse.Namespace) -> int:
    options = _options(args)
    index = _index_client()
    if not options.dry_run and not _index_reachable(index):
        return 1
    total = IngestSummary()
    for kind in SYNC_ORDER:
        if not settings.config_path(kind).is_file():
            logger.info("No %s, skipping %s", settings.config_path(kind), kind)
            continue
        total += _run(build_ingester(kind, index, options), options)
    if not options.dry_run:
        total.log_summary("Sync")
    return 0


def _cmd_inspect(args: argparse.Namespace) -> int:
    index = _index_client()
    if not _index_reachable(index):
        return 1

    stats = index.stats()
    print(f'Collection "{stats.name}": {stats.count} document(s)')
    if stats.count == 0:
        return 0

    if args.query:
        print(f'\nSearching for: "{args.query}"\n')
        results = index.query(args.query, top_k=args.limit)
        if not results:
            print("No results found.")
        for rank, hit in enumerate(results, 1):
            print(f"{rank:>3}. {hit}")
            if hit.url:
                print(f"     {hit.url}")
        return 0

    print(f"\nSample of {min(args.limit, stats.count)} chunk(s):\n")
    for doc in index.peek(limit=args.limit):
        preview = doc.text[:120].replace("\n", " ")
        print(f"- {doc.id}  [{doc.source}]\n    {preview}")
    return 0


def _cmd_reset(args: argparse.Namespace) -> int:
    index = _index_client()
    if not _index_reachable(index):
        return 1

    if index.reset():
        logger.info('Deleted collection "%s"', index.collection_name)
    else:
        logger.info('Collection "%s" did not exist (already clean)', index.collection_name)

    for kind, path in settings.cache_paths.items():
        if CacheStore.delete_file(path):
            logger.info("Deleted %s cache", kind)
    if settings.shard_dir.is_dir():
        shutil.rmtree(settings.shard_dir)
        logger.info("Deleted leftover shard files in %s", settings.shard_dir)

    logger.info("Reset complete. Run 'rag-ingest sync' to re-ingest docs.")
    return 0
