"""Shard worker: index one shard file in its own process.

Usage::

    python -m rag_ingest.ingestion.worker data/.sitemap-temp/batch-0003.jsonl "Example docs"

On success the shard file is deleted and a single JSON line is printed on
stdout::

    {"processed": 48, "chunksAdded": 312, "committed": [{"url": ..., "hash": ...}]}

``committed`` lists the URLs whose chunks were all upserted; the parent
process merges them into the cache.  Logs go to stderr.  Any fatal error
exits with status 1 and leaves the shard in place for a later retry.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Sequence

from rag_ingest.config import settings
from rag_ingest.errors import IngestError
from rag_ingest.index.base import IndexClient
from rag_ingest.index.models import ChunkDocument
from rag_ingest.ingestion.batch import ShardStore, WorkerOutput
from rag_ingest.ingestion.cache import CacheCommit
from rag_ingest.ingestion.chunker import ChunkOptions, create_chunk_docs
from rag_ingest.ingestion.globs import url_path

logger = logging.getLogger(__name__)

ID_PREFIX = "sitemap"


def process_shard(
    path: Path,
    source_name: str,
    index: IndexClient,
    *,
    upsert_batch_size: int | None = None,
    options: ChunkOptions | None = None,
) -> WorkerOutput:
    """Chunk and upsert every record of the shard at *path*, then delete it.

    A URL is reported in ``committed`` only once all of its chunks have
    been upserted.  :class:`~rag_ingest.errors.IndexClientError` propagates
    and leaves the shard file untouched.
    """
    upsert_batch_size = upsert_batch_size or settings.upsert_batch_size
    records = ShardStore.read_shard(path)

    output = WorkerOutput()
    pending_docs: list[ChunkDocument] = []
    pending_commits: list[CacheCommit] = []

    def _flush() -> None:
        if pending_docs:
            output.chunks_added += index.upsert(pending_docs)
            pending_docs.clear()
        output.committed.extend(pending_commits)
        pending_commits.clear()

    for record in records:
        try:
            source = f"{source_name} - {url_path(record.url)}"
        except ValueError as exc:
            logger.warning("Skipping %s: %s", record.url, exc)
            continue

        docs = create_chunk_docs(
            record.text,
            id_prefix=ID_PREFIX,
            url=record.url,
            source=source,
            options=options,
        )
        for doc in docs:
            pending_docs.append(doc)
            if len(pending_docs) >= upsert_batch_size:
                _flush()
        pending_commits.append(record.commit())
        output.processed += 1

    _flush()
    path.unlink()
    logger.info(
        "%s: %d page(s), %d chunk(s) upserted", path.name, output.processed, output.chunks_added
    )
    return output


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="python -m rag_ingest.ingestion.worker",
        description="Index one shard file and print the result as JSON.",
    )
    parser.add_argument("shard", type=Path, help="Path to a batch-NNNN.jsonl file")
    parser.add_argument("source_name", help="Name used in chunk source labels")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=settings.log_level,
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s [worker %(process)d] %(message)s",
    )

    if not args.shard.is_file():
        logger.error("Shard file not found: %s", args.shard)
        return 1

    from rag_ingest.index.chroma_store import get_index_client

    try:
        output = process_shard(args.shard, args.source_name, get_index_client())
    except IngestError as exc:
        logger.error("%s", exc)
        print(json.dumps({"error": str(exc)}), file=sys.stderr)
        return 1

    print(output.model_dump_json(by_alias=True, exclude_none=True))
    return 0


if __name__ == "__main__":
    sys.exit(main())
