"""Resumable two-phase batch indexing for large crawls.

Phase 1 (:func:`download_shards`) fetches and extracts pages with bounded
concurrency and writes the results to numbered JSONL shard files.

Phase 2 (:class:`BatchProcessor`) hands each shard to an isolated worker
process (``python -m rag_ingest.ingestion.worker``) that chunks, embeds and
upserts it, deletes the shard and prints the cache updates it made
possible.  Only the parent applies those updates to the cache file, one
shard at a time, so parallel workers never race on it.

A shard file that still exists has not been committed: rerunning the
processor picks it up again.
"""

from __future__ import annotations

import logging
import re
import subprocess
import sys
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from functools import partial
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Iterable, Sequence

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from rag_ingest.config import settings
from rag_ingest.errors import FetchError, WorkerFailure
from rag_ingest.ingestion.cache import CacheCommit, CacheStore, hash_content
from rag_ingest.ingestion.content import extract_content
from rag_ingest.ingestion.fetcher import fetch_url, process_concurrent

if TYPE_CHECKING:
    from rag_ingest.sources.base import DiscoveredItem

logger = logging.getLogger(__name__)

MIN_TEXT_LENGTH = 100
WORKER_MODULE = "rag_ingest.ingestion.worker"

_SHARD_NAME = re.compile(r"^batch-(\d+)\.jsonl$")


# ---------------------------------------------------------------------------
# Shard files
# ---------------------------------------------------------------------------


class ShardRecord(BaseModel):
    """One extracted page, as stored on a shard line."""

    model_config = ConfigDict(populate_by_name=True)

    url: str
    content_hash: str = Field(alias="hash")
    text: str
    last_modified: str | None = Field(default=None, alias="lastModified")

    def to_line(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)

    def commit(self) -> CacheCommit:
        return CacheCommit(
            key=self.url,
            content_hash=self.content_hash,
            last_modified=self.last_modified,
        )


class ShardStore:
    """Directory of ``batch-NNNN.jsonl`` shard files."""

    def __init__(self, root: str | Path | None = None) -> None:
        self.root = Path(root) if root is not None else settings.shard_dir

    def shard_path(self, number: int) -> Path:
        return self.root / f"batch-{number:04d}.jsonl"

    def list_shards(self) -> list[Path]:
        """Existing shard files in ascending shard-number order."""
        if not self.root.is_dir():
            return []
        numbered = []
        for path in self.root.iterdir():
            match = _SHARD_NAME.match(path.name)
            if match and path.is_file():
                numbered.append((int(match.group(1)), path))
        return [path for _, path in sorted(numbered)]

    def write_shard(self, number: int, records: Sequence[ShardRecord]) -> Path | None:
        """Write *records* to shard *number*; no file is created for zero records."""
        if not records:
            return None
        self.root.mkdir(parents=True, exist_ok=True)
        path = self.shard_path(number)
        with path.open("w", encoding="utf-8") as fh:
            for record in records:
                fh.write(record.to_line() + "\n")
        return path

    @staticmethod
    def read_shard(path: str | Path) -> list[ShardRecord]:
        """Parse a shard file; malformed lines are logged and skipped."""
        records: list[ShardRecord] = []
        with Path(path).open(encoding="utf-8") as fh:
            for lineno, line in enumerate(fh, 1):
                if not line.strip():
                    continue
                try:
                    records.append(ShardRecord.model_validate_json(line))
                except ValidationError as exc:
                    logger.warning("Skipping malformed line %d of %s: %s", lineno, path, exc)
        return records

    def cleanup(self) -> bool:
        """Remove the shard directory if it is empty; return whether it was removed."""
        if not self.root.is_dir() or any(self.root.iterdir()):
            return False
        self.root.rmdir()
        return True


# ---------------------------------------------------------------------------
# Phase 1: download
# ---------------------------------------------------------------------------


@dataclass
class DownloadReport:
    shards: list[Path] = field(default_factory=list)
    downloaded: int = 0
    too_short: int = 0
    errors: int = 0


def download_shards(
    items: Sequence[DiscoveredItem],
    store: ShardStore,
    *,
    selector: str | Sequence[str] | None = None,
    shard_size: int | None = None,
    concurrency: int | None = None,
    rate_limit_ms: int | None = None,
    first_shard: int = 0,
) -> DownloadReport:
    """Fetch and extract *items*, writing every *shard_size* of them to one shard.

    Pages whose extracted text is shorter than ``MIN_TEXT_LENGTH`` are
    counted as too short; fetch failures are counted as errors.  Neither
    stops the download.
    """
    shard_size = shard_size or settings.shard_size
    report = DownloadReport()
    total = len(items)
    shard_count = -(-total // shard_size) if total else 0

    def _download(item: DiscoveredItem, _index: int) -> ShardRecord | str:
        try:
            html = fetch_url(item.location)
        except FetchError as exc:
            logger.warning("%s", exc)
            return "error"
        text = extract_content(html, selector, silent=True)
        if len(text) < MIN_TEXT_LENGTH:
            logger.debug("Too short (%d chars): %s", len(text), item.location)
            return "too_short"
        return ShardRecord(
            url=item.location,
            content_hash=hash_content(html),
            text=text,
            last_modified=item.change_signal,
        )

    for offset in range(0, total, shard_size):
        number = first_shard + offset // shard_size
        batch = items[offset : offset + shard_size]
        outcomes = process_concurrent(
            batch,
            _download,
            concurrency=concurrency,
            rate_limit_ms=rate_limit_ms,
        )

        records = [o for o in outcomes if isinstance(o, ShardRecord)]
        report.downloaded += len(records)
        report.too_short += sum(1 for o in outcomes if o == "too_short")
        report.errors += sum(1 for o in outcomes if o == "error")

        path = store.write_shard(number, records)
        if path is not None:
            report.shards.append(path)
        done = min(offset + shard_size, total)
        logger.info(
            "Downloading: %d/%d (%d%%), shard %d/%d",
            done,
            total,
            round(done / total * 100),
            offset // shard_size + 1,
            shard_count,
        )

    return report


# ---------------------------------------------------------------------------
# Phase 2: isolated shard workers
# ---------------------------------------------------------------------------


class WorkerOutput(BaseModel):
    """JSON document a worker prints as its last stdout line."""

    model_config = ConfigDict(populate_by_name=True)

    processed: int = 0
    chunks_added: int = Field(default=0, alias="chunksAdded")
    committed: list[CacheCommit] = Field(default_factory=list)


@dataclass
class WorkerResult:
    shard: Path
    processed: int = 0
    chunks_added: int = 0
    committed: list[CacheCommit] = field(default_factory=list)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


ShardRunner = Callable[[Path, str], WorkerResult]


def parse_worker_output(shard: Path, stdout: str) -> WorkerResult:
    """Read the JSON result from the last non-empty line of *stdout*."""
    lines = [line for line in stdout.splitlines() if line.strip()]
    if not lines:
        return WorkerResult(shard, error="worker produced no output")
    try:
        output = WorkerOutput.model_validate_json(lines[-1])
    except ValidationError as exc:
        return WorkerResult(shard, error=f"unparseable worker output: {exc.errors()[0]['msg']}")
    return WorkerResult(
        shard,
        processed=output.processed,
        chunks_added=output.chunks_added,
        committed=output.committed,
    )


def run_shard_subprocess(shard: Path, source_name: str, *, timeout: float | None = None) -> WorkerResult:
    """Process *shard* in a fresh interpreter and collect its result."""
    timeout = settings.worker_timeout if timeout is None else timeout
    cmd = [sys.executable, "-m", WORKER_MODULE, str(shard), source_name]
    try:
        proc = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
    except subprocess.TimeoutExpired:
        return WorkerResult(shard, error=f"timed out after {timeout:.0f}s")
    except OSError as exc:
        return WorkerResult(shard, error=f"could not start worker: {exc}")

    if proc.returncode != 0:
        stderr = (proc.stderr or "").strip()
        detail = stderr.splitlines()[-1][:200] if stderr else "no stderr"
        return WorkerResult(shard, error=f"exit code {proc.returncode}: {detail}")
    return parse_worker_output(shard, proc.stdout)


@dataclass
class BatchReport:
    processed: int = 0
    chunks_added: int = 0
    failures: list[WorkerFailure] = field(default_factory=list)


class BatchProcessor:
    """Runs shard workers in parallel and commits their cache updates.

    Parameters
    ----------
    store:
        Shard directory to drain.
    cache:
        Cache that receives every successful worker's commits.  It is saved
        after each shard so progress survives a crash.
    parallel:
        Number of shards processed at the same time.
    runner:
        ``runner(shard, source_name) -> WorkerResult``; defaults to
        :func:`run_shard_subprocess`.
    """

    def __init__(
        self,
        store: ShardStore,
        cache: CacheStore,
        *,
        parallel: int | None = None,
        runner: ShardRunner | None = None,
    ) -> None:
        self.store = store
        self.cache = cache
        self.parallel = parallel or settings.parallel_shards
        self.runner = runner or partial(run_shard_subprocess, timeout=settings.worker_timeout)

    def _run(self, shard: Path, source_name: str) -> WorkerResult:
        try:
            return self.runner(shard, source_name)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Runner crashed on %s", shard.name)
            return WorkerResult(shard, error=str(exc))

    def process(self, source_name: str, shards: Iterable[Path] | None = None) -> BatchReport:
        """Process every pending shard (or just *shards*) for *source_name*."""
        pending = list(shards) if shards is not None else self.store.list_shards()
        report = BatchReport()
        if not pending:
            return report

        logger.info("Processing %d shard file(s), %d in parallel", len(pending), self.parallel)
        with ThreadPoolExecutor(max_workers=self.parallel) as executor:
            futures = {executor.submit(self._run, shard, source_name): shard for shard in pending}
            for completed, future in enumerate(as_completed(futures), 1):
                result = future.result()
                if result.ok:
                    # Single writer: only this thread touches the cache file.
                    self.cache.merge(result.committed)
                    self.cache.save()
                    report.processed += result.processed
                    report.chunks_added += result.chunks_added
                else:
                    failure = WorkerFailure(result.shard, result.error or "unknown error")
                    logger.warning("%s (kept for retry)", failure)
                    report.failures.append(failure)
                logger.info("Processing: %d/%d shards completed", completed, len(pending))

        return report
