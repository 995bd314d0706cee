"""HTTP fetching with retry/backoff and a bounded-concurrency task pool.

Usage::

    from rag_ingest.ingestion.fetcher import FetchTask, fetch_concurrent

    results = fetch_concurrent(
        [FetchTask(url="https://example.com/a"), FetchTask(url="https://example.com/b")],
        concurrency=5,
        rate_limit_ms=300,
    )
    for r in results:          # same order as the input tasks
        print(r.url, r.ok)

The pacing delay is applied by each worker after its own network call, so
the steady-state request rate is roughly ``concurrency / delay``.  It is
not a global token bucket.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Generic, Sequence, TypeVar
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import requests

from rag_ingest.config import settings
from rag_ingest.errors import FetchError

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "Mozilla/5.0 (X11; Linux x86_64; rv:109.0) Gecko/20100101 Firefox/115.0"
DEFAULT_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9"

T = TypeVar("T")
In = TypeVar("In")
Out = TypeVar("Out")

ProgressCallback = Callable[[int, int, str, bool], None]


@dataclass
class FetchTask(Generic[T]):
    """A URL to fetch plus caller data carried through to the result."""

    url: str
    meta: T | None = None


@dataclass
class FetchResult(Generic[T]):
    """Outcome of one :class:`FetchTask`; exactly one of content/error is set."""

    url: str
    content: str | None = None
    error: str | None = None
    meta: T | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.content is not None


def cache_bust(url: str, now: float | None = None) -> str:
    """Return *url* with a ``_t=<epoch ms>`` parameter to defeat intermediary caches."""
    stamp = int((time.time() if now is None else now) * 1000)
    parts = urlsplit(url)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k != "_t"]
    query.append(("_t", str(stamp)))
    return urlunsplit(parts._replace(query=urlencode(query)))


def fetch_url(
    url: str,
    *,
    user_agent: str = DEFAULT_USER_AGENT,
    accept: str = DEFAULT_ACCEPT,
    retries: int | None = None,
    retry_delay: float | None = None,
    timeout: float | None = None,
    max_retry_seconds: float | None = None,
) -> str:
    """GET *url* and return the response body as text.

    Parameters
    ----------
    url:
        Target URL.
    user_agent / accept:
        Request headers.
    retries:
        Extra attempts after the first one fails.
    retry_delay:
        Base delay in seconds; attempt *n* waits ``retry_delay * n``.
    timeout:
        Per-request timeout in seconds.
    max_retry_seconds:
        Overall cap: no new attempt starts once this much time has passed.

    Raises
    ------
    FetchError
        After every attempt failed, carrying the last underlying error.
    """
    retries = settings.fetch_retries if retries is None else retries
    retry_delay = settings.retry_delay if retry_delay is None else retry_delay
    timeout = settings.request_timeout if timeout is None else timeout
    max_retry_seconds = settings.max_retry_seconds if max_retry_seconds is None else max_retry_seconds

    headers = {
        "User-Agent": user_agent,
        "Accept": accept,
        "Cache-Control": "no-cache, no-store",
        "Pragma": "no-cache",
    }

    started = time.monotonic()
    last_exc: Exception | None = None
    for attempt in range(1, retries + 2):
        try:
            resp = requests.get(cache_bust(url), headers=headers, timeout=timeout)
            resp.raise_for_status()
            return resp.text
        except requests.RequestException as exc:
            last_exc = exc
            if attempt > retries:
                break
            wait = retry_delay * attempt
            if time.monotonic() - started + wait > max_retry_seconds:
                logger.warning("Giving up on %s after %d attempt(s): retry budget spent", url, attempt)
                break
            logger.debug("Retry %d/%d for %s (wait %.1fs): %s", attempt, retries, url, wait, exc)
            time.sleep(wait)

    raise FetchError(url, last_exc)


class _Progress:
    """Thread-safe completion counter feeding a progress callback."""

    def __init__(self, total: int, callback: Callable[..., None] | None) -> None:
        self.total = total
        self.completed = 0
        self._callback = callback
        self._lock = threading.Lock()

    def tick(self, *args: Any) -> None:
        with self._lock:
            self.completed += 1
            if self._callback is not None:
                self._callback(self.completed, self.total, *args)


def fetch_concurrent(
    tasks: Sequence[FetchTask[T]],
    *,
    concurrency: int | None = None,
    rate_limit_ms: int | None = None,
    on_progress: ProgressCallback | None = None,
    **fetch_options: Any,
) -> list[FetchResult[T]]:
    """Fetch every task with at most *concurrency* requests in flight.

    Individual failures never abort the batch: they come back as a
    :class:`FetchResult` with ``error`` set.  The returned list matches the
    order of *tasks*, not completion order.

    Parameters
    ----------
    tasks:
        URLs to fetch.
    concurrency:
        Pool size.
    rate_limit_ms:
        Pause taken by each worker after its network call.
    on_progress:
        Called after every task with ``(completed, total, url, success)``.
    **fetch_options:
        Forwarded to :func:`fetch_url`.
    """
    concurrency = concurrency or settings.concurrency
    rate_limit_ms = settings.rate_limit_ms if rate_limit_ms is None else rate_limit_ms
    progress = _Progress(len(tasks), on_progress)
    results: list[FetchResult[T] | None] = [None] * len(tasks)

    def _run(index: int, task: FetchTask[T]) -> None:
        try:
            content = fetch_url(task.url, **fetch_options)
            result = FetchResult(url=task.url, content=content, meta=task.meta)
        except FetchError as exc:
            logger.debug("Fetch failed: %s", exc)
            result = FetchResult(url=task.url, error=str(exc.cause or exc), meta=task.meta)
        if rate_limit_ms > 0:
            time.sleep(rate_limit_ms / 1000)
        results[index] = result
        progress.tick(task.url, result.ok)

    if tasks:
        with ThreadPoolExecutor(max_workers=concurrency) as executor:
            futures = [executor.submit(_run, i, task) for i, task in enumerate(tasks)]
            for future in futures:
                future.result()

    return [r for r in results if r is not None]


def process_concurrent(
    items: Sequence[In],
    processor: Callable[[In, int], Out],
    *,
    concurrency: int | None = None,
    rate_limit_ms: int | None = None,
    on_progress: Callable[[int, int], None] | None = None,
) -> list[Out]:
    """Bounded-concurrency map of *processor* over *items*, order preserved.

    *processor* receives ``(item, index)``.  It is expected to turn its own
    per-item failures into return values; an exception escaping it is
    re-raised here once the pool has drained.
    """
    concurrency = concurrency or settings.concurrency
    rate_limit_ms = settings.rate_limit_ms if rate_limit_ms is None else rate_limit_ms
    progress = _Progress(len(items), on_progress)

    def _run(index: int, item: In) -> Out:
        try:
            result = processor(item, index)
            if rate_limit_ms > 0:
                time.sleep(rate_limit_ms / 1000)
            return result
        finally:
            progress.tick()

    if not items:
        return []
    with ThreadPoolExecutor(max_workers=concurrency) as executor:
        futures = [executor.submit(_run, i, item) for i, item in enumerate(items)]
        return [future.result() for future in futures]


def log_progress(label: str, *, every: int = 25) -> ProgressCallback:
    """Return a progress callback that logs at INFO every *every* completions."""

    def _callback(completed: int, total: int, url: str = "", success: bool = True) -> None:
        logger.debug("%s %d/%d %s %s", label, completed, total, "ok" if success else "failed", url)
        if completed == total or completed % every == 0:
            pct = round(completed / total * 100) if total else 100
            logger.info("%s: %d/%d (%d%%)", label, completed, total, pct)

    return _callback
