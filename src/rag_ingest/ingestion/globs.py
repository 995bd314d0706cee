"""Path-glob matching for sitemap include / exclude filters.

Normalisation rules (:func:`normalize_pattern`):

* ``/docs/*``  → ``/docs/**`` (a trailing single star means "everything below")
* ``/docs``    → ``/docs/**`` (a literal path is a prefix match)
* ``docs/``    → ``/docs/**`` (literal paths are anchored at the root)

Matching rules (:func:`glob_match`):

* ``**`` spans any number of path segments; ``*`` and ``?`` stay inside one.
* A trailing ``/**`` also matches the bare prefix (``/docs`` itself).
* A pattern without ``/`` is matched against the last path segment only.
"""

from __future__ import annotations

import re
from functools import lru_cache
from typing import Callable, Iterable, Sequence, TypeVar
from urllib.parse import urlsplit

T = TypeVar("T")


def normalize_pattern(pattern: str) -> str:
    """Apply the normalisation rules listed in the module docstring."""
    pattern = pattern.strip()
    if pattern.endswith("/*") and not pattern.endswith("/**"):
        return pattern[:-1] + "**"
    if "*" not in pattern and "?" not in pattern:
        if not pattern.startswith("/"):
            pattern = "/" + pattern
        return pattern + "**" if pattern.endswith("/") else pattern + "/**"
    return pattern


@lru_cache(maxsize=256)
def _compile(pattern: str) -> re.Pattern[str]:
    out: list[str] = []
    i, n = 0, len(pattern)
    while i < n:
        if pattern.startswith("/**", i) and i + 3 == n:
            out.append("(?:/.*)?")
            i += 3
        elif pattern.startswith("**/", i):
            out.append("(?:.*/)?")
            i += 3
        elif pattern.startswith("**", i):
            out.append(".*")
            i += 2
        elif pattern[i] == "*":
            out.append("[^/]*")
            i += 1
        elif pattern[i] == "?":
            out.append("[^/]")
            i += 1
        else:
            out.append(re.escape(pattern[i]))
            i += 1
    return re.compile(r"\A" + "".join(out) + r"\Z")


def glob_match(path: str, pattern: str) -> bool:
    """Return ``True`` when *path* matches the (already normalised) *pattern*."""
    if "/" not in pattern:
        path = path.rstrip("/").rsplit("/", 1)[-1]
    return _compile(pattern).match(path) is not None


def url_path(url: str) -> str:
    """The path component of *url* (``/`` for an empty path)."""
    return urlsplit(url).path or "/"


def filter_urls(
    items: Iterable[T],
    include: Sequence[str] | None = None,
    exclude: Sequence[str] | None = None,
    *,
    key: Callable[[T], str] = str,
) -> list[T]:
    """Keep items whose URL path matches an include pattern and no exclude pattern.

    With no include patterns every path is included.  Items whose URL
    cannot be parsed are dropped.
    """
    includes = [normalize_pattern(p) for p in include or []]
    excludes = [normalize_pattern(p) for p in exclude or []]

    kept: list[T] = []
    for item in items:
        try:
            path = url_path(key(item))
        except ValueError:
            continue
        if includes and not any(glob_match(path, p) for p in includes):
            continue
        if excludes and any(glob_match(path, p) for p in excludes):
            continue
        kept.append(item)
    return kept
