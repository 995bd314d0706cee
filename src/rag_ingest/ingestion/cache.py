"""Change-detection cache persisted as one JSON file per source kind.

File layout (flat map)::

    {
      "<key>": {
        "hash":         "<md5 of the last processed content>",
        "lastUpdated":  "<ISO-8601 timestamp>",
        "remoteHash":   "<remote version id, optional>",
        "lastModified": "<source last-modified, optional>"
      }
    }

Three skip predicates cover the three kinds of change signal a source can
expose: a content hash with a TTL, an exact remote hash, and a
last-modified date.  ``force=True`` disables all of them.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import stat
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Iterable

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from rag_ingest.errors import CacheCorruptError

logger = logging.getLogger(__name__)

DEFAULT_CACHE_TTL_DAYS = 7


def hash_content(content: str) -> str:
    """Return the MD5 hex digest of *content* (change detection only)."""
    return hashlib.md5(content.encode("utf-8")).hexdigest()


def _file_mode(path: Path) -> int:
    """Mode for a rewrite of *path*: its current mode, else the umask default."""
    try:
        return stat.S_IMODE(path.stat().st_mode)
    except FileNotFoundError:
        umask = os.umask(0)
        os.umask(umask)
        return 0o666 & ~umask


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CacheEntry(BaseModel):
    """Metadata remembered for one processed key (URL or file name)."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    content_hash: str = Field(alias="hash")
    last_updated: datetime = Field(alias="lastUpdated")
    remote_hash: str | None = Field(default=None, alias="remoteHash")
    last_modified: str | None = Field(default=None, alias="lastModified")

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class CacheCommit(BaseModel):
    """A cache update computed outside the owning process (e.g. by a shard worker)."""

    model_config = ConfigDict(populate_by_name=True)

    key: str = Field(alias="url")
    content_hash: str = Field(alias="hash")
    remote_hash: str | None = Field(default=None, alias="remoteHash")
    last_modified: str | None = Field(default=None, alias="lastModified")


def parse_timestamp(value: str) -> datetime | None:
    """Parse a W3C / ISO-8601 date or date-time; naive values are UTC."""
    text = value.strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def is_newer(candidate: str, reference: str) -> bool:
    """Return ``True`` when *candidate* is a later last-modified than *reference*.

    Unparseable values fall back to string comparison where any difference
    counts as newer.
    """
    left, right = parse_timestamp(candidate), parse_timestamp(reference)
    if left is None or right is None:
        return candidate.strip() != reference.strip()
    return left > right


class CacheStore:
    """In-memory cache map bound to a JSON file.

    The map is loaded whole, mutated in memory and saved whole, so a crash
    only loses updates made since the last :meth:`save`.

    Parameters
    ----------
    path:
        Location of the JSON cache file.
    entries:
        Initial entries (normally produced by :meth:`load`).
    ttl_days:
        Maximum age of an entry for the content-hash predicate.
    """

    def __init__(
        self,
        path: str | Path,
        entries: dict[str, CacheEntry] | None = None,
        *,
        ttl_days: float = DEFAULT_CACHE_TTL_DAYS,
    ) -> None:
        self.path = Path(path)
        self.ttl_days = ttl_days
        self._entries: dict[str, CacheEntry] = dict(entries or {})

    # -- persistence ----------------------------------------------------------

    @classmethod
    def load(cls, path: str | Path, *, ttl_days: float = DEFAULT_CACHE_TTL_DAYS) -> CacheStore:
        """Load the cache at *path*; a missing file yields an empty cache.

        Raises
        ------
        CacheCorruptError
            The file exists but is not a JSON object of valid entries.
        """
        path = Path(path)
        if not path.exists():
            return cls(path, ttl_days=ttl_days)

        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise CacheCorruptError(path, str(exc)) from exc
        if not isinstance(raw, dict):
            raise CacheCorruptError(path, f"expected a JSON object, got {type(raw).__name__}")

        entries: dict[str, CacheEntry] = {}
        for key, value in raw.items():
            try:
                entries[key] = CacheEntry.model_validate(value)
            except ValidationError as exc:
                raise CacheCorruptError(path, f"invalid entry {key!r}: {exc}") from exc

        logger.debug("Loaded %d cache entries from %s", len(entries), path)
        return cls(path, entries, ttl_days=ttl_days)

    def save(self) -> None:
        """Atomically overwrite the cache file with the current entries."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {key: entry.to_json() for key, entry in self._entries.items()}

        fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", dir=self.path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(payload, fh, indent=2)
            os.chmod(tmp_name, _file_mode(self.path))
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.debug("Saved %d cache entries to %s", len(payload), self.path)

    @staticmethod
    def delete_file(path: str | Path) -> bool:
        """Delete a cache file; return ``False`` when it did not exist."""
        path = Path(path)
        if not path.exists():
            return False
        path.unlink()
        return True

    # -- map access -----------------------------------------------------------

    def get(self, key: str) -> CacheEntry | None:
        return self._entries.get(key)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def update(
        self,
        key: str,
        content_hash: str,
        *,
        remote_hash: str | None = None,
        last_modified: str | None = None,
    ) -> CacheEntry:
        """Replace the entry for *key* wholesale, stamping ``lastUpdated=now``."""
        entry = CacheEntry(
            content_hash=content_hash,
            last_updated=_utcnow(),
            remote_hash=remote_hash,
            last_modified=last_modified,
        )
        self._entries[key] = entry
        return entry

    def merge(self, commits: Iterable[CacheCommit]) -> int:
        """Apply commits produced by another process; return how many."""
        count = 0
        for commit in commits:
            self.update(
                commit.key,
                commit.content_hash,
                remote_hash=commit.remote_hash,
                last_modified=commit.last_modified,
            )
            count += 1
        return count

    # -- skip predicates ------------------------------------------------------

    def is_expired(self, entry: CacheEntry, ttl_days: float | None = None) -> bool:
        ttl = self.ttl_days if ttl_days is None else ttl_days
        updated = entry.last_updated
        if updated.tzinfo is None:
            updated = updated.replace(tzinfo=timezone.utc)
        return _utcnow() - updated > timedelta(days=ttl)

    def should_use_cache(
        self,
        key: str,
        content_hash: str,
        *,
        ttl_days: float | None = None,
        force: bool = False,
    ) -> bool:
        """Skip when the stored hash matches *content_hash* and is within the TTL."""
        if force:
            return False
        entry = self._entries.get(key)
        if entry is None or entry.content_hash != content_hash:
            return False
        return not self.is_expired(entry, ttl_days)

    def should_skip_remote_hash(self, key: str, remote_hash: str | None, *, force: bool = False) -> bool:
        """Skip when the stored remote hash equals *remote_hash*, regardless of age."""
        if force or not remote_hash:
            return False
        entry = self._entries.get(key)
        return entry is not None and entry.remote_hash == remote_hash

    def should_skip_last_modified(
        self, key: str, last_modified: str | None, *, force: bool = False
    ) -> bool:
        """Skip when the source's last-modified is not newer than the cached one.

        With no reported last-modified, an existing entry is enough to skip.
        """
        if force:
            return False
        entry = self._entries.get(key)
        if entry is None:
            return False
        if not last_modified:
            return True
        if entry.last_modified is None:
            return False
        return not is_newer(last_modified, entry.last_modified)
