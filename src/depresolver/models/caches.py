from __future__ import annotations

import contextlib
import dataclasses
import hashlib
import os
import threading
import time
import urllib.parse as parse
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Generic, Iterable, TypeVar

import msgpack

from depresolver.termui import logger
from depresolver.utils import atomic_open_for_write, normalize_name, url_without_fragments

if TYPE_CHECKING:
    from depresolver.models.requirements import Requirement

VT = TypeVar("VT")
DEFAULT_TTL = 3600


@dataclasses.dataclass(frozen=True)
class CacheEntry(Generic[VT]):
    key: str
    value: VT
    created_at: float
    ttl: float | None = None
    content_type: str = ""

    def is_expired(self, now: float | None = None) -> bool:
        if self.ttl is None:
            return False
        if now is None:
            now = time.time()
        return now - self.created_at >= self.ttl


@dataclasses.dataclass(frozen=True)
class CacheStats:
    hits: int
    misses: int
    size: int
    disk_usage: int = 0

    @property
    def total(self) -> int:
        return self.hits + self.misses

    @property
    def hit_rate(self) -> float:
        return self.hits / self.total if self.total else 0.0


class MemoryCache(Generic[VT]):
    """A process-lifetime memo keyed by the normalized name and exact version.

    There is no eviction, a stored value is returned unchanged until it is
    replaced with another :meth:`set` or the cache is cleared.
    """

    def __init__(self) -> None:
        self._entries: dict[str, CacheEntry[VT]] = {}
        self._hits = 0
        self._misses = 0

    @staticmethod
    def make_key(name: str, version: str | None) -> str:
        return f"{normalize_name(name)}=={version}"

    def _lookup(self, key: str) -> VT | None:
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return None
        self._hits += 1
        return entry.value

    def _store(self, key: str, value: VT) -> None:
        self._entries[key] = CacheEntry(key, value, time.time())

    def get(self, name: str, version: str | None) -> VT | None:
        return self._lookup(self.make_key(name, version))

    def set(self, name: str, version: str | None, value: VT) -> None:
        self._store(self.make_key(name, version), value)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def stats(self) -> CacheStats:
        return CacheStats(hits=self._hits, misses=self._misses, size=len(self._entries))

    def clear(self) -> None:
        self._entries.clear()
        self._hits = self._misses = 0


class DependencyCache(MemoryCache["list[Requirement]"]):
    """Memoize the applicable dependencies of a package version.

    The value depends on the requested extras as well, so they take part in
    the key: ``name[extra1,extra2]==version``.
    """

    @staticmethod
    def make_key(name: str, version: str | None, extras: Iterable[str] = ()) -> str:
        key = normalize_name(name)
        if extras:
            key += f"[{','.join(sorted(normalize_name(e) for e in extras))}]"
        return f"{key}=={version}"

    def get(self, name: str, version: str | None, extras: Iterable[str] = ()) -> list[Requirement] | None:
        return self._lookup(self.make_key(name, version, extras))

    def set(self, name: str, version: str | None, value: list[Requirement], extras: Iterable[str] = ()) -> None:
        self._store(self.make_key(name, version, extras), value)


@dataclasses.dataclass(frozen=True)
class EditableInfo:
    name: str
    version: str | None
    project_location: str | None
    is_editable: bool


class EditableCache(MemoryCache[EditableInfo]):
    """Memoize where an installed distribution lives and whether it is editable.
    Reading ``direct_url.json`` and egg-links is the expensive part.
    """


class MetadataCache:
    """Cache index responses on disk.

    Each entry is a msgpack document holding the raw body, its content type, a
    format tag and the write time, stored under a sha224-sharded path derived
    from the normalized URL. Entries older than ``ttl`` seconds read as absent.
    Any error reading or writing an entry is treated as a miss.
    """

    FORMAT = 1

    def __init__(self, directory: Path | str, ttl: float = DEFAULT_TTL, clock: Callable[[], float] = time.time) -> None:
        self.directory = Path(directory)
        self.ttl = ttl
        self._clock = clock
        self._hits = 0
        self._misses = 0

    @staticmethod
    def normalize_key(key: str) -> str:
        parsed = parse.urlparse(url_without_fragments(key.strip()))
        path = parsed.path.rstrip("/") or "/"
        return parse.urlunparse(parsed._replace(scheme=parsed.scheme.lower(), netloc=parsed.netloc.lower(), path=path))

    def _get_path_for_key(self, key: str) -> Path:
        hashed = hashlib.sha224(self.normalize_key(key).encode("utf-8")).hexdigest()
        parts = (hashed[:2], hashed[2:4], hashed[4:6], hashed[6:8], hashed[8:])
        return self.directory.joinpath(*parts)

    def _read(self, path: Path) -> dict | None:
        try:
            data = msgpack.unpackb(path.read_bytes(), raw=False)
        except (OSError, ValueError, msgpack.UnpackException) as e:
            if not isinstance(e, FileNotFoundError):
                logger.debug("Failed to read cache entry %s: %s", path, e)
            return None
        if (
            not isinstance(data, dict)
            or data.get("format") != self.FORMAT
            or not {"body", "created_at"} <= data.keys()
        ):
            logger.debug("Ignoring cache entry %s with unknown format", path)
            return None
        return data

    def get(self, key: str) -> CacheEntry[bytes] | None:
        data = self._read(self._get_path_for_key(key))
        if data is None:
            self._misses += 1
            return None
        entry = CacheEntry(
            key=data.get("key", key),
            value=data["body"],
            created_at=data["created_at"],
            ttl=self.ttl,
            content_type=data.get("content_type", ""),
        )
        if entry.is_expired(self._clock()):
            logger.debug("Cache entry for %s is expired", key)
            self._misses += 1
            return None
        self._hits += 1
        return entry

    def set(self, key: str, body: bytes, content_type: str = "") -> None:
        path = self._get_path_for_key(key)
        document = {
            "format": self.FORMAT,
            "key": self.normalize_key(key),
            "body": body,
            "content_type": content_type,
            "created_at": self._clock(),
        }
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with atomic_open_for_write(path, mode="wb") as fp:
                fp.write(msgpack.packb(document, use_bin_type=True))
        except OSError as e:
            logger.debug("Failed to write cache entry for %s: %s", key, e)

    def delete(self, key: str) -> None:
        with contextlib.suppress(OSError):
            self._get_path_for_key(key).unlink()

    def _iter_files(self) -> Iterable[Path]:
        if not self.directory.exists():
            return
        for root, _, files in os.walk(self.directory):
            for name in files:
                yield Path(root, name)

    def cleanup(self) -> int:
        """Remove expired and unreadable entries, return the number removed."""
        now = self._clock()
        count = 0
        for path in self._iter_files():
            data = self._read(path)
            if data is not None and now - data["created_at"] < self.ttl:
                continue
            with contextlib.suppress(OSError):
                path.unlink()
                count += 1
        logger.debug("Removed %d expired metadata cache entries", count)
        return count

    def cleanup_in_background(self) -> threading.Thread:
        thread = threading.Thread(target=self.cleanup, name="metadata-cache-cleanup", daemon=True)
        thread.start()
        return thread

    def clear(self) -> int:
        count = 0
        for path in self._iter_files():
            with contextlib.suppress(OSError):
                path.unlink()
                count += 1
        self._hits = self._misses = 0
        return count

    def stats(self) -> CacheStats:
        size = disk_usage = 0
        for path in self._iter_files():
            with contextlib.suppress(OSError):
                disk_usage += path.stat().st_size
                size += 1
        return CacheStats(hits=self._hits, misses=self._misses, size=size, disk_usage=disk_usage)


class NullMetadataCache(MetadataCache):
    """A metadata cache that stores nothing."""

    def __init__(self) -> None:
        super().__init__(os.devnull, ttl=0)

    def get(self, key: str) -> CacheEntry[bytes] | None:
        self._misses += 1
        return None

    def set(self, key: str, body: bytes, content_type: str = "") -> None:
        pass

    def delete(self, key: str) -> None:
        pass

    def cleanup(self) -> int:
        return 0

    def clear(self) -> int:
        return 0

    def stats(self) -> CacheStats:
        return CacheStats(hits=0, misses=self._misses, size=0)
