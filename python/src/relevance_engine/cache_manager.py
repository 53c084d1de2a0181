"""
Cache Manager for the Relevance Analysis Engine

In-memory key/value cache with per-entry TTL and tag-based invalidation.

Key features:
- Lazy expiry on read (expired entries are purged, not served)
- Optional background sweeper for expired entries
- Tag-based bulk invalidation
- Approximate LRU bound (oldest insertion is evicted on overflow)
- File-content specialization keyed by modification time
- Hit/miss statistics (observability only)

The cache is owned by a RelevanceAnalyzer instance; there is no module-level
cache, so independent analyzers never share entries.
"""

import asyncio
import copy
import hashlib
import logging
import os
import re
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable

from .config import CacheConfig
from .exceptions import FileAccessError
from .file_lister import read_text_file


logger = logging.getLogger(__name__)

FILE_CONTENT_TAG = "file-content"
FILE_KEY_PREFIX = "file:"


@dataclass
class CacheEntry:
    """A stored value with its lifetime."""

    data: Any
    timestamp: float  # time.monotonic() at insertion
    ttl: float  # seconds
    tags: list[str] = field(default_factory=list)

    def is_valid(self, now: float | None = None) -> bool:
        now = time.monotonic() if now is None else now
        return now - self.timestamp < self.ttl


@dataclass
class CacheStats:
    """Statistics about cache usage."""

    hits: int = 0
    misses: int = 0
    size: int = 0

    @property
    def hit_rate(self) -> float:
        """Calculate cache hit rate."""
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": self.hit_rate,
            "size": self.size,
        }


class CacheManager:
    """
    In-memory TTL cache with tag invalidation.

    All mutations hold one lock, so the background sweeper and concurrent
    batched readers/writers of distinct keys never observe partial updates.
    """

    def __init__(self, config: CacheConfig | None = None, start_cleanup: bool = True):
        self.config = config or CacheConfig()
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0

        self._stop_event = threading.Event()
        self._cleanup_thread: threading.Thread | None = None
        if start_cleanup and self.config.cleanup_interval > 0:
            self._start_cleanup_timer()

    # -------------------------------------------------------------------------
    # Core operations
    # -------------------------------------------------------------------------

    def get(self, key: str) -> Any | None:
        """Return the cached value, or None when absent or expired."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None

            if not entry.is_valid():
                self._remove(key)
                self._misses += 1
                return None

            self._hits += 1
            return entry.data

    def set(
        self,
        key: str,
        value: Any,
        ttl: float | None = None,
        tags: Iterable[str] | None = None,
    ) -> None:
        """
        Store a value, replacing any previous entry for the key.

        Args:
            key: Cache key
            value: Value to store
            ttl: Lifetime in seconds (config default_ttl when None)
            tags: Tags for bulk invalidation via clear_by_tags()
        """
        entry = CacheEntry(
            data=value,
            timestamp=time.monotonic(),
            ttl=ttl if ttl is not None else self.config.default_ttl,
            tags=list(tags or []),
        )
        with self._lock:
            # Re-insert at the end so dict order follows insertion timestamps
            self._entries.pop(key, None)
            self._entries[key] = entry

            if len(self._entries) > self.config.max_size:
                oldest_key = next(iter(self._entries))
                self._remove(oldest_key)
                logger.debug(f"Cache full, evicted {oldest_key}")

    def has(self, key: str) -> bool:
        """True if a live entry exists; expired entries are purged."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            if not entry.is_valid():
                self._remove(key)
                return False
            return True

    def delete(self, key: str) -> bool:
        with self._lock:
            if key not in self._entries:
                return False
            self._remove(key)
            return True

    def clear(self) -> None:
        """Remove every entry and reset statistics."""
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0

    def clear_by_tags(self, tags: Iterable[str]) -> int:
        """Remove entries sharing any of the given tags; returns the count."""
        wanted = set(tags)
        with self._lock:
            doomed = [k for k, e in self._entries.items() if wanted.intersection(e.tags)]
            for key in doomed:
                self._remove(key)
        return len(doomed)

    def cleanup(self) -> int:
        """Remove all expired entries; returns the count."""
        now = time.monotonic()
        with self._lock:
            expired = [k for k, e in self._entries.items() if not e.is_valid(now)]
            for key in expired:
                self._remove(key)
        if expired:
            logger.debug(f"Cache cleanup removed {len(expired)} expired entries")
        return len(expired)

    def keys(self, pattern: str | None = None) -> list[str]:
        """
        List live keys, optionally filtered by a glob-like pattern.

        '*' matches any run of characters; the rest of the pattern is a
        regular expression searched anywhere in the key.
        """
        self.cleanup()
        with self._lock:
            all_keys = list(self._entries)
        if not pattern:
            return all_keys
        regex = re.compile(pattern.replace("*", ".*"))
        return [k for k in all_keys if regex.search(k)]

    def _remove(self, key: str) -> None:
        """Drop one entry; the caller holds the lock."""
        del self._entries[key]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    # -------------------------------------------------------------------------
    # Statistics
    # -------------------------------------------------------------------------

    def get_stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(hits=self._hits, misses=self._misses, size=len(self._entries))

    def reset_stats(self) -> None:
        with self._lock:
            self._hits = 0
            self._misses = 0

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def _start_cleanup_timer(self) -> None:
        def sweep() -> None:
            while not self._stop_event.wait(self.config.cleanup_interval):
                self.cleanup()

        self._cleanup_thread = threading.Thread(
            target=sweep, name="relevance-cache-cleanup", daemon=True
        )
        self._cleanup_thread.start()

    def destroy(self) -> None:
        """Stop the background sweeper and drop every entry."""
        self._stop_event.set()
        if self._cleanup_thread is not None:
            self._cleanup_thread.join(timeout=1.0)
            self._cleanup_thread = None
        self.clear()


class FileCacheManager(CacheManager):
    """
    CacheManager that also serves file content.

    Each cached path remembers the modification time it was read at; a
    different mtime on the next lookup deletes the entry before anything
    is served.
    """

    def __init__(self, config: CacheConfig | None = None, start_cleanup: bool = True):
        self._file_mtimes: dict[str, float] = {}
        super().__init__(config, start_cleanup)

    @staticmethod
    def file_key(full_path: str) -> str:
        return f"{FILE_KEY_PREFIX}{full_path}"

    def _remove(self, key: str) -> None:
        super()._remove(key)
        if key.startswith(FILE_KEY_PREFIX):
            self._file_mtimes.pop(key[len(FILE_KEY_PREFIX):], None)

    @staticmethod
    def _stat_mtime(full_path: str) -> float | None:
        try:
            return os.stat(full_path).st_mtime_ns / 1e9
        except OSError:
            return None

    async def get_file_content(self, file_path: str | Path) -> str | None:
        """
        Return file content, reading from disk on a miss or after a change.

        Returns None when the file cannot be stat'ed or read.
        """
        full_path = str(Path(file_path).resolve())
        key = self.file_key(full_path)

        current_mtime = self._stat_mtime(full_path)
        if current_mtime is None:
            self.delete(key)
            with self._lock:
                self._file_mtimes.pop(full_path, None)
            return None

        with self._lock:
            cached_mtime = self._file_mtimes.get(full_path)
        if cached_mtime is not None and cached_mtime != current_mtime:
            self.delete(key)
            with self._lock:
                self._file_mtimes.pop(full_path, None)

        cached = self.get(key)
        if cached is not None:
            return cached

        try:
            content = await read_text_file(full_path)
        except FileAccessError as e:
            logger.debug(f"Skipping unreadable file: {e}")
            return None

        self.cache_file_content(full_path, content, current_mtime)
        return content

    def cache_file_content(self, file_path: str, content: str, mtime: float | None = None) -> None:
        full_path = str(Path(file_path).resolve())
        if mtime is None:
            mtime = self._stat_mtime(full_path)
        self.set(
            self.file_key(full_path),
            content,
            ttl=self.config.file_cache_ttl,
            tags=[FILE_CONTENT_TAG],
        )
        if mtime is not None:
            with self._lock:
                self._file_mtimes[full_path] = mtime

    async def preload_files(self, file_paths: Iterable[str | Path]) -> int:
        """Warm the cache for several files at once; returns how many loaded."""
        paths = list(file_paths)
        results = await asyncio.gather(
            *(self.get_file_content(p) for p in paths), return_exceptions=True
        )
        loaded = 0
        for path, result in zip(paths, results):
            if isinstance(result, BaseException):
                logger.warning(f"Failed to preload {path}: {result}")
            elif result is not None:
                loaded += 1
        return loaded

    def invalidate_modified_files(self) -> int:
        """Drop cached files whose mtime changed or which disappeared."""
        with self._lock:
            tracked = list(self._file_mtimes.items())

        invalidated = 0
        for full_path, cached_mtime in tracked:
            if self._stat_mtime(full_path) != cached_mtime:
                self.delete(self.file_key(full_path))
                with self._lock:
                    self._file_mtimes.pop(full_path, None)
                invalidated += 1
        return invalidated

    def clear(self) -> None:
        with self._lock:
            super().clear()
            self._file_mtimes.clear()


class CacheKeyGenerator:
    """Builds namespaced cache keys."""

    @staticmethod
    def short_hash(value: Any) -> str:
        text = value if isinstance(value, str) else repr(value)
        return hashlib.sha256(text.encode("utf-8", errors="replace")).hexdigest()[:16]

    @staticmethod
    def file_list(path: str, pattern: str | None = None) -> str:
        return f"filelist:{path}:{pattern}" if pattern else f"filelist:{path}"

    @classmethod
    def search(cls, keywords: Iterable[str], files: Iterable[str]) -> str:
        kw_hash = cls.short_hash(",".join(sorted(keywords)))
        file_hash = cls.short_hash(",".join(sorted(files)))
        return f"search:{kw_hash}:{file_hash}"

    @classmethod
    def llm(cls, model: str, prompt: str) -> str:
        return f"llm:{model}:{cls.short_hash(prompt)}"

    @classmethod
    def analysis(cls, workspace: str, scope: str, description: str) -> str:
        return f"relevant-code:{workspace}:{scope}:{cls.short_hash(description)}"


def copy_on_read(value: Any) -> Any:
    """Deep copy of a cached value so callers cannot mutate the stored one."""
    return copy.deepcopy(value)
