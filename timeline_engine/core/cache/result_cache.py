from __future__ import annotations

import hashlib
import json
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def make_cache_key(project_id: Optional[str], params: Any) -> str:
    """`<project_id>:<sha1 of canonical JSON params>`."""
    canonical = json.dumps(params, sort_keys=True, separators=(",", ":"), default=str)
    digest = hashlib.sha1(canonical.encode("utf-8")).hexdigest()
    return f"{project_id or '-'}:{digest}"


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    sets: int = 0
    evictions: int = 0
    invalidations: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "sets": self.sets,
            "evictions": self.evictions,
            "invalidations": self.invalidations,
            "hit_rate": round(self.hit_rate, 4),
        }


@dataclass
class _Entry:
    value: Any
    stored_at: float


class ResultCache:
    """TTL cache for analysis results with per-key single-flight.

    Concurrent `get_or_compute` calls for the same key run `compute` once; the
    others wait on the key's lock and then read the stored value. When full,
    the oldest stored entry is evicted.
    """

    def __init__(
        self,
        ttl_seconds: float = 300.0,
        max_keys: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if ttl_seconds < 0:
            raise ValueError("ttl_seconds must be >= 0")
        if max_keys < 1:
            raise ValueError("max_keys must be >= 1")
        self.ttl_seconds = ttl_seconds
        self.max_keys = max_keys
        self._clock = clock
        self._entries: OrderedDict[str, _Entry] = OrderedDict()
        # Key locks live only while callers for that key are in flight.
        self._key_locks: dict[str, threading.Lock] = {}
        self._in_flight: dict[str, int] = {}
        self._lock = threading.Lock()
        self.stats = CacheStats()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, key: str) -> tuple[Any, bool]:
        """Return (value, True) for a fresh entry, else (None, False)."""
        with self._lock:
            entry = self._fresh(key)
            if entry is None:
                self.stats.misses += 1
                return None, False
            self.stats.hits += 1
            return entry.value, True

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._store(key, value)

    def get_or_compute(self, key: str, compute: Callable[[], T]) -> tuple[T, bool]:
        """Return (value, hit). A failing `compute` stores nothing and re-raises."""
        with self._lock:
            entry = self._fresh(key)
            if entry is not None:
                self.stats.hits += 1
                return entry.value, True
            key_lock = self._key_locks.setdefault(key, threading.Lock())
            self._in_flight[key] = self._in_flight.get(key, 0) + 1

        try:
            with key_lock:
                with self._lock:
                    entry = self._fresh(key)
                    if entry is not None:
                        # Filled by the caller that held the key lock first.
                        self.stats.hits += 1
                        return entry.value, True
                    self.stats.misses += 1

                logger.debug("Cache miss for %s; computing", key)
                value = compute()

                with self._lock:
                    self._store(key, value)
                    return value, False
        finally:
            with self._lock:
                self._release(key)

    def invalidate(self, key: str) -> bool:
        with self._lock:
            removed = self._entries.pop(key, None) is not None
            if removed:
                self.stats.invalidations += 1
            return removed

    def invalidate_project(self, project_id: str) -> int:
        """Drop every entry stored for one project."""
        prefix = f"{project_id}:"
        with self._lock:
            doomed = [k for k in self._entries if k.startswith(prefix)]
            for k in doomed:
                del self._entries[k]
            self.stats.invalidations += len(doomed)
            return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def _fresh(self, key: str) -> Optional[_Entry]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() - entry.stored_at >= self.ttl_seconds:
            del self._entries[key]
            return None
        return entry

    def _store(self, key: str, value: Any) -> None:
        if key in self._entries:
            del self._entries[key]
        while len(self._entries) >= self.max_keys:
            oldest, _ = self._entries.popitem(last=False)
            self.stats.evictions += 1
            logger.debug("Evicted %s", oldest)
        self._entries[key] = _Entry(value=value, stored_at=self._clock())
        self.stats.sets += 1

    def _release(self, key: str) -> None:
        left = self._in_flight[key] - 1
        if left:
            self._in_flight[key] = left
        else:
            del self._in_flight[key]
            del self._key_locks[key]
