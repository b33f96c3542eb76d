"""
src/drawscore/cache/result_cache.py
In-process memoisation of analysis results, bounded by entry count, estimated
memory and TTL. Safe to share between engines and threads.
"""
from __future__ import annotations

import json
import threading
import time
from collections import OrderedDict
from enum import Enum
from typing import Any, Callable

import numpy as np

from drawscore.models.types import CacheEntry, CacheStats, OptimizeReport, to_dict
from drawscore.utils.logger import get_logger

log = get_logger("cache")

_MISSING = object()


def _json_default(obj: Any) -> Any:
    if isinstance(obj, (np.integer, np.floating, np.bool_)):
        return obj.item()
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if isinstance(obj, Enum):
        return obj.value
    converted = to_dict(obj)
    if converted is not obj:
        return converted
    return repr(obj)


def make_key(kind: str, params: Any = None) -> str:
    """Deterministic key: "<kind>:<canonical JSON of params>"."""
    payload = json.dumps(params, sort_keys=True, separators=(",", ":"), default=_json_default)
    return f"{kind}:{payload}"


def estimate_size(value: Any) -> int:
    """Roughly two bytes per serialised character."""
    try:
        text = json.dumps(value, separators=(",", ":"), default=_json_default)
    except (TypeError, ValueError, RecursionError):
        text = repr(value)
    return 2 * len(text)


class ResultCache:
    """
    LRU cache with a memory budget and per-entry TTL.

    - memory pressure evicts least-recently-accessed entries until the new value fits
    - a full cache evicts exactly one LRU entry before inserting a new key
    - TTL is checked lazily on read, or in bulk by clear_expired()
    """

    def __init__(
        self,
        max_size: int = 500,
        max_memory: int = 50 * 1024 * 1024,
        ttl: float = 3600.0,
        large_entry_bytes: int = 10_000,
        stale_after: float = 3600.0,
        idle_after: float = 86_400.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        if max_memory < 1:
            raise ValueError("max_memory must be positive")
        self.max_size = max_size
        self.max_memory = max_memory
        self.ttl = ttl
        self.large_entry_bytes = large_entry_bytes
        self.stale_after = stale_after
        self.idle_after = idle_after
        self.enabled = True
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._memory = 0
        self._hits = 0
        self._misses = 0
        self._lock = threading.RLock()

    @classmethod
    def from_settings(cls, settings, clock: Callable[[], float] = time.monotonic) -> "ResultCache":
        return cls(
            max_size=settings.cache_max_size,
            max_memory=settings.cache_max_memory_bytes,
            ttl=settings.cache_ttl_seconds,
            large_entry_bytes=settings.cache_large_entry_bytes,
            stale_after=settings.cache_stale_after_seconds,
            idle_after=settings.cache_idle_after_seconds,
            clock=clock,
        )

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    @property
    def memory_usage(self) -> int:
        with self._lock:
            return self._memory

    # ── Internal bookkeeping ──────────────────────────────────────

    def _remove(self, key: str) -> CacheEntry | None:
        entry = self._entries.pop(key, None)
        if entry is not None:
            self._memory -= entry.size
        return entry

    def _is_expired(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.inserted_at > self.ttl

    def _evict_for_memory(self, required: int) -> None:
        # Front of the OrderedDict is the least recently accessed entry
        while self._entries and self._memory + required > self.max_memory:
            key = next(iter(self._entries))
            entry = self._remove(key)
            log.debug(f"Evicted {key} ({entry.size} bytes) under memory pressure")

    def _evict_lru(self) -> None:
        if not self._entries:
            return
        key, entry = self._entries.popitem(last=False)
        self._memory -= entry.size
        log.debug(f"Evicted LRU entry {key}")

    # ── Public API ────────────────────────────────────────────────

    def set(self, key: str, value: Any, kind: str | None = None) -> bool:
        """Store value under key. Returns False when the cache is disabled or the value cannot fit."""
        if not self.enabled:
            return False
        size = estimate_size(value)
        if size > self.max_memory:
            log.warning(f"Not caching {key}: {size} bytes exceeds budget of {self.max_memory}")
            return False

        with self._lock:
            now = self._clock()
            replacing = self._remove(key) is not None
            if self._memory + size > self.max_memory:
                self._evict_for_memory(size)
            if not replacing and len(self._entries) >= self.max_size:
                self._evict_lru()
            self._entries[key] = CacheEntry(
                key=key,
                kind=kind or key.split(":", 1)[0],
                value=value,
                size=size,
                inserted_at=now,
                last_accessed_at=now,
            )
            self._memory += size
        return True

    def get(self, key: str, default: Any = None) -> Any:
        if not self.enabled:
            return default
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return default
            now = self._clock()
            if self._is_expired(entry, now):
                self._remove(key)
                self._misses += 1
                return default
            entry.last_accessed_at = now
            entry.access_count += 1
            self._entries.move_to_end(key)
            self._hits += 1
            return entry.value

    def has(self, key: str) -> bool:
        """Presence check; only side effect is dropping an expired entry."""
        if not self.enabled:
            return False
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            if self._is_expired(entry, self._clock()):
                self._remove(key)
                return False
            return True

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._remove(key) is not None

    def get_or_compute(self, kind: str, params: Any, compute: Callable[[], Any]) -> Any:
        """Return the cached result for (kind, params), computing and storing it on a miss."""
        key = make_key(kind, params)
        cached = self.get(key, _MISSING)
        if cached is not _MISSING:
            return cached
        value = compute()
        self.set(key, value, kind=kind)
        return value

    def clear(self) -> None:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            self._memory = 0
            self._hits = 0
            self._misses = 0
        log.info(f"Cache cleared ({count} entries)")

    def clear_expired(self) -> int:
        with self._lock:
            now = self._clock()
            expired = [k for k, e in self._entries.items() if self._is_expired(e, now)]
            for key in expired:
                self._remove(key)
        if expired:
            log.debug(f"Swept {len(expired)} expired entries")
        return len(expired)

    def optimize(self) -> OptimizeReport:
        """
        Drop large entries nobody has read for stale_after seconds, and entries
        idle for idle_after seconds that were read at most once.
        """
        with self._lock:
            now = self._clock()
            removed = 0
            freed = 0
            for key, entry in list(self._entries.items()):
                idle = now - entry.last_accessed_at
                stale_large = entry.size > self.large_entry_bytes and idle > self.stale_after
                idle_unused = idle > self.idle_after and entry.access_count <= 1
                if stale_large or idle_unused:
                    self._remove(key)
                    removed += 1
                    freed += entry.size
            kept = len(self._entries)
        log.info(f"Cache optimize: removed {removed}, kept {kept}, freed {freed} bytes")
        return OptimizeReport(removed=removed, kept=kept, memory_freed=freed)

    def stats(self) -> CacheStats:
        with self._lock:
            now = self._clock()
            entries = list(self._entries.values())
            total = self._hits + self._misses
            kinds: dict[str, int] = {}
            for entry in entries:
                kinds[entry.kind] = kinds.get(entry.kind, 0) + 1
            return CacheStats(
                size=len(entries),
                max_size=self.max_size,
                memory_usage=self._memory,
                max_memory=self.max_memory,
                memory_usage_percent=100.0 * self._memory / self.max_memory,
                hit_rate=self._hits / total if total else 0.0,
                hits=self._hits,
                misses=self._misses,
                total_accesses=total,
                kind_distribution=kinds,
                average_age=(
                    sum(now - e.inserted_at for e in entries) / len(entries) if entries else 0.0
                ),
            )

    def export_debug_data(self) -> dict[str, Any]:
        with self._lock:
            return {
                "stats": to_dict(self.stats()),
                "entries": [
                    {
                        "key": e.key,
                        "kind": e.kind,
                        "size": e.size,
                        "inserted_at": e.inserted_at,
                        "last_accessed_at": e.last_accessed_at,
                        "access_count": e.access_count,
                    }
                    for e in self._entries.values()
                ],
            }
