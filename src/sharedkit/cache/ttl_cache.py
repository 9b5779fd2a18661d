from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar, Union

import structlog

from sharedkit.utils.time import Clock, monotonic_s

T = TypeVar("T")
R = TypeVar("R")

log = structlog.get_logger("cache")

@dataclass(slots=True, frozen=True)
class CacheConfig:
    default_ttl_s: float = 300.0
    max_size: int = 1000
    cleanup_interval_s: float = 60.0

@dataclass(slots=True)
class CacheEntry(Generic[T]):
    value: T
    created_at: float
    expires_at: float

@dataclass(slots=True)
class CacheStats:
    size: int
    hits: int
    misses: int
    hit_rate: float

class TTLCache(Generic[T]):
    """
    In-memory key -> value cache with per-entry TTL and a max entry count.

    - Expired entries are never returned: get()/has() drop them lazily.
    - A background asyncio task purges expired entries every
      cleanup_interval_s to bound memory. It starts at construction if a loop
      is running, otherwise on the first set() made inside a running loop.
    - When full, set() of a new key evicts the entry with the oldest
      created_at. get() does not refresh recency.
    """
    def __init__(self, cfg: CacheConfig | None = None, *, clock: Clock = monotonic_s):
        self.cfg = cfg or CacheConfig()
        self._clock = clock
        self._store: dict[str, CacheEntry[T]] = {}
        self._hits = 0
        self._misses = 0
        self._task: Optional[asyncio.Task] = None
        self._destroyed = False
        self._ensure_sweep()

    # ---- lookups ----

    def get(self, key: str) -> Optional[T]:
        entry = self._store.get(key)
        if entry is None:
            self._misses += 1
            return None
        if self._clock() > entry.expires_at:
            del self._store[key]
            self._misses += 1
            return None
        self._hits += 1
        return entry.value

    def has(self, key: str) -> bool:
        """True if key is present and unexpired. Does not touch hit/miss counters."""
        entry = self._store.get(key)
        if entry is None:
            return False
        if self._clock() > entry.expires_at:
            del self._store[key]
            return False
        return True

    def __contains__(self, key: str) -> bool:
        return self.has(key)

    def __len__(self) -> int:
        return len(self._store)

    # ---- writes ----

    def set(self, key: str, value: T, ttl_s: float | None = None) -> None:
        if key not in self._store and len(self._store) >= self.cfg.max_size:
            self._evict_oldest()
        now = self._clock()
        ttl = self.cfg.default_ttl_s if ttl_s is None else ttl_s
        self._store[key] = CacheEntry(value=value, created_at=now, expires_at=now + ttl)
        self._ensure_sweep()

    def invalidate(self, key: str) -> bool:
        return self._store.pop(key, None) is not None

    def invalidate_pattern(self, pattern: Union[str, re.Pattern]) -> int:
        """Drop every key where pattern.search(key) matches. Returns count removed."""
        rx = re.compile(pattern) if isinstance(pattern, str) else pattern
        doomed = [k for k in self._store if rx.search(k)]
        for k in doomed:
            del self._store[k]
        return len(doomed)

    def invalidate_prefix(self, prefix: str) -> int:
        doomed = [k for k in self._store if k.startswith(prefix)]
        for k in doomed:
            del self._store[k]
        return len(doomed)

    async def wrap(self, key: str, producer: Callable[[], Awaitable[R]], ttl_s: float | None = None) -> R:
        """
        Return the cached value for key, or await producer() and cache its result.

        has() is checked first so a cached None still counts as a hit.
        A failing producer propagates and nothing is stored. Concurrent misses
        on the same key each run the producer; put a RequestDeduplicator in
        front if single execution is needed.
        """
        if self.has(key):
            return self.get(key)  # type: ignore[return-value]
        result = await producer()
        self.set(key, result, ttl_s)  # type: ignore[arg-type]
        return result

    def clear(self) -> None:
        self._store.clear()
        self._hits = 0
        self._misses = 0

    # ---- stats & lifecycle ----

    def get_stats(self) -> CacheStats:
        total = self._hits + self._misses
        return CacheStats(
            size=len(self._store),
            hits=self._hits,
            misses=self._misses,
            hit_rate=self._hits / total if total > 0 else 0.0,
        )

    def purge_expired(self) -> int:
        """One sweep tick: drop all entries expired as of now. Returns count removed."""
        now = self._clock()
        doomed = [k for k, e in self._store.items() if now > e.expires_at]
        for k in doomed:
            del self._store[k]
        return len(doomed)

    def destroy(self) -> None:
        """Stop the sweep and drop all entries. Safe to call repeatedly."""
        self._destroyed = True
        if self._task is not None:
            self._task.cancel()
            self._task = None
        self._store.clear()

    @property
    def sweeping(self) -> bool:
        return self._task is not None and not self._task.done()

    def _ensure_sweep(self) -> None:
        if self._destroyed or self.sweeping:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return  # no loop yet; retried on next set()
        self._task = loop.create_task(self._sweep_loop(), name="ttl-cache-sweep")

    async def _sweep_loop(self) -> None:
        try:
            while True:
                await asyncio.sleep(self.cfg.cleanup_interval_s)
                try:
                    n = self.purge_expired()
                    if n:
                        log.debug("cache_sweep", removed=n, size=len(self._store))
                except Exception as e:
                    log.warning("cache_sweep_failed", err=str(e))
        except asyncio.CancelledError:
            return

    def _evict_oldest(self) -> None:
        # first minimum in insertion order wins ties
        oldest_key: Optional[str] = None
        oldest_ts = float("inf")
        for k, e in self._store.items():
            if e.created_at < oldest_ts:
                oldest_ts = e.created_at
                oldest_key = k
        if oldest_key is not None:
            del self._store[oldest_key]
            log.debug("cache_evict", key=oldest_key)


def create_cache(**kwargs: Any) -> TTLCache:
    """create_cache(default_ttl_s=..., max_size=..., cleanup_interval_s=...)"""
    return TTLCache(CacheConfig(**kwargs))

# process-wide convenience instance, created on first use, never torn down
_default_cache: Optional[TTLCache] = None

def get_default_cache() -> TTLCache:
    global _default_cache
    if _default_cache is None:
        _default_cache = TTLCache()
    return _default_cache
