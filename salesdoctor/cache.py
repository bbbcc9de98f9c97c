"""
In-process snapshot cache for upstream data.

Provides:
- Per-key entries holding the value and its last write time
- TTL-based freshness (stale values are still served)
- Single-flight refresh per key with publish-on-success
- Background refresh of stale entries
- Statistics tracking

Usage:
    cache = SnapshotCache(ttl_seconds=300)

    orders = await cache.get_or_refresh("orders", fetch_orders, default=[])
    cache.invalidate(["cost_prices"])
"""
import asyncio
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Set

from salesdoctor.exceptions import AuthenticationError
from salesdoctor.observability import get_logger, Timer

logger = get_logger(__name__)

Fetcher = Callable[[], Awaitable[Any]]

# Extra fetches when the key is invalidated while a fetch is in flight
MAX_REFETCHES = 2


@dataclass
class CacheStats:
    """Cache statistics for monitoring."""

    hits: int = 0
    misses: int = 0
    errors: int = 0
    sets: int = 0
    invalidations: int = 0
    refreshes: int = 0

    @property
    def hit_rate(self) -> float:
        """Calculate cache hit rate."""
        total = self.hits + self.misses
        return (self.hits / total * 100) if total > 0 else 0.0

    def to_dict(self) -> dict:
        """Convert to dictionary for status output."""
        return {
            "hits": self.hits,
            "misses": self.misses,
            "errors": self.errors,
            "sets": self.sets,
            "invalidations": self.invalidations,
            "refreshes": self.refreshes,
            "hit_rate_percent": round(self.hit_rate, 2),
        }

    def reset(self) -> None:
        """Reset all counters."""
        self.hits = 0
        self.misses = 0
        self.errors = 0
        self.sets = 0
        self.invalidations = 0
        self.refreshes = 0


@dataclass(frozen=True)
class CacheEntry:
    """Published snapshot; replaced as a whole, never mutated."""
    value: Any
    last_updated: float


class SnapshotCache:
    """
    Keyed snapshot cache with TTL freshness.

    Reads never block on the upstream: a stale entry is returned as is and
    only schedules a refresh. A refresh publishes its result only when the
    fetch succeeds, so readers always see a complete previous value.
    """

    def __init__(
        self,
        ttl_seconds: float = 300,
        clock: Callable[[], float] = time.time,
    ):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._generations: Dict[str, int] = {}
        self._epochs: Dict[str, int] = {}
        self._background: Set[asyncio.Task] = set()
        self._stats = CacheStats()

    # ─── Basic operations ─────────────────────────────────────────────────────

    def get(self, key: str) -> Optional[Any]:
        """Cached value or None on a miss. Stale values are returned too."""
        entry = self._entries.get(key)
        if entry is None:
            self._stats.misses += 1
            return None
        self._stats.hits += 1
        return entry.value

    def put(self, key: str, value: Any) -> None:
        """Publish a new value for `key`."""
        self._entries[key] = CacheEntry(value=value, last_updated=self._clock())
        self._generations[key] = self._generations.get(key, 0) + 1
        self._stats.sets += 1

    def invalidate(self, keys: Optional[Iterable[str]] = None) -> int:
        """
        Drop entries regardless of TTL.

        A refresh of a dropped key that is already in flight will not
        publish the value it fetched.

        Args:
            keys: Keys to drop (default: everything)

        Returns:
            Number of entries dropped
        """
        if keys is None:
            keys = set(self._entries) | set(self._locks)
        keys = list(keys)
        for key in keys:
            self._epochs[key] = self._epochs.get(key, 0) + 1

        targets = [k for k in keys if k in self._entries]
        for key in targets:
            del self._entries[key]
        if targets:
            self._stats.invalidations += len(targets)
            logger.info(f"Invalidated {len(targets)} cache entries", extra={"keys": targets})
        return len(targets)

    def is_fresh(self, key: str) -> bool:
        """True when the entry exists and is younger than the TTL."""
        entry = self._entries.get(key)
        if entry is None:
            return False
        return self._clock() - entry.last_updated < self.ttl_seconds

    def age(self, key: str) -> Optional[float]:
        """Seconds since the entry was written, or None."""
        entry = self._entries.get(key)
        return None if entry is None else self._clock() - entry.last_updated

    @property
    def last_update(self) -> Optional[float]:
        """Timestamp of the most recent write across all keys."""
        if not self._entries:
            return None
        return max(entry.last_updated for entry in self._entries.values())

    @property
    def stats(self) -> CacheStats:
        return self._stats

    def keys(self) -> list:
        return list(self._entries)

    def is_refreshing(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    # ─── Refresh ──────────────────────────────────────────────────────────────

    async def refresh(self, key: str, fetcher: Fetcher, default: Any = None) -> Any:
        """
        Fetch and publish a new value for `key`.

        At most one fetch per key runs at a time. A caller that waited for
        another caller's successful refresh gets that result without
        fetching again.

        Fetch failures are logged and answered with the previous value, or
        `default` when nothing is cached. Authentication failures propagate.

        If the key is invalidated while the fetch runs, the result is
        discarded and the fetch repeated (up to MAX_REFETCHES times). When
        invalidations keep arriving, the last result is returned unpublished.
        """
        lock = self._locks.setdefault(key, asyncio.Lock())
        generation = self._generations.get(key, 0)

        async with lock:
            if self._generations.get(key, 0) != generation:
                return self._entries[key].value if key in self._entries else default

            for attempt in range(MAX_REFETCHES + 1):
                epoch = self._epochs.get(key, 0)
                self._stats.refreshes += 1
                try:
                    with Timer(f"cache_refresh_{key}", logger):
                        value = await fetcher()
                except AuthenticationError:
                    self._stats.errors += 1
                    raise
                except Exception as e:
                    self._stats.errors += 1
                    entry = self._entries.get(key)
                    logger.warning(
                        f"Cache refresh failed for {key}, serving "
                        f"{'previous value' if entry else 'default'}: {e}",
                        extra={"key": key, "error": str(e), "error_type": type(e).__name__}
                    )
                    return entry.value if entry is not None else default

                if self._epochs.get(key, 0) == epoch:
                    self.put(key, value)
                    return value

                logger.info(
                    f"Cache key {key} invalidated during refresh, discarding result",
                    extra={"key": key, "attempt": attempt + 1}
                )

            logger.warning(
                f"Cache key {key} kept being invalidated, returning unpublished value",
                extra={"key": key}
            )
            return value

    async def get_or_refresh(self, key: str, fetcher: Fetcher, default: Any = None) -> Any:
        """
        Serve from cache, refreshing as needed.

        Fresh entry: returned as is. Stale entry: returned as is, with one
        background refresh scheduled. Missing entry: awaits a refresh.
        """
        entry = self._entries.get(key)
        if entry is None:
            self._stats.misses += 1
            return await self.refresh(key, fetcher, default)

        self._stats.hits += 1
        if not self.is_fresh(key) and not self.is_refreshing(key):
            self._schedule_refresh(key, fetcher)
        return entry.value

    def _schedule_refresh(self, key: str, fetcher: Fetcher) -> None:
        task = asyncio.create_task(self._background_refresh(key, fetcher))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _background_refresh(self, key: str, fetcher: Fetcher) -> None:
        try:
            await self.refresh(key, fetcher)
        except AuthenticationError as e:
            logger.error(
                f"Background refresh for {key} needs re-authentication: {e}",
                extra={"key": key}
            )

    async def wait_background(self) -> None:
        """Await every scheduled background refresh."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ─── Status ───────────────────────────────────────────────────────────────

    def status(self) -> dict:
        """Per-key freshness plus statistics."""
        now = self._clock()
        last_update = self.last_update
        return {
            "ttl_seconds": self.ttl_seconds,
            "last_update": _iso(last_update) if last_update is not None else None,
            "entries": {
                key: {
                    "fresh": now - entry.last_updated < self.ttl_seconds,
                    "age_seconds": round(now - entry.last_updated, 1),
                    "last_updated": _iso(entry.last_updated),
                    "size": len(entry.value) if hasattr(entry.value, "__len__") else None,
                }
                for key, entry in self._entries.items()
            },
            **self._stats.to_dict(),
        }


def _iso(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()
