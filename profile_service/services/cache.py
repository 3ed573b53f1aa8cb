"""
ProfileCache - In-process cache for profile records with single-flight loading.

Features:
- TTL expiry (lazy on read, plus a periodic background sweep)
- Approximate LRU eviction: at capacity, drop the least recently accessed
  share of entries (10% by default) before inserting a new key
- Per-key single-flight: concurrent loads of the same absent key share one
  backend call
- Invalidation marks an in-flight load stale so it never overwrites newer data

All mutation happens synchronously between awaits, so the maps are never
observed half-updated by other coroutines on the same loop.
"""

import asyncio
import heapq
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Generic, TypeVar

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from loguru import logger

T = TypeVar("T")

Clock = Callable[[], datetime]


@dataclass
class CacheEntry(Generic[T]):
    """A single cache entry with metadata."""

    data: T
    created_at: datetime
    expires_at: datetime
    last_accessed: datetime
    access_count: int = 0
    written: bool = False

    def is_expired(self, now: datetime) -> bool:
        """Check if entry is past its TTL."""
        return now >= self.expires_at

    @property
    def first_read_of_write(self) -> bool:
        """True while serving the first hit on a directly written entry."""
        return self.written and self.access_count == 1

    def touch(self, now: datetime) -> None:
        self.access_count += 1
        self.last_accessed = now

    def describe(self, key: str) -> dict[str, Any]:
        """Entry metadata without the payload."""
        return {
            "key": key,
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "access_count": self.access_count,
            "last_accessed": self.last_accessed.isoformat(),
        }


class _Flight:
    """An in-flight population of one key."""

    __slots__ = ("task", "stale")

    def __init__(self) -> None:
        self.task: asyncio.Task[Any] | None = None
        self.stale = False


class ProfileCache(Generic[T]):
    """
    Keyed TTL cache with capacity eviction and single-flight population.

    Usage:
        cache = ProfileCache(max_entries=1000, ttl=timedelta(minutes=5))

        entry = cache.get(user_id)
        if entry:
            return entry.data

        profile = await cache.load(user_id, lambda: fetcher.fetch(user_id))
    """

    def __init__(
        self,
        max_entries: int = 1000,
        ttl: timedelta = timedelta(minutes=5),
        eviction_ratio: float = 0.1,
        clock: Clock = datetime.now,
        debug: bool = False,
    ):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        if ttl <= timedelta(0):
            raise ValueError("ttl must be positive")
        if not 0 < eviction_ratio <= 1:
            raise ValueError("eviction_ratio must be in (0, 1]")

        self.max_entries = max_entries
        self.ttl = ttl
        self.eviction_ratio = eviction_ratio
        self._clock = clock
        self._debug = debug

        self._entries: dict[str, CacheEntry[T]] = {}
        self._in_flight: dict[str, _Flight] = {}
        self._stats = CacheStats()
        self._scheduler: AsyncIOScheduler | None = None

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and not entry.is_expired(self._clock())

    def get(self, key: str) -> CacheEntry[T] | None:
        """
        Get a live entry.

        A hit bumps the entry's access counters; an expired entry is removed
        and reported as a miss.
        """
        entry = self._entries.get(key)
        if entry is None:
            self._stats.misses += 1
            self._log(f"MISS: {key}")
            return None

        now = self._clock()
        if entry.is_expired(now):
            del self._entries[key]
            self._stats.misses += 1
            self._stats.expirations += 1
            self._log(f"EXPIRED: {key}")
            return None

        entry.touch(now)
        self._stats.hits += 1
        self._log(f"HIT: {key}")
        return entry

    async def set(self, key: str, value: T) -> CacheEntry[T]:
        """
        Store ``value`` under ``key`` (a direct write, flagged ``written``).

        If a population of the same key is in flight, wait for it to settle
        first so the two writes cannot interleave.
        """
        flight = self._in_flight.get(key)
        if flight is not None and flight.task is not None:
            self._log(f"SET WAIT: {key}")
            await asyncio.wait({flight.task})
        return self._store(key, value, written=True)

    async def load(
        self,
        key: str,
        loader: Callable[[], Awaitable[T | None]],
    ) -> T | None:
        """
        Populate ``key`` from ``loader`` with single-flight semantics.

        The first caller starts the load; concurrent callers for the same key
        await that same task. A ``None`` result is returned but not cached.
        Cancelling one waiter does not cancel the shared load.
        """
        flight = self._in_flight.get(key)
        if flight is None:
            flight = _Flight()
            flight.task = asyncio.create_task(self._run_load(key, loader, flight))
            self._in_flight[key] = flight
            self._stats.loads += 1
            self._log(f"LOAD: {key}")
        else:
            self._stats.deduplicated += 1
            self._log(f"DEDUPE: waiting for in-flight load of {key}")

        return await asyncio.shield(flight.task)

    async def get_or_load(
        self,
        key: str,
        loader: Callable[[], Awaitable[T | None]],
    ) -> tuple[T | None, bool]:
        """Return ``(value, cached)``; load on miss."""
        entry = self.get(key)
        if entry is not None:
            return entry.data, True
        return await self.load(key, loader), False

    async def _run_load(
        self,
        key: str,
        loader: Callable[[], Awaitable[T | None]],
        flight: _Flight,
    ) -> T | None:
        try:
            value = await loader()
            if value is not None and not flight.stale:
                self._store(key, value)
            elif flight.stale:
                self._log(f"STALE LOAD DISCARDED: {key}")
            return value
        finally:
            if self._in_flight.get(key) is flight:
                del self._in_flight[key]

    def _store(self, key: str, value: T, written: bool = False) -> CacheEntry[T]:
        now = self._clock()
        if key not in self._entries and len(self._entries) >= self.max_entries:
            self._evict_least_recent()

        entry = CacheEntry(
            data=value,
            created_at=now,
            expires_at=now + self.ttl,
            last_accessed=now,
            written=written,
        )
        self._entries[key] = entry
        self._log(f"SET: {key} (TTL: {self.ttl.total_seconds()}s)")
        return entry

    def _evict_least_recent(self) -> None:
        """Evict the least recently accessed share of entries."""
        count = max(1, int(self.max_entries * self.eviction_ratio))
        victims = heapq.nsmallest(
            count,
            self._entries.items(),
            key=lambda item: item[1].last_accessed,
        )
        for key, _ in victims:
            del self._entries[key]
        self._stats.evictions += len(victims)
        self._log(f"EVICT: {len(victims)} entries")

    def invalidate(self, key: str) -> bool:
        """
        Drop ``key``. Idempotent.

        An in-flight load for the key is detached and its result will not be
        written back.
        """
        flight = self._in_flight.pop(key, None)
        if flight is not None:
            flight.stale = True

        removed = self._entries.pop(key, None) is not None
        if removed:
            self._log(f"INVALIDATE: {key}")
        return removed

    def clear(self) -> int:
        """Clear all cache entries. Returns count of removed entries."""
        for flight in self._in_flight.values():
            flight.stale = True
        self._in_flight.clear()

        count = len(self._entries)
        self._entries.clear()
        self._log(f"CLEAR: {count} entries removed")
        return count

    def cleanup_expired(self) -> int:
        """Remove all expired entries. Returns count of removed entries."""
        now = self._clock()
        expired_keys = [k for k, v in self._entries.items() if v.is_expired(now)]
        for key in expired_keys:
            del self._entries[key]

        self._stats.expirations += len(expired_keys)
        if expired_keys:
            logger.info(f"Cleaned up {len(expired_keys)} expired cache entries")

        return len(expired_keys)

    async def _sweep(self) -> None:
        self.cleanup_expired()

    def start_sweeper(self, interval: timedelta) -> None:
        """
        Start the periodic expiry sweep.

        Must be called from a running event loop.
        """
        if self._scheduler is not None:
            logger.warning("Profile cache sweeper is already running")
            return

        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            self._sweep,
            trigger="interval",
            seconds=interval.total_seconds(),
            id="profile_cache_sweep",
            name="Profile cache expiry sweep",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self._scheduler.start()
        logger.info(
            f"Profile cache sweeper started (every {interval.total_seconds():.0f}s)"
        )

    def stop_sweeper(self) -> None:
        """Stop the periodic expiry sweep. Safe to call when not running."""
        if self._scheduler is None:
            return
        self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("Profile cache sweeper stopped")

    @property
    def sweeper_running(self) -> bool:
        return self._scheduler is not None

    def in_flight_keys(self) -> list[str]:
        """Get keys of all in-flight loads."""
        return list(self._in_flight.keys())

    def stats(self) -> "CacheStats":
        """Get cache statistics with an entry snapshot (no payloads)."""
        self._stats.size = len(self._entries)
        self._stats.max_entries = self.max_entries
        self._stats.ttl_minutes = self.ttl.total_seconds() / 60
        self._stats.in_flight = len(self._in_flight)
        self._stats.entries = [
            entry.describe(key) for key, entry in self._entries.items()
        ]
        return self._stats

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[ProfileCache] {message}")


@dataclass
class CacheStats:
    """Cache statistics."""

    hits: int = 0
    misses: int = 0
    evictions: int = 0
    expirations: int = 0
    loads: int = 0
    deduplicated: int = 0
    in_flight: int = 0
    size: int = 0
    max_entries: int = 0
    ttl_minutes: float = 0.0
    entries: list[dict[str, Any]] = field(default_factory=list)

    @property
    def hit_rate(self) -> float:
        """Calculate cache hit rate."""
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return self.hits / total

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "size": self.size,
            "max_entries": self.max_entries,
            "ttl_minutes": self.ttl_minutes,
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "expirations": self.expirations,
            "loads": self.loads,
            "deduplicated": self.deduplicated,
            "in_flight": self.in_flight,
            "hit_rate": f"{self.hit_rate:.2%}",
            "entries": list(self.entries),
        }
