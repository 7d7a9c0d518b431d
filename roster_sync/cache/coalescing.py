"""
Coalescing TTL Cache

Thread-safe in-memory cache shared by the raw sheet tier, the computed
(integrated) tier and the portal index.

Usage:
    from roster_sync.cache.coalescing import CoalescingCache

    cache = CoalescingCache(name="sheets")
    result = cache.get("ROSTER:full", loader=lambda: fetch(), ttl=300)
    if result.stale:
        print("serving data from", result.produced_at)

Features:
- TTL-based expiry with a per-call TTL, so each logical source can use its own
- Refresh coalescing: concurrent readers of the same expired key wait on the one
  in-flight load instead of starting their own
- Stale fallback: a load that fails with SourceFetchError serves the previous
  value when one exists; with no previous value the error propagates
- Invalidation wins over a load already in flight for the same key
- Injected clock so TTL behaviour is testable without sleeping
- Hit/miss/refresh/stale metrics
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar

from roster_sync.errors import SourceFetchError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Clock = Callable[[], float]


@dataclass
class CacheEntry(Generic[T]):
    """Single cache entry. ``refreshing`` is True only while a load for this key is in flight."""
    data: T
    produced_at: float
    ttl: float
    refreshing: bool = False

    def age(self, now: float) -> float:
        return now - self.produced_at

    def is_expired(self, now: float) -> bool:
        return self.age(now) > self.ttl


@dataclass(frozen=True)
class CacheResult(Generic[T]):
    """Value handed back to readers; ``stale`` is True when a failed refresh fell back to it."""
    data: T
    produced_at: float
    stale: bool = False


@dataclass
class CacheMetrics:
    """Track cache performance metrics."""
    hits: int = 0
    misses: int = 0
    refreshes: int = 0
    coalesced: int = 0
    stale_served: int = 0
    failures: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Return metrics as dictionary for logging/monitoring."""
        return {
            "hits": self.hits,
            "misses": self.misses,
            "refreshes": self.refreshes,
            "coalesced": self.coalesced,
            "stale_served": self.stale_served,
            "failures": self.failures,
        }


class CoalescingCache(Generic[T]):
    """
    Keyed TTL cache with at most one in-flight load per key.

    The thread that finds a key missing or expired becomes the leader and runs
    the loader; any thread arriving while that load is in flight waits on the
    leader's future and receives the same result (or the same error). The
    in-flight marker is removed before the future is resolved, so a new
    refresh can start as soon as waiters are released.

    Invalidating a key abandons its in-flight load: the leader still returns
    what it loaded, but the value is not stored and later readers start over.
    """

    def __init__(self, name: str = "cache", clock: Clock = time.time):
        self._entries: Dict[str, CacheEntry[T]] = {}
        self._inflight: Dict[str, Future] = {}
        self._generations: Dict[str, int] = {}
        self._lock = threading.Lock()
        self._clock = clock
        self.name = name
        self.metrics = CacheMetrics()

        logger.debug(f"CoalescingCache '{name}' initialized")

    def now(self) -> float:
        return self._clock()

    def get(self, key: str, loader: Callable[[], T], ttl: float, force: bool = False) -> CacheResult[T]:
        """
        Return the cached value for ``key``, loading it when missing or expired.

        Args:
            key: Cache key
            loader: Zero-argument callable producing a fresh value
            ttl: Seconds a stored value stays fresh
            force: Skip the TTL check; still coalesces and still falls back

        Raises:
            SourceFetchError: The load failed and there is no previous value
            Exception: Any other loader error propagates unchanged
        """
        with self._lock:
            entry = self._entries.get(key)
            if not force and entry is not None and not entry.is_expired(self._clock()):
                self.metrics.hits += 1
                logger.debug(f"{self.name}: hit for {key}")
                return CacheResult(entry.data, entry.produced_at, stale=False)

            future = self._inflight.get(key)
            leader = future is None
            if leader:
                future = Future()
                self._inflight[key] = future
                generation = self._generations.get(key, 0)
                if entry is None:
                    self.metrics.misses += 1
                else:
                    entry.refreshing = True
                    self.metrics.refreshes += 1
            else:
                self.metrics.coalesced += 1

        if leader:
            self._load(key, loader, ttl, future, generation)
        else:
            logger.debug(f"{self.name}: waiting on in-flight refresh of {key}")

        return future.result()

    def _release(self, key: str, future: Future) -> None:
        # Caller holds the lock. An invalidation may already have replaced the marker.
        if self._inflight.get(key) is future:
            del self._inflight[key]

    def _load(self, key: str, loader: Callable[[], T], ttl: float, future: Future, generation: int) -> None:
        logger.info(f"{self.name}: refreshing {key}")
        result: Optional[CacheResult[T]] = None
        error: Optional[BaseException] = None

        try:
            data = loader()
        except SourceFetchError as e:
            error = e
        except Exception as e:
            error = e
            logger.error(f"{self.name}: refresh of {key} failed: {e}")
        except BaseException as e:
            with self._lock:
                self._release(key, future)
                entry = self._entries.get(key)
                if entry is not None and self._generations.get(key, 0) == generation:
                    entry.refreshing = False
            future.set_exception(e)
            raise
        else:
            result = CacheResult(data, self._clock(), stale=False)

        with self._lock:
            self._release(key, future)
            current = self._generations.get(key, 0) == generation
            entry = self._entries.get(key) if current else None

            if result is not None:
                if current:
                    self._entries[key] = CacheEntry(result.data, result.produced_at, ttl)
                    self._generations[key] = generation + 1
                else:
                    logger.info(f"{self.name}: {key} was invalidated during refresh; result not stored")
            elif entry is not None:
                entry.refreshing = False
                if isinstance(error, SourceFetchError):
                    self.metrics.stale_served += 1
                    result = CacheResult(entry.data, entry.produced_at, stale=True)
            if error is not None:
                self.metrics.failures += 1

        if result is not None:
            if result.stale:
                logger.warning(f"{self.name}: refresh of {key} failed ({error}); serving stale data")
            future.set_result(result)
        else:
            if isinstance(error, SourceFetchError):
                logger.error(f"{self.name}: refresh of {key} failed and no cached value exists: {error}")
            future.set_exception(error)

    # -------------------------------------------------------------------------
    # Maintenance
    # -------------------------------------------------------------------------

    def peek(self, key: str) -> Optional[CacheEntry[T]]:
        """Current entry for ``key`` without loading; None when absent."""
        with self._lock:
            return self._entries.get(key)

    def is_refreshing(self, key: str) -> bool:
        with self._lock:
            return key in self._inflight

    def generation(self, key: str) -> int:
        """Counter bumped every time ``key`` is stored or invalidated."""
        with self._lock:
            return self._generations.get(key, 0)

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._entries)

    def _drop(self, key: str) -> bool:
        # Caller holds the lock. In-flight loads for ``key`` will not be stored.
        removed = self._entries.pop(key, None) is not None
        self._inflight.pop(key, None)
        self._generations[key] = self._generations.get(key, 0) + 1
        return removed

    def invalidate(self, key: str) -> bool:
        """Drop ``key``. Returns True when an entry was removed."""
        with self._lock:
            removed = self._drop(key)
        if removed:
            logger.info(f"{self.name}: invalidated {key}")
        return removed

    def invalidate_prefix(self, prefix: str) -> int:
        """Drop every key starting with ``prefix``. Returns the number of entries removed."""
        with self._lock:
            keys = {k for k in list(self._entries) + list(self._inflight) if k.startswith(prefix)}
            count = sum(self._drop(key) for key in keys)
        logger.info(f"{self.name}: invalidated {count} entries under {prefix!r}")
        return count

    def clear(self) -> int:
        """Drop every entry. Returns the number removed."""
        with self._lock:
            keys = set(self._entries) | set(self._inflight)
            count = sum(self._drop(key) for key in keys)
        logger.info(f"{self.name}: cleared {count} entries")
        return count
