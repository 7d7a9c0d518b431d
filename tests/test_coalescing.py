# tests/test_coalescing.py
"""Tests for the shared TTL / coalescing / stale-fallback cache core."""

import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from conftest import FakeClock
from roster_sync.cache.coalescing import CacheEntry, CoalescingCache
from roster_sync.errors import SchemaValidationError, SourceFetchError


class CountingLoader:
    """Loader returning a new object per call, optionally failing."""

    def __init__(self):
        self.calls = 0
        self.fail = False

    def __call__(self):
        self.calls += 1
        if self.fail:
            raise SourceFetchError("upstream down")
        return {"version": self.calls}


class TestCacheEntry:
    """Entry age and expiry."""

    def test_expiry_is_strictly_after_ttl(self):
        entry = CacheEntry(data=[], produced_at=100.0, ttl=60)
        assert not entry.is_expired(160.0)
        assert entry.is_expired(160.5)
        assert entry.age(130.0) == 30.0


class TestGet:
    """Hits, misses and TTL expiry."""

    def test_round_trip_returns_same_object(self):
        clock = FakeClock()
        cache = CoalescingCache(clock=clock)
        loader = CountingLoader()

        first = cache.get("k", loader, ttl=60)
        second = cache.get("k", loader, ttl=60)

        assert second.data is first.data
        assert loader.calls == 1
        assert cache.metrics.misses == 1
        assert cache.metrics.hits == 1

    def test_expired_entry_is_refetched(self):
        clock = FakeClock()
        cache = CoalescingCache(clock=clock)
        loader = CountingLoader()

        cache.get("k", loader, ttl=60)
        clock.advance(61)
        result = cache.get("k", loader, ttl=60)

        assert result.data == {"version": 2}
        assert result.produced_at == clock.now
        assert not result.stale
        assert cache.metrics.refreshes == 1

    def test_force_bypasses_ttl(self):
        cache = CoalescingCache(clock=FakeClock())
        loader = CountingLoader()
        cache.get("k", loader, ttl=60)
        assert cache.get("k", loader, ttl=60, force=True).data == {"version": 2}

    def test_keys_are_independent(self):
        cache = CoalescingCache(clock=FakeClock())
        cache.get("a", lambda: "A", ttl=60)
        cache.get("b", lambda: "B", ttl=60)
        assert sorted(cache.keys()) == ["a", "b"]
        assert cache.get("a", lambda: "other", ttl=60).data == "A"


class TestStaleFallback:
    """Failed refreshes fall back to the previous value."""

    def test_failed_refresh_serves_stale(self):
        clock = FakeClock()
        cache = CoalescingCache(clock=clock)
        loader = CountingLoader()

        original = cache.get("k", loader, ttl=60)
        clock.advance(120)
        loader.fail = True
        result = cache.get("k", loader, ttl=60)

        assert result.stale
        assert result.data is original.data
        assert result.produced_at == original.produced_at
        assert cache.metrics.stale_served == 1
        assert not cache.peek("k").refreshing

    def test_forced_refresh_also_falls_back(self):
        cache = CoalescingCache(clock=FakeClock())
        loader = CountingLoader()
        cache.get("k", loader, ttl=60)
        loader.fail = True
        assert cache.get("k", loader, ttl=60, force=True).stale

    def test_failure_without_previous_value_propagates(self):
        cache = CoalescingCache(clock=FakeClock())
        loader = CountingLoader()
        loader.fail = True
        with pytest.raises(SourceFetchError):
            cache.get("k", loader, ttl=60)
        assert cache.peek("k") is None
        assert not cache.is_refreshing("k")

    def test_next_read_retries_after_failure(self):
        cache = CoalescingCache(clock=FakeClock())
        loader = CountingLoader()
        loader.fail = True
        with pytest.raises(SourceFetchError):
            cache.get("k", loader, ttl=60)
        loader.fail = False
        assert cache.get("k", loader, ttl=60).data == {"version": 2}

    def test_schema_errors_are_not_absorbed(self):
        clock = FakeClock()
        cache = CoalescingCache(clock=clock)
        cache.get("k", lambda: "good", ttl=60)
        clock.advance(61)

        def broken():
            raise SchemaValidationError("missing columns")

        with pytest.raises(SchemaValidationError):
            cache.get("k", broken, ttl=60)
        assert cache.peek("k").data == "good"


class TestCoalescing:
    """Concurrent readers share one in-flight load."""

    def test_concurrent_readers_share_one_fetch(self):
        cache = CoalescingCache()
        started = threading.Event()
        release = threading.Event()
        calls = []

        def slow_loader():
            calls.append(1)
            started.set()
            release.wait(timeout=5)
            return ["row"]

        readers = 8
        with ThreadPoolExecutor(max_workers=readers) as executor:
            leader = executor.submit(cache.get, "k", slow_loader, 60)
            assert started.wait(timeout=5)
            assert cache.is_refreshing("k")

            followers = [executor.submit(cache.get, "k", slow_loader, 60) for _ in range(readers - 1)]
            deadline = time.monotonic() + 5
            while cache.metrics.coalesced < readers - 1 and time.monotonic() < deadline:
                time.sleep(0.01)
            release.set()

            results = [leader.result(timeout=5)] + [f.result(timeout=5) for f in followers]

        assert len(calls) == 1
        assert cache.metrics.coalesced == readers - 1
        assert all(r.data is results[0].data for r in results)
        assert not cache.is_refreshing("k")

    def test_waiters_receive_the_same_error(self):
        cache = CoalescingCache()
        started = threading.Event()
        release = threading.Event()

        def failing_loader():
            started.set()
            release.wait(timeout=5)
            raise SourceFetchError("down")

        with ThreadPoolExecutor(max_workers=2) as executor:
            leader = executor.submit(cache.get, "k", failing_loader, 60)
            assert started.wait(timeout=5)
            follower = executor.submit(cache.get, "k", failing_loader, 60)
            deadline = time.monotonic() + 5
            while cache.metrics.coalesced < 1 and time.monotonic() < deadline:
                time.sleep(0.01)
            release.set()

            with pytest.raises(SourceFetchError):
                leader.result(timeout=5)
            with pytest.raises(SourceFetchError):
                follower.result(timeout=5)


class TestMaintenance:
    """Invalidate, clear and generations."""

    def test_invalidate_bumps_generation(self):
        cache = CoalescingCache(clock=FakeClock())
        cache.get("k", lambda: 1, ttl=60)
        assert cache.generation("k") == 1
        assert cache.invalidate("k") is True
        assert cache.generation("k") == 2
        assert cache.peek("k") is None
        assert cache.invalidate("k") is False

    def test_clear(self):
        cache = CoalescingCache(clock=FakeClock())
        cache.get("a", lambda: 1, ttl=60)
        cache.get("b", lambda: 2, ttl=60)
        assert cache.clear() == 2
        assert cache.keys() == []
        assert cache.generation("a") == 2

    def test_metrics_to_dict(self):
        cache = CoalescingCache(clock=FakeClock())
        cache.get("k", lambda: 1, ttl=60)
        assert cache.metrics.to_dict() == {
            "hits": 0, "misses": 1, "refreshes": 0, "coalesced": 0, "stale_served": 0, "failures": 0,
        }


class TestInvalidationDuringLoad:
    """An invalidation wins over a load that was already running."""

    def test_inflight_result_is_not_stored(self):
        cache = CoalescingCache(clock=FakeClock())
        started = threading.Event()
        release = threading.Event()

        def slow_loader():
            started.set()
            release.wait(timeout=5)
            return "pre-write rows"

        with ThreadPoolExecutor(max_workers=1) as executor:
            leader = executor.submit(cache.get, "ROSTER:full", slow_loader, 300)
            assert started.wait(timeout=5)
            cache.invalidate("ROSTER:full")
            generation = cache.generation("ROSTER:full")
            release.set()
            result = leader.result(timeout=5)

        assert result.data == "pre-write rows"
        assert cache.peek("ROSTER:full") is None
        assert cache.generation("ROSTER:full") == generation
        assert not cache.is_refreshing("ROSTER:full")

    def test_readers_after_invalidation_start_a_new_load(self):
        cache = CoalescingCache(clock=FakeClock())
        started = threading.Event()
        release = threading.Event()

        def slow_loader():
            started.set()
            release.wait(timeout=5)
            return "old"

        with ThreadPoolExecutor(max_workers=1) as executor:
            leader = executor.submit(cache.get, "k", slow_loader, 60)
            assert started.wait(timeout=5)
            cache.invalidate("k")
            assert not cache.is_refreshing("k")

            assert cache.get("k", lambda: "new", ttl=60).data == "new"
            release.set()
            assert leader.result(timeout=5).data == "old"

        assert cache.peek("k").data == "new"

    def test_invalidate_prefix(self):
        cache = CoalescingCache(clock=FakeClock())
        for key in ("ROSTER:full", "ROSTER:A1:Z4", "GAME_INFO:full"):
            cache.get(key, lambda: 1, ttl=60)
        assert cache.invalidate_prefix("ROSTER:") == 2
        assert cache.keys() == ["GAME_INFO:full"]


class TestExpiredKeyCoalescing:
    """Readers of one expired key share a single failing refresh."""

    def test_waiters_all_get_the_stale_value(self):
        clock = FakeClock()
        cache = CoalescingCache(clock=clock)
        seeded = cache.get("k", lambda: ["cached row"], ttl=60)
        clock.advance(61)

        started = threading.Event()
        release = threading.Event()
        calls = []

        def failing_loader():
            calls.append(1)
            started.set()
            release.wait(timeout=5)
            raise SourceFetchError("upstream down")

        readers = 5
        with ThreadPoolExecutor(max_workers=readers) as executor:
            leader = executor.submit(cache.get, "k", failing_loader, 60)
            assert started.wait(timeout=5)
            followers = [executor.submit(cache.get, "k", failing_loader, 60) for _ in range(readers - 1)]
            deadline = time.monotonic() + 5
            while cache.metrics.coalesced < readers - 1 and time.monotonic() < deadline:
                time.sleep(0.01)
            release.set()
            results = [leader.result(timeout=5)] + [f.result(timeout=5) for f in followers]

        assert len(calls) == 1
        assert all(r.stale for r in results)
        assert all(r.data is seeded.data for r in results)
        assert all(r.produced_at == seeded.produced_at for r in results)


class TestInterruptedLoad:
    """Loader errors outside Exception still release the key."""

    def test_keyboard_interrupt_does_not_wedge_the_key(self):
        cache = CoalescingCache(clock=FakeClock())

        def interrupted():
            raise KeyboardInterrupt

        with pytest.raises(KeyboardInterrupt):
            cache.get("k", interrupted, ttl=60)

        assert not cache.is_refreshing("k")
        assert cache.get("k", lambda: "recovered", ttl=60).data == "recovered"
