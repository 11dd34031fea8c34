"""Tests for DeviceCache."""

import asyncio

import pytest

from iotagent.cache import CacheStatus, DeviceCache


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return DeviceCache(ttl=60, invalid_ttl=300, clock=clock)


DESCRIPTOR = {"id": "d1", "label": "sensor"}


class TestDeviceCache:

    def test_miss_on_empty(self, cache):
        lookup = cache.get("acme", "d1")
        assert lookup.status is CacheStatus.MISS
        assert lookup.descriptor is None
        assert not lookup.hit

    def test_hit_after_put(self, cache):
        cache.put("acme", "d1", DESCRIPTOR)

        lookup = cache.get("acme", "d1")
        assert lookup.hit
        assert lookup.descriptor == DESCRIPTOR

    def test_tenants_isolated(self, cache):
        cache.put("acme", "d1", DESCRIPTOR)
        assert cache.get("globex", "d1").status is CacheStatus.MISS

    def test_expires_after_ttl(self, cache, clock):
        cache.put("acme", "d1", DESCRIPTOR)
        clock.advance(60)

        assert cache.get("acme", "d1").status is CacheStatus.MISS
        assert len(cache) == 0

    def test_hit_refreshes_ttl(self, cache, clock):
        cache.put("acme", "d1", DESCRIPTOR)
        clock.advance(50)
        assert cache.get("acme", "d1").hit

        clock.advance(50)
        assert cache.get("acme", "d1").hit

        clock.advance(60)
        assert cache.get("acme", "d1").status is CacheStatus.MISS

    def test_known_absent(self, cache):
        cache.put_invalid("acme", "ghost")

        lookup = cache.get("acme", "ghost")
        assert lookup.status is CacheStatus.KNOWN_ABSENT
        assert lookup.descriptor is None

    def test_known_absent_not_refreshed_by_reads(self, cache, clock):
        cache.put_invalid("acme", "ghost")
        clock.advance(299)
        assert cache.get("acme", "ghost").status is CacheStatus.KNOWN_ABSENT

        clock.advance(1)
        assert cache.get("acme", "ghost").status is CacheStatus.MISS

    def test_put_replaces_invalid(self, cache):
        cache.put_invalid("acme", "d1")
        cache.put("acme", "d1", DESCRIPTOR)
        assert cache.get("acme", "d1").hit

    def test_custom_entry_ttl(self, cache, clock):
        cache.put("acme", "d1", DESCRIPTOR, ttl=5)
        clock.advance(5)
        assert cache.get("acme", "d1").status is CacheStatus.MISS

    def test_delete(self, cache):
        cache.put("acme", "d1", DESCRIPTOR)
        assert cache.delete("acme", "d1") is True
        assert cache.delete("acme", "d1") is False
        assert cache.get("acme", "d1").status is CacheStatus.MISS

    def test_prune_removes_only_expired(self, cache, clock):
        cache.put("acme", "d1", DESCRIPTOR)
        cache.put_invalid("acme", "ghost")
        clock.advance(30)
        cache.put("acme", "d2", DESCRIPTOR)
        clock.advance(30)

        assert cache.prune() == 1
        assert len(cache) == 2
        assert cache.get("acme", "d2").hit
        assert cache.get("acme", "ghost").status is CacheStatus.KNOWN_ABSENT

    def test_prune_keeps_entries_written_after_sweep_started(self, clock):
        state = {"write_on_next_read": False}

        def sweep_clock():
            now = clock()
            if state["write_on_next_read"]:
                state["write_on_next_read"] = False
                cache.put("acme", "late", {"id": "late"})
            return now

        cache = DeviceCache(ttl=60, invalid_ttl=300, clock=sweep_clock)
        cache.put("acme", "d1", DESCRIPTOR)
        clock.advance(61)

        state["write_on_next_read"] = True
        assert cache.prune() == 1

        assert len(cache) == 1
        assert cache.get("acme", "late").hit
        assert cache.get("acme", "d1").status is CacheStatus.MISS

    def test_clear(self, cache):
        cache.put("acme", "d1", DESCRIPTOR)
        cache.put_invalid("acme", "ghost")
        cache.clear()
        assert len(cache) == 0

    def test_prune_interval(self):
        assert DeviceCache(ttl=60).prune_interval == 20

    @pytest.mark.parametrize("kwargs", [{"ttl": 0}, {"invalid_ttl": -1}])
    def test_rejects_non_positive_ttl(self, kwargs):
        with pytest.raises(ValueError):
            DeviceCache(**kwargs)

    @pytest.mark.asyncio
    async def test_pruner_sweeps_in_background(self, cache, clock):
        cache.put("acme", "d1", DESCRIPTOR)
        clock.advance(61)

        task = asyncio.create_task(cache.run_pruner(interval=0.01))
        try:
            for _ in range(100):
                if len(cache) == 0:
                    break
                await asyncio.sleep(0.01)
        finally:
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        assert len(cache) == 0
