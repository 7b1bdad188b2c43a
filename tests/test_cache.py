"""Unit tests for devsec/cache.py — ResultCache TTL memoization."""
import pytest

from devsec.cache import ResultCache


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return ResultCache(ttl_seconds=30, clock=clock, max_entries=3)


# ---------------------------------------------------------------------------
# get / set
# ---------------------------------------------------------------------------

class TestGetSet:
    def test_miss_returns_none(self, cache):
        assert cache.get("missing") is None
        assert cache.get_stats()["misses"] == 1

    def test_hit_within_ttl(self, cache, clock):
        cache.set(("collect", "root"), "value")
        clock.advance(29.9)
        assert cache.get(("collect", "root")) == "value"
        assert cache.get_stats()["hits"] == 1

    def test_expires_at_ttl(self, cache, clock):
        cache.set("k", "value")
        clock.advance(30)
        assert cache.get("k") is None
        assert cache.get_stats()["entry_count"] == 0

    def test_set_refreshes_timestamp(self, cache, clock):
        cache.set("k", 1)
        clock.advance(20)
        cache.set("k", 2)
        clock.advance(20)
        assert cache.get("k") == 2

    def test_invalid_ttl(self):
        with pytest.raises(ValueError):
            ResultCache(ttl_seconds=0)


# ---------------------------------------------------------------------------
# Eviction
# ---------------------------------------------------------------------------

class TestEviction:
    def test_oldest_evicted_when_full(self, cache, clock):
        for i in range(3):
            cache.set(f"k{i}", i)
            clock.advance(1)
        cache.set("k3", 3)
        assert cache.get("k0") is None
        assert cache.get("k3") == 3
        assert cache.get_stats()["entry_count"] == 3

    def test_expired_entries_evicted_before_oldest(self, cache, clock):
        cache.set("old", 0)
        clock.advance(31)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("c", 3)
        assert cache.get_stats()["entry_count"] == 3
        assert cache.get("a") == 1

    def test_invalidate(self, cache):
        cache.set("k", 1)
        assert cache.invalidate("k") is True
        assert cache.invalidate("k") is False
        assert cache.get("k") is None

    def test_clear_returns_count(self, cache):
        cache.set("a", 1)
        cache.set("b", 2)
        assert cache.clear() == 2
        assert cache.get_stats()["entry_count"] == 0


class TestIsolation:
    def test_instances_do_not_share_entries(self, clock):
        first = ResultCache(clock=clock)
        second = ResultCache(clock=clock)
        first.set("k", "first")
        assert second.get("k") is None
