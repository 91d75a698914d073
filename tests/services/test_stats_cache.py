"""Tests for the TTL-bounded status summary cache."""

from datetime import datetime, timezone

import pytest

from asset_kernel.domain.clock import DeterministicClock
from asset_kernel.services.stats_cache import StatsCache


@pytest.fixture
def clock():
    return DeterministicClock(datetime(2024, 3, 15, 9, 0, 0, tzinfo=timezone.utc))


class Loader:
    def __init__(self):
        self.calls = 0

    def __call__(self):
        self.calls += 1
        return {"NEW": self.calls}


class TestStatsCache:
    def test_second_read_is_a_hit(self, clock):
        cache = StatsCache(clock, ttl_seconds=60)
        loader = Loader()
        assert cache.get_or_load("k", loader) == {"NEW": 1}
        assert cache.get_or_load("k", loader) == {"NEW": 1}
        assert loader.calls == 1
        assert cache.stats.hits == 1
        assert cache.stats.misses == 1
        assert cache.stats.hit_rate == 0.5

    def test_entry_expires_after_ttl(self, clock):
        cache = StatsCache(clock, ttl_seconds=60)
        loader = Loader()
        cache.get_or_load("k", loader)
        clock.advance(59)
        cache.get_or_load("k", loader)
        clock.advance(1)
        assert cache.get_or_load("k", loader) == {"NEW": 2}

    def test_zero_ttl_disables_caching(self, clock):
        cache = StatsCache(clock, ttl_seconds=0)
        loader = Loader()
        cache.get_or_load("k", loader)
        cache.get_or_load("k", loader)
        assert loader.calls == 2

    def test_invalidate_one_key(self, clock):
        cache = StatsCache(clock)
        loader = Loader()
        cache.get_or_load("a", loader)
        cache.get_or_load("b", loader)
        cache.invalidate("a")
        assert len(cache) == 1
        assert cache.stats.invalidations == 1

    def test_invalidate_everything(self, clock):
        cache = StatsCache(clock)
        cache.get_or_load("a", Loader())
        cache.get_or_load("b", Loader())
        cache.invalidate()
        assert len(cache) == 0

    def test_negative_ttl_is_rejected(self, clock):
        with pytest.raises(ValueError):
            StatsCache(clock, ttl_seconds=-1)

    def test_loader_errors_are_not_cached(self, clock):
        cache = StatsCache(clock)

        def broken():
            raise RuntimeError("database gone")

        with pytest.raises(RuntimeError):
            cache.get_or_load("k", broken)
        assert len(cache) == 0
