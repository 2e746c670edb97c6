"""Tests for the TTL/LRU cache shared by the dedupe guard and rule engine."""

from __future__ import annotations

import pytest

from src.contact_sync.core.cache import TTLCache


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestTTLCache:
    def test_get_set_delete(self) -> None:
        cache: TTLCache[str] = TTLCache(max_size=3, ttl_seconds=10)

        cache.set("a", "1")

        assert cache.get("a") == "1"
        assert "a" in cache
        assert cache.delete("a") is True
        assert cache.delete("a") is False
        assert cache.get("a") is None

    def test_entries_expire(self) -> None:
        clock = FakeClock()
        cache: TTLCache[int] = TTLCache(max_size=3, ttl_seconds=10, clock=clock)
        cache.set("a", 1)

        clock.now = 9.9
        assert cache.get("a") == 1
        clock.now = 10.0
        assert cache.get("a") is None
        assert len(cache) == 0

    def test_least_recently_used_is_evicted(self) -> None:
        cache: TTLCache[int] = TTLCache(max_size=2, ttl_seconds=60)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.get("a")

        cache.set("c", 3)

        assert "b" not in cache
        assert cache.get("a") == 1
        assert cache.get("c") == 3

    def test_overwrite_does_not_evict(self) -> None:
        cache: TTLCache[int] = TTLCache(max_size=2, ttl_seconds=60)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("a", 10)

        assert len(cache) == 2
        assert cache.get("b") == 2

    def test_prune_and_clear(self) -> None:
        clock = FakeClock()
        cache: TTLCache[int] = TTLCache(max_size=5, ttl_seconds=10, clock=clock)
        cache.set("old", 1)
        clock.now = 5
        cache.set("new", 2)
        clock.now = 12

        assert cache.prune() == 1
        assert len(cache) == 1
        cache.clear()
        assert len(cache) == 0

    def test_max_size_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            TTLCache(max_size=0)
