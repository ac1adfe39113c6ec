"""Tests for the in-process frequency cache tier."""

import threading

import pytest
from multilingual_rag.services.cache.memory import FrequencyCache


def _cache(clock, max_size=3, ttl=60.0) -> FrequencyCache[str]:
    return FrequencyCache("test", max_size=max_size, ttl_seconds=ttl, clock=clock)


class TestLookup:
    """Tests for hits, misses and expiry."""

    def test_hit_increments_hit_count(self, clock):
        cache = _cache(clock)
        cache.set("k", "v")

        first = cache.lookup("k")
        second = cache.lookup("k")

        assert first.value == "v"
        assert first.hit_count == 2
        assert second.hit_count == 3

    def test_returned_entry_is_a_snapshot(self, clock):
        cache = _cache(clock)
        cache.set("k", "v")

        snapshot = cache.lookup("k")
        snapshot.hit_count = 100

        assert cache.peek("k").hit_count == 2

    def test_expired_entry_is_removed_and_missed(self, clock):
        cache = _cache(clock, ttl=60)
        cache.set("k", "v")

        clock.advance(60)
        assert cache.lookup("k") is not None

        clock.advance(1)
        assert cache.lookup("k") is None
        assert "k" not in cache

    def test_prefix_scan_matches_normalized_text(self, clock):
        cache = _cache(clock)
        cache.set("en:th:stored-key", "แปลแล้ว", normalized_text="hello world")

        entry = cache.lookup("en:th:other-key", prefix="en:th:", normalized_text="hello world")
        wrong_pair = cache.lookup("en:ko:other", prefix="en:ko:", normalized_text="hello world")

        assert entry.value == "แปลแล้ว"
        assert wrong_pair is None

    def test_stats(self, clock):
        cache = _cache(clock)
        cache.set("k", "v")
        cache.lookup("k")
        cache.lookup("missing")

        stats = cache.get_stats()

        assert stats["size"] == 1
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["hit_rate"] == 0.5
        assert stats["total_hits"] == 2


class TestEviction:
    """Tests for LFU eviction at capacity."""

    def test_size_bounded_after_max_plus_one_inserts(self, clock):
        cache = _cache(clock, max_size=3)
        for i in range(4):
            clock.advance(1)
            cache.set(f"k{i}", str(i))

        assert len(cache) == 3
        assert cache.get_stats()["evictions"] == 1

    def test_lowest_hit_count_is_evicted(self, clock):
        cache = _cache(clock, max_size=3)
        for key in ("a", "b", "c"):
            clock.advance(1)
            cache.set(key, key)
        cache.lookup("a")
        cache.lookup("c")

        evicted = cache.set("d", "d")

        assert evicted == "b"
        assert "b" not in cache

    def test_ties_evict_oldest(self, clock):
        cache = _cache(clock, max_size=2)
        cache.set("old", "1")
        clock.advance(5)
        cache.set("new", "2")

        assert cache.set("newest", "3") == "old"

    def test_overwrite_does_not_evict_and_refreshes(self, clock):
        cache = _cache(clock, max_size=2)
        cache.set("a", "1")
        cache.set("b", "2")
        cache.lookup("a")

        clock.advance(10)
        assert cache.set("a", "1b") is None

        entry = cache.peek("a")
        assert len(cache) == 2
        assert entry.value == "1b"
        assert entry.hit_count == 1
        assert entry.created_at == clock.now

    def test_max_size_must_be_positive(self, clock):
        with pytest.raises(ValueError):
            _cache(clock, max_size=0)


class TestConcurrency:
    """Tests for concurrent access from threads."""

    def test_parallel_inserts_stay_bounded(self):
        cache: FrequencyCache[int] = FrequencyCache("threads", max_size=50, ttl_seconds=60)

        def worker(offset: int):
            for i in range(200):
                cache.set(f"{offset}-{i}", i)
                cache.lookup(f"{offset}-{i // 2}")

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(cache) == 50
