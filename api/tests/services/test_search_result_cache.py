"""Tests for the search result cache."""

from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from multilingual_rag.services.cache.durable import SQLiteCacheBackend
from multilingual_rag.services.rag.search_cache import SearchResultCache

EVIDENCE = [{"id": 7, "title": "ค่าบริการ", "content": "บริการราคา 5000 บาท"}]


@pytest_asyncio.fixture
async def durable(tmp_path, clock):
    backend = SQLiteCacheBackend(str(tmp_path / "cache.db"), clock=clock)
    await backend.initialize()
    return backend


class TestMemoryTier:
    """Tests for exact normalized matching."""

    @pytest.mark.asyncio
    async def test_hit_after_whitespace_and_case_changes(self, clock):
        cache = SearchResultCache(clock=clock)
        await cache.set("Hello  World", "Greeting answer text", [])

        hit = await cache.get("hello world")

        assert hit is not None
        assert hit.answer == "Greeting answer text"
        assert hit.tier == "memory"

    @pytest.mark.asyncio
    async def test_thai_query_with_padding(self, clock):
        cache = SearchResultCache(clock=clock)
        await cache.set("ราคาบริการ", "บริการราคา 5000 บาท", EVIDENCE)

        hit = await cache.get("  ราคาบริการ  ")

        assert hit.answer == "บริการราคา 5000 บาท"
        assert hit.evidence_chunks == EVIDENCE
        assert hit.hit_count == 2

    @pytest.mark.asyncio
    async def test_short_answers_are_refused(self, clock):
        cache = SearchResultCache(clock=clock)

        assert await cache.set("ราคา", "ไม่ทราบ", []) is False
        assert await cache.set("ราคา", "", []) is False
        assert await cache.get("ราคา") is None

    @pytest.mark.asyncio
    async def test_miss_on_different_query(self, clock):
        cache = SearchResultCache(clock=clock)
        await cache.set("ราคาห้องพัก", "ห้องพักราคา 3000 บาท", [])

        assert await cache.get("ราคาผ่าตัด") is None

    @pytest.mark.asyncio
    async def test_clear_empties_memory(self, clock):
        cache = SearchResultCache(clock=clock)
        await cache.set("ราคาห้องพัก", "ห้องพักราคา 3000 บาท", [])

        cache.clear()

        assert await cache.get("ราคาห้องพัก") is None


class TestDurableTier:
    """Tests for durable reads, promotion and stats."""

    @pytest.mark.asyncio
    async def test_durable_hit_promotes_into_memory(self, durable, clock):
        writer = SearchResultCache(durable_backend=durable, clock=clock)
        await writer.set("ราคาบริการ", "บริการราคา 5000 บาท", EVIDENCE)

        reader = SearchResultCache(durable_backend=durable, clock=clock)
        first = await reader.get("ราคาบริการ")
        second = await reader.get("ราคาบริการ")

        assert first.tier == "durable"
        assert first.hit_count == 2
        assert first.evidence_chunks == EVIDENCE
        assert second.tier == "memory"
        assert second.hit_count == 3

    @pytest.mark.asyncio
    async def test_promoted_entry_keeps_original_expiry(self, durable, clock):
        writer = SearchResultCache(ttl_seconds=600, durable_backend=durable, clock=clock)
        await writer.set("ราคาบริการ", "บริการราคา 5000 บาท", [])

        clock.advance(500)
        reader = SearchResultCache(ttl_seconds=600, durable_backend=durable, clock=clock)
        assert await reader.get("ราคาบริการ") is not None

        clock.advance(101)
        assert await reader.get("ราคาบริการ") is None

    @pytest.mark.asyncio
    async def test_promoted_entry_keeps_durable_write_time_for_eviction(
        self, durable, clock
    ):
        def make_cache():
            return SearchResultCache(
                max_size=2,
                ttl_seconds=600,
                durable_backend=durable,
                durable_ttl_seconds=3600,
                clock=clock,
            )

        writer = make_cache()
        await writer.set("ราคาบริการ", "บริการราคา 5000 บาท", [])

        clock.advance(100)
        reader = make_cache()
        await reader.set("ราคาห้องพัก", "ห้องพักราคา 3000 บาท", [])
        assert (await reader.get("ราคาห้องพัก")).hit_count == 2
        assert (await reader.get("ราคาบริการ")).hit_count == 2

        # Equal hits: the older durable write is evicted first
        await reader.set("เวลาทำการ", "เปิดทุกวัน 9:00 ถึง 18:00 น.", [])

        assert (await reader.get("ราคาห้องพัก")).tier == "memory"
        assert (await reader.get("ราคาบริการ")).tier == "durable"

    @pytest.mark.asyncio
    async def test_promoted_entry_gets_at_most_one_memory_window(self, durable, clock):
        writer = SearchResultCache(
            ttl_seconds=600, durable_backend=durable, durable_ttl_seconds=3600, clock=clock
        )
        await writer.set("ราคาบริการ", "บริการราคา 5000 บาท", [])

        clock.advance(100)
        reader = SearchResultCache(
            ttl_seconds=600, durable_backend=durable, durable_ttl_seconds=3600, clock=clock
        )
        assert (await reader.get("ราคาบริการ")).tier == "durable"

        clock.advance(600)
        assert (await reader.get("ราคาบริการ")).tier == "memory"

        clock.advance(1)
        assert (await reader.get("ราคาบริการ")).tier == "durable"

    @pytest.mark.asyncio
    async def test_malformed_durable_value_is_a_miss(self, clock):
        backend = MagicMock()
        backend.get = AsyncMock(return_value=MagicMock(value="not a dict"))
        cache = SearchResultCache(durable_backend=backend, clock=clock)

        assert await cache.get("ราคา") is None

    @pytest.mark.asyncio
    async def test_durable_failure_degrades_to_miss(self, clock):
        backend = MagicMock()
        backend.get = AsyncMock(side_effect=RuntimeError("database is locked"))
        cache = SearchResultCache(durable_backend=backend, clock=clock)

        assert await cache.get("ราคา") is None

    @pytest.mark.asyncio
    async def test_stats_combine_tiers(self, durable, clock):
        cache = SearchResultCache(durable_backend=durable, clock=clock)
        await cache.set("ราคาบริการ", "บริการราคา 5000 บาท", [])
        await cache.get("ราคาบริการ")

        stats = await cache.get_stats()

        assert stats["memory"]["size"] == 1
        assert stats["durable"] == {"count": 1, "total_access": 1}
        assert stats["total"] == {"entries": 2, "total_hits": 3}

    @pytest.mark.asyncio
    async def test_stats_without_durable_tier(self, clock):
        cache = SearchResultCache(clock=clock)

        stats = await cache.get_stats()

        assert stats["durable"] == {"count": 0, "total_access": 0}
        assert stats["total"]["entries"] == 0
