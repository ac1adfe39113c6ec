"""Search result caching for the retrieval step.

Stores the grounded answer and its evidence chunks under the normalized
pivot-language query so repeated questions skip the generation call.

Tier 1: In-memory frequency cache (default: 500 entries, 60 minutes)
Tier 2: Optional durable backend, keys prefixed "search:"

Matching is exact on the normalized key; there is no fuzzy lookup.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from multilingual_rag.metrics.cache_metrics import (
    cache_durable_errors_total,
    cache_lookups_total,
    cache_writes_total,
)
from multilingual_rag.services.cache.memory import FrequencyCache
from multilingual_rag.services.cache.normalization import search_key
from multilingual_rag.services.interfaces import DurableCacheBackend

logger = logging.getLogger(__name__)

CACHE_NAME = "search"
DURABLE_PREFIX = "search:"

# Shorter answers are usually errors or empty generations
MIN_CACHEABLE_ANSWER_LENGTH = 10


@dataclass
class SearchCacheEntry:
    """Value stored per normalized query."""

    answer: str
    evidence_chunks: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class SearchCacheHit:
    """A cache hit together with where it came from."""

    answer: str
    evidence_chunks: List[Dict[str, Any]]
    hit_count: int
    tier: str  # "memory" | "durable"


class SearchResultCache:
    """Two-tier cache of (answer, evidence chunks) by normalized query."""

    def __init__(
        self,
        max_size: int = 500,
        ttl_seconds: float = 60 * 60,
        durable_backend: Optional[DurableCacheBackend] = None,
        durable_ttl_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the search result cache.

        Args:
            max_size: Maximum number of in-process entries
            ttl_seconds: Time-to-live of in-process entries in seconds
            durable_backend: Optional second tier
            durable_ttl_seconds: Durable TTL, defaults to ``ttl_seconds``
            clock: Time source in epoch seconds
        """
        self._memory: FrequencyCache[SearchCacheEntry] = FrequencyCache(
            CACHE_NAME, max_size=max_size, ttl_seconds=ttl_seconds, clock=clock
        )
        self._ttl_seconds = ttl_seconds
        self._durable = durable_backend
        self._durable_ttl_seconds = (
            ttl_seconds if durable_ttl_seconds is None else durable_ttl_seconds
        )
        self._clock = clock

        logger.info(
            f"SearchResultCache initialized: max_size={max_size}, "
            f"ttl={ttl_seconds}s, durable={'on' if durable_backend else 'off'}"
        )

    async def get(self, query: str) -> Optional[SearchCacheHit]:
        """Get a cached result for ``query`` if one is live in either tier."""
        key = search_key(query)
        logger.debug(f"Search cache lookup: {key[:40]!r}")

        entry = self._memory.lookup(key)
        if entry is not None:
            cache_lookups_total.labels(cache=CACHE_NAME, tier="memory", result="hit").inc()
            logger.info(f"Search cache memory hit ({entry.hit_count} hits)")
            return SearchCacheHit(
                answer=entry.value.answer,
                evidence_chunks=list(entry.value.evidence_chunks),
                hit_count=entry.hit_count,
                tier="memory",
            )
        cache_lookups_total.labels(cache=CACHE_NAME, tier="memory", result="miss").inc()

        if self._durable is None:
            return None

        durable_key = DURABLE_PREFIX + key
        try:
            record = await self._durable.get(durable_key)
        except Exception as e:
            cache_durable_errors_total.labels(cache=CACHE_NAME, operation="get").inc()
            logger.warning(f"Durable search cache read failed: {e}")
            return None

        value = record.value if record is not None else None
        if not isinstance(value, dict) or "answer" not in value:
            cache_lookups_total.labels(cache=CACHE_NAME, tier="durable", result="miss").inc()
            return None

        cache_lookups_total.labels(cache=CACHE_NAME, tier="durable", result="hit").inc()
        promoted = SearchCacheEntry(
            answer=value["answer"],
            evidence_chunks=list(value.get("evidence_chunks") or []),
        )
        hit_count = record.access_count + 1
        # Keep the durable write time; the in-process copy never outlives it
        self._memory.set(
            key,
            promoted,
            normalized_text=key,
            created_at=record.expires_at - self._durable_ttl_seconds,
            hit_count=hit_count,
            expires_at=min(record.expires_at, self._clock() + self._ttl_seconds),
        )
        try:
            await self._durable.increment_access(durable_key)
        except Exception as e:
            cache_durable_errors_total.labels(
                cache=CACHE_NAME, operation="increment_access"
            ).inc()
            logger.warning(f"Durable search cache access update failed: {e}")

        logger.info(f"Search cache durable hit ({hit_count} hits)")
        return SearchCacheHit(
            answer=promoted.answer,
            evidence_chunks=list(promoted.evidence_chunks),
            hit_count=hit_count,
            tier="durable",
        )

    async def set(
        self, query: str, answer: str, evidence_chunks: List[Dict[str, Any]]
    ) -> bool:
        """Store a result in both tiers.

        Returns:
            False when the answer is too short to be worth caching.
        """
        if not answer or len(answer) < MIN_CACHEABLE_ANSWER_LENGTH:
            cache_writes_total.labels(cache=CACHE_NAME, outcome="refused").inc()
            logger.info("Not caching search result: answer too short")
            return False

        key = search_key(query)
        chunks = list(evidence_chunks or [])
        self._memory.set(
            key,
            SearchCacheEntry(answer=answer, evidence_chunks=chunks),
            normalized_text=key,
        )
        cache_writes_total.labels(cache=CACHE_NAME, outcome="stored").inc()

        if self._durable is not None:
            try:
                await self._durable.upsert(
                    DURABLE_PREFIX + key,
                    {"answer": answer, "evidence_chunks": chunks},
                    expires_at=self._clock() + self._durable_ttl_seconds,
                    cache_type=CACHE_NAME,
                    normalized_text=key,
                )
            except Exception as e:
                cache_writes_total.labels(cache=CACHE_NAME, outcome="durable_failed").inc()
                cache_durable_errors_total.labels(cache=CACHE_NAME, operation="upsert").inc()
                logger.warning(f"Durable search cache write failed: {e}")
        return True

    def clear(self) -> None:
        """Clear the in-process tier. Durable rows are kept."""
        self._memory.clear()

    async def get_stats(self) -> Dict[str, Any]:
        """Combined statistics for both tiers."""
        memory = self._memory.get_stats()
        durable = {"count": 0, "total_access": 0}
        if self._durable is not None:
            try:
                durable = await self._durable.stats(CACHE_NAME)
            except Exception as e:
                cache_durable_errors_total.labels(cache=CACHE_NAME, operation="stats").inc()
                logger.warning(f"Durable search cache stats failed: {e}")

        return {
            "memory": memory,
            "durable": durable,
            "total": {
                "entries": memory["size"] + durable["count"],
                "total_hits": memory["total_hits"] + durable["total_access"],
            },
        }
