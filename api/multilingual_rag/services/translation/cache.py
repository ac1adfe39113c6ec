"""Two-tier exact-match cache for translation results.

Tier 1: In-memory frequency cache (default: 1000 entries, 120 minutes)
Tier 2: Optional durable backend (default: 7 days), keys prefixed "translation:"

Lookups match on (source, target, normalized text) only. Durable failures
are logged and treated as a miss or a skipped write.
"""

import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional

from multilingual_rag.metrics.cache_metrics import (
    cache_durable_errors_total,
    cache_lookups_total,
    cache_writes_total,
)
from multilingual_rag.services.cache.memory import FrequencyCache
from multilingual_rag.services.cache.normalization import translation_key
from multilingual_rag.services.interfaces import DurableCacheBackend

logger = logging.getLogger(__name__)

CACHE_NAME = "translation"
DURABLE_PREFIX = "translation:"

# Longer texts are translated every time
MAX_CACHEABLE_TEXT_LENGTH = 500

TranslateFn = Callable[[str, str, str], Awaitable[str]]


class TranslationCache:
    """Cache translations keyed by language pair and normalized text."""

    def __init__(
        self,
        max_size: int = 1000,
        ttl_seconds: float = 120 * 60,
        durable_backend: Optional[DurableCacheBackend] = None,
        durable_ttl_seconds: float = 7 * 24 * 3600,
        clock: Callable[[], float] = time.time,
    ):
        self._memory: FrequencyCache[str] = FrequencyCache(
            CACHE_NAME, max_size=max_size, ttl_seconds=ttl_seconds, clock=clock
        )
        self._durable = durable_backend
        self._durable_ttl_seconds = durable_ttl_seconds
        self._clock = clock

        logger.info(
            f"TranslationCache initialized: max_size={max_size}, "
            f"ttl={ttl_seconds}s, durable={'on' if durable_backend else 'off'}"
        )

    @staticmethod
    def _key_parts(text: str, source_lang: str, target_lang: str) -> tuple[str, str, str]:
        key = translation_key(text, source_lang, target_lang)
        prefix = f"{source_lang}:{target_lang}:"
        return key, prefix, key[len(prefix):]

    async def get(
        self, text: str, source_lang: str, target_lang: str
    ) -> Optional[str]:
        """Return the cached translation, or None on a miss."""
        key, prefix, normalized = self._key_parts(text, source_lang, target_lang)

        entry = self._memory.lookup(key, prefix=prefix, normalized_text=normalized)
        if entry is not None:
            cache_lookups_total.labels(cache=CACHE_NAME, tier="memory", result="hit").inc()
            logger.debug(
                f"Translation cache hit {source_lang}->{target_lang} "
                f"({entry.hit_count} hits)"
            )
            return entry.value
        cache_lookups_total.labels(cache=CACHE_NAME, tier="memory", result="miss").inc()

        if self._durable is None:
            return None

        durable_key = DURABLE_PREFIX + key
        try:
            record = await self._durable.get(durable_key)
        except Exception as e:
            cache_durable_errors_total.labels(cache=CACHE_NAME, operation="get").inc()
            logger.warning(f"Durable translation cache read failed: {e}")
            return None

        if record is None or not isinstance(record.value, str):
            cache_lookups_total.labels(cache=CACHE_NAME, tier="durable", result="miss").inc()
            return None

        cache_lookups_total.labels(cache=CACHE_NAME, tier="durable", result="hit").inc()
        # Promoted entries start a fresh in-process TTL window
        self._memory.set(
            key,
            record.value,
            normalized_text=normalized,
            hit_count=record.access_count + 1,
        )
        try:
            await self._durable.increment_access(durable_key)
        except Exception as e:
            cache_durable_errors_total.labels(
                cache=CACHE_NAME, operation="increment_access"
            ).inc()
            logger.warning(f"Durable translation cache access update failed: {e}")
        return record.value

    async def set(
        self, text: str, source_lang: str, target_lang: str, translated: str
    ) -> bool:
        """Store a translation in both tiers.

        Returns:
            False when the text is too long to cache, True otherwise.
        """
        if len(text) > MAX_CACHEABLE_TEXT_LENGTH:
            cache_writes_total.labels(cache=CACHE_NAME, outcome="refused").inc()
            return False

        key, _, normalized = self._key_parts(text, source_lang, target_lang)
        self._memory.set(key, translated, normalized_text=normalized)
        cache_writes_total.labels(cache=CACHE_NAME, outcome="stored").inc()

        if self._durable is not None:
            try:
                await self._durable.upsert(
                    DURABLE_PREFIX + key,
                    translated,
                    expires_at=self._clock() + self._durable_ttl_seconds,
                    cache_type=CACHE_NAME,
                    normalized_text=normalized,
                )
            except Exception as e:
                cache_writes_total.labels(cache=CACHE_NAME, outcome="durable_failed").inc()
                cache_durable_errors_total.labels(cache=CACHE_NAME, operation="upsert").inc()
                logger.warning(f"Durable translation cache write failed: {e}")
        return True

    async def wrap(
        self,
        text: str,
        source_lang: str,
        target_lang: str,
        translate_fn: TranslateFn,
    ) -> str:
        """Translate through the cache.

        Identical languages short-circuit without touching the cache or
        calling ``translate_fn``. Errors from ``translate_fn`` propagate and
        nothing is stored.
        """
        if source_lang == target_lang:
            return text

        cached = await self.get(text, source_lang, target_lang)
        if cached is not None:
            return cached

        translated = await translate_fn(text, source_lang, target_lang)
        await self.set(text, source_lang, target_lang, translated)
        return translated

    def clear(self) -> None:
        """Clear the in-process tier. Durable rows are kept."""
        self._memory.clear()

    def get_stats(self) -> Dict[str, Any]:
        """In-process tier statistics."""
        return self._memory.get_stats()

    async def get_durable_stats(self) -> Dict[str, int]:
        if self._durable is None:
            return {"count": 0, "total_access": 0}
        try:
            return await self._durable.stats(CACHE_NAME)
        except Exception as e:
            cache_durable_errors_total.labels(cache=CACHE_NAME, operation="stats").inc()
            logger.warning(f"Durable translation cache stats failed: {e}")
            return {"count": 0, "total_access": 0}
