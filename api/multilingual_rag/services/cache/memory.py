"""Bounded in-process cache tier with frequency-based eviction.

Used as the first tier of both the translation and search caches. When a new
key arrives at capacity the entry with the fewest hits is evicted, ties going
to the oldest entry. Entries expire lazily on read.
"""

import dataclasses
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, Optional, TypeVar

from multilingual_rag.metrics.cache_metrics import cache_evictions_total, cache_size

logger = logging.getLogger(__name__)

V = TypeVar("V")


@dataclass
class CacheEntry(Generic[V]):
    """A cached value with the metadata eviction decisions are based on."""

    key: str
    value: V
    created_at: float
    hit_count: int = 1
    normalized_text: str = ""
    # Overrides created_at + ttl when set
    expires_at: Optional[float] = None


class FrequencyCache(Generic[V]):
    """Thread-safe bounded map with LFU eviction and TTL expiry.

    Every public operation is atomic under a re-entrant lock. Callers receive
    snapshots of entries, never the stored objects.
    """

    def __init__(
        self,
        name: str,
        max_size: int,
        ttl_seconds: float,
        clock: Callable[[], float] = time.time,
    ):
        if max_size < 1:
            raise ValueError(f"max_size must be >= 1, got {max_size}")
        self.name = name
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, CacheEntry[V]] = {}
        self._lock = threading.RLock()

        # Statistics
        self._hits = 0
        self._misses = 0
        self._evictions = 0

    def _is_expired(self, entry: CacheEntry[V]) -> bool:
        if entry.expires_at is not None:
            return self._clock() > entry.expires_at
        return (self._clock() - entry.created_at) > self.ttl_seconds

    def lookup(
        self,
        key: str,
        prefix: Optional[str] = None,
        normalized_text: Optional[str] = None,
    ) -> Optional[CacheEntry[V]]:
        """Find a live entry and count the hit.

        Tries ``key`` first. When that misses and ``prefix`` and
        ``normalized_text`` are given, scans entries under the prefix whose
        stored normalized text equals ``normalized_text``. An expired match is
        removed and reported as a miss.
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is None and prefix is not None and normalized_text is not None:
                for candidate_key, candidate in self._entries.items():
                    if (
                        candidate_key.startswith(prefix)
                        and candidate.normalized_text == normalized_text
                    ):
                        entry = candidate
                        break

            if entry is None:
                self._misses += 1
                return None

            if self._is_expired(entry):
                del self._entries[entry.key]
                cache_size.labels(cache=self.name).set(len(self._entries))
                self._misses += 1
                logger.debug(f"[{self.name}] entry expired")
                return None

            entry.hit_count += 1
            self._hits += 1
            return dataclasses.replace(entry)

    def set(
        self,
        key: str,
        value: V,
        normalized_text: str = "",
        created_at: Optional[float] = None,
        hit_count: int = 1,
        expires_at: Optional[float] = None,
    ) -> Optional[str]:
        """Insert or refresh an entry.

        Returns the evicted key when a new key displaced another entry.
        """
        evicted_key = None
        with self._lock:
            if key not in self._entries and len(self._entries) >= self.max_size:
                evicted_key = self._evict_one()

            self._entries[key] = CacheEntry(
                key=key,
                value=value,
                created_at=self._clock() if created_at is None else created_at,
                hit_count=max(1, hit_count),
                normalized_text=normalized_text,
                expires_at=expires_at,
            )
            cache_size.labels(cache=self.name).set(len(self._entries))
        return evicted_key

    def _evict_one(self) -> Optional[str]:
        if not self._entries:
            return None
        victim = min(
            self._entries.values(), key=lambda e: (e.hit_count, e.created_at)
        )
        del self._entries[victim.key]
        self._evictions += 1
        cache_evictions_total.labels(cache=self.name).inc()
        logger.debug(
            f"[{self.name}] evicted entry with {victim.hit_count} hit(s) "
            f"({len(self._entries)}/{self.max_size})"
        )
        return victim.key

    def delete(self, key: str) -> bool:
        with self._lock:
            removed = self._entries.pop(key, None) is not None
            cache_size.labels(cache=self.name).set(len(self._entries))
            return removed

    def peek(self, key: str) -> Optional[CacheEntry[V]]:
        """Return a snapshot without counting a hit or checking expiry."""
        with self._lock:
            entry = self._entries.get(key)
            return dataclasses.replace(entry) if entry else None

    def clear(self) -> None:
        """Clear all entries and reset statistics."""
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0
            self._evictions = 0
            cache_size.labels(cache=self.name).set(0)
        logger.info(f"[{self.name}] in-process cache cleared")

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics.

        Returns:
            Dict with size, max_size, hits, misses, hit_rate, evictions and the
            summed hit counts of live entries.
        """
        with self._lock:
            total = self._hits + self._misses
            return {
                "size": len(self._entries),
                "max_size": self.max_size,
                "ttl_seconds": self.ttl_seconds,
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": self._hits / total if total > 0 else 0.0,
                "evictions": self._evictions,
                "total_hits": sum(e.hit_count for e in self._entries.values()),
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._entries
