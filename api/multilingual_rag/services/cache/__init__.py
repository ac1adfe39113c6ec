"""Cache building blocks shared by the translation and search caches.

This package provides:
- normalize/search_key/translation_key: canonical cache keys
- FrequencyCache: bounded in-process tier with LFU eviction
- SQLiteCacheBackend: durable tier behind the DurableCacheBackend contract
"""

from multilingual_rag.services.cache.durable import SQLiteCacheBackend
from multilingual_rag.services.cache.memory import CacheEntry, FrequencyCache
from multilingual_rag.services.cache.normalization import (
    normalize,
    search_key,
    translation_key,
)

__all__ = [
    "CacheEntry",
    "FrequencyCache",
    "SQLiteCacheBackend",
    "normalize",
    "search_key",
    "translation_key",
]
