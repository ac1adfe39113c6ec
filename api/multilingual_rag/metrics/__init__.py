"""Centralized metrics module for Prometheus instrumentation.

This package consolidates all Prometheus metrics definitions:
- cache_metrics: Translation and search cache lookups, writes and evictions
- retry_metrics: Retry executor attempts per policy
- translation_metrics: Language detection and translation outcomes
- pipeline_metrics: Chat pipeline stage timings and image augmentation

Usage:
    # Import individual metrics directly from submodules:
    from multilingual_rag.metrics.cache_metrics import cache_lookups_total
    from multilingual_rag.metrics.pipeline_metrics import pipeline_stage_duration_seconds
"""

from multilingual_rag.metrics import (
    cache_metrics,
    pipeline_metrics,
    retry_metrics,
    translation_metrics,
)

__all__ = [
    "cache_metrics",
    "pipeline_metrics",
    "retry_metrics",
    "translation_metrics",
]
