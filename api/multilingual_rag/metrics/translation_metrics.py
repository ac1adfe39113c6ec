"""Prometheus metrics for multilingual detection and translation pipeline."""

from prometheus_client import Counter, Histogram

language_detection_total = Counter(
    "translation_language_detection_total",
    "Total language detection outcomes by backend/result",
    ["backend", "result"],
)

translation_query_decisions_total = Counter(
    "translation_query_decisions_total",
    "Translation decision outcomes for incoming queries",
    ["decision", "source_lang"],
)

translation_operation_duration_seconds = Histogram(
    "translation_operation_duration_seconds",
    "Duration of translation operations",
    ["direction"],
    buckets=(0.001, 0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10),
)

translation_errors_total = Counter(
    "translation_errors_total",
    "Translation errors by direction",
    ["direction"],
)
