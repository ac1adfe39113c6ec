"""Prometheus metrics for the two-tier translation and search caches."""

from prometheus_client import Counter, Gauge

cache_lookups_total = Counter(
    "cache_lookups_total",
    "Cache lookups by cache, tier and result",
    ["cache", "tier", "result"],
)

cache_writes_total = Counter(
    "cache_writes_total",
    "Cache writes by cache and outcome (stored/refused/durable_failed)",
    ["cache", "outcome"],
)

cache_evictions_total = Counter(
    "cache_evictions_total",
    "Entries evicted from the in-process tier at capacity",
    ["cache"],
)

cache_durable_errors_total = Counter(
    "cache_durable_errors_total",
    "Durable tier failures that were degraded to a miss or skipped write",
    ["cache", "operation"],
)

cache_size = Gauge(
    "cache_size",
    "Current number of entries in the in-process tier",
    ["cache"],
)
