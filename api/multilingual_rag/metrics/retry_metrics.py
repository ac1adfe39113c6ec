"""Prometheus metrics for the retry executor."""

from prometheus_client import Counter

retry_attempts_total = Counter(
    "retry_attempts_total",
    "Retry executor attempts by policy and outcome",
    ["policy", "outcome"],
)
