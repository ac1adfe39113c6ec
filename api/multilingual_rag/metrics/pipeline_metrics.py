"""Prometheus metrics for the chat pipeline."""

from prometheus_client import Counter, Histogram

pipeline_stage_duration_seconds = Histogram(
    "pipeline_stage_duration_seconds",
    "Duration of each chat pipeline stage",
    ["stage"],
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10, 30),
)

pipeline_requests_total = Counter(
    "pipeline_requests_total",
    "Chat pipeline requests by outcome",
    ["outcome"],
)

ungrounded_retries_total = Counter(
    "pipeline_ungrounded_retries_total",
    "Stricter-instruction retries after an answer without evidence",
    ["result"],
)

image_augmentation_total = Counter(
    "pipeline_image_augmentation_total",
    "Image augmentation outcomes (skipped/image_only/corrected/mixed/none/degraded)",
    ["outcome"],
)

image_search_results = Histogram(
    "image_search_results",
    "Number of images returned per relevance search",
    buckets=(0, 1, 2, 3, 5, 10),
)
