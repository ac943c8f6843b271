"""Prometheus metrics for language detection, translation and its cache."""

from prometheus_client import Counter, Gauge, Histogram

language_detection_total = Counter(
    "polychat_language_detection_total",
    "Total language detection outcomes by detected language and method",
    ["language", "method"],
)

translation_requests_total = Counter(
    "polychat_translation_requests_total",
    "Translation requests by outcome",
    ["outcome"],
)

translation_api_calls_total = Counter(
    "polychat_translation_api_calls_total",
    "Calls made to the external translation endpoint by result",
    ["result"],
)

translation_errors_total = Counter(
    "polychat_translation_errors_total",
    "Classified translation errors",
    ["error_type"],
)

translation_operation_duration_seconds = Histogram(
    "polychat_translation_operation_duration_seconds",
    "Duration of translate() calls including cache lookups and retries",
    buckets=(0.001, 0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10, 30),
)

translation_cache_lookups_total = Counter(
    "polychat_translation_cache_lookups_total",
    "Translation cache lookups by tier and result",
    ["tier", "result"],
)

translation_cache_evictions_total = Counter(
    "polychat_translation_cache_evictions_total",
    "Entries evicted from the in-memory translation cache",
)

translation_cache_entries = Gauge(
    "polychat_translation_cache_entries",
    "Current number of entries in the in-memory translation cache",
)
