from __future__ import annotations

from prometheus_client import Counter, Histogram

overlay_source_attempts_total = Counter(
    "overlay_source_attempts_total",
    "Imagery source attempts by outcome",
    labelnames=["source", "outcome"],
)

overlay_source_latency_seconds = Histogram(
    "overlay_source_latency_seconds",
    "Latency of imagery source attempts",
    labelnames=["source"],
    buckets=(0.1, 0.3, 0.5, 1, 2, 5, 8, 10, 20),
)

overlay_cache_hit_total = Counter(
    "overlay_cache_hit_total",
    "Cache hits by overlay layer",
    labelnames=["layer"],
)

overlay_cache_miss_total = Counter(
    "overlay_cache_miss_total",
    "Cache misses by overlay layer",
    labelnames=["layer"],
)

overlay_fallback_total = Counter(
    "overlay_fallback_total",
    "Overlays rendered from the synthetic gradient",
    labelnames=["reason"],
)

overlay_stale_discarded_total = Counter(
    "overlay_stale_discarded_total",
    "Superseded overlay results dropped before caching or mounting",
    labelnames=["stage"],
)
