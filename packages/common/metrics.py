"""
Prometheus counters for the classification pipeline

Scraped through the API /metrics endpoint.
"""
from prometheus_client import Counter

CACHE_HITS = Counter(
    "fodmap_classification_cache_hits_total",
    "Classification cache hits",
)
CACHE_MISSES = Counter(
    "fodmap_classification_cache_misses_total",
    "Classification cache misses",
)
AI_CALLS = Counter(
    "fodmap_ai_calls_total",
    "Calls made to the external text-generation API",
    ["kind"],
)
RATE_LIMIT_REJECTIONS = Counter(
    "fodmap_rate_limit_rejections_total",
    "AI calls skipped because the rate window was exhausted",
)
PRODUCTS_CLASSIFIED = Counter(
    "fodmap_products_classified_total",
    "Products persisted with a classification",
    ["status"],
)
BATCH_FAILURES = Counter(
    "fodmap_classification_batch_failures_total",
    "Classification batches that failed at the transport level",
)
