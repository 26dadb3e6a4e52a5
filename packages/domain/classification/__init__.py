"""
Classification Module - FODMAP classification of grocery products

Strategies:
1. Rules (no I/O): keyword/synonym matching, HIGH checked before LOW
2. AI batch: one Claude call per batch of up to 50 products
3. Cached AI: (name, category) cache in front of the AI batch classifier

Lifecycle:
- Submission → PENDING placeholder (identity hash dedupes resubmissions)
- Background job → oldest PENDING first → classifier → LOW/MODERATE/HIGH/NA/UNKNOWN
- Failed batch → every product UNKNOWN (never stuck in PENDING)

Example flow:
- "Pšenični hleb 500g" → rules → HIGH ("hleb" = bread)
- "Pirinač 1kg" → rules → LOW ("pirinac" = rice)
- "Šampon za kosu" → AI → NA (not food)
"""

from packages.domain.classification.ai_classifier import AiBatchClassifier
from packages.domain.classification.identity import product_identity_hash
from packages.domain.classification.rate_limiter import RateLimiter, RateLimitPolicy
from packages.domain.classification.rule_classifier import RuleBasedClassifier
from packages.domain.classification.schemas import (
    ClassifiableProduct,
    ClassificationResult,
    FodmapStatus,
)

__all__ = [
    'AiBatchClassifier',
    'ClassifiableProduct',
    'ClassificationResult',
    'FodmapStatus',
    'RateLimitPolicy',
    'RateLimiter',
    'RuleBasedClassifier',
    'product_identity_hash',
]
