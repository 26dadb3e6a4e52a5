"""
Cached AI Classifier - ClassificationCache wrapped around another classifier

Composition, not inheritance: exposes the same FodmapClassifier interface as
the classifier it wraps.

Batch flow:
1. Look up every product by (name, category)
2. Send only the misses to the inner classifier
3. Cache fresh non-UNKNOWN results (also those finished before a transport error)
4. Merge hits and fresh results, one per identity; gaps become UNKNOWN, uncached
"""
from typing import Dict, List, Sequence

import structlog

from packages.common.classification_cache import ClassificationCache
from packages.domain.classification.base import FodmapClassifier
from packages.domain.classification.exceptions import ClassificationTransportError
from packages.domain.classification.schemas import ClassifiableProduct, ClassificationResult

logger = structlog.get_logger()

MISSING_RESULT_EXPLANATION = "Classifier returned no result for this product"


class CachedAiClassifier:
    """Serves cached classifications and classifies only what is missing"""

    name = "cached_ai"

    def __init__(self, inner: FodmapClassifier, cache: ClassificationCache):
        self.inner = inner
        self.cache = cache

    async def classify(self, product: ClassifiableProduct) -> ClassificationResult:
        cached = await self.cache.get(product.name, product.category)
        if cached is not None:
            return cached

        result = await self.inner.classify(product)
        await self.cache.put(product.name, product.category, result)
        return result

    async def classify_batch(
        self,
        products: Sequence[ClassifiableProduct],
    ) -> Dict[str, ClassificationResult]:
        unique: Dict[str, ClassifiableProduct] = {}
        for product in products:
            unique.setdefault(product.identity_hash, product)
        items = list(unique.values())

        if not items:
            return {}

        cached = await self.cache.get_many([(p.name, p.category) for p in items])

        results: Dict[str, ClassificationResult] = {}
        misses: List[ClassifiableProduct] = []
        for product, hit in zip(items, cached):
            if hit is not None:
                results[product.identity_hash] = hit
            else:
                misses.append(product)

        logger.info("classification_cache_stats",
                    total=len(items),
                    cache_hits=len(results),
                    cache_misses=len(misses))

        if not misses:
            return results

        try:
            fresh = await self.inner.classify_batch(misses)
        except ClassificationTransportError as e:
            # Whatever the inner classifier finished before failing is kept
            await self._store(misses, e.partial_results)
            e.partial_results = {**results, **e.partial_results}
            raise

        results.update(await self._store(misses, fresh))

        for product in misses:
            if product.identity_hash not in results:
                logger.warning("classification_result_missing",
                               identity_hash=product.identity_hash,
                               product_name=product.name)
                results[product.identity_hash] = ClassificationResult.unknown(MISSING_RESULT_EXPLANATION)

        return results

    async def _store(
        self,
        misses: Sequence[ClassifiableProduct],
        fresh: Dict[str, ClassificationResult],
    ) -> Dict[str, ClassificationResult]:
        stored: Dict[str, ClassificationResult] = {}
        for product in misses:
            result = fresh.get(product.identity_hash)
            if result is None:
                continue
            stored[product.identity_hash] = result
            await self.cache.put(product.name, product.category, result)
        return stored
