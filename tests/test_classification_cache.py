"""Tests for common/classification_cache.py and domain/classification/cached_classifier.py."""

from __future__ import annotations

from typing import Dict, List, Sequence
from unittest.mock import AsyncMock, MagicMock

import pytest

from packages.common.classification_cache import (
    CACHE_KEY_PREFIX,
    ClassificationCache,
    RedisCacheStore,
)
from packages.domain.classification.cached_classifier import CachedAiClassifier
from packages.domain.classification.exceptions import ClassificationTransportError
from packages.domain.classification.schemas import (
    ClassifiableProduct,
    ClassificationResult,
    FodmapStatus,
)
from tests.helpers import make_product

LOW = ClassificationResult(status=FodmapStatus.LOW, is_food=True, explanation="Rice")
HIGH = ClassificationResult(status=FodmapStatus.HIGH, is_food=True, explanation="Wheat")


class RecordingClassifier:
    """Inner classifier double that answers from a name → result table."""

    name = "ai"

    def __init__(self, answers: Dict[str, ClassificationResult], fail: bool = False):
        self.answers = answers
        self.fail = fail
        self.batches: List[List[str]] = []
        self.singles: List[str] = []

    async def classify(self, product: ClassifiableProduct) -> ClassificationResult:
        self.singles.append(product.name)
        return self.answers.get(product.name, ClassificationResult.unknown("no answer"))

    async def classify_batch(self, products: Sequence[ClassifiableProduct]):
        self.batches.append([p.name for p in products])
        if self.fail:
            raise ClassificationTransportError("boom", batch_size=len(products))
        return {
            p.identity_hash: self.answers.get(p.name, ClassificationResult.unknown("no answer"))
            for p in products
        }


class TestCacheKey:
    def test_normalizes_name_and_category(self):
        assert ClassificationCache.cache_key(" Pirinač ", "ŽITARICE") == ClassificationCache.cache_key("pirinač", "žitarice")

    def test_category_matters(self):
        assert ClassificationCache.cache_key("Mleko", "A") != ClassificationCache.cache_key("Mleko", "B")

    def test_prefixed_sha1(self):
        key = ClassificationCache.cache_key("Mleko", None)
        assert key.startswith(CACHE_KEY_PREFIX)
        assert len(key) == len(CACHE_KEY_PREFIX) + 40


class TestClassificationCache:
    @pytest.mark.asyncio
    async def test_put_then_get(self, classification_cache):
        assert await classification_cache.put("Pirinač", "Žitarice", LOW)
        assert await classification_cache.get("pirinač ", "žitarice") == LOW

    @pytest.mark.asyncio
    async def test_unknown_is_never_stored(self, classification_cache, cache_store):
        stored = await classification_cache.put("Mystery", "X", ClassificationResult.unknown("?"))

        assert stored is False
        assert len(cache_store) == 0
        assert await classification_cache.get("Mystery", "X") is None

    @pytest.mark.asyncio
    async def test_entries_expire(self, classification_cache, fake_clock):
        await classification_cache.put("Pirinač", "Žitarice", LOW, ttl_seconds=60)
        fake_clock.advance(60)
        assert await classification_cache.get("Pirinač", "Žitarice") is None

    @pytest.mark.asyncio
    async def test_invalidate_all(self, classification_cache, cache_store):
        await classification_cache.put("A", "x", LOW)
        await classification_cache.put("B", "x", HIGH)
        await cache_store.set("unrelated:key", "1", 60)

        removed = await classification_cache.invalidate_all()

        assert removed == 2
        assert await classification_cache.get("A", "x") is None
        assert len(cache_store) == 1

    @pytest.mark.asyncio
    async def test_stored_unknown_is_not_served(self, classification_cache, cache_store):
        key = ClassificationCache.cache_key("Legacy", "x")
        await cache_store.set(key, ClassificationResult.unknown("old").model_dump_json(), 60)

        assert await classification_cache.get("Legacy", "x") is None

    @pytest.mark.asyncio
    async def test_corrupt_entry_is_a_miss(self, classification_cache, cache_store):
        await cache_store.set(ClassificationCache.cache_key("Bad", "x"), "{not json", 60)
        assert await classification_cache.get("Bad", "x") is None

    @pytest.mark.asyncio
    async def test_stats(self, classification_cache):
        await classification_cache.put("A", "x", LOW)
        await classification_cache.get_many([("A", "x"), ("B", "x")])

        assert classification_cache.stats() == {"hits": 1, "misses": 1, "hit_rate": 0.5}


class TestRedisCacheStore:
    @pytest.mark.asyncio
    async def test_set_uses_ttl(self):
        client = MagicMock()
        client.set = AsyncMock()

        await RedisCacheStore(client).set("k", "v", 30)

        client.set.assert_awaited_once_with("k", "v", ex=30)

    @pytest.mark.asyncio
    async def test_delete_prefix_scans(self):
        async def scan_iter(match=None, count=None):
            for key in ["fodmap_classification:a", "fodmap_classification:b"]:
                yield key

        client = MagicMock()
        client.scan_iter = scan_iter
        client.delete = AsyncMock(return_value=2)

        removed = await RedisCacheStore(client).delete_prefix(CACHE_KEY_PREFIX)

        assert removed == 2
        client.delete.assert_awaited_once_with("fodmap_classification:a", "fodmap_classification:b")

    @pytest.mark.asyncio
    async def test_get_many_empty(self):
        client = MagicMock()
        client.mget = AsyncMock()
        assert await RedisCacheStore(client).get_many([]) == []
        client.mget.assert_not_awaited()


class TestCachedAiClassifier:
    @pytest.mark.asyncio
    async def test_cache_hit_avoids_second_call(self, classification_cache):
        """Equivalent product with a different identity is served from cache."""
        inner = RecordingClassifier({"Pirinač": LOW})
        classifier = CachedAiClassifier(inner, classification_cache)

        first = make_product("Pirinač", "Žitarice")
        await classifier.classify_batch([first])

        equivalent = ClassifiableProduct(identity_hash="name_external_42", name="pirinač", category="žitarice")
        results = await classifier.classify_batch([equivalent])

        assert results == {"name_external_42": LOW}
        assert inner.batches == [["Pirinač"]]

    @pytest.mark.asyncio
    async def test_only_misses_reach_inner(self, classification_cache):
        await classification_cache.put("Hleb", "Pekara", HIGH)
        inner = RecordingClassifier({"Pirinač": LOW})
        classifier = CachedAiClassifier(inner, classification_cache)

        hleb = make_product("Hleb", "Pekara")
        pirinac = make_product("Pirinač", "Žitarice")
        results = await classifier.classify_batch([hleb, pirinac])

        assert inner.batches == [["Pirinač"]]
        assert results == {hleb.identity_hash: HIGH, pirinac.identity_hash: LOW}

    @pytest.mark.asyncio
    async def test_unknown_results_are_not_cached(self, classification_cache):
        inner = RecordingClassifier({})
        classifier = CachedAiClassifier(inner, classification_cache)
        product = make_product("Mystery", "X")

        await classifier.classify_batch([product])
        await classifier.classify_batch([product])

        assert inner.batches == [["Mystery"], ["Mystery"]]

    @pytest.mark.asyncio
    async def test_single_classify_uses_cache(self, classification_cache):
        inner = RecordingClassifier({"Hleb": HIGH})
        classifier = CachedAiClassifier(inner, classification_cache)

        await classifier.classify(make_product("Hleb", "Pekara"))
        await classifier.classify(make_product("HLEB", "pekara"))

        assert inner.singles == ["Hleb"]

    @pytest.mark.asyncio
    async def test_all_hits_skip_inner(self, classification_cache):
        await classification_cache.put("Hleb", "Pekara", HIGH)
        inner = RecordingClassifier({})

        await CachedAiClassifier(inner, classification_cache).classify_batch([make_product("Hleb", "Pekara")])

        assert inner.batches == []

    @pytest.mark.asyncio
    async def test_transport_error_propagates(self, classification_cache):
        inner = RecordingClassifier({}, fail=True)

        with pytest.raises(ClassificationTransportError):
            await CachedAiClassifier(inner, classification_cache).classify_batch([make_product("Hleb")])

    @pytest.mark.asyncio
    async def test_results_finished_before_transport_error_are_cached(self, classification_cache):
        await classification_cache.put("Hleb", "Pekara", HIGH)
        hleb = make_product("Hleb", "Pekara")
        pirinac = make_product("Pirinač", "Žitarice")
        mleko = make_product("Mleko", "Mlečni")
        inner = MagicMock()
        inner.classify_batch = AsyncMock(side_effect=ClassificationTransportError(
            "second chunk failed", batch_size=1, partial_results={pirinac.identity_hash: LOW}
        ))

        with pytest.raises(ClassificationTransportError) as exc_info:
            await CachedAiClassifier(inner, classification_cache).classify_batch([hleb, pirinac, mleko])

        assert await classification_cache.get("Pirinač", "Žitarice") == LOW
        assert await classification_cache.get("Mleko", "Mlečni") is None
        assert exc_info.value.partial_results == {hleb.identity_hash: HIGH, pirinac.identity_hash: LOW}

    @pytest.mark.asyncio
    async def test_identity_missing_from_inner_answer_is_unknown(self, classification_cache):
        hleb = make_product("Hleb", "Pekara")
        pirinac = make_product("Pirinač", "Žitarice")
        inner = MagicMock()
        inner.classify_batch = AsyncMock(return_value={hleb.identity_hash: HIGH})
        classifier = CachedAiClassifier(inner, classification_cache)

        results = await classifier.classify_batch([hleb, pirinac])

        assert results[hleb.identity_hash] == HIGH
        assert results[pirinac.identity_hash].status is FodmapStatus.UNKNOWN
        assert await classification_cache.get("Pirinač", "Žitarice") is None

        await classifier.classify_batch([hleb, pirinac])

        assert inner.classify_batch.await_args.args[0] == [pirinac]
