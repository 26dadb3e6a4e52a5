"""Tests for domain/classification/rule_classifier.py."""

from __future__ import annotations

import pytest

from packages.domain.classification.keywords import parse_keyword_config
from packages.domain.classification.rule_classifier import RuleBasedClassifier, fold_to_ascii
from packages.domain.classification.schemas import FodmapStatus
from tests.helpers import make_product


@pytest.fixture
def classifier(keyword_config) -> RuleBasedClassifier:
    return RuleBasedClassifier(keyword_config)


class TestFoldToAscii:
    def test_strips_diacritics(self):
        assert fold_to_ascii("Šargarepa Čokolada Žito") == "sargarepa cokolada zito"

    def test_transliterates_letters_without_decomposition(self):
        assert fold_to_ascii("Đumbir") == "dumbir"


class TestNormalize:
    def test_strips_quantities_and_ignore_tokens(self, classifier):
        assert classifier.normalize("Sok 1,5 l AKCIJA") == "sok"

    def test_strips_compact_weights(self, classifier):
        assert classifier.normalize("Pirinač 500g 2kg") == "pirinac"

    def test_keeps_digits_inside_words(self, classifier):
        assert classifier.normalize("7up") == "7up"


class TestClassifyText:
    def test_high_keyword(self, classifier):
        assert classifier.classify_text("Mleko 2.8% 1l", "Mlečni proizvodi") is FodmapStatus.HIGH

    def test_low_keyword(self, classifier):
        assert classifier.classify_text("Pirinač dugo zrno 1kg") is FodmapStatus.LOW

    def test_high_wins_over_low(self, classifier):
        """A product naming both a HIGH and a LOW term is HIGH."""
        assert classifier.classify_text("Pšenični hleb sa krompirom", "Pekara") is FodmapStatus.HIGH

    def test_category_participates(self, classifier):
        assert classifier.classify_text("Domaći proizvod", "Hleb i peciva") is FodmapStatus.HIGH

    def test_synonym_matches(self, classifier):
        assert classifier.classify_text("Riža basmati") is FodmapStatus.LOW

    def test_word_boundary(self, classifier):
        """'med' (honey) must not match inside 'medaljoni'."""
        assert classifier.classify_text("Medaljoni") is FodmapStatus.UNKNOWN

    def test_no_match(self, classifier):
        assert classifier.classify_text("Šampon za kosu", "Kozmetika") is FodmapStatus.UNKNOWN

    def test_ignore_token_does_not_block_match(self, classifier):
        assert classifier.classify_text("AKCIJA riba oslić") is FodmapStatus.LOW


class TestClassify:
    @pytest.mark.asyncio
    async def test_result_for_keyword(self, classifier):
        result = await classifier.classify(make_product("Beli luk"))
        assert result.status is FodmapStatus.HIGH
        assert result.is_food is True
        assert "luk" in result.explanation

    @pytest.mark.asyncio
    async def test_result_mentions_synonym(self, classifier):
        result = await classifier.classify(make_product("Kruh raženi"))
        assert result.status is FodmapStatus.HIGH
        assert result.explanation == "Matched HIGH FODMAP keyword 'hleb' via synonym 'kruh'"

    @pytest.mark.asyncio
    async def test_unknown_result(self, classifier):
        result = await classifier.classify(make_product("Deterdžent"))
        assert result.status is FodmapStatus.UNKNOWN
        assert result.is_food is None
        assert result.explanation

    @pytest.mark.asyncio
    async def test_batch_one_result_per_identity(self, classifier):
        products = [make_product("Banana"), make_product("  banana "), make_product("Luk crni")]
        results = await classifier.classify_batch(products)
        assert set(results) == {products[0].identity_hash, products[2].identity_hash}
        assert results[products[0].identity_hash].status is FodmapStatus.LOW
        assert results[products[2].identity_hash].status is FodmapStatus.HIGH


class TestCustomKeywords:
    @pytest.mark.asyncio
    async def test_synonym_explanation(self):
        config = parse_keyword_config({
            "low": {"keywords": ["rice"], "synonyms": {"riza": "rice"}},
            "high": {"keywords": ["wheat"]},
        })
        result = await RuleBasedClassifier(config).classify(make_product("Riza"))
        assert result.status is FodmapStatus.LOW
        assert result.explanation == "Matched LOW FODMAP keyword 'rice' via synonym 'riza'"

    def test_empty_config_is_always_unknown(self):
        classifier = RuleBasedClassifier(parse_keyword_config({}))
        assert classifier.classify_text("Wheat bread") is FodmapStatus.UNKNOWN
