"""
Rule-Based Classifier - Deterministic FODMAP keyword matching

NO AI CALLS - Pure rule-based logic, never fails.

Algorithm:
1. Concatenate name + category and normalize (ASCII fold, lowercase, strip
   ignore tokens and standalone quantities such as "500g" or "1.5 l")
2. HIGH keyword/synonym on a word boundary → HIGH
3. Otherwise LOW keyword/synonym → LOW
4. Otherwise UNKNOWN

HIGH is checked first: "wheat bread with rice" is HIGH. Products mixing both
are treated conservatively.
"""
import re
import unicodedata
from typing import Dict, List, Optional, Pattern, Sequence, Tuple

import structlog

from packages.domain.classification.keywords import KeywordConfig, KeywordSet
from packages.domain.classification.schemas import (
    ClassifiableProduct,
    ClassificationResult,
    FodmapStatus,
)

logger = structlog.get_logger()

# Letters NFKD does not decompose
_TRANSLITERATIONS = str.maketrans({
    "đ": "d", "Đ": "D",
    "ß": "ss",
    "æ": "ae", "Æ": "AE",
    "ø": "o", "Ø": "O",
    "ł": "l", "Ł": "L",
})

# Standalone quantities: 500g, 1.5l, 0,33 l, 2kg, bare numbers
_QUANTITY_PATTERN = re.compile(r"\b\d+(?:[.,]\d+)?\s?(?:kg|mg|g|ml|cl|dl|l)?\b")
_WHITESPACE_PATTERN = re.compile(r"\s+")


def fold_to_ascii(text: str) -> str:
    """Lowercase plain-ASCII form of text ("Šargarepa" → "sargarepa")"""
    text = text.translate(_TRANSLITERATIONS)
    decomposed = unicodedata.normalize("NFKD", text)
    return decomposed.encode("ascii", "ignore").decode("ascii").lower()


class RuleBasedClassifier:
    """
    Classifies products against configured low/high FODMAP term lists.

    Usage:
        classifier = RuleBasedClassifier(load_keyword_config(path))
        status = classifier.classify_text("Pšenični hleb 500g", "Pekara")  # HIGH
    """

    name = "rules"

    def __init__(self, keywords: KeywordConfig):
        self._ignore_patterns = [
            re.compile(r"\b" + re.escape(fold_to_ascii(token).strip()) + r"\b")
            for token in keywords.ignore
            if token.strip()
        ]
        self._high = self._compile(keywords.high)
        self._low = self._compile(keywords.low)

    def _compile(self, keyword_set: KeywordSet) -> List[Tuple[Pattern[str], str, str]]:
        compiled = []
        for term, canonical in keyword_set.terms():
            normalized = self.normalize(term)
            if not normalized:
                continue
            compiled.append((re.compile(r"\b" + re.escape(normalized) + r"\b"), term, canonical))
        return compiled

    def normalize(self, text: str) -> str:
        """Fold to ASCII, strip ignore tokens and quantities, collapse whitespace"""
        normalized = fold_to_ascii(text)
        for pattern in self._ignore_patterns:
            normalized = pattern.sub(" ", normalized)
        normalized = _QUANTITY_PATTERN.sub(" ", normalized)
        return _WHITESPACE_PATTERN.sub(" ", normalized).strip()

    @staticmethod
    def _first_match(
        text: str,
        patterns: List[Tuple[Pattern[str], str, str]],
    ) -> Optional[Tuple[str, str]]:
        for pattern, term, canonical in patterns:
            if pattern.search(text):
                return term, canonical
        return None

    def _match(self, name: str, category: str) -> Tuple[FodmapStatus, Optional[Tuple[str, str]]]:
        text = self.normalize(f"{name} {category or ''}")

        match = self._first_match(text, self._high)
        if match:
            return FodmapStatus.HIGH, match

        match = self._first_match(text, self._low)
        if match:
            return FodmapStatus.LOW, match

        return FodmapStatus.UNKNOWN, None

    def classify_text(self, name: str, category: str = "") -> FodmapStatus:
        """Classify raw name/category into LOW, HIGH or UNKNOWN"""
        status, _ = self._match(name, category)
        return status

    async def classify(self, product: ClassifiableProduct) -> ClassificationResult:
        status, match = self._match(product.name, product.category)

        if match is None:
            return ClassificationResult.unknown("No FODMAP keyword matched")

        term, canonical = match
        if term == canonical:
            explanation = f"Matched {status.value} FODMAP keyword '{term}'"
        else:
            explanation = f"Matched {status.value} FODMAP keyword '{canonical}' via synonym '{term}'"

        # A food keyword matched, so it is food
        return ClassificationResult(status=status, is_food=True, explanation=explanation)

    async def classify_batch(
        self,
        products: Sequence[ClassifiableProduct],
    ) -> Dict[str, ClassificationResult]:
        results: Dict[str, ClassificationResult] = {}
        for product in products:
            if product.identity_hash not in results:
                results[product.identity_hash] = await self.classify(product)

        logger.debug("rule_batch_classification_complete",
                     product_count=len(results),
                     high=sum(1 for r in results.values() if r.status is FodmapStatus.HIGH),
                     low=sum(1 for r in results.values() if r.status is FodmapStatus.LOW))

        return results
