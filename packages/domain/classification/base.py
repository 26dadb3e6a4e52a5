"""
Classifier Base Interface

Defines the contract shared by every classification strategy (rule-based,
AI batch, cached AI) so the router can swap them via configuration without
changing calling code.
"""
from typing import Dict, Protocol, Sequence

from packages.domain.classification.schemas import ClassifiableProduct, ClassificationResult


class FodmapClassifier(Protocol):
    """
    Protocol for FODMAP classifiers.

    classify_batch must return exactly one result per distinct input
    identity_hash, never more and never fewer.
    """

    name: str

    async def classify(self, product: ClassifiableProduct) -> ClassificationResult:
        """
        Classify a single product.

        Never raises: failures come back as UNKNOWN with an explanation.
        """
        ...

    async def classify_batch(
        self,
        products: Sequence[ClassifiableProduct],
    ) -> Dict[str, ClassificationResult]:
        """
        Classify many products, keyed by identity_hash.

        Raises:
            ClassificationTransportError: If the external call for the batch failed
        """
        ...
