"""
Product Service - submission, status and preview operations

Used by the API routers and scripts. Classification itself happens in the
background job; submit only creates PENDING placeholders.
"""
from typing import Dict, List, Optional, Sequence

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from packages.common.product_repository import ProductRepository, product_repository
from packages.domain.classification.classifier_router import ClassifierRouter
from packages.domain.classification.identity import product_identity_hash
from packages.domain.classification.rate_limiter import RateLimitPolicy
from packages.domain.classification.schemas import (
    DEFAULT_CATEGORY,
    ClassifiableProduct,
    PreviewReport,
    ProductStatusEntry,
    ProductSubmission,
    StatusReport,
    SubmissionReport,
)

logger = structlog.get_logger()


class IdentityMismatchError(ValueError):
    """A client-supplied identity hash disagrees with the computed one"""

    def __init__(self, name: str, supplied: str, expected: str):
        self.name = name
        self.supplied = supplied
        self.expected = expected
        super().__init__(f"identity_hash '{supplied}' does not match '{expected}' for product '{name}'")


def to_classifiable(item: ProductSubmission) -> ClassifiableProduct:
    """
    Resolve the identity of a submitted product.

    Raises:
        IdentityMismatchError: If a supplied identity_hash disagrees with the name
    """
    identity = product_identity_hash(item.name)
    if item.identity_hash and item.identity_hash != identity:
        raise IdentityMismatchError(item.name, item.identity_hash, identity)

    category = (item.category or "").strip() or DEFAULT_CATEGORY
    return ClassifiableProduct(identity_hash=identity, name=item.name.strip(), category=category)


class ProductService:

    def __init__(self, repository: ProductRepository = product_repository):
        self.repository = repository

    async def submit(self, items: Sequence[ProductSubmission], db: AsyncSession) -> SubmissionReport:
        """
        Register products for classification.

        Idempotent: identities already stored are left untouched, whatever
        their status.
        """
        products = [to_classifiable(item) for item in items]
        products = [p for p in products if p.identity_hash]

        created = await self.repository.insert_pending(products, db)

        identities: List[str] = []
        for product in products:
            if product.identity_hash not in identities:
                identities.append(product.identity_hash)

        skipped = len(items) - len(created)
        logger.info("products_submitted",
                    received=len(items),
                    submitted=len(created),
                    skipped=skipped)

        return SubmissionReport(
            submitted=len(created),
            skipped=skipped,
            identities=identities,
            message=f"{len(created)} product(s) queued for classification, {skipped} already known",
        )

    async def status(self, identities: Sequence[str], db: AsyncSession) -> StatusReport:
        """Current classification for each identity, or a missing marker"""
        requested: List[str] = list(dict.fromkeys(identities))
        rows = await self.repository.find_by_identities(requested, db)
        by_identity = {row.identity_hash: row for row in rows}

        results = [
            ProductStatusEntry.model_validate(by_identity[identity], from_attributes=True)
            for identity in requested
            if identity in by_identity
        ]
        missing_ids = [identity for identity in requested if identity not in by_identity]

        return StatusReport(
            results=results,
            found=len(results),
            missing=len(missing_ids),
            missing_ids=missing_ids,
        )

    async def classify_preview(
        self,
        items: Sequence[ProductSubmission],
        router: ClassifierRouter,
        override: Optional[str] = None,
    ) -> PreviewReport:
        """
        Classify without persisting (request path, REJECT rate-limit policy).

        Batch transport failures propagate to the caller.
        """
        classifier = router.select(override, rate_limit_policy=RateLimitPolicy.REJECT)
        products = [to_classifiable(item) for item in items]

        results = await classifier.classify_batch([p for p in products if p.identity_hash])

        logger.info("classification_preview_complete",
                    classifier=classifier.name,
                    product_count=len(results))

        return PreviewReport(results=results)

    async def request_reclassification(self, identities: Sequence[str], db: AsyncSession) -> int:
        """Send classified products back to PENDING; returns how many were reset"""
        return await self.repository.reset_for_reclassification(list(dict.fromkeys(identities)), db)

    async def queue_depth(self, db: AsyncSession) -> Dict[str, int]:
        return {"pending": await self.repository.count_pending(db)}


# Global service instance
product_service = ProductService()
