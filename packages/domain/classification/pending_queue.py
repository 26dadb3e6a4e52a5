"""
Pending work queue - PENDING products in oldest-first order

Thin view over ProductRepository so the job never builds queries itself.
"""
from typing import List, Sequence, Set

from sqlalchemy.ext.asyncio import AsyncSession

from packages.common.product_repository import ProductRepository, product_repository
from packages.domain.classification.schemas import ProductRecord


class PendingWorkQueue:

    def __init__(self, repository: ProductRepository = product_repository):
        self.repository = repository

    async def next_batch(self, limit: int, db: AsyncSession) -> List[ProductRecord]:
        """Up to limit PENDING records, oldest created first"""
        rows = await self.repository.find_pending_ordered_by_age(limit, db)
        return [ProductRecord.model_validate(row) for row in rows]

    async def still_pending(self, identities: Sequence[str], db: AsyncSession) -> Set[str]:
        """Re-check which identities are still PENDING right before work starts"""
        return set(await self.repository.find_pending_identities(identities, db))

    async def remaining(self, db: AsyncSession) -> int:
        return await self.repository.count_pending(db)
