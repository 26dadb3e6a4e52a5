"""
Product Repository - Database operations for the products table

Invariant kept by every write here: status == PENDING iff processed_at IS NULL.

Write paths:
- insert_pending: new PENDING placeholders, existing identities untouched
- update_classification: PENDING → result (only PENDING rows unless forced)
- mark_unknown: PENDING → UNKNOWN fallback after a failed batch
- reset_for_reclassification: any → PENDING (explicit request only)
"""
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

import structlog
from sqlalchemy import bindparam, select, text, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from packages.common.models import Product
from packages.domain.classification.schemas import (
    DEFAULT_CATEGORY,
    ClassifiableProduct,
    ClassificationResult,
    FodmapStatus,
)

logger = structlog.get_logger()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _dialect_insert(db: AsyncSession):
    """INSERT construct with ON CONFLICT support for the session's backend"""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert
    if dialect == "sqlite":
        return sqlite.insert
    raise NotImplementedError(f"Unsupported database dialect: {dialect}")


class ProductRepository:
    """
    Repository for product records.

    All methods take the session explicitly; the caller owns the transaction.
    """

    async def insert_pending(
        self,
        records: Sequence[ClassifiableProduct],
        db: AsyncSession,
    ) -> List[str]:
        """
        Create PENDING placeholders for identities not yet stored.

        The insert itself skips identities that already exist, so concurrent
        submissions of the same product create exactly one row.

        Args:
            records: Products to register (duplicate identities collapse to the first)
            db: Database session

        Returns:
            Identities of the newly created rows, in submission order
        """
        unique: Dict[str, ClassifiableProduct] = {}
        for record in records:
            if record.identity_hash:
                unique.setdefault(record.identity_hash, record)

        if not unique:
            return []

        now = utcnow()
        stmt = (
            _dialect_insert(db)(Product)
            .values([
                {
                    "identity_hash": identity,
                    "name": record.name,
                    "category": record.category or DEFAULT_CATEGORY,
                    "status": FodmapStatus.PENDING.value,
                    "created_at": now,
                    "updated_at": now,
                }
                for identity, record in unique.items()
            ])
            .on_conflict_do_nothing(index_elements=["identity_hash"])
            .returning(Product.identity_hash)
        )
        inserted = set((await db.execute(stmt)).scalars().all())
        created = [identity for identity in unique if identity in inserted]

        logger.info("products_inserted_pending",
                    requested=len(records),
                    created=len(created),
                    skipped=len(records) - len(created))

        return created

    async def find_pending_ordered_by_age(self, limit: int, db: AsyncSession) -> List[Product]:
        """Oldest PENDING rows first (uses products_queue_processing_idx)"""
        result = await db.execute(
            select(Product)
            .where(Product.status == FodmapStatus.PENDING.value)
            .where(Product.processed_at.is_(None))
            .order_by(Product.created_at.asc(), Product.id.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def find_pending_identities(self, identities: Sequence[str], db: AsyncSession) -> List[str]:
        """Subset of identities whose rows are still PENDING"""
        if not identities:
            return []
        query = text("""
            SELECT identity_hash
            FROM products
            WHERE identity_hash IN :identities
              AND status = :status
        """).bindparams(bindparam("identities", expanding=True))
        result = await db.execute(query, {
            "identities": list(identities),
            "status": FodmapStatus.PENDING.value,
        })
        return list(result.scalars().all())

    async def update_classification(
        self,
        identity_hash: str,
        result: ClassificationResult,
        db: AsyncSession,
        processed_at: Optional[datetime] = None,
        force: bool = False,
    ) -> bool:
        """
        Apply a classification result to one row.

        status, is_food, explanation and processed_at are written together.

        Args:
            identity_hash: Product identity
            result: Classification to apply
            db: Database session
            processed_at: Completion time (now if None)
            force: Also overwrite rows that are no longer PENDING

        Returns:
            True if a row was updated
        """
        processed_at = processed_at or utcnow()

        stmt = (
            update(Product)
            .where(Product.identity_hash == identity_hash)
            .values(
                status=result.status.value,
                is_food=result.is_food,
                explanation=result.explanation,
                processed_at=processed_at,
                updated_at=processed_at,
            )
            .execution_options(synchronize_session=False)
        )
        if not force:
            stmt = stmt.where(Product.status == FodmapStatus.PENDING.value)

        updated = (await db.execute(stmt)).rowcount > 0

        if not updated:
            logger.debug("classification_update_skipped",
                         identity_hash=identity_hash,
                         reason="not_pending" if not force else "not_found")

        return updated

    async def mark_unknown(
        self,
        identities: Sequence[str],
        explanation: str,
        db: AsyncSession,
        processed_at: Optional[datetime] = None,
    ) -> int:
        """Fallback: every still-PENDING row among identities becomes UNKNOWN"""
        if not identities:
            return 0

        processed_at = processed_at or utcnow()
        result = await db.execute(
            update(Product)
            .where(Product.identity_hash.in_(list(identities)))
            .where(Product.status == FodmapStatus.PENDING.value)
            .values(
                status=FodmapStatus.UNKNOWN.value,
                is_food=None,
                explanation=explanation,
                processed_at=processed_at,
                updated_at=processed_at,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def count_pending(self, db: AsyncSession) -> int:
        result = await db.execute(
            text("SELECT COUNT(*) FROM products WHERE status = :status"),
            {"status": FodmapStatus.PENDING.value},
        )
        return int(result.scalar_one())

    async def find_by_identities(self, identities: Sequence[str], db: AsyncSession) -> List[Product]:
        if not identities:
            return []
        result = await db.execute(
            select(Product).where(Product.identity_hash.in_(list(identities)))
        )
        return list(result.scalars().all())

    async def reset_for_reclassification(self, identities: Sequence[str], db: AsyncSession) -> int:
        """
        Explicit re-classification request: rows go back to PENDING.

        This is the only path that clears processed_at.
        """
        if not identities:
            return 0

        result = await db.execute(
            update(Product)
            .where(Product.identity_hash.in_(list(identities)))
            .where(Product.status != FodmapStatus.PENDING.value)
            .values(
                status=FodmapStatus.PENDING.value,
                is_food=None,
                explanation=None,
                processed_at=None,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )

        logger.info("products_reset_for_reclassification",
                    requested=len(identities),
                    reset=result.rowcount)

        return result.rowcount


# Global repository instance
product_repository = ProductRepository()
