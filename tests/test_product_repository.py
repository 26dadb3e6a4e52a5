"""Tests for common/product_repository.py against SQLite."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from packages.common.models import Product
from packages.common.product_repository import product_repository
from packages.domain.classification.schemas import ClassificationResult, FodmapStatus
from tests.helpers import make_product

HIGH = ClassificationResult(status=FodmapStatus.HIGH, is_food=True, explanation="Wheat")
LOW = ClassificationResult(status=FodmapStatus.LOW, is_food=True, explanation="Rice")


async def fetch(db_manager, identity):
    async with db_manager.session() as db:
        rows = await product_repository.find_by_identities([identity], db)
    return rows[0] if rows else None


class TestInsertPending:
    @pytest.mark.asyncio
    async def test_creates_pending_rows(self, db_manager):
        product = make_product("Hleb", "Pekara")

        async with db_manager.session() as db:
            created = await product_repository.insert_pending([product], db)

        assert len(created) == 1
        row = await fetch(db_manager, product.identity_hash)
        assert row.status == "PENDING"
        assert row.processed_at is None
        assert row.is_food is None
        assert row.category == "Pekara"

    @pytest.mark.asyncio
    async def test_existing_identity_untouched(self, db_manager, seed_pending):
        [product] = await seed_pending(["Hleb"])
        async with db_manager.session() as db:
            await product_repository.update_classification(product.identity_hash, HIGH, db)

        async with db_manager.session() as db:
            created = await product_repository.insert_pending([make_product("Hleb", "Other")], db)

        assert created == []
        row = await fetch(db_manager, product.identity_hash)
        assert row.status == "HIGH"
        assert row.category == "Uncategorized"

    @pytest.mark.asyncio
    async def test_duplicates_in_one_call_collapse(self, db_manager):
        async with db_manager.session() as db:
            created = await product_repository.insert_pending(
                [make_product("Hleb"), make_product(" HLEB "), make_product("Mleko")], db
            )
        assert len(created) == 2

    @pytest.mark.asyncio
    async def test_empty(self, db_manager):
        async with db_manager.session() as db:
            assert await product_repository.insert_pending([], db) == []

    @pytest.mark.asyncio
    async def test_concurrent_inserts_of_same_identity(self, db_manager):
        async def insert():
            async with db_manager.session() as db:
                return await product_repository.insert_pending([make_product("Banana")], db)

        results = await asyncio.gather(insert(), insert())

        assert sorted(len(created) for created in results) == [0, 1]
        row = await fetch(db_manager, make_product("Banana").identity_hash)
        assert row.status == "PENDING"

    @pytest.mark.asyncio
    async def test_returns_created_identities_in_order(self, db_manager, seed_pending):
        await seed_pending(["Mleko"])
        products = [make_product("Pirinač"), make_product("Mleko"), make_product("Hleb")]

        async with db_manager.session() as db:
            created = await product_repository.insert_pending(products, db)

        assert created == [products[0].identity_hash, products[2].identity_hash]


class TestPendingQueries:
    @pytest.mark.asyncio
    async def test_oldest_first_with_limit(self, db_manager, seed_pending):
        products = await seed_pending(["A", "B", "C"])

        async with db_manager.session() as db:
            rows = await product_repository.find_pending_ordered_by_age(2, db)

        assert [r.identity_hash for r in rows] == [p.identity_hash for p in products[:2]]

    @pytest.mark.asyncio
    async def test_classified_rows_leave_queue(self, db_manager, seed_pending):
        a, b = await seed_pending(["A", "B"])
        async with db_manager.session() as db:
            await product_repository.update_classification(a.identity_hash, LOW, db)

        async with db_manager.session() as db:
            rows = await product_repository.find_pending_ordered_by_age(10, db)
            still = await product_repository.find_pending_identities([a.identity_hash, b.identity_hash], db)
            count = await product_repository.count_pending(db)

        assert [r.identity_hash for r in rows] == [b.identity_hash]
        assert still == [b.identity_hash]
        assert count == 1


class TestUpdateClassification:
    @pytest.mark.asyncio
    async def test_writes_all_fields_together(self, db_manager, seed_pending):
        [product] = await seed_pending(["Hleb"])
        processed_at = datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)

        async with db_manager.session() as db:
            assert await product_repository.update_classification(
                product.identity_hash, HIGH, db, processed_at=processed_at
            )

        row = await fetch(db_manager, product.identity_hash)
        assert row.status == "HIGH"
        assert row.is_food is True
        assert row.explanation == "Wheat"
        assert row.processed_at.replace(tzinfo=None) == processed_at.replace(tzinfo=None)

    @pytest.mark.asyncio
    async def test_classified_once(self, db_manager, seed_pending):
        [product] = await seed_pending(["Hleb"])
        async with db_manager.session() as db:
            await product_repository.update_classification(product.identity_hash, HIGH, db)

        async with db_manager.session() as db:
            updated = await product_repository.update_classification(product.identity_hash, LOW, db)

        assert updated is False
        assert (await fetch(db_manager, product.identity_hash)).status == "HIGH"

    @pytest.mark.asyncio
    async def test_force_overwrites(self, db_manager, seed_pending):
        [product] = await seed_pending(["Hleb"])
        async with db_manager.session() as db:
            await product_repository.update_classification(product.identity_hash, HIGH, db)
        async with db_manager.session() as db:
            assert await product_repository.update_classification(product.identity_hash, LOW, db, force=True)

        assert (await fetch(db_manager, product.identity_hash)).status == "LOW"

    @pytest.mark.asyncio
    async def test_unknown_identity(self, db_manager):
        async with db_manager.session() as db:
            assert await product_repository.update_classification("name_1", LOW, db) is False


class TestMarkUnknown:
    @pytest.mark.asyncio
    async def test_only_pending_rows(self, db_manager, seed_pending):
        a, b = await seed_pending(["A", "B"])
        async with db_manager.session() as db:
            await product_repository.update_classification(a.identity_hash, LOW, db)

        async with db_manager.session() as db:
            changed = await product_repository.mark_unknown(
                [a.identity_hash, b.identity_hash], "Classification failed: boom", db
            )

        assert changed == 1
        assert (await fetch(db_manager, a.identity_hash)).status == "LOW"
        row_b = await fetch(db_manager, b.identity_hash)
        assert row_b.status == "UNKNOWN"
        assert row_b.explanation == "Classification failed: boom"
        assert row_b.processed_at is not None


class TestResetForReclassification:
    @pytest.mark.asyncio
    async def test_back_to_pending(self, db_manager, seed_pending):
        a, b = await seed_pending(["A", "B"])
        async with db_manager.session() as db:
            await product_repository.update_classification(a.identity_hash, HIGH, db)

        async with db_manager.session() as db:
            reset = await product_repository.reset_for_reclassification([a.identity_hash, b.identity_hash], db)

        assert reset == 1
        row = await fetch(db_manager, a.identity_hash)
        assert row.status == "PENDING"
        assert row.processed_at is None
        assert row.explanation is None


class TestPendingInvariant:
    @pytest.mark.asyncio
    async def test_database_rejects_pending_with_processed_at(self, db_manager, seed_pending):
        [product] = await seed_pending(["Hleb"])

        with pytest.raises(IntegrityError):
            async with db_manager.session() as db:
                await db.execute(
                    update(Product)
                    .where(Product.identity_hash == product.identity_hash)
                    .values(processed_at=datetime.now(timezone.utc))
                )

    @pytest.mark.asyncio
    async def test_database_rejects_result_without_processed_at(self, db_manager, seed_pending):
        [product] = await seed_pending(["Hleb"])

        with pytest.raises(IntegrityError):
            async with db_manager.session() as db:
                await db.execute(
                    update(Product)
                    .where(Product.identity_hash == product.identity_hash)
                    .values(status="LOW")
                )
