#!/usr/bin/env python3
"""
Bulk-seed PENDING products from a CSV file.

The CSV needs a "name" column and may have a "category" column. Products
already known (by identity hash) are skipped.

Usage:
    python scripts/seed_products.py <products.csv>

Example:
    python scripts/seed_products.py data/maxi_products.csv
"""
import sys
import os
import asyncio
import csv

# Add parent directory to path so we can import modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from packages.common.config import get_settings
from packages.common.database import get_db_session
from packages.common.logging_config import configure_logging
from packages.domain.classification.product_service import product_service
from packages.domain.classification.schemas import ProductSubmission

CHUNK_SIZE = 500


def read_products(path):
    with open(path, newline="", encoding="utf-8") as f:
        for row in csv.DictReader(f):
            name = (row.get("name") or "").strip()
            if not name:
                continue
            yield ProductSubmission(name=name[:255], category=(row.get("category") or "").strip() or None)


async def main():
    if len(sys.argv) < 2:
        print("Usage: python scripts/seed_products.py <products.csv>")
        sys.exit(1)

    settings = get_settings()
    configure_logging(settings.log_level, "console")

    products = list(read_products(sys.argv[1]))
    print(f"Seeding {len(products)} products from {sys.argv[1]}...")

    submitted = 0
    skipped = 0
    for start in range(0, len(products), CHUNK_SIZE):
        async for db in get_db_session():
            report = await product_service.submit(products[start:start + CHUNK_SIZE], db)
        submitted += report.submitted
        skipped += report.skipped

    print("\nResult:")
    print(f"  Submitted: {submitted}")
    print(f"  Skipped (already known): {skipped}")


if __name__ == "__main__":
    asyncio.run(main())
