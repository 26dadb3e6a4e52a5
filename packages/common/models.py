"""
ORM models

products: one row per distinct product identity. Created as a PENDING
placeholder on submission, classified exactly once by the background job.
"""
from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Index, Integer, String, Text, func

from packages.common.database import Base


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, autoincrement=True)
    identity_hash = Column(String(64), nullable=False, unique=True)
    name = Column(String(255), nullable=False)
    category = Column(String(255), nullable=False, default="Uncategorized")
    is_food = Column(Boolean, nullable=True)
    status = Column(String(16), nullable=False, default="PENDING")
    explanation = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    processed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        # Queue scans: WHERE status = 'PENDING' ORDER BY created_at
        Index("products_queue_processing_idx", "status", "created_at"),
        Index("products_processed_at_idx", "processed_at"),
        Index("products_name_category_idx", "name", "category"),
        CheckConstraint(
            "(status = 'PENDING') = (processed_at IS NULL)",
            name="ck_products_pending_unprocessed",
        ),
    )

    def __repr__(self) -> str:
        return f"<Product {self.identity_hash} {self.status}>"
