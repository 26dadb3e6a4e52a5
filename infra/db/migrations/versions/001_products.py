"""Products table for FODMAP classification

Revision ID: 001_products
Revises:
Create Date: 2025-07-15 21:16:36.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001_products'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'products',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('identity_hash', sa.String(64), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('category', sa.String(255), nullable=False, server_default='Uncategorized'),
        sa.Column('is_food', sa.Boolean, nullable=True),
        sa.Column('status', sa.String(16), nullable=False, server_default='PENDING'),  # PENDING, LOW, MODERATE, HIGH, NA, UNKNOWN
        sa.Column('explanation', sa.Text, nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('processed_at', sa.TIMESTAMP(timezone=True), nullable=True),
    )
    op.create_unique_constraint('uq_products_identity_hash', 'products', ['identity_hash'])

    # Queue scans: WHERE status = 'PENDING' ORDER BY created_at
    op.create_index('products_queue_processing_idx', 'products', ['status', 'created_at'])
    op.create_index('products_processed_at_idx', 'products', ['processed_at'])
    op.create_index('products_name_category_idx', 'products', ['name', 'category'])

    # status = PENDING iff processed_at IS NULL
    op.create_check_constraint(
        'ck_products_pending_unprocessed',
        'products',
        "(status = 'PENDING') = (processed_at IS NULL)",
    )


def downgrade() -> None:
    op.drop_table('products')
