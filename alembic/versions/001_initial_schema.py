"""initial schema - products mirror and sync log

Revision ID: 001_initial
Revises: None
Create Date: 2026-10-19

For databases already created by init_db(): run `alembic stamp 001_initial`.
For NEW databases: run `alembic upgrade head`.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "products",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("artist", sa.String(255)),
        sa.Column("slug", sa.String(80), unique=True),
        sa.Column("description", sa.Text),
        sa.Column("price", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("currency", sa.String(3), server_default="GBP"),
        sa.Column("image_url", sa.String(500)),
        sa.Column("product_type", sa.String(20), server_default="record"),
        sa.Column("is_visible", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("available_at_location", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("is_from_square", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("stock_quantity", sa.Integer, nullable=False, server_default="0"),
        sa.Column("stock_status", sa.String(20), server_default="out_of_stock"),
        sa.Column("in_stock", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("is_preorder", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("preorder_release_date", sa.Date),
        sa.Column("preorder_status", sa.String(20), nullable=False, server_default="none"),
        sa.Column("last_synced_at", sa.DateTime),
        sa.Column("platform_updated_at", sa.String(40)),
        sa.Column("created_at", sa.DateTime),
        sa.Column("updated_at", sa.DateTime),
    )
    op.create_index("ix_products_storefront", "products", ["available_at_location", "is_visible"])
    op.create_index(
        "ix_products_preorder", "products", ["is_preorder", "preorder_status", "preorder_release_date"]
    )
    op.create_index("ix_products_synced", "products", ["is_from_square", "last_synced_at"])

    op.create_table(
        "sync_logs",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("source", sa.String(50), nullable=False),
        sa.Column("status", sa.String(50), nullable=False),
        sa.Column("started_at", sa.DateTime, nullable=False),
        sa.Column("finished_at", sa.DateTime),
        sa.Column("duration_seconds", sa.Float),
        sa.Column("row_counts", sa.JSON),
        sa.Column("errors", sa.JSON),
        sa.Column("created_at", sa.DateTime),
    )
    op.create_index("ix_sync_source_time", "sync_logs", ["source", "started_at"])


def downgrade() -> None:
    """Drop both tables. DESTRUCTIVE: dev/test only."""
    op.drop_index("ix_sync_source_time", table_name="sync_logs")
    op.drop_table("sync_logs")
    op.drop_index("ix_products_synced", table_name="products")
    op.drop_index("ix_products_preorder", table_name="products")
    op.drop_index("ix_products_storefront", table_name="products")
    op.drop_table("products")
