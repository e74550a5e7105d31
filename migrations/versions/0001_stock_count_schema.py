"""create product, inventory and stock count tables

Revision ID: 0001_stock_count_schema
Revises:
Create Date: 2026-10-16

"""

from alembic import op
import sqlalchemy as sa


revision = "0001_stock_count_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "product",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("model_number", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("category", sa.String()),
        sa.Column("manufacturer", sa.String()),
        sa.Column("description", sa.Text()),
        sa.Column("gtin", sa.String(length=14)),
        sa.Column("barcode", sa.String()),
        sa.Column("min_car_stock", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("min_total_stock", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_product_gtin", "product", ["gtin"])

    op.create_table(
        "inventory_item",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("product.id"), nullable=False),
        sa.Column("location", sa.String(length=16), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("tracking_mode", sa.String(length=16), nullable=False, server_default="none"),
        sa.Column("serial_number", sa.String(), unique=True),
        sa.Column("lot_number", sa.String()),
        sa.Column("expiration_date", sa.Date()),
        sa.Column("missing_since", sa.DateTime()),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("quantity >= 0", name="ck_inventory_item_quantity"),
        sa.CheckConstraint(
            "(tracking_mode != 'serial') OR (quantity <= 1)",
            name="ck_inventory_item_serial_quantity",
        ),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "stock_count_session",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("count_type", sa.String(length=16), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("person", sa.String()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("completed_at", sa.DateTime()),
        sa.Column("matched_count", sa.Integer()),
        sa.Column("transferred_count", sa.Integer()),
        sa.Column("new_items_count", sa.Integer()),
        sa.Column("marked_missing_count", sa.Integer()),
        sa.Column("derecognized_count", sa.Integer()),
        sa.Column("deleted_count", sa.Integer()),
        sa.Column("plan_fingerprint", sa.String(length=64)),
    )

    op.create_table(
        "scanned_item",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "session_id",
            sa.Integer(),
            sa.ForeignKey("stock_count_session.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("product.id"), nullable=False),
        sa.Column("scanned_location", sa.String(length=16), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("tracking_mode", sa.String(length=16), nullable=False, server_default="none"),
        sa.Column("serial_number", sa.String()),
        sa.Column("lot_number", sa.String()),
        sa.Column("expiration_date", sa.Date()),
        sa.Column("raw_barcode", sa.String()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "inventory_movement",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("product.id"), nullable=False),
        sa.Column("inventory_item_id", sa.Integer()),
        sa.Column("location", sa.String(length=16), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("movement_type", sa.String(), nullable=False),
        sa.Column("serial_number", sa.String()),
        sa.Column("lot_number", sa.String()),
        sa.Column("person", sa.String()),
        sa.Column("reference", sa.String()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "applied_adjustment",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "session_id",
            sa.Integer(),
            sa.ForeignKey("stock_count_session.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("kind", sa.String(length=32), nullable=False),
        sa.Column("reference_id", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint(
            "session_id", "kind", "reference_id", name="uq_applied_adjustment_reference"
        ),
    )


def downgrade():
    op.drop_table("applied_adjustment")
    op.drop_table("inventory_movement")
    op.drop_table("scanned_item")
    op.drop_table("stock_count_session")
    op.drop_table("inventory_item")
    op.drop_index("ix_product_gtin", table_name="product")
    op.drop_table("product")
