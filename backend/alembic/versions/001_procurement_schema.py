"""Procurement schema

Revision ID: 001
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    # Catalog collaborators (read-only for the procurement core)
    op.create_table(
        "suppliers",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False, index=True),
        sa.Column("contact_email", sa.String(255), nullable=True),
        sa.Column("contact_phone", sa.String(50), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "products",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False, index=True),
        sa.Column("sku", sa.String(50), nullable=True, unique=True, index=True),
        sa.Column("unit", sa.String(20), nullable=False),
        sa.Column("supplier_id", sa.Integer(), sa.ForeignKey("suppliers.id", ondelete="SET NULL"),
                  nullable=True, index=True),
        sa.Column("active", sa.Boolean(), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "locations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False, unique=True),
        sa.Column("description", sa.String(500), nullable=True),
        sa.Column("is_default", sa.Boolean(), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False),
        *_timestamps(),
    )

    # Requisitions
    op.create_table(
        "requisitions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("requester_id", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(30), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "requisition_required_products",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("requisition_id", sa.Integer(), sa.ForeignKey("requisitions.id", ondelete="CASCADE"),
                  nullable=False, index=True),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("required_quantity", sa.Numeric(12, 2), nullable=False),
        sa.Column("purchased_quantity", sa.Numeric(12, 2), server_default="0", nullable=False),
        sa.Column("pending_po_quantity", sa.Numeric(12, 2), server_default="0", nullable=False),
        sa.UniqueConstraint("requisition_id", "product_id", name="uq_required_product"),
    )

    # Purchase orders
    op.create_table(
        "purchase_orders",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("supplier_id", sa.Integer(), sa.ForeignKey("suppliers.id", ondelete="RESTRICT"),
                  nullable=False, index=True),
        sa.Column("origin_requisition_id", sa.Integer(), sa.ForeignKey("requisitions.id", ondelete="RESTRICT"),
                  nullable=False, index=True),
        sa.Column("quotation_reference_id", sa.String(100), nullable=True),
        sa.Column("order_date", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("expected_delivery_date", sa.Date(), nullable=True),
        sa.Column("status", sa.String(40), nullable=False, index=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("additional_costs", sa.JSON(), nullable=False),
        sa.Column("products_subtotal", sa.Numeric(12, 2), nullable=False),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("created_by", sa.Integer(), nullable=True),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completion_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("supplier_agreed_solution_type", sa.String(40), nullable=True),
        sa.Column("supplier_agreed_solution_details", sa.Text(), nullable=True),
        sa.Column("cancellation_note", sa.Text(), nullable=True),
        sa.Column("version", sa.Integer(), server_default="1", nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "purchase_order_details",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("purchase_order_id", sa.Integer(), sa.ForeignKey("purchase_orders.id", ondelete="CASCADE"),
                  nullable=False, index=True),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id", ondelete="RESTRICT"),
                  nullable=False, index=True),
        sa.Column("product_name", sa.String(255), nullable=False),
        sa.Column("ordered_quantity", sa.Numeric(12, 2), nullable=False),
        sa.Column("unit_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("subtotal", sa.Numeric(12, 2), nullable=False),
        sa.Column("received_quantity", sa.Numeric(12, 2), nullable=False),
        sa.Column("received_damaged_quantity", sa.Numeric(12, 2), nullable=False),
        sa.Column("received_missing_quantity", sa.Numeric(12, 2), nullable=False),
        sa.Column("notes", sa.String(1000), nullable=True),
        sa.UniqueConstraint("purchase_order_id", "product_id", name="uq_po_detail_product"),
        sa.CheckConstraint("ordered_quantity > 0", name="ck_po_detail_ordered_positive"),
        sa.CheckConstraint(
            "received_quantity >= 0 AND received_damaged_quantity >= 0 AND received_missing_quantity >= 0",
            name="ck_po_detail_counters_non_negative",
        ),
        sa.CheckConstraint(
            "ordered_quantity >= received_quantity + received_damaged_quantity + received_missing_quantity",
            name="ck_po_detail_not_over_received",
        ),
    )

    # Negotiation snapshot (exists only while a proposal is under review)
    op.create_table(
        "purchase_order_negotiations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("purchase_order_id", sa.Integer(), sa.ForeignKey("purchase_orders.id", ondelete="CASCADE"),
                  nullable=False, unique=True),
        sa.Column("original_notes", sa.Text(), nullable=True),
        sa.Column("original_expected_delivery_date", sa.Date(), nullable=True),
        sa.Column("original_additional_costs", sa.JSON(), nullable=False),
        sa.Column("original_products_subtotal", sa.Numeric(12, 2), nullable=False),
        sa.Column("original_total_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("captured_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("captured_by", sa.Integer(), nullable=True),
    )

    op.create_table(
        "purchase_order_original_details",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("negotiation_id", sa.Integer(),
                  sa.ForeignKey("purchase_order_negotiations.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("product_name", sa.String(255), nullable=False),
        sa.Column("ordered_quantity", sa.Numeric(12, 2), nullable=False),
        sa.Column("unit_price", sa.Numeric(12, 2), nullable=False),
        sa.Column("subtotal", sa.Numeric(12, 2), nullable=False),
        sa.Column("notes", sa.String(1000), nullable=True),
    )

    # Receipts
    op.create_table(
        "receipts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("purchase_order_id", sa.Integer(), sa.ForeignKey("purchase_orders.id", ondelete="RESTRICT"),
                  nullable=False, index=True),
        sa.Column("location_id", sa.Integer(), sa.ForeignKey("locations.id", ondelete="RESTRICT"),
                  nullable=False, index=True),
        sa.Column("receipt_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("received_by", sa.Integer(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        "receipt_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("receipt_id", sa.Integer(), sa.ForeignKey("receipts.id", ondelete="CASCADE"),
                  nullable=False, index=True),
        sa.Column("purchase_order_detail_id", sa.Integer(),
                  sa.ForeignKey("purchase_order_details.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id", ondelete="RESTRICT"),
                  nullable=False, index=True),
        sa.Column("qty_ok", sa.Numeric(12, 2), nullable=False),
        sa.Column("qty_damaged", sa.Numeric(12, 2), nullable=False),
        sa.Column("qty_missing", sa.Numeric(12, 2), nullable=False),
        sa.Column("notes", sa.String(1000), nullable=True),
        sa.CheckConstraint(
            "qty_ok >= 0 AND qty_damaged >= 0 AND qty_missing >= 0",
            name="ck_receipt_item_non_negative",
        ),
    )

    # Stock ledger
    op.create_table(
        "stock_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id", ondelete="RESTRICT"),
                  nullable=False, index=True),
        sa.Column("location_id", sa.Integer(), sa.ForeignKey("locations.id", ondelete="RESTRICT"),
                  nullable=False, index=True),
        sa.Column("usable_quantity", sa.Numeric(12, 2), server_default="0", nullable=False),
        sa.Column("damaged_quantity", sa.Numeric(12, 2), server_default="0", nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_by", sa.Integer(), nullable=True),
        sa.UniqueConstraint("product_id", "location_id", name="uq_stock_item_product_location"),
        sa.CheckConstraint("usable_quantity >= 0", name="ck_stock_item_usable_non_negative"),
        sa.CheckConstraint("damaged_quantity >= 0", name="ck_stock_item_damaged_non_negative"),
    )

    op.create_table(
        "stock_movements",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("ts", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False, index=True),
        sa.Column("product_id", sa.Integer(), sa.ForeignKey("products.id", ondelete="RESTRICT"),
                  nullable=False, index=True),
        sa.Column("location_id", sa.Integer(), sa.ForeignKey("locations.id", ondelete="RESTRICT"),
                  nullable=False, index=True),
        sa.Column("kind", sa.String(30), nullable=False, index=True),
        sa.Column("quantity_changed", sa.Numeric(12, 2), nullable=False),
        sa.Column("quantity_before", sa.Numeric(12, 2), nullable=False),
        sa.Column("quantity_after", sa.Numeric(12, 2), nullable=False),
        sa.Column("actor_id", sa.Integer(), nullable=True),
        sa.Column("reason", sa.String(255), nullable=False),
        sa.Column("notes", sa.String(1000), nullable=True),
        sa.Column("purchase_order_id", sa.Integer(), sa.ForeignKey("purchase_orders.id", ondelete="SET NULL"),
                  nullable=True, index=True),
        sa.Column("receipt_id", sa.Integer(), sa.ForeignKey("receipts.id", ondelete="SET NULL"),
                  nullable=True, index=True),
        sa.Column("supplier_id", sa.Integer(), sa.ForeignKey("suppliers.id", ondelete="SET NULL"), nullable=True),
    )

    # Requisition propagation outbox
    op.create_table(
        "requisition_sync_tasks",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("purchase_order_id", sa.Integer(), sa.ForeignKey("purchase_orders.id", ondelete="CASCADE"),
                  nullable=False, index=True),
        sa.Column("requisition_id", sa.Integer(), sa.ForeignKey("requisitions.id", ondelete="CASCADE"),
                  nullable=False, index=True),
        sa.Column("event", sa.String(20), nullable=False),
        sa.Column("quantities", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, index=True),
        sa.Column("attempts", sa.Integer(), nullable=False),
        sa.Column("last_error", sa.String(1000), nullable=True),
        sa.Column("order_version", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("applied_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), server_default="1", nullable=False),
        sa.UniqueConstraint("purchase_order_id", "event", name="uq_sync_task_order_event"),
    )


def downgrade() -> None:
    op.drop_table("requisition_sync_tasks")
    op.drop_table("stock_movements")
    op.drop_table("stock_items")
    op.drop_table("receipt_items")
    op.drop_table("receipts")
    op.drop_table("purchase_order_original_details")
    op.drop_table("purchase_order_negotiations")
    op.drop_table("purchase_order_details")
    op.drop_table("purchase_orders")
    op.drop_table("requisition_required_products")
    op.drop_table("requisitions")
    op.drop_table("locations")
    op.drop_table("products")
    op.drop_table("suppliers")
