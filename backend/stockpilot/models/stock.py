"""Stock models: StockItem counters and the StockMovement audit ledger."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stockpilot.db.base import Base


class MovementKind(str, Enum):
    """Kinds of stock movements."""

    INBOUND_PO = "inbound_po"  # Usable goods received against a purchase order
    INBOUND_PO_DAMAGED = "inbound_po_damaged"  # Damaged goods received against a purchase order
    PO_MISSING = "po_missing"  # Goods reported missing on delivery, no physical change
    INBOUND_TRANSFER = "inbound_transfer"
    INBOUND_ADJUSTMENT = "inbound_adjustment"
    OUTBOUND_SALE = "outbound_sale"
    OUTBOUND_TRANSFER = "outbound_transfer"
    OUTBOUND_ADJUSTMENT = "outbound_adjustment"
    INITIAL_STOCK = "initial_stock"


class StockItem(Base):
    """Usable and damaged quantity per product per location."""

    __tablename__ = "stock_items"
    __table_args__ = (
        UniqueConstraint("product_id", "location_id", name="uq_stock_item_product_location"),
        CheckConstraint("usable_quantity >= 0", name="ck_stock_item_usable_non_negative"),
        CheckConstraint("damaged_quantity >= 0", name="ck_stock_item_damaged_non_negative"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    product_id: Mapped[int] = mapped_column(
        ForeignKey("products.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    location_id: Mapped[int] = mapped_column(
        ForeignKey("locations.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    usable_quantity: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), default=0, server_default="0", nullable=False
    )
    damaged_quantity: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), default=0, server_default="0", nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )
    updated_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Relationships
    location: Mapped["Location"] = relationship("Location", back_populates="stock_items")


class StockMovement(Base):
    """Append-only ledger of every physical or reported stock change."""

    __tablename__ = "stock_movements"

    id: Mapped[int] = mapped_column(primary_key=True)
    ts: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False, index=True
    )
    product_id: Mapped[int] = mapped_column(
        ForeignKey("products.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    location_id: Mapped[int] = mapped_column(
        ForeignKey("locations.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    kind: Mapped[MovementKind] = mapped_column(
        SQLEnum(MovementKind, native_enum=False, length=30), nullable=False, index=True
    )
    quantity_changed: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    quantity_before: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    quantity_after: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    actor_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    reason: Mapped[str] = mapped_column(String(255), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    purchase_order_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("purchase_orders.id", ondelete="SET NULL"), nullable=True, index=True
    )
    receipt_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("receipts.id", ondelete="SET NULL"), nullable=True, index=True
    )
    supplier_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("suppliers.id", ondelete="SET NULL"), nullable=True
    )


# Forward references
from stockpilot.models.location import Location
