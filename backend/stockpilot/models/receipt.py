"""Receipt models: one row per physical delivery, never edited afterwards."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Integer, Numeric, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stockpilot.db.base import Base


class Receipt(Base):
    """A delivery event recorded against a purchase order."""

    __tablename__ = "receipts"

    id: Mapped[int] = mapped_column(primary_key=True)
    purchase_order_id: Mapped[int] = mapped_column(
        ForeignKey("purchase_orders.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    location_id: Mapped[int] = mapped_column(
        ForeignKey("locations.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    receipt_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    received_by: Mapped[int] = mapped_column(Integer, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    # Relationships
    purchase_order: Mapped["PurchaseOrder"] = relationship("PurchaseOrder", back_populates="receipts")
    items: Mapped[list["ReceiptItem"]] = relationship(
        "ReceiptItem", back_populates="receipt", cascade="all, delete-orphan", order_by="ReceiptItem.id"
    )


class ReceiptItem(Base):
    """Quantities attributed to this delivery only, never cumulative."""

    __tablename__ = "receipt_items"
    __table_args__ = (
        CheckConstraint(
            "qty_ok >= 0 AND qty_damaged >= 0 AND qty_missing >= 0",
            name="ck_receipt_item_non_negative",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    receipt_id: Mapped[int] = mapped_column(
        ForeignKey("receipts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    purchase_order_detail_id: Mapped[int] = mapped_column(
        ForeignKey("purchase_order_details.id", ondelete="RESTRICT"), nullable=False
    )
    product_id: Mapped[int] = mapped_column(
        ForeignKey("products.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    qty_ok: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)
    qty_damaged: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)
    qty_missing: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)

    # Relationships
    receipt: Mapped["Receipt"] = relationship("Receipt", back_populates="items")


# Forward references
from stockpilot.models.purchase_order import PurchaseOrder
