"""Requisition models and the requisition sync task queue."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    JSON,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stockpilot.db.base import Base, TimestampMixin, VersionMixin


class RequisitionStatus(str, Enum):
    PENDING_QUOTATION = "pending_quotation"
    QUOTED = "quoted"
    PO_IN_PROGRESS = "po_in_progress"
    COMPLETED = "completed"
    CANCELED = "canceled"


class Requisition(Base, TimestampMixin):
    """Internal request for goods that purchase orders are drawn against."""

    __tablename__ = "requisitions"

    id: Mapped[int] = mapped_column(primary_key=True)
    requester_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    status: Mapped[RequisitionStatus] = mapped_column(
        SQLEnum(RequisitionStatus, native_enum=False, length=30),
        default=RequisitionStatus.PENDING_QUOTATION,
        nullable=False,
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Relationships
    required_products: Mapped[list["RequiredProduct"]] = relationship(
        "RequiredProduct",
        back_populates="requisition",
        cascade="all, delete-orphan",
        order_by="RequiredProduct.id",
    )
    purchase_orders: Mapped[list["PurchaseOrder"]] = relationship(
        "PurchaseOrder", back_populates="requisition"
    )


class RequiredProduct(Base):
    """A requested product with its purchased and pending order quantities."""

    __tablename__ = "requisition_required_products"
    __table_args__ = (
        UniqueConstraint("requisition_id", "product_id", name="uq_required_product"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    requisition_id: Mapped[int] = mapped_column(
        ForeignKey("requisitions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    product_id: Mapped[int] = mapped_column(
        ForeignKey("products.id", ondelete="RESTRICT"), nullable=False
    )
    required_quantity: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    purchased_quantity: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), default=0, server_default="0", nullable=False
    )
    pending_po_quantity: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), default=0, server_default="0", nullable=False
    )

    # Relationships
    requisition: Mapped["Requisition"] = relationship("Requisition", back_populates="required_products")


class SyncEvent(str, Enum):
    """Order lifecycle events that move requisition quantities."""

    RESERVE = "reserve"  # order created: ordered quantities become pending
    CONFIRM = "confirm"  # order confirmed: pending moves to purchased
    RELEASE = "release"  # order canceled/rejected before confirmation: pending released


class SyncTaskStatus(str, Enum):
    PENDING = "pending"
    APPLIED = "applied"
    FAILED = "failed"


class RequisitionSyncTask(Base, VersionMixin):
    """A requisition quantity delta owed by a purchase order transition.

    Written in the same transaction as the order change it follows and
    applied afterwards in its own transaction. ``quantities`` holds signed
    deltas per counter, e.g. ``{"pending": {"7": "-10"}, "purchased": {"7": "10"}}``.
    The unique (order, event) pair keeps one task per delta, and the version
    column makes claiming a task conditional, so it applies at most once.
    """

    __tablename__ = "requisition_sync_tasks"
    __table_args__ = (
        UniqueConstraint("purchase_order_id", "event", name="uq_sync_task_order_event"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    purchase_order_id: Mapped[int] = mapped_column(
        ForeignKey("purchase_orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    requisition_id: Mapped[int] = mapped_column(
        ForeignKey("requisitions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    event: Mapped[SyncEvent] = mapped_column(SQLEnum(SyncEvent, native_enum=False, length=20), nullable=False)
    quantities: Mapped[dict] = mapped_column(JSON, nullable=False)
    status: Mapped[SyncTaskStatus] = mapped_column(
        SQLEnum(SyncTaskStatus, native_enum=False, length=20),
        default=SyncTaskStatus.PENDING,
        nullable=False,
        index=True,
    )
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_error: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    order_version: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    applied_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


# Forward references
from stockpilot.models.purchase_order import PurchaseOrder
