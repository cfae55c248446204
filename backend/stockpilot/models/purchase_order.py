"""Purchase order models: header, line items and the negotiation snapshot."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Date,
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


class PurchaseOrderStatus(str, Enum):
    """Lifecycle status of a purchase order."""

    PENDING = "pending"
    SENT_TO_SUPPLIER = "sent_to_supplier"
    CHANGES_PROPOSED_BY_SUPPLIER = "changes_proposed_by_supplier"
    PENDING_INTERNAL_REVIEW = "pending_internal_review"
    CONFIRMED_BY_SUPPLIER = "confirmed_by_supplier"
    REJECTED_BY_SUPPLIER = "rejected_by_supplier"
    PARTIALLY_DELIVERED = "partially_delivered"
    AWAITING_FUTURE_DELIVERY = "awaiting_future_delivery"
    FULLY_RECEIVED = "fully_received"
    COMPLETED = "completed"
    CANCELED = "canceled"


class SupplierSolutionType(str, Enum):
    """How a delivery shortfall was settled with the supplier."""

    CREDIT_PARTIAL_CHARGE = "credit_partial_charge"
    DISCOUNT_FOR_IMPERFECTION = "discount_for_imperfection"
    FUTURE_DELIVERY = "future_delivery"
    OTHER = "other"


class AdditionalCostType(str, Enum):
    LOGISTICS = "logistics"
    TAX = "tax"
    INSURANCE = "insurance"
    OTHER = "other"


class PurchaseOrder(Base, TimestampMixin, VersionMixin):
    """A purchase order placed with a supplier against a requisition.

    Orders are never deleted; terminal states stay for audit.
    """

    __tablename__ = "purchase_orders"

    id: Mapped[int] = mapped_column(primary_key=True)
    supplier_id: Mapped[int] = mapped_column(
        ForeignKey("suppliers.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    origin_requisition_id: Mapped[int] = mapped_column(
        ForeignKey("requisitions.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    quotation_reference_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    order_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    expected_delivery_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    status: Mapped[PurchaseOrderStatus] = mapped_column(
        SQLEnum(PurchaseOrderStatus, native_enum=False, length=40),
        default=PurchaseOrderStatus.PENDING,
        nullable=False,
        index=True,
    )

    # Current commercial terms
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    additional_costs: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    products_subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)

    created_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completion_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Discrepancy resolution
    supplier_agreed_solution_type: Mapped[Optional[SupplierSolutionType]] = mapped_column(
        SQLEnum(SupplierSolutionType, native_enum=False, length=40), nullable=True
    )
    supplier_agreed_solution_details: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cancellation_note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Relationships
    supplier: Mapped["Supplier"] = relationship("Supplier", back_populates="purchase_orders")
    requisition: Mapped["Requisition"] = relationship("Requisition", back_populates="purchase_orders")
    details: Mapped[list["PurchaseOrderDetail"]] = relationship(
        "PurchaseOrderDetail",
        back_populates="purchase_order",
        cascade="all, delete-orphan",
        order_by="PurchaseOrderDetail.id",
    )
    negotiation: Mapped[Optional["PurchaseOrderNegotiation"]] = relationship(
        "PurchaseOrderNegotiation",
        back_populates="purchase_order",
        cascade="all, delete-orphan",
        uselist=False,
    )
    receipts: Mapped[list["Receipt"]] = relationship(
        "Receipt", back_populates="purchase_order", order_by="Receipt.id"
    )

    @property
    def has_supplier_solution(self) -> bool:
        return self.supplier_agreed_solution_type is not None

    @property
    def under_review(self) -> bool:
        return self.negotiation is not None

    def detail_for(self, product_id: int) -> Optional["PurchaseOrderDetail"]:
        for detail in self.details:
            if detail.product_id == product_id:
                return detail
        return None


class PurchaseOrderDetail(Base):
    """One product line of a purchase order with its cumulative receipt counters."""

    __tablename__ = "purchase_order_details"
    __table_args__ = (
        UniqueConstraint("purchase_order_id", "product_id", name="uq_po_detail_product"),
        CheckConstraint("ordered_quantity > 0", name="ck_po_detail_ordered_positive"),
        CheckConstraint(
            "received_quantity >= 0 AND received_damaged_quantity >= 0 "
            "AND received_missing_quantity >= 0",
            name="ck_po_detail_counters_non_negative",
        ),
        CheckConstraint(
            "ordered_quantity >= received_quantity + received_damaged_quantity "
            "+ received_missing_quantity",
            name="ck_po_detail_not_over_received",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    purchase_order_id: Mapped[int] = mapped_column(
        ForeignKey("purchase_orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    product_id: Mapped[int] = mapped_column(
        ForeignKey("products.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    ordered_quantity: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    received_quantity: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)
    received_damaged_quantity: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)
    received_missing_quantity: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)

    # Relationships
    purchase_order: Mapped["PurchaseOrder"] = relationship("PurchaseOrder", back_populates="details")

    @property
    def accounted_quantity(self) -> Decimal:
        return (
            Decimal(self.received_quantity or 0)
            + Decimal(self.received_damaged_quantity or 0)
            + Decimal(self.received_missing_quantity or 0)
        )

    @property
    def outstanding_quantity(self) -> Decimal:
        return Decimal(self.ordered_quantity) - self.accounted_quantity


class PurchaseOrderNegotiation(Base):
    """The original terms kept while a supplier counter-proposal is under review.

    One row per order at most. The row existing is what marks the order as
    under review; it is deleted when the proposal is confirmed, reverted or
    abandoned.
    """

    __tablename__ = "purchase_order_negotiations"

    id: Mapped[int] = mapped_column(primary_key=True)
    purchase_order_id: Mapped[int] = mapped_column(
        ForeignKey("purchase_orders.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    original_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    original_expected_delivery_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    original_additional_costs: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    original_products_subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    original_total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    captured_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    captured_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Relationships
    purchase_order: Mapped["PurchaseOrder"] = relationship("PurchaseOrder", back_populates="negotiation")
    original_details: Mapped[list["PurchaseOrderOriginalDetail"]] = relationship(
        "PurchaseOrderOriginalDetail",
        back_populates="negotiation",
        cascade="all, delete-orphan",
        order_by="PurchaseOrderOriginalDetail.id",
    )


class PurchaseOrderOriginalDetail(Base):
    """A pre-proposal line item held by the negotiation snapshot."""

    __tablename__ = "purchase_order_original_details"

    id: Mapped[int] = mapped_column(primary_key=True)
    negotiation_id: Mapped[int] = mapped_column(
        ForeignKey("purchase_order_negotiations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    product_id: Mapped[int] = mapped_column(
        ForeignKey("products.id", ondelete="RESTRICT"), nullable=False
    )
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    ordered_quantity: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)

    # Relationships
    negotiation: Mapped["PurchaseOrderNegotiation"] = relationship(
        "PurchaseOrderNegotiation", back_populates="original_details"
    )


# Forward references
from stockpilot.models.supplier import Supplier
from stockpilot.models.requisition import Requisition
from stockpilot.models.receipt import Receipt
