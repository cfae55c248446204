"""Purchase order schemas."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from stockpilot.models.purchase_order import (
    AdditionalCostType,
    PurchaseOrderStatus,
    SupplierSolutionType,
)


class AdditionalCost(BaseModel):
    """Logistics, tax or other cost added on top of the product lines."""

    description: str = Field(..., min_length=1, max_length=255)
    amount: Decimal = Field(..., ge=0)
    cost_type: AdditionalCostType = AdditionalCostType.OTHER


class PurchaseOrderDetailCreate(BaseModel):
    """One line item of a new order or of a supplier proposal."""

    product_id: int
    ordered_quantity: Decimal
    unit_price: Decimal
    notes: Optional[str] = Field(default=None, max_length=1000)


class PurchaseOrderCreate(BaseModel):
    """Purchase order creation schema (built from an approved quotation)."""

    supplier_id: int
    origin_requisition_id: int
    quotation_reference_id: Optional[str] = Field(default=None, max_length=100)
    expected_delivery_date: Optional[date] = None
    notes: Optional[str] = None
    additional_costs: List[AdditionalCost] = []
    details: List[PurchaseOrderDetailCreate] = []


class SupplierProposal(BaseModel):
    """Revised terms from the supplier. Omitted header fields keep their current value."""

    details: List[PurchaseOrderDetailCreate]
    additional_costs: Optional[List[AdditionalCost]] = None
    notes: Optional[str] = None
    expected_delivery_date: Optional[date] = None
    expected_version: Optional[int] = None


class TransitionRequest(BaseModel):
    """Body for status actions that carry nothing but the caller's version."""

    expected_version: Optional[int] = None


class RejectRequest(TransitionRequest):
    reason: Optional[str] = Field(default=None, max_length=1000)


class CancelRequest(TransitionRequest):
    note: Optional[str] = Field(default=None, max_length=2000)


class SupplierSolutionRequest(TransitionRequest):
    solution_type: SupplierSolutionType
    details: str = Field(..., max_length=2000)


class PurchaseOrderDetailResponse(BaseModel):
    id: int
    product_id: int
    product_name: str
    ordered_quantity: Decimal
    unit_price: Decimal
    subtotal: Decimal
    received_quantity: Decimal
    received_damaged_quantity: Decimal
    received_missing_quantity: Decimal
    outstanding_quantity: Decimal
    notes: Optional[str] = None

    model_config = {"from_attributes": True}


class OriginalDetailResponse(BaseModel):
    product_id: int
    product_name: str
    ordered_quantity: Decimal
    unit_price: Decimal
    subtotal: Decimal
    notes: Optional[str] = None

    model_config = {"from_attributes": True}


class NegotiationResponse(BaseModel):
    """The terms as they stood before the supplier's proposal."""

    original_notes: Optional[str] = None
    original_expected_delivery_date: Optional[date] = None
    original_additional_costs: list = []
    original_products_subtotal: Decimal
    original_total_amount: Decimal
    captured_at: datetime
    captured_by: Optional[int] = None
    original_details: List[OriginalDetailResponse] = []

    model_config = {"from_attributes": True}


class PurchaseOrderResponse(BaseModel):
    """Purchase order response schema."""

    id: int
    supplier_id: int
    origin_requisition_id: int
    quotation_reference_id: Optional[str] = None
    order_date: datetime
    expected_delivery_date: Optional[date] = None
    status: PurchaseOrderStatus
    notes: Optional[str] = None
    additional_costs: list = []
    products_subtotal: Decimal
    total_amount: Decimal
    created_by: Optional[int] = None
    sent_at: Optional[datetime] = None
    completion_date: Optional[datetime] = None
    supplier_agreed_solution_type: Optional[SupplierSolutionType] = None
    supplier_agreed_solution_details: Optional[str] = None
    cancellation_note: Optional[str] = None
    version: int
    under_review: bool
    details: List[PurchaseOrderDetailResponse] = []
    negotiation: Optional[NegotiationResponse] = None

    model_config = {"from_attributes": True}


class PurchaseOrderSummary(BaseModel):
    """Row in the purchase order list."""

    id: int
    supplier_id: int
    origin_requisition_id: int
    status: PurchaseOrderStatus
    order_date: datetime
    expected_delivery_date: Optional[date] = None
    total_amount: Decimal
    version: int

    model_config = {"from_attributes": True}


class StatusCheckResponse(BaseModel):
    purchase_order_id: int
    stored_status: PurchaseOrderStatus
    derived_status: PurchaseOrderStatus
    drift: bool
    repaired: bool
