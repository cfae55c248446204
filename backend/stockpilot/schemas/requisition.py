"""Requisition schemas."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from stockpilot.models.requisition import RequisitionStatus, SyncEvent, SyncTaskStatus


class RequiredProductResponse(BaseModel):
    id: int
    product_id: int
    required_quantity: Decimal
    purchased_quantity: Decimal
    pending_po_quantity: Decimal

    model_config = {"from_attributes": True}


class RequisitionResponse(BaseModel):
    """Requisition with its per-product purchase progress."""

    id: int
    requester_id: Optional[int] = None
    status: RequisitionStatus
    notes: Optional[str] = None
    required_products: List[RequiredProductResponse] = []

    model_config = {"from_attributes": True}


class SyncTaskResponse(BaseModel):
    id: int
    purchase_order_id: int
    requisition_id: int
    event: SyncEvent
    quantities: dict
    status: SyncTaskStatus
    attempts: int
    last_error: Optional[str] = None
    created_at: datetime
    applied_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class SyncRetryRequest(BaseModel):
    limit: int = Field(default=100, ge=1, le=1000)


class SyncRetryResponse(BaseModel):
    processed: int
    applied: int
    pending: int
    failed: int
