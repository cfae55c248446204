"""Stock schemas."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from stockpilot.models.stock import MovementKind


class StockItemResponse(BaseModel):
    """Stock on hand for one product at one location."""

    id: int
    product_id: int
    location_id: int
    usable_quantity: Decimal
    damaged_quantity: Decimal
    updated_at: datetime
    updated_by: Optional[int] = None

    model_config = {"from_attributes": True}


class StockMovementResponse(BaseModel):
    """Stock movement response schema."""

    id: int
    ts: datetime
    product_id: int
    location_id: int
    kind: MovementKind
    quantity_changed: Decimal
    quantity_before: Decimal
    quantity_after: Decimal
    actor_id: Optional[int] = None
    reason: str
    notes: Optional[str] = None
    purchase_order_id: Optional[int] = None
    receipt_id: Optional[int] = None
    supplier_id: Optional[int] = None

    model_config = {"from_attributes": True}


class StockMovementCreate(BaseModel):
    """Manual movement: initial stock, transfer leg, adjustment or sale."""

    product_id: int
    location_id: int
    kind: MovementKind
    quantity: Decimal = Field(..., description="Positive amount; the kind decides the sign")
    reason: Optional[str] = Field(default=None, max_length=255)
    notes: Optional[str] = Field(default=None, max_length=1000)
