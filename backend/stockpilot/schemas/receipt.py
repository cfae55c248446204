"""Receipt schemas."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field


class ReceiptLineCreate(BaseModel):
    """Quantities delivered in this receipt for one order line."""

    product_id: int
    qty_ok: Decimal = Decimal("0")
    qty_damaged: Decimal = Decimal("0")
    qty_missing: Decimal = Decimal("0")
    notes: Optional[str] = Field(default=None, max_length=1000)


class ReceiptCreate(BaseModel):
    """A physical delivery against a purchase order."""

    location_id: Optional[int] = Field(default=None, description="Defaults to the default location")
    receipt_date: Optional[datetime] = None
    notes: Optional[str] = None
    lines: List[ReceiptLineCreate] = Field(..., min_length=1)
    expected_version: Optional[int] = None


class ReceiptItemResponse(BaseModel):
    id: int
    purchase_order_detail_id: int
    product_id: int
    qty_ok: Decimal
    qty_damaged: Decimal
    qty_missing: Decimal
    notes: Optional[str] = None

    model_config = {"from_attributes": True}


class ReceiptResponse(BaseModel):
    """Receipt response schema."""

    id: int
    purchase_order_id: int
    location_id: int
    receipt_date: datetime
    received_by: int
    notes: Optional[str] = None
    created_at: datetime
    items: List[ReceiptItemResponse] = []

    model_config = {"from_attributes": True}
