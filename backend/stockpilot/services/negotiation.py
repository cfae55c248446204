"""Negotiation terms and the original/proposed snapshot pair.

Domain code never inspects the snapshot columns directly. It asks for
``negotiation_state(po)`` and gets either ``Settled(terms)`` or
``UnderReview(proposed, original)``, so "a proposal is pending" is a type
rather than a nullable-field convention.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional, Tuple, Union

from sqlalchemy.orm import Session

from stockpilot.models.purchase_order import (
    PurchaseOrder,
    PurchaseOrderDetail,
    PurchaseOrderNegotiation,
    PurchaseOrderOriginalDetail,
)

TWO_PLACES = Decimal("0.01")


@dataclass(frozen=True)
class LineTerms:
    product_id: int
    product_name: str
    ordered_quantity: Decimal
    unit_price: Decimal
    notes: Optional[str] = None

    @property
    def subtotal(self) -> Decimal:
        return (Decimal(self.ordered_quantity) * Decimal(self.unit_price)).quantize(TWO_PLACES)


@dataclass(frozen=True)
class OrderTerms:
    """The commercial terms a buyer and supplier negotiate over."""

    lines: Tuple[LineTerms, ...]
    additional_costs: Tuple[dict, ...] = ()
    notes: Optional[str] = None
    expected_delivery_date: Optional[date] = None

    @property
    def products_subtotal(self) -> Decimal:
        return sum((line.subtotal for line in self.lines), Decimal("0")).quantize(TWO_PLACES)

    @property
    def total_amount(self) -> Decimal:
        costs = sum((Decimal(str(c["amount"])) for c in self.additional_costs), Decimal("0"))
        return (self.products_subtotal + costs).quantize(TWO_PLACES)

    @property
    def product_ids(self) -> frozenset:
        return frozenset(line.product_id for line in self.lines)


@dataclass(frozen=True)
class Settled:
    terms: OrderTerms


@dataclass(frozen=True)
class UnderReview:
    proposed: OrderTerms
    original: OrderTerms


NegotiationState = Union[Settled, UnderReview]


def serialize_costs(costs: Iterable) -> Tuple[dict, ...]:
    """Normalize additional costs (schemas or dicts) to JSON-safe dicts."""
    result = []
    for cost in costs:
        data = cost.model_dump() if hasattr(cost, "model_dump") else dict(cost)
        cost_type = data.get("cost_type") or "other"
        result.append({
            "description": data["description"],
            "amount": str(Decimal(str(data["amount"])).quantize(TWO_PLACES)),
            "cost_type": getattr(cost_type, "value", cost_type),
        })
    return tuple(result)


def live_terms(po: PurchaseOrder) -> OrderTerms:
    return OrderTerms(
        lines=tuple(
            LineTerms(
                product_id=d.product_id,
                product_name=d.product_name,
                ordered_quantity=Decimal(d.ordered_quantity),
                unit_price=Decimal(d.unit_price),
                notes=d.notes,
            )
            for d in po.details
        ),
        additional_costs=tuple(po.additional_costs or ()),
        notes=po.notes,
        expected_delivery_date=po.expected_delivery_date,
    )


def original_terms(negotiation: PurchaseOrderNegotiation) -> OrderTerms:
    return OrderTerms(
        lines=tuple(
            LineTerms(
                product_id=d.product_id,
                product_name=d.product_name,
                ordered_quantity=Decimal(d.ordered_quantity),
                unit_price=Decimal(d.unit_price),
                notes=d.notes,
            )
            for d in negotiation.original_details
        ),
        additional_costs=tuple(negotiation.original_additional_costs or ()),
        notes=negotiation.original_notes,
        expected_delivery_date=negotiation.original_expected_delivery_date,
    )


def negotiation_state(po: PurchaseOrder) -> NegotiationState:
    if po.negotiation is None:
        return Settled(live_terms(po))
    return UnderReview(proposed=live_terms(po), original=original_terms(po.negotiation))


def capture_snapshot(po: PurchaseOrder, actor_id: Optional[int] = None) -> PurchaseOrderNegotiation:
    """Copy the live terms into a new snapshot. An existing snapshot is kept as is."""
    if po.negotiation is not None:
        return po.negotiation

    terms = live_terms(po)
    negotiation = PurchaseOrderNegotiation(
        original_notes=terms.notes,
        original_expected_delivery_date=terms.expected_delivery_date,
        original_additional_costs=list(terms.additional_costs),
        original_products_subtotal=Decimal(po.products_subtotal),
        original_total_amount=Decimal(po.total_amount),
        captured_by=actor_id,
        original_details=[
            PurchaseOrderOriginalDetail(
                product_id=line.product_id,
                product_name=line.product_name,
                ordered_quantity=line.ordered_quantity,
                unit_price=line.unit_price,
                subtotal=line.subtotal,
                notes=line.notes,
            )
            for line in terms.lines
        ],
    )
    po.negotiation = negotiation
    return negotiation


def drop_snapshot(po: PurchaseOrder) -> None:
    po.negotiation = None


def apply_terms(db: Session, po: PurchaseOrder, terms: OrderTerms) -> None:
    """Overwrite the live header fields and replace every line item.

    Lines are deleted and flushed before the new ones are inserted, because
    the two collections need not correspond one to one.
    """
    po.notes = terms.notes
    po.expected_delivery_date = terms.expected_delivery_date
    po.additional_costs = list(terms.additional_costs)
    po.products_subtotal = terms.products_subtotal
    po.total_amount = terms.total_amount

    po.details.clear()
    db.flush()
    for line in terms.lines:
        po.details.append(build_detail(line))


def build_detail(line: LineTerms) -> PurchaseOrderDetail:
    """A fresh line item with zeroed receipt counters."""
    return PurchaseOrderDetail(
        product_id=line.product_id,
        product_name=line.product_name,
        ordered_quantity=line.ordered_quantity,
        unit_price=line.unit_price,
        subtotal=line.subtotal,
        received_quantity=Decimal("0"),
        received_damaged_quantity=Decimal("0"),
        received_missing_quantity=Decimal("0"),
        notes=line.notes,
    )


def restore_original(db: Session, po: PurchaseOrder) -> OrderTerms:
    """Put the snapshot terms back on the order and drop the snapshot."""
    terms = original_terms(po.negotiation)
    apply_terms(db, po, terms)
    # Keep the stored amounts exactly as captured
    po.products_subtotal = po.negotiation.original_products_subtotal
    po.total_amount = po.negotiation.original_total_amount
    drop_snapshot(po)
    return terms
