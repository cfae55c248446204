"""Tests for negotiation terms and snapshot handling."""

from datetime import date
from decimal import Decimal

from stockpilot.models.purchase_order import AdditionalCostType, PurchaseOrder, PurchaseOrderDetail
from stockpilot.schemas.purchase_order import AdditionalCost
from stockpilot.services.negotiation import (
    LineTerms,
    OrderTerms,
    Settled,
    UnderReview,
    capture_snapshot,
    live_terms,
    negotiation_state,
    serialize_costs,
)


def _order() -> PurchaseOrder:
    return PurchaseOrder(
        notes="Deliver before noon",
        expected_delivery_date=date(2026, 11, 2),
        additional_costs=[{"description": "Freight", "amount": "12.50", "cost_type": "logistics"}],
        products_subtotal=Decimal("45.00"),
        total_amount=Decimal("57.50"),
        details=[
            PurchaseOrderDetail(product_id=1, product_name="Product A", ordered_quantity=Decimal("10"),
                                unit_price=Decimal("2.50"), subtotal=Decimal("25.00")),
            PurchaseOrderDetail(product_id=2, product_name="Product B", ordered_quantity=Decimal("5"),
                                unit_price=Decimal("4.00"), subtotal=Decimal("20.00")),
        ],
    )


def test_line_subtotal_rounds_to_cents():
    line = LineTerms(product_id=1, product_name="A", ordered_quantity=Decimal("3"), unit_price=Decimal("0.333"))
    assert line.subtotal == Decimal("1.00")


def test_order_totals_include_additional_costs():
    terms = OrderTerms(
        lines=(
            LineTerms(1, "A", Decimal("10"), Decimal("2.50")),
            LineTerms(2, "B", Decimal("5"), Decimal("4.00")),
        ),
        additional_costs=({"description": "Tax", "amount": "4.50", "cost_type": "tax"},),
    )
    assert terms.products_subtotal == Decimal("45.00")
    assert terms.total_amount == Decimal("49.50")
    assert terms.product_ids == frozenset({1, 2})


def test_serialize_costs_accepts_schemas_and_dicts():
    costs = serialize_costs([
        AdditionalCost(description="Freight", amount=Decimal("12.5"), cost_type=AdditionalCostType.LOGISTICS),
        {"description": "Misc", "amount": 3},
    ])
    assert costs == (
        {"description": "Freight", "amount": "12.50", "cost_type": "logistics"},
        {"description": "Misc", "amount": "3.00", "cost_type": "other"},
    )


def test_live_terms_reads_the_order():
    terms = live_terms(_order())
    assert [line.product_id for line in terms.lines] == [1, 2]
    assert terms.notes == "Deliver before noon"
    assert terms.total_amount == Decimal("57.50")


def test_settled_without_snapshot():
    state = negotiation_state(_order())
    assert isinstance(state, Settled)
    assert state.terms.products_subtotal == Decimal("45.00")


def test_under_review_after_capture():
    po = _order()
    capture_snapshot(po, actor_id=1)
    po.details[0].ordered_quantity = Decimal("8")

    state = negotiation_state(po)
    assert isinstance(state, UnderReview)
    assert state.original.lines[0].ordered_quantity == Decimal("10")
    assert state.proposed.lines[0].ordered_quantity == Decimal("8")
    assert po.negotiation.original_total_amount == Decimal("57.50")


def test_capture_keeps_first_snapshot():
    po = _order()
    first = capture_snapshot(po)
    po.notes = "Changed"
    assert capture_snapshot(po) is first
    assert first.original_notes == "Deliver before noon"
