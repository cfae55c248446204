"""Tests for receipt processing against confirmed purchase orders."""

from decimal import Decimal

import pytest

from stockpilot.core.exceptions import (
    EmptyReceipt,
    InvalidTransition,
    QuantityOverrun,
    ReferentialIntegrityFailure,
    ValidationFailure,
)
from stockpilot.models.purchase_order import PurchaseOrderStatus as S, SupplierSolutionType
from stockpilot.models.receipt import Receipt
from stockpilot.models.stock import MovementKind, StockItem, StockMovement
from stockpilot.schemas.purchase_order import PurchaseOrderDetailCreate
from stockpilot.schemas.receipt import ReceiptCreate, ReceiptLineCreate
from stockpilot.services.receipt_service import ReceiptService

EMPLOYEE_ID = 2


def _receipt(*lines, **kwargs) -> ReceiptCreate:
    return ReceiptCreate(lines=[ReceiptLineCreate(**line) for line in lines], **kwargs)


@pytest.fixture
def receipt_service(db_session) -> ReceiptService:
    return ReceiptService(db_session)


@pytest.fixture
def single_line_po(po_service, order_data, product_a):
    """A confirmed order with one line of 100 x A."""
    def build(quantity="100"):
        po = po_service.create(order_data(details=[
            PurchaseOrderDetailCreate(product_id=product_a.id, ordered_quantity=Decimal(quantity),
                                      unit_price=Decimal("1.00")),
        ]))
        po_service.send_to_supplier(po.id)
        return po_service.confirm(po.id)

    return build


def _stock(db_session, product_id, location_id) -> StockItem:
    db_session.expire_all()
    return (
        db_session.query(StockItem)
        .filter(StockItem.product_id == product_id, StockItem.location_id == location_id)
        .one_or_none()
    )


class TestSequentialReceipts:

    def test_partial_then_full_delivery(self, db_session, receipt_service, po_service, single_line_po,
                                        product_a, test_location):
        po = single_line_po()

        receipt_service.record_receipt(po.id, _receipt({"product_id": product_a.id, "qty_ok": "60"}), EMPLOYEE_ID)
        po = po_service.get(po.id)
        assert po.details[0].received_quantity == Decimal("60")
        assert po.status == S.PARTIALLY_DELIVERED

        receipt_service.record_receipt(po.id, _receipt({"product_id": product_a.id, "qty_ok": "40"}), EMPLOYEE_ID)
        po = po_service.get(po.id)
        assert po.details[0].received_quantity == Decimal("100")
        assert po.status == S.FULLY_RECEIVED

        assert _stock(db_session, product_a.id, test_location.id).usable_quantity == Decimal("100")
        movements = (
            db_session.query(StockMovement)
            .filter(StockMovement.purchase_order_id == po.id)
            .order_by(StockMovement.id)
            .all()
        )
        assert [(m.quantity_before, m.quantity_after) for m in movements] == [
            (Decimal("0"), Decimal("60")),
            (Decimal("60"), Decimal("100")),
        ]
        assert all(m.kind == MovementKind.INBOUND_PO for m in movements)

    def test_fully_received_order_can_be_completed(self, receipt_service, po_service, single_line_po, product_a):
        po = single_line_po("10")
        receipt_service.record_receipt(po.id, _receipt({"product_id": product_a.id, "qty_ok": "10"}), EMPLOYEE_ID)
        po = po_service.complete(po.id)
        assert po.status == S.COMPLETED
        assert po.completion_date is not None

    def test_fully_received_order_rejects_more_receipts(self, receipt_service, single_line_po, product_a):
        po = single_line_po("10")
        receipt_service.record_receipt(po.id, _receipt({"product_id": product_a.id, "qty_ok": "10"}), EMPLOYEE_ID)
        with pytest.raises(InvalidTransition):
            receipt_service.record_receipt(po.id, _receipt({"product_id": product_a.id, "qty_ok": "1"}), EMPLOYEE_ID)


class TestReceiptBreakdown:

    def test_ok_damaged_and_missing(self, db_session, receipt_service, po_service, single_line_po,
                                    product_a, test_location, test_supplier):
        po = single_line_po("10")
        receipt = receipt_service.record_receipt(po.id, _receipt(
            {"product_id": product_a.id, "qty_ok": "5", "qty_damaged": "3", "qty_missing": "2"},
        ), EMPLOYEE_ID)

        po = po_service.get(po.id)
        line = po.details[0]
        assert (line.received_quantity, line.received_damaged_quantity, line.received_missing_quantity) == (
            Decimal("5"), Decimal("3"), Decimal("2"),
        )
        assert po.status == S.FULLY_RECEIVED

        stock = _stock(db_session, product_a.id, test_location.id)
        assert stock.usable_quantity == Decimal("5")
        assert stock.damaged_quantity == Decimal("3")

        movements = {m.kind: m for m in db_session.query(StockMovement).filter(StockMovement.receipt_id == receipt.id)}
        assert set(movements) == {MovementKind.INBOUND_PO, MovementKind.INBOUND_PO_DAMAGED, MovementKind.PO_MISSING}

        missing = movements[MovementKind.PO_MISSING]
        assert missing.quantity_changed == Decimal("2")
        assert missing.quantity_before == missing.quantity_after == Decimal("5")
        assert missing.reason == f"PO Receipt: PO #{po.id} (Missing)"
        assert all(m.supplier_id == test_supplier.id for m in movements.values())
        assert all(m.actor_id == EMPLOYEE_ID for m in movements.values())

    def test_zero_lines_are_not_stored(self, receipt_service, po_service, confirmed_po, product_a, product_b):
        receipt = receipt_service.record_receipt(confirmed_po.id, _receipt(
            {"product_id": product_a.id, "qty_ok": "4"},
            {"product_id": product_b.id},
        ), EMPLOYEE_ID)
        assert [item.product_id for item in receipt.items] == [product_a.id]
        assert receipt.received_by == EMPLOYEE_ID
        assert po_service.get(confirmed_po.id).status == S.PARTIALLY_DELIVERED

    def test_explicit_location(self, db_session, receipt_service, confirmed_po, product_a, second_location):
        receipt_service.record_receipt(confirmed_po.id, _receipt(
            {"product_id": product_a.id, "qty_ok": "4"}, location_id=second_location.id,
        ), EMPLOYEE_ID)
        assert _stock(db_session, product_a.id, second_location.id).usable_quantity == Decimal("4")

    def test_list_receipts(self, receipt_service, confirmed_po, product_a):
        receipt_service.record_receipt(confirmed_po.id, _receipt({"product_id": product_a.id, "qty_ok": "1"}),
                                       EMPLOYEE_ID)
        receipt_service.record_receipt(confirmed_po.id, _receipt({"product_id": product_a.id, "qty_ok": "2"}),
                                       EMPLOYEE_ID)
        receipts = receipt_service.list_receipts(confirmed_po.id)
        assert [r.items[0].qty_ok for r in receipts] == [Decimal("1"), Decimal("2")]


class TestReceiptValidation:

    def _assert_nothing_written(self, db_session, po_id):
        db_session.expire_all()
        assert db_session.query(Receipt).filter(Receipt.purchase_order_id == po_id).count() == 0
        assert db_session.query(StockMovement).count() == 0
        assert db_session.query(StockItem).count() == 0

    def test_overrun_rejected_in_full(self, db_session, receipt_service, po_service, single_line_po, product_a):
        po = single_line_po("50")
        with pytest.raises(QuantityOverrun) as exc_info:
            receipt_service.record_receipt(po.id, _receipt(
                {"product_id": product_a.id, "qty_ok": "30", "qty_damaged": "30"},
            ), EMPLOYEE_ID)

        assert Decimal(exc_info.value.details["requested"]) == Decimal("60")
        assert Decimal(exc_info.value.details["outstanding"]) == Decimal("50")
        self._assert_nothing_written(db_session, po.id)
        po = po_service.get(po.id)
        assert po.details[0].accounted_quantity == 0
        assert po.status == S.CONFIRMED_BY_SUPPLIER

    def test_overrun_on_one_line_rejects_other_lines(self, db_session, receipt_service, confirmed_po,
                                                     product_a, product_b):
        with pytest.raises(QuantityOverrun):
            receipt_service.record_receipt(confirmed_po.id, _receipt(
                {"product_id": product_a.id, "qty_ok": "4"},
                {"product_id": product_b.id, "qty_ok": "6"},
            ), EMPLOYEE_ID)
        self._assert_nothing_written(db_session, confirmed_po.id)

    def test_overrun_counts_earlier_receipts(self, receipt_service, single_line_po, product_a):
        po = single_line_po("10")
        receipt_service.record_receipt(po.id, _receipt({"product_id": product_a.id, "qty_ok": "7"}), EMPLOYEE_ID)
        with pytest.raises(QuantityOverrun) as exc_info:
            receipt_service.record_receipt(po.id, _receipt({"product_id": product_a.id, "qty_missing": "4"}),
                                           EMPLOYEE_ID)
        assert Decimal(exc_info.value.details["outstanding"]) == Decimal("3")

    def test_empty_receipt(self, db_session, receipt_service, confirmed_po, product_a):
        with pytest.raises(EmptyReceipt):
            receipt_service.record_receipt(confirmed_po.id, _receipt({"product_id": product_a.id}), EMPLOYEE_ID)
        self._assert_nothing_written(db_session, confirmed_po.id)

    def test_order_must_be_receivable(self, receipt_service, pending_po, product_a):
        with pytest.raises(InvalidTransition):
            receipt_service.record_receipt(pending_po.id, _receipt({"product_id": product_a.id, "qty_ok": "1"}),
                                           EMPLOYEE_ID)

    def test_product_not_on_order(self, db_session, receipt_service, single_line_po, product_b):
        po = single_line_po("10")
        with pytest.raises(ValidationFailure):
            receipt_service.record_receipt(po.id, _receipt({"product_id": product_b.id, "qty_ok": "1"}),
                                           EMPLOYEE_ID)
        self._assert_nothing_written(db_session, po.id)

    def test_sub_cent_quantity_rejected(self, db_session, receipt_service, po_service, single_line_po, product_a):
        po = single_line_po("1")
        with pytest.raises(ValidationFailure) as exc_info:
            receipt_service.record_receipt(po.id, _receipt({"product_id": product_a.id, "qty_ok": "0.999"}),
                                           EMPLOYEE_ID)

        assert exc_info.value.details["field"] == "qty_ok"
        self._assert_nothing_written(db_session, po.id)
        po = po_service.get(po.id)
        assert po.details[0].received_quantity == 0
        assert po.status == S.CONFIRMED_BY_SUPPLIER

    def test_trailing_zero_places_accepted(self, receipt_service, po_service, single_line_po, product_a):
        po = single_line_po("1")
        receipt_service.record_receipt(po.id, _receipt({"product_id": product_a.id, "qty_ok": "1.000"}),
                                       EMPLOYEE_ID)
        assert po_service.get(po.id).status == S.FULLY_RECEIVED

    def test_negative_quantity(self, receipt_service, confirmed_po, product_a):
        with pytest.raises(ValidationFailure):
            receipt_service.record_receipt(confirmed_po.id, _receipt(
                {"product_id": product_a.id, "qty_ok": "5", "qty_missing": "-1"},
            ), EMPLOYEE_ID)

    def test_duplicate_product_lines(self, receipt_service, confirmed_po, product_a):
        with pytest.raises(ValidationFailure):
            receipt_service.record_receipt(confirmed_po.id, _receipt(
                {"product_id": product_a.id, "qty_ok": "1"},
                {"product_id": product_a.id, "qty_ok": "1"},
            ), EMPLOYEE_ID)

    def test_inactive_product(self, db_session, receipt_service, confirmed_po, product_a):
        product_a.active = False
        db_session.commit()
        with pytest.raises(ReferentialIntegrityFailure):
            receipt_service.record_receipt(confirmed_po.id, _receipt({"product_id": product_a.id, "qty_ok": "1"}),
                                           EMPLOYEE_ID)

    def test_inactive_default_location(self, db_session, receipt_service, confirmed_po, product_a, test_location):
        test_location.active = False
        db_session.commit()
        with pytest.raises(ReferentialIntegrityFailure):
            receipt_service.record_receipt(confirmed_po.id, _receipt({"product_id": product_a.id, "qty_ok": "1"}),
                                           EMPLOYEE_ID)

    def test_unknown_location(self, receipt_service, confirmed_po, product_a):
        with pytest.raises(ReferentialIntegrityFailure):
            receipt_service.record_receipt(confirmed_po.id, _receipt(
                {"product_id": product_a.id, "qty_ok": "1"}, location_id=999,
            ), EMPLOYEE_ID)


class TestSupplierSolution:

    def test_solution_moves_partial_order_to_awaiting(self, receipt_service, po_service, single_line_po, product_a):
        po = single_line_po("10")
        receipt_service.record_receipt(po.id, _receipt({"product_id": product_a.id, "qty_ok": "6"}), EMPLOYEE_ID)

        po = po_service.record_supplier_solution(
            po.id, SupplierSolutionType.FUTURE_DELIVERY, "Remaining 4 units ship next week"
        )
        assert po.status == S.AWAITING_FUTURE_DELIVERY
        assert po.supplier_agreed_solution_type == SupplierSolutionType.FUTURE_DELIVERY

        # Later receipts keep the order awaiting until everything is accounted for
        receipt_service.record_receipt(po.id, _receipt({"product_id": product_a.id, "qty_ok": "2"}), EMPLOYEE_ID)
        assert po_service.get(po.id).status == S.AWAITING_FUTURE_DELIVERY

        receipt_service.record_receipt(po.id, _receipt({"product_id": product_a.id, "qty_ok": "2"}), EMPLOYEE_ID)
        assert po_service.get(po.id).status == S.FULLY_RECEIVED

    def test_solution_details_too_short(self, receipt_service, po_service, single_line_po, product_a):
        po = single_line_po("10")
        receipt_service.record_receipt(po.id, _receipt({"product_id": product_a.id, "qty_ok": "6"}), EMPLOYEE_ID)
        with pytest.raises(ValidationFailure):
            po_service.record_supplier_solution(po.id, SupplierSolutionType.OTHER, "credit")

    def test_solution_needs_a_delivery(self, po_service, confirmed_po):
        with pytest.raises(InvalidTransition):
            po_service.record_supplier_solution(
                confirmed_po.id, SupplierSolutionType.CREDIT_PARTIAL_CHARGE, "Credit note for the shortfall"
            )
