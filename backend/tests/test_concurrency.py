"""Concurrent writers on the same purchase order.

Two sessions share a file-backed SQLite database so each has its own
connection, and the interleaving is driven step by step from the test.
"""

from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from stockpilot.core.config import settings
from stockpilot.core.exceptions import ConcurrentModification, QuantityOverrun
from stockpilot.db.base import Base
from stockpilot.db.session import enable_sqlite_foreign_keys
from stockpilot.models.location import Location
from stockpilot.models.product import Product
from stockpilot.models.purchase_order import PurchaseOrder, PurchaseOrderStatus
from stockpilot.models.receipt import Receipt
from stockpilot.models.requisition import (
    RequiredProduct,
    Requisition,
    RequisitionStatus,
    RequisitionSyncTask,
    SyncTaskStatus,
)
from stockpilot.models.stock import StockItem
from stockpilot.models.supplier import Supplier
from stockpilot.schemas.purchase_order import PurchaseOrderCreate, PurchaseOrderDetailCreate
from stockpilot.schemas.receipt import ReceiptCreate, ReceiptLineCreate
from stockpilot.services.purchase_order_service import PurchaseOrderService
from stockpilot.services.receipt_service import ReceiptService
from stockpilot.services.requisition_propagator import RequisitionPropagator
from stockpilot.services.transactions import run_in_transaction


@pytest.fixture
def file_engine(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'race.db'}", connect_args={"check_same_thread": False})
    enable_sqlite_foreign_keys(engine)
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def sessions(file_engine):
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=file_engine)
    session_a, session_b = SessionLocal(), SessionLocal()
    try:
        yield session_a, session_b
    finally:
        session_a.close()
        session_b.close()


@pytest.fixture
def race_catalog(sessions):
    """Supplier, product and a requisition for 10 of it, committed through session A."""
    session_a, _ = sessions
    supplier = Supplier(name="Race Supplier", is_active=True)
    location = Location(name="Dock", is_default=True, active=True)
    session_a.add_all([supplier, location])
    session_a.flush()
    product = Product(name="Widget", sku="W-1", unit="pcs", supplier_id=supplier.id, active=True)
    session_a.add(product)
    session_a.flush()
    requisition = Requisition(
        status=RequisitionStatus.QUOTED,
        required_products=[RequiredProduct(product_id=product.id, required_quantity=Decimal("10"))],
    )
    session_a.add(requisition)
    session_a.commit()
    return supplier.id, requisition.id, product.id


def _order(supplier_id, requisition_id, product_id) -> PurchaseOrderCreate:
    return PurchaseOrderCreate(
        supplier_id=supplier_id,
        origin_requisition_id=requisition_id,
        details=[PurchaseOrderDetailCreate(product_id=product_id, ordered_quantity=Decimal("10"),
                                           unit_price=Decimal("1.00"))],
    )


@pytest.fixture
def race_po(sessions, race_catalog):
    """A confirmed order for 10 x one product, created through session A."""
    session_a, _ = sessions
    supplier_id, requisition_id, product_id = race_catalog
    service = PurchaseOrderService(session_a)
    po = service.create(_order(supplier_id, requisition_id, product_id))
    service.send_to_supplier(po.id)
    service.confirm(po.id)
    return po.id, product_id


def _receipt(product_id, qty_ok) -> ReceiptCreate:
    return ReceiptCreate(lines=[ReceiptLineCreate(product_id=product_id, qty_ok=Decimal(qty_ok))])


def test_stale_write_is_retried_from_a_fresh_read(sessions, race_po):
    session_a, session_b = sessions
    po_id, _ = race_po

    stale = session_b.get(PurchaseOrder, po_id)
    seen_version = stale.version

    concurrent = session_a.get(PurchaseOrder, po_id)
    concurrent.notes = "Edited elsewhere"
    session_a.commit()

    attempts = []

    def unit_of_work():
        attempts.append(1)
        po = session_b.get(PurchaseOrder, po_id)
        po.notes = f"Edited in attempt {len(attempts)}"
        session_b.flush()
        return po

    po = run_in_transaction(session_b, unit_of_work, entity="PurchaseOrder", entity_id=po_id)

    assert len(attempts) == 2
    assert po.notes == "Edited in attempt 2"
    assert po.version == seen_version + 2


def test_racing_receipts_cannot_overrun(sessions, race_po):
    session_a, session_b = sessions
    po_id, product_id = race_po

    loser = ReceiptService(session_b)
    validate = loser._validate
    raced = []

    def validate_then_race(po, data):
        location_id = validate(po, data)
        if not raced:
            # The other receipt commits between this one's read and its write
            raced.append(True)
            ReceiptService(session_a).record_receipt(po_id, _receipt(product_id, "6"), actor_id=1)
        return location_id

    loser._validate = validate_then_race

    with pytest.raises(QuantityOverrun) as exc_info:
        loser.record_receipt(po_id, _receipt(product_id, "6"), actor_id=2)
    assert Decimal(exc_info.value.details["outstanding"]) == Decimal("4")

    session_b.expire_all()
    po = session_b.get(PurchaseOrder, po_id)
    assert po.details[0].received_quantity == Decimal("6")
    assert po.status == PurchaseOrderStatus.PARTIALLY_DELIVERED
    assert session_b.query(Receipt).count() == 1
    assert session_b.query(StockItem).one().usable_quantity == Decimal("6")


def test_racing_receipts_that_fit_both_apply(sessions, race_po):
    session_a, session_b = sessions
    po_id, product_id = race_po

    second = ReceiptService(session_b)
    validate = second._validate
    raced = []

    def validate_then_race(po, data):
        location_id = validate(po, data)
        if not raced:
            raced.append(True)
            ReceiptService(session_a).record_receipt(po_id, _receipt(product_id, "6"), actor_id=1)
        return location_id

    second._validate = validate_then_race
    second.record_receipt(po_id, _receipt(product_id, "4"), actor_id=2)

    session_b.expire_all()
    po = session_b.get(PurchaseOrder, po_id)
    assert po.details[0].received_quantity == Decimal("10")
    assert po.status == PurchaseOrderStatus.FULLY_RECEIVED
    assert session_b.query(StockItem).one().usable_quantity == Decimal("10")


def test_racing_appliers_apply_a_sync_task_once(monkeypatch, sessions, race_catalog):
    session_a, session_b = sessions
    supplier_id, requisition_id, product_id = race_catalog

    # Leave the reserve task queued so both workers find it pending
    monkeypatch.setattr(RequisitionPropagator, "process_order", lambda self, po_id: [])
    po = PurchaseOrderService(session_a).create(_order(supplier_id, requisition_id, product_id))
    monkeypatch.undo()
    task_id = session_a.query(RequisitionSyncTask).filter_by(purchase_order_id=po.id).one().id

    loser = RequisitionPropagator(session_b)
    earlier_unapplied = loser._earlier_unapplied_task
    raced = []

    def check_then_race(task):
        blocker = earlier_unapplied(task)
        if not raced:
            # The other worker applies the task between this one's read and its claim
            raced.append(True)
            RequisitionPropagator(session_a).apply_task(task_id)
        return blocker

    loser._earlier_unapplied_task = check_then_race
    result = loser.apply_task(task_id)

    assert result.status == SyncTaskStatus.APPLIED
    session_b.expire_all()
    task = session_b.get(RequisitionSyncTask, task_id)
    assert task.status == SyncTaskStatus.APPLIED
    assert task.attempts == 1
    row = session_b.query(RequiredProduct).filter_by(requisition_id=requisition_id).one()
    assert row.pending_po_quantity == Decimal("10")
    assert row.purchased_quantity == Decimal("0")


def test_persistent_conflict_surfaces_as_concurrent_modification(db_session):
    attempts = []

    def unit_of_work():
        attempts.append(1)
        raise StaleDataError("row changed underneath")

    with pytest.raises(ConcurrentModification) as exc_info:
        run_in_transaction(db_session, unit_of_work, entity="PurchaseOrder", entity_id=42)

    assert len(attempts) == settings.concurrency_retry_attempts
    assert exc_info.value.details["entity_id"] == 42


def test_expected_version_mismatch(po_service, pending_po):
    with pytest.raises(ConcurrentModification) as exc_info:
        po_service.send_to_supplier(pending_po.id, expected_version=pending_po.version + 5)

    assert exc_info.value.details["expected_version"] == pending_po.version + 5
    assert exc_info.value.details["current_version"] == pending_po.version
    assert po_service.get(pending_po.id).status == PurchaseOrderStatus.PENDING
