"""Receipt Processor - records physical deliveries against purchase orders.

A receipt is validated as a whole before anything is written:
- the order must be confirmed, partially delivered or awaiting future delivery
- the target location must exist and be active (default location if omitted)
- every line must reference a product on the order, once, and an active product
- ok + damaged + missing per line must not exceed what the line has outstanding
- at least one quantity in the receipt must be non-zero

Processing then runs as one transaction under the order's row lock:
1. ok quantities increment usable stock (inbound_po movement)
2. damaged quantities increment damaged stock (inbound_po_damaged movement)
3. missing quantities are logged with no stock change (po_missing movement)
4. the order's cumulative line counters are advanced and the receipt stored
5. the order status is re-derived from the counters

Two receipts racing for the same order serialize on the lock (or, without
row locks, on the order's version column); the loser re-reads the counters
and is validated again, so together they can never exceed the ordered quantity.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import List

from sqlalchemy import select
from sqlalchemy.orm import Session

from stockpilot.core.exceptions import (
    EmptyReceipt,
    InvalidTransition,
    PurchaseOrderNotFound,
    QuantityOverrun,
    ValidationFailure,
)
from stockpilot.core.validators import require_cents
from stockpilot.models.purchase_order import PurchaseOrder, PurchaseOrderDetail
from stockpilot.models.receipt import Receipt, ReceiptItem
from stockpilot.models.stock import MovementKind
from stockpilot.schemas.receipt import ReceiptCreate, ReceiptLineCreate
from stockpilot.services import po_status
from stockpilot.services.catalog_directory import CatalogDirectory
from stockpilot.services.stock_ledger_service import StockLedgerService
from stockpilot.services.transactions import run_in_transaction

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


class ReceiptService:
    """Validates and applies delivery receipts."""

    def __init__(self, db: Session):
        self.db = db
        self.catalog = CatalogDirectory(db)
        self.ledger = StockLedgerService(db)

    def list_receipts(self, po_id: int) -> List[Receipt]:
        if self.db.get(PurchaseOrder, po_id) is None:
            raise PurchaseOrderNotFound(po_id)
        return (
            self.db.query(Receipt)
            .filter(Receipt.purchase_order_id == po_id)
            .order_by(Receipt.id)
            .all()
        )

    def record_receipt(self, po_id: int, data: ReceiptCreate, actor_id: int) -> Receipt:
        """Validate and apply one delivery. Nothing is written if any check fails."""

        def unit_of_work() -> Receipt:
            po = self._lock(po_id)
            po.check_version(data.expected_version)
            location_id = self._validate(po, data)
            receipt = self._apply(po, data, location_id, actor_id)
            po.touch()
            self.db.flush()
            return receipt

        receipt = run_in_transaction(self.db, unit_of_work, entity="PurchaseOrder", entity_id=po_id)
        po = self.db.get(PurchaseOrder, po_id)
        logger.info(
            f"Receipt {receipt.id} recorded on PO {po_id} by user {actor_id}: "
            f"{len(receipt.items)} lines, order now {po.status.value}"
        )
        return receipt

    # ===== VALIDATION =====

    def _validate(self, po: PurchaseOrder, data: ReceiptCreate) -> int:
        if po.status not in po_status.RECEIVABLE_STATUSES:
            raise InvalidTransition(po.status, "receipt", "the order is not open for receiving")

        location = self.catalog.resolve_location(data.location_id)

        seen = set()
        total = ZERO
        for line in data.lines:
            if line.product_id in seen:
                raise ValidationFailure(
                    "Each product may appear only once per receipt", product_id=line.product_id
                )
            seen.add(line.product_id)

            detail = po.detail_for(line.product_id)
            if detail is None:
                raise ValidationFailure(
                    f"Product {line.product_id} is not on purchase order {po.id}",
                    product_id=line.product_id,
                    purchase_order_id=po.id,
                )

            for field in ("qty_ok", "qty_damaged", "qty_missing"):
                require_cents(getattr(line, field), field, product_id=line.product_id)
            requested = self._line_total(line)
            if any(Decimal(q) < ZERO for q in (line.qty_ok, line.qty_damaged, line.qty_missing)):
                raise ValidationFailure(
                    "Receipt quantities cannot be negative", product_id=line.product_id
                )
            outstanding = detail.outstanding_quantity
            if requested > outstanding:
                raise QuantityOverrun(line.product_id, requested=requested, outstanding=outstanding)

            if requested > ZERO:
                self.catalog.require_active_product(line.product_id)
            total += requested

        if total == ZERO:
            raise EmptyReceipt(po.id)
        return location.id

    # ===== PROCESSING =====

    def _apply(self, po: PurchaseOrder, data: ReceiptCreate, location_id: int, actor_id: int) -> Receipt:
        receipt = Receipt(
            purchase_order_id=po.id,
            location_id=location_id,
            receipt_date=data.receipt_date or datetime.now(timezone.utc),
            received_by=actor_id,
            notes=data.notes,
        )
        self.db.add(receipt)
        self.db.flush()

        for line in data.lines:
            if self._line_total(line) == ZERO:
                continue
            detail = po.detail_for(line.product_id)
            self._apply_line(po, receipt, detail, line, location_id, actor_id)

        po.status = po_status.derive_delivery_status(po.details, po.has_supplier_solution)
        return receipt

    def _apply_line(
        self,
        po: PurchaseOrder,
        receipt: Receipt,
        detail: PurchaseOrderDetail,
        line: ReceiptLineCreate,
        location_id: int,
        actor_id: int,
    ) -> None:
        qty_ok = Decimal(line.qty_ok)
        qty_damaged = Decimal(line.qty_damaged)
        qty_missing = Decimal(line.qty_missing)
        refs = {
            "actor_id": actor_id,
            "notes": line.notes,
            "purchase_order_id": po.id,
            "receipt_id": receipt.id,
            "supplier_id": po.supplier_id,
        }

        if qty_ok > ZERO:
            self.ledger.increment(
                detail.product_id, location_id, qty_ok,
                kind=MovementKind.INBOUND_PO,
                reason=f"PO Receipt: PO #{po.id} (OK)",
                **refs,
            )
        if qty_damaged > ZERO:
            self.ledger.increment(
                detail.product_id, location_id, qty_damaged,
                kind=MovementKind.INBOUND_PO_DAMAGED,
                reason=f"PO Receipt: PO #{po.id} (Damaged)",
                damaged=True,
                **refs,
            )
        if qty_missing > ZERO:
            self.ledger.record_missing(
                detail.product_id, location_id, qty_missing,
                reason=f"PO Receipt: PO #{po.id} (Missing)",
                **refs,
            )

        detail.received_quantity = Decimal(detail.received_quantity) + qty_ok
        detail.received_damaged_quantity = Decimal(detail.received_damaged_quantity) + qty_damaged
        detail.received_missing_quantity = Decimal(detail.received_missing_quantity) + qty_missing

        receipt.items.append(ReceiptItem(
            purchase_order_detail_id=detail.id,
            product_id=detail.product_id,
            qty_ok=qty_ok,
            qty_damaged=qty_damaged,
            qty_missing=qty_missing,
            notes=line.notes,
        ))

    @staticmethod
    def _line_total(line: ReceiptLineCreate) -> Decimal:
        return Decimal(line.qty_ok) + Decimal(line.qty_damaged) + Decimal(line.qty_missing)

    def _lock(self, po_id: int) -> PurchaseOrder:
        po = self.db.execute(
            select(PurchaseOrder)
            .where(PurchaseOrder.id == po_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if po is None:
            raise PurchaseOrderNotFound(po_id)
        return po
