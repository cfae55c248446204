"""Purchase Order Service - lifecycle transitions of the purchase order aggregate.

Every mutation follows the same shape:
1. lock the order row (``SELECT ... FOR UPDATE``) and re-read it server-side
2. check the caller's expected version, if one was sent
3. check the transition table
4. mutate header, lines and snapshot, queue any requisition delta
5. commit as one transaction (stale writes are retried from step 1)
6. after commit, apply the queued requisition deltas

Flow:
    pending -> sent_to_supplier -> confirmed_by_supplier
                                -> rejected_by_supplier
                                -> changes_proposed_by_supplier -> (proposal) -> pending_internal_review
    pending_internal_review -> confirmed_by_supplier (confirm revised / accept original)
                            -> changes_proposed_by_supplier (renegotiate)
                            -> rejected_by_supplier
    confirmed_by_supplier -> partially_delivered / awaiting_future_delivery / fully_received (receipts)
    fully_received -> completed
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from stockpilot.core.exceptions import (
    InvalidTransition,
    NoSnapshotToRevert,
    PurchaseOrderNotFound,
    ReferentialIntegrityFailure,
    ValidationFailure,
)
from stockpilot.core.validators import require_cents
from stockpilot.models.purchase_order import (
    PurchaseOrder,
    PurchaseOrderStatus,
    SupplierSolutionType,
)
from stockpilot.models.requisition import Requisition
from stockpilot.schemas.purchase_order import PurchaseOrderCreate, SupplierProposal
from stockpilot.services import po_status
from stockpilot.services.catalog_directory import CatalogDirectory
from stockpilot.services.negotiation import (
    LineTerms,
    OrderTerms,
    apply_terms,
    build_detail,
    capture_snapshot,
    drop_snapshot,
    live_terms,
    restore_original,
    serialize_costs,
)
from stockpilot.services.requisition_propagator import RequisitionPropagator
from stockpilot.services.transactions import run_in_transaction

logger = logging.getLogger(__name__)

S = PurchaseOrderStatus

MIN_SOLUTION_DETAILS_LENGTH = 10


class PurchaseOrderService:
    """Creates purchase orders and drives them through their status lifecycle."""

    def __init__(self, db: Session):
        self.db = db
        self.catalog = CatalogDirectory(db)
        self.propagator = RequisitionPropagator(db)

    # ===== READS =====

    def get(self, po_id: int) -> PurchaseOrder:
        po = self.db.get(PurchaseOrder, po_id)
        if po is None:
            raise PurchaseOrderNotFound(po_id)
        return po

    def list(
        self,
        status: Optional[PurchaseOrderStatus] = None,
        supplier_id: Optional[int] = None,
        requisition_id: Optional[int] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[List[PurchaseOrder], int]:
        query = self.db.query(PurchaseOrder)
        if status is not None:
            query = query.filter(PurchaseOrder.status == status)
        if supplier_id is not None:
            query = query.filter(PurchaseOrder.supplier_id == supplier_id)
        if requisition_id is not None:
            query = query.filter(PurchaseOrder.origin_requisition_id == requisition_id)
        total = query.count()
        orders = query.order_by(PurchaseOrder.id.desc()).offset(skip).limit(limit).all()
        return orders, total

    def check_status(self, po_id: int, repair: bool = False) -> Dict:
        """Re-derive a delivery status from the line counters and report drift."""
        po = self.get(po_id)
        stored = po.status
        if stored in po_status.RECEIVABLE_STATUSES or stored == S.FULLY_RECEIVED:
            derived = po_status.derive_delivery_status(po.details, po.has_supplier_solution)
        else:
            derived = stored
        drift = derived != stored

        repaired = False
        if drift and repair:
            def unit_of_work():
                locked = self._lock(po_id)
                locked.status = po_status.derive_delivery_status(
                    locked.details, locked.has_supplier_solution
                )
                locked.touch()
                return locked

            run_in_transaction(self.db, unit_of_work, entity="PurchaseOrder", entity_id=po_id)
            repaired = True
            logger.warning(f"PO {po_id}: status drift repaired {stored.value} -> {derived.value}")

        return {
            "purchase_order_id": po_id,
            "stored_status": stored,
            "derived_status": derived,
            "drift": drift,
            "repaired": repaired,
        }

    # ===== CREATE =====

    def create(self, data: PurchaseOrderCreate, actor_id: Optional[int] = None) -> PurchaseOrder:
        """Create a pending purchase order from quotation data and reserve its quantities."""
        supplier = self.catalog.require_active_supplier(data.supplier_id)
        requisition = self.db.get(Requisition, data.origin_requisition_id)
        if requisition is None:
            raise ReferentialIntegrityFailure("Requisition", data.origin_requisition_id)

        terms = self._terms_from_input(
            data.details, data.additional_costs, data.notes, data.expected_delivery_date
        )

        po = PurchaseOrder(
            supplier_id=supplier.id,
            origin_requisition_id=requisition.id,
            quotation_reference_id=data.quotation_reference_id,
            status=S.PENDING,
            created_by=actor_id,
            notes=terms.notes,
            expected_delivery_date=terms.expected_delivery_date,
            additional_costs=list(terms.additional_costs),
            products_subtotal=terms.products_subtotal,
            total_amount=terms.total_amount,
            details=[build_detail(line) for line in terms.lines],
        )
        try:
            self.db.add(po)
            self.db.flush()
            self.propagator.enqueue_reserve(po)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            f"PO {po.id} created for supplier {supplier.id} from requisition {requisition.id}: "
            f"{len(terms.lines)} lines, total {terms.total_amount}"
        )
        self.propagator.process_order(po.id)
        return self.get(po.id)

    # ===== SUPPLIER COMMUNICATION =====

    def send_to_supplier(self, po_id: int, actor_id: Optional[int] = None,
                         expected_version: Optional[int] = None) -> PurchaseOrder:
        def mutate(po: PurchaseOrder) -> None:
            po_status.assert_transition(po.status, S.SENT_TO_SUPPLIER)
            po.status = S.SENT_TO_SUPPLIER
            po.sent_at = datetime.now(timezone.utc)

        return self._transition(po_id, mutate, actor_id, expected_version, "sent to supplier")

    def confirm(self, po_id: int, actor_id: Optional[int] = None,
                expected_version: Optional[int] = None) -> PurchaseOrder:
        """Supplier accepts the order as sent."""
        def mutate(po: PurchaseOrder) -> None:
            if po.status != S.SENT_TO_SUPPLIER:
                raise InvalidTransition(po.status, S.CONFIRMED_BY_SUPPLIER,
                                        "only an order sent to the supplier can be confirmed as-is")
            po.status = S.CONFIRMED_BY_SUPPLIER
            self.propagator.enqueue_confirm(po)

        return self._transition(po_id, mutate, actor_id, expected_version, "confirmed by supplier")

    def reject(self, po_id: int, actor_id: Optional[int] = None, reason: Optional[str] = None,
               expected_version: Optional[int] = None) -> PurchaseOrder:
        """Supplier rejects the order; any pending reservation is released."""
        def mutate(po: PurchaseOrder) -> None:
            po_status.assert_transition(po.status, S.REJECTED_BY_SUPPLIER)
            drop_snapshot(po)
            po.status = S.REJECTED_BY_SUPPLIER
            po.completion_date = datetime.now(timezone.utc)
            if reason:
                po.notes = f"{po.notes}\nRejected: {reason}" if po.notes else f"Rejected: {reason}"
            self.propagator.enqueue_release(po)

        return self._transition(po_id, mutate, actor_id, expected_version, "rejected by supplier")

    def mark_changes_proposed(self, po_id: int, actor_id: Optional[int] = None,
                              expected_version: Optional[int] = None) -> PurchaseOrder:
        """Supplier signalled it wants changes; the proposal itself is recorded separately."""
        def mutate(po: PurchaseOrder) -> None:
            if po.status != S.SENT_TO_SUPPLIER:
                raise InvalidTransition(po.status, S.CHANGES_PROPOSED_BY_SUPPLIER)
            po.status = S.CHANGES_PROPOSED_BY_SUPPLIER

        return self._transition(po_id, mutate, actor_id, expected_version, "changes proposed by supplier")

    # ===== NEGOTIATION =====

    def record_proposal(self, po_id: int, proposal: SupplierProposal,
                        actor_id: Optional[int] = None) -> PurchaseOrder:
        """Snapshot the current terms, then overwrite them with the supplier's proposal.

        Both happen in one transaction, so no reader sees proposed terms
        without the original ones beside them.
        """
        def mutate(po: PurchaseOrder) -> None:
            if po.status not in (S.SENT_TO_SUPPLIER, S.CHANGES_PROPOSED_BY_SUPPLIER):
                raise InvalidTransition(po.status, S.PENDING_INTERNAL_REVIEW)

            current = live_terms(po)
            proposed = self._terms_from_input(
                proposal.details,
                proposal.additional_costs if proposal.additional_costs is not None else current.additional_costs,
                proposal.notes if proposal.notes is not None else current.notes,
                proposal.expected_delivery_date or current.expected_delivery_date,
            )
            if proposed.product_ids != current.product_ids:
                raise ValidationFailure(
                    "A proposal must cover the same products as the order",
                    missing=sorted(current.product_ids - proposed.product_ids),
                    unexpected=sorted(proposed.product_ids - current.product_ids),
                )

            capture_snapshot(po, actor_id)
            apply_terms(self.db, po, proposed)
            po.status = S.PENDING_INTERNAL_REVIEW

        return self._transition(po_id, mutate, actor_id, proposal.expected_version,
                                "supplier proposal recorded")

    def confirm_revised(self, po_id: int, actor_id: Optional[int] = None,
                        expected_version: Optional[int] = None) -> PurchaseOrder:
        """Buyer accepts the supplier's proposal; it becomes the order's terms."""
        def mutate(po: PurchaseOrder) -> None:
            if po.status != S.PENDING_INTERNAL_REVIEW:
                raise InvalidTransition(po.status, S.CONFIRMED_BY_SUPPLIER,
                                        "no supplier proposal is under review")
            drop_snapshot(po)
            po.status = S.CONFIRMED_BY_SUPPLIER
            self.propagator.enqueue_confirm(po)

        return self._transition(po_id, mutate, actor_id, expected_version, "revised terms confirmed")

    def accept_original(self, po_id: int, actor_id: Optional[int] = None,
                        expected_version: Optional[int] = None) -> PurchaseOrder:
        """Discard the supplier's proposal and confirm the order on its original terms.

        Header fields and the whole line collection are restored from the
        snapshot (delete-all-then-reinsert), the snapshot is dropped and the
        order is confirmed, all in one transaction. The requisition is then
        updated with the restored quantities.
        """
        def mutate(po: PurchaseOrder) -> None:
            if po.status != S.PENDING_INTERNAL_REVIEW:
                raise InvalidTransition(po.status, S.CONFIRMED_BY_SUPPLIER,
                                        "no supplier proposal is under review")
            if po.negotiation is None or not po.negotiation.original_details:
                raise NoSnapshotToRevert(po.id)

            restored = restore_original(self.db, po)
            self.db.flush()
            po.status = S.CONFIRMED_BY_SUPPLIER
            self.propagator.enqueue_confirm(po)
            logger.info(f"PO {po.id}: reverted to {len(restored.lines)} original lines")

        return self._transition(po_id, mutate, actor_id, expected_version, "original terms accepted")

    def renegotiate(self, po_id: int, actor_id: Optional[int] = None,
                    expected_version: Optional[int] = None) -> PurchaseOrder:
        """Send the proposal back: original terms return to the live fields."""
        def mutate(po: PurchaseOrder) -> None:
            if po.status != S.PENDING_INTERNAL_REVIEW:
                raise InvalidTransition(po.status, S.CHANGES_PROPOSED_BY_SUPPLIER)
            if po.negotiation is None:
                raise NoSnapshotToRevert(po.id)
            restore_original(self.db, po)
            po.status = S.CHANGES_PROPOSED_BY_SUPPLIER

        return self._transition(po_id, mutate, actor_id, expected_version, "sent back for renegotiation")

    # ===== CLOSING =====

    def cancel(self, po_id: int, actor_id: Optional[int] = None, note: Optional[str] = None,
               expected_version: Optional[int] = None) -> PurchaseOrder:
        """Cancel an order.

        Before supplier confirmation the pending reservation is released.
        After confirmation a reconciliation note is required and the
        requisition is left for manual reconciliation.
        """
        def mutate(po: PurchaseOrder) -> None:
            po_status.assert_transition(po.status, S.CANCELED)
            if po.status == S.CONFIRMED_BY_SUPPLIER:
                if not note or not note.strip():
                    raise ValidationFailure(
                        "Canceling a confirmed order requires a reconciliation note",
                        current_status=po.status,
                    )
            else:
                self.propagator.enqueue_release(po)
            drop_snapshot(po)
            if note:
                po.cancellation_note = note.strip()
            po.status = S.CANCELED
            po.completion_date = datetime.now(timezone.utc)

        return self._transition(po_id, mutate, actor_id, expected_version, "canceled")

    def complete(self, po_id: int, actor_id: Optional[int] = None,
                 expected_version: Optional[int] = None) -> PurchaseOrder:
        def mutate(po: PurchaseOrder) -> None:
            po_status.assert_transition(po.status, S.COMPLETED)
            po.status = S.COMPLETED
            po.completion_date = datetime.now(timezone.utc)

        return self._transition(po_id, mutate, actor_id, expected_version, "completed")

    def record_supplier_solution(self, po_id: int, solution_type: SupplierSolutionType, details: str,
                                 actor_id: Optional[int] = None,
                                 expected_version: Optional[int] = None) -> PurchaseOrder:
        """Record how a delivery shortfall was settled and re-derive the delivery status."""
        if not details or len(details.strip()) < MIN_SOLUTION_DETAILS_LENGTH:
            raise ValidationFailure(
                f"Solution details must be at least {MIN_SOLUTION_DETAILS_LENGTH} characters",
                length=len((details or "").strip()),
            )

        def mutate(po: PurchaseOrder) -> None:
            if po.status not in po_status.DELIVERY_STATUSES:
                raise InvalidTransition(po.status, S.AWAITING_FUTURE_DELIVERY,
                                        "a supplier solution needs a recorded delivery")
            po.supplier_agreed_solution_type = solution_type
            po.supplier_agreed_solution_details = details.strip()
            po.status = po_status.derive_delivery_status(po.details, has_supplier_solution=True)

        return self._transition(po_id, mutate, actor_id, expected_version, "supplier solution recorded")

    # ===== HELPERS =====

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

    def _transition(
        self,
        po_id: int,
        mutate: Callable[[PurchaseOrder], None],
        actor_id: Optional[int],
        expected_version: Optional[int],
        action: str,
    ) -> PurchaseOrder:
        previous: Dict[str, PurchaseOrderStatus] = {}

        def unit_of_work() -> PurchaseOrder:
            po = self._lock(po_id)
            po.check_version(expected_version)
            previous["status"] = po.status
            mutate(po)
            po.touch()
            self.db.flush()
            return po

        run_in_transaction(self.db, unit_of_work, entity="PurchaseOrder", entity_id=po_id)
        po = self.get(po_id)
        logger.info(
            f"PO {po_id} {action} by user {actor_id}: "
            f"{previous['status'].value} -> {po.status.value} (v{po.version})"
        )
        self.propagator.process_order(po_id)
        return self.get(po_id)

    def _terms_from_input(self, details, additional_costs, notes, expected_delivery_date) -> OrderTerms:
        """Validate line input against the catalog and build order terms."""
        if not details:
            raise ValidationFailure("A purchase order needs at least one line item")

        seen = set()
        lines = []
        for item in details:
            if item.product_id in seen:
                raise ValidationFailure(
                    "Each product may appear only once per order", product_id=item.product_id
                )
            seen.add(item.product_id)
            require_cents(item.ordered_quantity, "ordered_quantity", product_id=item.product_id)
            require_cents(item.unit_price, "unit_price", product_id=item.product_id)
            if Decimal(item.ordered_quantity) <= 0:
                raise ValidationFailure(
                    "Ordered quantity must be positive",
                    product_id=item.product_id, ordered_quantity=item.ordered_quantity,
                )
            if Decimal(item.unit_price) < 0:
                raise ValidationFailure(
                    "Unit price cannot be negative",
                    product_id=item.product_id, unit_price=item.unit_price,
                )
            product = self.catalog.require_active_product(item.product_id)
            lines.append(LineTerms(
                product_id=product.id,
                product_name=product.name,
                ordered_quantity=Decimal(item.ordered_quantity),
                unit_price=Decimal(item.unit_price),
                notes=item.notes,
            ))

        return OrderTerms(
            lines=tuple(lines),
            additional_costs=serialize_costs(additional_costs or ()),
            notes=notes,
            expected_delivery_date=expected_delivery_date,
        )
