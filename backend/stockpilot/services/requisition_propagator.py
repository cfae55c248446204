"""Requisition Quantity Propagator.

Keeps ``purchased_quantity`` and ``pending_po_quantity`` on a requisition's
required products in step with the purchase orders drawn against it.

Propagation is a two-phase outbox:
1. ``enqueue()`` writes a RequisitionSyncTask inside the purchase order's own
   transaction, so the owed delta is durable exactly when the order change is.
2. ``process_order()`` / ``retry_pending()`` apply tasks afterwards, each in
   its own transaction, under a row lock, as signed deltas.

A task applies at most once: (order, event) is unique, an applied task is
skipped, and an applier claims the task with a version-checked UPDATE before
touching the requisition, so a concurrent applier fails its claim.
A failed application is rolled back, recorded on the task and left pending
for ``retry_pending()``; the committed order is never undone.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Mapping, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from stockpilot.core.config import settings
from stockpilot.core.exceptions import ProcurementError, RequisitionNotFound
from stockpilot.models.purchase_order import PurchaseOrder
from stockpilot.models.requisition import (
    RequiredProduct,
    Requisition,
    RequisitionStatus,
    RequisitionSyncTask,
    SyncEvent,
    SyncTaskStatus,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


def _encode(quantities: Mapping[int, Decimal]) -> Dict[str, str]:
    return {str(product_id): str(qty) for product_id, qty in quantities.items()}


def _decode(quantities: Optional[Mapping[str, str]]) -> Dict[int, Decimal]:
    return {int(product_id): Decimal(qty) for product_id, qty in (quantities or {}).items()}


def _negate(quantities: Mapping[int, Decimal]) -> Dict[int, Decimal]:
    return {product_id: -qty for product_id, qty in quantities.items()}


class RequisitionPropagator:
    """Queues and applies requisition quantity deltas for purchase orders."""

    def __init__(self, db: Session):
        self.db = db

    # ===== ENQUEUE (inside the order transaction) =====

    def enqueue_reserve(self, po: PurchaseOrder) -> RequisitionSyncTask:
        """Order created: its ordered quantities become pending on the requisition."""
        ordered = self._ordered_quantities(po)
        return self._enqueue(po, SyncEvent.RESERVE, {"pending": _encode(ordered)})

    def enqueue_confirm(self, po: PurchaseOrder) -> RequisitionSyncTask:
        """Order confirmed: release what was reserved, add the confirmed quantities as purchased.

        The confirmed quantities are read from the order's live lines, which
        after an accept-original revert are the original quantities.
        """
        reserved = self._reserved_quantities(po.id)
        confirmed = self._ordered_quantities(po)
        return self._enqueue(po, SyncEvent.CONFIRM, {
            "pending": _encode(_negate(reserved)),
            "purchased": _encode(confirmed),
        })

    def enqueue_release(self, po: PurchaseOrder) -> RequisitionSyncTask:
        """Order canceled or rejected before confirmation: release what was reserved."""
        reserved = self._reserved_quantities(po.id)
        return self._enqueue(po, SyncEvent.RELEASE, {"pending": _encode(_negate(reserved))})

    def _enqueue(self, po: PurchaseOrder, event: SyncEvent, quantities: dict) -> RequisitionSyncTask:
        existing = self.db.execute(
            select(RequisitionSyncTask).where(
                RequisitionSyncTask.purchase_order_id == po.id,
                RequisitionSyncTask.event == event,
            )
        ).scalar_one_or_none()
        if existing is not None:
            logger.warning(f"PO {po.id}: {event.value} sync task already queued as task {existing.id}")
            return existing

        task = RequisitionSyncTask(
            purchase_order_id=po.id,
            requisition_id=po.origin_requisition_id,
            event=event,
            quantities=quantities,
            status=SyncTaskStatus.PENDING,
            attempts=0,
            order_version=po.version,
        )
        self.db.add(task)
        logger.debug(f"PO {po.id}: queued {event.value} for requisition {po.origin_requisition_id}")
        return task

    # ===== APPLY (after the order transaction committed) =====

    def process_order(self, purchase_order_id: int) -> List[RequisitionSyncTask]:
        """Apply every pending task of one order, oldest first, stopping at the first failure."""
        task_ids = self.db.execute(
            select(RequisitionSyncTask.id)
            .where(
                RequisitionSyncTask.purchase_order_id == purchase_order_id,
                RequisitionSyncTask.status == SyncTaskStatus.PENDING,
            )
            .order_by(RequisitionSyncTask.id)
        ).scalars().all()

        processed = []
        for task_id in task_ids:
            task = self.apply_task(task_id)
            processed.append(task)
            if task.status != SyncTaskStatus.APPLIED:
                break
        return processed

    def retry_pending(self, limit: int = 100) -> List[RequisitionSyncTask]:
        """Re-apply pending tasks across all orders. Safe to call repeatedly."""
        order_ids = self.db.execute(
            select(RequisitionSyncTask.purchase_order_id)
            .where(RequisitionSyncTask.status == SyncTaskStatus.PENDING)
            .group_by(RequisitionSyncTask.purchase_order_id)
            .order_by(RequisitionSyncTask.purchase_order_id)
            .limit(limit)
        ).scalars().all()

        results: List[RequisitionSyncTask] = []
        for order_id in order_ids:
            results.extend(self.process_order(order_id))
        applied = sum(1 for t in results if t.status == SyncTaskStatus.APPLIED)
        logger.info(f"Requisition sync retry: {applied}/{len(results)} tasks applied")
        return results

    def apply_task(self, task_id: int) -> RequisitionSyncTask:
        """Apply one task in its own transaction. Already-applied tasks are a no-op."""
        try:
            task = self._lock_task(task_id)
            if task.status == SyncTaskStatus.APPLIED:
                self.db.rollback()
                return self.db.get(RequisitionSyncTask, task_id)

            blocker = self._earlier_unapplied_task(task)
            if blocker is not None:
                self.db.rollback()
                logger.info(f"Sync task {task_id} waits for task {blocker} of the same order")
                return self.db.get(RequisitionSyncTask, task_id)

            # Claim: the UPDATE is conditional on the version read above
            task.attempts += 1
            self.db.flush()

            self._apply_quantities(task)
            task.status = SyncTaskStatus.APPLIED
            task.last_error = None
            task.applied_at = datetime.now(timezone.utc)
            self.db.commit()
        except StaleDataError:
            self.db.rollback()
            logger.info(f"Sync task {task_id} was claimed by another worker; skipping")
            return self.db.get(RequisitionSyncTask, task_id)
        except (SQLAlchemyError, ProcurementError) as e:
            self.db.rollback()
            self._record_failure(task_id, e)
            return self.db.get(RequisitionSyncTask, task_id)

        logger.info(
            f"Applied {task.event.value} for PO {task.purchase_order_id} "
            f"to requisition {task.requisition_id}"
        )
        return task

    def _apply_quantities(self, task: RequisitionSyncTask) -> None:
        requisition = self.db.execute(
            select(Requisition)
            .where(Requisition.id == task.requisition_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if requisition is None:
            raise RequisitionNotFound(task.requisition_id)

        rows = {
            rp.product_id: rp
            for rp in self.db.execute(
                select(RequiredProduct)
                .where(RequiredProduct.requisition_id == requisition.id)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalars()
        }

        pending = _decode(task.quantities.get("pending"))
        purchased = _decode(task.quantities.get("purchased"))

        for product_id in sorted(set(pending) | set(purchased)):
            row = rows.get(product_id)
            if row is None:
                logger.warning(
                    f"Requisition {requisition.id} has no line for product {product_id}; "
                    f"skipping {task.event.value} delta from PO {task.purchase_order_id}"
                )
                continue

            if product_id in pending:
                new_pending = Decimal(row.pending_po_quantity) + pending[product_id]
                if new_pending < ZERO:
                    logger.warning(
                        f"Requisition {requisition.id} product {product_id}: pending quantity "
                        f"would drop to {new_pending}, holding at 0"
                    )
                    new_pending = ZERO
                row.pending_po_quantity = new_pending
            if product_id in purchased:
                row.purchased_quantity = Decimal(row.purchased_quantity) + purchased[product_id]

        self._reevaluate_status(requisition, rows.values())

    def _reevaluate_status(self, requisition: Requisition, rows) -> None:
        if requisition.status == RequisitionStatus.CANCELED:
            return
        rows = list(rows)
        if rows and all(Decimal(r.purchased_quantity) >= Decimal(r.required_quantity) for r in rows):
            new_status = RequisitionStatus.COMPLETED
        elif any(Decimal(r.purchased_quantity) > 0 or Decimal(r.pending_po_quantity) > 0 for r in rows):
            new_status = RequisitionStatus.PO_IN_PROGRESS
        else:
            return
        if requisition.status != new_status:
            logger.info(f"Requisition {requisition.id}: {requisition.status.value} -> {new_status.value}")
            requisition.status = new_status

    def _record_failure(self, task_id: int, error: Exception) -> None:
        """Persist the failure on the task in a fresh transaction."""
        task = self.db.get(RequisitionSyncTask, task_id)
        if task is None:
            logger.error(f"Sync task {task_id} failed and no longer exists: {error}")
            return
        task.attempts += 1
        task.last_error = str(error)[:1000]
        if task.attempts >= settings.sync_task_max_attempts:
            task.status = SyncTaskStatus.FAILED
        self.db.commit()
        logger.error(
            f"Requisition sync task {task_id} ({task.event.value}, PO {task.purchase_order_id}) "
            f"failed on attempt {task.attempts}: {error}",
            exc_info=error,
        )

    # ===== HELPERS =====

    def _lock_task(self, task_id: int) -> RequisitionSyncTask:
        task = self.db.execute(
            select(RequisitionSyncTask)
            .where(RequisitionSyncTask.id == task_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if task is None:
            raise ValueError(f"Sync task {task_id} does not exist")
        return task

    def _earlier_unapplied_task(self, task: RequisitionSyncTask) -> Optional[int]:
        return self.db.execute(
            select(RequisitionSyncTask.id)
            .where(
                RequisitionSyncTask.purchase_order_id == task.purchase_order_id,
                RequisitionSyncTask.id < task.id,
                RequisitionSyncTask.status != SyncTaskStatus.APPLIED,
            )
            .order_by(RequisitionSyncTask.id)
            .limit(1)
        ).scalar_one_or_none()

    def _reserved_quantities(self, purchase_order_id: int) -> Dict[int, Decimal]:
        reserve = self.db.execute(
            select(RequisitionSyncTask).where(
                RequisitionSyncTask.purchase_order_id == purchase_order_id,
                RequisitionSyncTask.event == SyncEvent.RESERVE,
            )
        ).scalar_one_or_none()
        if reserve is None:
            return {}
        return _decode(reserve.quantities.get("pending"))

    @staticmethod
    def _ordered_quantities(po: PurchaseOrder) -> Dict[int, Decimal]:
        quantities: Dict[int, Decimal] = {}
        for detail in po.details:
            quantities[detail.product_id] = quantities.get(detail.product_id, ZERO) + Decimal(detail.ordered_quantity)
        return quantities
