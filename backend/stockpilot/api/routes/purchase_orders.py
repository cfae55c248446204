"""Purchase order routes - creation, supplier negotiation, receiving and closing.

Every action is a POST on the order. Bodies may carry ``expected_version``;
when present, a stale version fails with 409 instead of being applied.
Domain errors propagate to the exception handlers in ``main``.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Query, Request

from stockpilot.core.rate_limit import limiter
from stockpilot.core.rbac import RequireAdmin, RequireEmployee
from stockpilot.core.responses import list_response, paginated_response
from stockpilot.db.session import DbSession
from stockpilot.models.purchase_order import PurchaseOrderStatus
from stockpilot.schemas.purchase_order import (
    CancelRequest,
    PurchaseOrderCreate,
    PurchaseOrderResponse,
    PurchaseOrderSummary,
    RejectRequest,
    StatusCheckResponse,
    SupplierProposal,
    SupplierSolutionRequest,
    TransitionRequest,
)
from stockpilot.schemas.receipt import ReceiptCreate, ReceiptResponse
from stockpilot.services.purchase_order_service import PurchaseOrderService
from stockpilot.services.receipt_service import ReceiptService

logger = logging.getLogger(__name__)

router = APIRouter()


def _version(body: Optional[TransitionRequest]) -> Optional[int]:
    return body.expected_version if body else None


# ==================== ORDERS ====================

@router.get("/")
@limiter.limit("60/minute")
def list_purchase_orders(
    request: Request,
    db: DbSession,
    current_user: RequireEmployee,
    status: Optional[PurchaseOrderStatus] = None,
    supplier_id: Optional[int] = None,
    requisition_id: Optional[int] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
):
    """List purchase orders, newest first."""
    orders, total = PurchaseOrderService(db).list(
        status=status, supplier_id=supplier_id, requisition_id=requisition_id, skip=skip, limit=limit
    )
    items = [PurchaseOrderSummary.model_validate(po) for po in orders]
    return paginated_response(items, total, skip, limit)


@router.post("/", response_model=PurchaseOrderResponse, status_code=201)
@limiter.limit("30/minute")
def create_purchase_order(request: Request, db: DbSession, current_user: RequireAdmin, body: PurchaseOrderCreate):
    """Create a pending purchase order from an approved quotation."""
    return PurchaseOrderService(db).create(body, actor_id=current_user.user_id)


@router.get("/{po_id}", response_model=PurchaseOrderResponse)
@limiter.limit("60/minute")
def get_purchase_order(request: Request, db: DbSession, current_user: RequireEmployee, po_id: int):
    return PurchaseOrderService(db).get(po_id)


@router.get("/{po_id}/status-check", response_model=StatusCheckResponse)
@limiter.limit("30/minute")
def check_purchase_order_status(
    request: Request,
    db: DbSession,
    current_user: RequireAdmin,
    po_id: int,
    repair: bool = False,
):
    """Re-derive the delivery status from line counters; optionally write it back."""
    if repair:
        logger.info(f"Status repair of PO {po_id} requested by user {current_user.user_id}")
    return PurchaseOrderService(db).check_status(po_id, repair=repair)


# ==================== SUPPLIER COMMUNICATION ====================

@router.post("/{po_id}/send", response_model=PurchaseOrderResponse)
@limiter.limit("30/minute")
def send_purchase_order(
    request: Request, db: DbSession, current_user: RequireAdmin, po_id: int,
    body: Optional[TransitionRequest] = None,
):
    return PurchaseOrderService(db).send_to_supplier(po_id, current_user.user_id, _version(body))


@router.post("/{po_id}/confirm", response_model=PurchaseOrderResponse)
@limiter.limit("30/minute")
def confirm_purchase_order(
    request: Request, db: DbSession, current_user: RequireAdmin, po_id: int,
    body: Optional[TransitionRequest] = None,
):
    """Supplier accepted the order as sent."""
    return PurchaseOrderService(db).confirm(po_id, current_user.user_id, _version(body))


@router.post("/{po_id}/reject", response_model=PurchaseOrderResponse)
@limiter.limit("30/minute")
def reject_purchase_order(
    request: Request, db: DbSession, current_user: RequireAdmin, po_id: int,
    body: Optional[RejectRequest] = None,
):
    return PurchaseOrderService(db).reject(
        po_id, current_user.user_id, reason=body.reason if body else None, expected_version=_version(body)
    )


@router.post("/{po_id}/changes-proposed", response_model=PurchaseOrderResponse)
@limiter.limit("30/minute")
def mark_changes_proposed(
    request: Request, db: DbSession, current_user: RequireAdmin, po_id: int,
    body: Optional[TransitionRequest] = None,
):
    return PurchaseOrderService(db).mark_changes_proposed(po_id, current_user.user_id, _version(body))


# ==================== NEGOTIATION ====================

@router.post("/{po_id}/proposal", response_model=PurchaseOrderResponse)
@limiter.limit("30/minute")
def record_supplier_proposal(
    request: Request, db: DbSession, current_user: RequireAdmin, po_id: int, body: SupplierProposal,
):
    """Record the supplier's revised terms; the current terms are kept as the original."""
    return PurchaseOrderService(db).record_proposal(po_id, body, current_user.user_id)


@router.post("/{po_id}/confirm-revised", response_model=PurchaseOrderResponse)
@limiter.limit("30/minute")
def confirm_revised_terms(
    request: Request, db: DbSession, current_user: RequireAdmin, po_id: int,
    body: Optional[TransitionRequest] = None,
):
    return PurchaseOrderService(db).confirm_revised(po_id, current_user.user_id, _version(body))


@router.post("/{po_id}/accept-original", response_model=PurchaseOrderResponse)
@limiter.limit("30/minute")
def accept_original_terms(
    request: Request, db: DbSession, current_user: RequireAdmin, po_id: int,
    body: Optional[TransitionRequest] = None,
):
    """Discard the proposal and confirm the order on its original terms."""
    return PurchaseOrderService(db).accept_original(po_id, current_user.user_id, _version(body))


@router.post("/{po_id}/renegotiate", response_model=PurchaseOrderResponse)
@limiter.limit("30/minute")
def renegotiate_purchase_order(
    request: Request, db: DbSession, current_user: RequireAdmin, po_id: int,
    body: Optional[TransitionRequest] = None,
):
    return PurchaseOrderService(db).renegotiate(po_id, current_user.user_id, _version(body))


# ==================== CLOSING ====================

@router.post("/{po_id}/cancel", response_model=PurchaseOrderResponse)
@limiter.limit("30/minute")
def cancel_purchase_order(
    request: Request, db: DbSession, current_user: RequireAdmin, po_id: int,
    body: Optional[CancelRequest] = None,
):
    """Cancel an order. A confirmed order needs a reconciliation note."""
    return PurchaseOrderService(db).cancel(
        po_id, current_user.user_id, note=body.note if body else None, expected_version=_version(body)
    )


@router.post("/{po_id}/complete", response_model=PurchaseOrderResponse)
@limiter.limit("30/minute")
def complete_purchase_order(
    request: Request, db: DbSession, current_user: RequireAdmin, po_id: int,
    body: Optional[TransitionRequest] = None,
):
    return PurchaseOrderService(db).complete(po_id, current_user.user_id, _version(body))


@router.post("/{po_id}/supplier-solution", response_model=PurchaseOrderResponse)
@limiter.limit("30/minute")
def record_supplier_solution(
    request: Request, db: DbSession, current_user: RequireAdmin, po_id: int, body: SupplierSolutionRequest,
):
    """Record how a delivery shortfall was settled with the supplier."""
    return PurchaseOrderService(db).record_supplier_solution(
        po_id, body.solution_type, body.details, current_user.user_id, body.expected_version
    )


# ==================== RECEIPTS ====================

@router.get("/{po_id}/receipts")
@limiter.limit("60/minute")
def list_purchase_order_receipts(request: Request, db: DbSession, current_user: RequireEmployee, po_id: int):
    receipts = ReceiptService(db).list_receipts(po_id)
    return list_response([ReceiptResponse.model_validate(r) for r in receipts])


@router.post("/{po_id}/receipts", response_model=ReceiptResponse, status_code=201)
@limiter.limit("30/minute")
def record_purchase_order_receipt(
    request: Request, db: DbSession, current_user: RequireEmployee, po_id: int, body: ReceiptCreate,
):
    """
    Record a physical delivery against a purchase order.

    OK quantities go to usable stock, damaged quantities to damaged stock and
    missing quantities are logged only. The order status is re-derived from
    the cumulative line counters.
    """
    return ReceiptService(db).record_receipt(po_id, body, actor_id=current_user.user_id)
