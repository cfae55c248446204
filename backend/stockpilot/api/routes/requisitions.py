"""Requisition routes - purchase progress and the propagation retry queue."""

import logging
from typing import Optional

from fastapi import APIRouter, Query, Request

from stockpilot.core.exceptions import RequisitionNotFound
from stockpilot.core.rate_limit import limiter
from stockpilot.core.rbac import RequireAdmin, RequireEmployee
from stockpilot.core.responses import paginated_response
from stockpilot.db.session import DbSession
from stockpilot.models.requisition import Requisition, RequisitionSyncTask, SyncTaskStatus
from stockpilot.schemas.requisition import (
    RequisitionResponse,
    SyncRetryRequest,
    SyncRetryResponse,
    SyncTaskResponse,
)
from stockpilot.services.requisition_propagator import RequisitionPropagator

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/sync-tasks")
@limiter.limit("60/minute")
def list_sync_tasks(
    request: Request,
    db: DbSession,
    current_user: RequireAdmin,
    status: Optional[SyncTaskStatus] = None,
    purchase_order_id: Optional[int] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
):
    """Requisition sync tasks, oldest first. Pending and failed ones need attention."""
    query = db.query(RequisitionSyncTask)
    if status is not None:
        query = query.filter(RequisitionSyncTask.status == status)
    if purchase_order_id is not None:
        query = query.filter(RequisitionSyncTask.purchase_order_id == purchase_order_id)
    total = query.count()
    tasks = query.order_by(RequisitionSyncTask.id).offset(skip).limit(limit).all()
    return paginated_response([SyncTaskResponse.model_validate(t) for t in tasks], total, skip, limit)


@router.post("/sync-tasks/retry", response_model=SyncRetryResponse)
@limiter.limit("10/minute")
def retry_sync_tasks(
    request: Request,
    db: DbSession,
    current_user: RequireAdmin,
    body: Optional[SyncRetryRequest] = None,
):
    """Re-apply pending requisition deltas. Applied tasks are never applied twice."""
    logger.info(f"Requisition sync retry requested by user {current_user.user_id}")
    results = RequisitionPropagator(db).retry_pending(limit=body.limit if body else 100)
    return SyncRetryResponse(
        processed=len(results),
        applied=sum(1 for t in results if t.status == SyncTaskStatus.APPLIED),
        pending=sum(1 for t in results if t.status == SyncTaskStatus.PENDING),
        failed=sum(1 for t in results if t.status == SyncTaskStatus.FAILED),
    )


@router.get("/{requisition_id}", response_model=RequisitionResponse)
@limiter.limit("60/minute")
def get_requisition(request: Request, db: DbSession, current_user: RequireEmployee, requisition_id: int):
    requisition = db.get(Requisition, requisition_id)
    if requisition is None:
        raise RequisitionNotFound(requisition_id)
    return requisition
