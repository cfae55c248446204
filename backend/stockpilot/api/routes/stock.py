"""Stock routes - ledger reads, movement audit and manual movements."""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Query, Request

from stockpilot.core.rate_limit import limiter
from stockpilot.core.rbac import RequireAdmin, RequireEmployee
from stockpilot.core.responses import list_response, paginated_response
from stockpilot.db.session import DbSession
from stockpilot.models.stock import MovementKind
from stockpilot.schemas.stock import StockItemResponse, StockMovementCreate, StockMovementResponse
from stockpilot.services.stock_ledger_service import StockLedgerService

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/items")
@limiter.limit("60/minute")
def list_stock_items(
    request: Request,
    db: DbSession,
    current_user: RequireEmployee,
    location_id: Optional[int] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
):
    """Stock on hand per product and location."""
    items, total = StockLedgerService(db).list_stock(location_id=location_id, skip=skip, limit=limit)
    return paginated_response([StockItemResponse.model_validate(i) for i in items], total, skip, limit)


@router.get("/items/{product_id}")
@limiter.limit("60/minute")
def get_product_stock(
    request: Request,
    db: DbSession,
    current_user: RequireEmployee,
    product_id: int,
    location_id: Optional[int] = None,
):
    items = StockLedgerService(db).get_stock(product_id, location_id)
    return list_response([StockItemResponse.model_validate(i) for i in items])


@router.get("/movements")
@limiter.limit("60/minute")
def list_stock_movements(
    request: Request,
    db: DbSession,
    current_user: RequireEmployee,
    product_id: Optional[int] = None,
    location_id: Optional[int] = None,
    kind: Optional[MovementKind] = None,
    purchase_order_id: Optional[int] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
):
    """Movement audit trail, newest first."""
    movements, total = StockLedgerService(db).query_movements(
        product_id=product_id,
        location_id=location_id,
        kind=kind,
        date_from=date_from,
        date_to=date_to,
        purchase_order_id=purchase_order_id,
        skip=skip,
        limit=limit,
    )
    return paginated_response(
        [StockMovementResponse.model_validate(m) for m in movements], total, skip, limit
    )


@router.post("/movements", response_model=StockMovementResponse, status_code=201)
@limiter.limit("30/minute")
def register_stock_movement(request: Request, db: DbSession, current_user: RequireAdmin, body: StockMovementCreate):
    """Register initial stock, a transfer leg, an adjustment or a sale."""
    logger.info(f"Manual {body.kind.value} movement for product {body.product_id} by user {current_user.user_id}")
    return StockLedgerService(db).register_movement(
        body.product_id,
        body.location_id,
        body.kind,
        body.quantity,
        actor_id=current_user.user_id,
        reason=body.reason,
        notes=body.notes,
    )
