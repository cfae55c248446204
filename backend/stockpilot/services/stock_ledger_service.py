"""Stock Ledger Service - the only writer of StockItem counters.

Every change goes through ``increment()``, which locks the (product, location)
row, accumulates the delta in SQL (``col = col + :delta``), refuses to go
below zero, and appends a StockMovement with the before/after snapshot.
Counters are never overwritten with an absolute value.

Movement kinds:
- inbound_po / inbound_po_damaged: written by the receipt processor
- po_missing: audit-only, quantity declared missing, before == after
- initial_stock / inbound_* / outbound_*: manual registrations
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from stockpilot.core.exceptions import InsufficientStock, ValidationFailure
from stockpilot.core.validators import require_cents
from stockpilot.models.stock import MovementKind, StockItem, StockMovement
from stockpilot.services.catalog_directory import CatalogDirectory

logger = logging.getLogger(__name__)

# Kinds a caller may register by hand, with the sign applied to the quantity
MANUAL_MOVEMENT_SIGNS = {
    MovementKind.INITIAL_STOCK: Decimal("1"),
    MovementKind.INBOUND_TRANSFER: Decimal("1"),
    MovementKind.INBOUND_ADJUSTMENT: Decimal("1"),
    MovementKind.OUTBOUND_SALE: Decimal("-1"),
    MovementKind.OUTBOUND_TRANSFER: Decimal("-1"),
    MovementKind.OUTBOUND_ADJUSTMENT: Decimal("-1"),
}

ZERO = Decimal("0")


class StockLedgerService:
    """Controlled accumulation of usable/damaged stock plus the movement audit log."""

    def __init__(self, db: Session):
        self.db = db

    # ===== WRITES =====

    def increment(
        self,
        product_id: int,
        location_id: int,
        delta: Decimal,
        *,
        kind: MovementKind,
        reason: str,
        damaged: bool = False,
        actor_id: Optional[int] = None,
        notes: Optional[str] = None,
        purchase_order_id: Optional[int] = None,
        receipt_id: Optional[int] = None,
        supplier_id: Optional[int] = None,
    ) -> StockMovement:
        """Apply a signed delta to the usable (or damaged) counter and log it.

        Raises:
            InsufficientStock: if the counter would go below zero.
        """
        delta = Decimal(delta)
        item = self._locked_item(product_id, location_id, actor_id)
        column = StockItem.damaged_quantity if damaged else StockItem.usable_quantity
        attr = "damaged_quantity" if damaged else "usable_quantity"

        current = Decimal(getattr(item, attr) or 0)
        if current + delta < ZERO:
            raise InsufficientStock(product_id, location_id, available=current, requested=-delta)

        setattr(item, attr, column + delta)
        item.updated_by = actor_id
        self.db.flush()
        # Expression assignment expires the attribute; this reloads the accumulated value
        after = Decimal(getattr(item, attr))
        before = after - delta

        movement = StockMovement(
            product_id=product_id,
            location_id=location_id,
            kind=kind,
            quantity_changed=delta,
            quantity_before=before,
            quantity_after=after,
            actor_id=actor_id,
            reason=reason,
            notes=notes,
            purchase_order_id=purchase_order_id,
            receipt_id=receipt_id,
            supplier_id=supplier_id,
        )
        self.db.add(movement)
        logger.debug(
            f"Stock {kind.value} product={product_id} location={location_id} "
            f"{'damaged' if damaged else 'usable'} {before} -> {after}"
        )
        return movement

    def record_missing(
        self,
        product_id: int,
        location_id: int,
        quantity: Decimal,
        *,
        reason: str,
        actor_id: Optional[int] = None,
        notes: Optional[str] = None,
        purchase_order_id: Optional[int] = None,
        receipt_id: Optional[int] = None,
        supplier_id: Optional[int] = None,
    ) -> StockMovement:
        """Log goods declared missing. No counter changes; before equals after."""
        item = self._find_item(product_id, location_id)
        current = Decimal(item.usable_quantity) if item is not None else ZERO

        movement = StockMovement(
            product_id=product_id,
            location_id=location_id,
            kind=MovementKind.PO_MISSING,
            quantity_changed=Decimal(quantity),
            quantity_before=current,
            quantity_after=current,
            actor_id=actor_id,
            reason=reason,
            notes=notes,
            purchase_order_id=purchase_order_id,
            receipt_id=receipt_id,
            supplier_id=supplier_id,
        )
        self.db.add(movement)
        return movement

    def register_movement(
        self,
        product_id: int,
        location_id: int,
        kind: MovementKind,
        quantity: Decimal,
        *,
        actor_id: Optional[int] = None,
        reason: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> StockMovement:
        """Register a manual movement (initial stock, transfer, adjustment, sale) and commit."""
        if kind not in MANUAL_MOVEMENT_SIGNS:
            raise ValidationFailure(
                f"Movement kind '{kind.value}' is only written by purchase order receipts",
                kind=kind,
            )
        quantity = Decimal(quantity)
        if quantity <= ZERO:
            raise ValidationFailure("Movement quantity must be positive", quantity=quantity)
        require_cents(quantity, "quantity", product_id=product_id)

        directory = CatalogDirectory(self.db)
        directory.require_active_product(product_id)
        directory.resolve_location(location_id)

        try:
            movement = self.increment(
                product_id,
                location_id,
                MANUAL_MOVEMENT_SIGNS[kind] * quantity,
                kind=kind,
                reason=reason or kind.value.replace("_", " ").capitalize(),
                actor_id=actor_id,
                notes=notes,
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(movement)
        logger.info(
            f"Registered {kind.value} of {quantity} for product {product_id} "
            f"at location {location_id} by user {actor_id}"
        )
        return movement

    # ===== READS =====

    def get_stock(self, product_id: int, location_id: Optional[int] = None) -> List[StockItem]:
        query = self.db.query(StockItem).filter(StockItem.product_id == product_id)
        if location_id is not None:
            query = query.filter(StockItem.location_id == location_id)
        return query.order_by(StockItem.location_id).all()

    def list_stock(
        self,
        location_id: Optional[int] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> Tuple[List[StockItem], int]:
        query = self.db.query(StockItem)
        if location_id is not None:
            query = query.filter(StockItem.location_id == location_id)
        total = query.count()
        items = query.order_by(StockItem.product_id, StockItem.location_id).offset(skip).limit(limit).all()
        return items, total

    def query_movements(
        self,
        product_id: Optional[int] = None,
        location_id: Optional[int] = None,
        kind: Optional[MovementKind] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        purchase_order_id: Optional[int] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> Tuple[List[StockMovement], int]:
        """Movement audit query for traceability views, newest first."""
        query = self.db.query(StockMovement)
        if product_id is not None:
            query = query.filter(StockMovement.product_id == product_id)
        if location_id is not None:
            query = query.filter(StockMovement.location_id == location_id)
        if kind is not None:
            query = query.filter(StockMovement.kind == kind)
        if date_from is not None:
            query = query.filter(StockMovement.ts >= date_from)
        if date_to is not None:
            query = query.filter(StockMovement.ts <= date_to)
        if purchase_order_id is not None:
            query = query.filter(StockMovement.purchase_order_id == purchase_order_id)

        total = query.with_entities(func.count(StockMovement.id)).scalar() or 0
        movements = (
            query.order_by(StockMovement.ts.desc(), StockMovement.id.desc())
            .offset(skip)
            .limit(limit)
            .all()
        )
        return movements, total

    # ===== HELPERS =====

    def _find_item(self, product_id: int, location_id: int) -> Optional[StockItem]:
        return self.db.execute(
            select(StockItem).where(
                StockItem.product_id == product_id,
                StockItem.location_id == location_id,
            )
        ).scalar_one_or_none()

    def _locked_item(self, product_id: int, location_id: int, actor_id: Optional[int]) -> StockItem:
        stmt = (
            select(StockItem)
            .where(StockItem.product_id == product_id, StockItem.location_id == location_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        item = self.db.execute(stmt).scalar_one_or_none()
        if item is not None:
            return item

        # Flush earlier work first so a failure below can only come from the new row
        self.db.flush()
        item = StockItem(
            product_id=product_id,
            location_id=location_id,
            usable_quantity=ZERO,
            damaged_quantity=ZERO,
            updated_by=actor_id,
        )
        self.db.add(item)
        try:
            self.db.flush()
        except IntegrityError as e:
            # Another transaction created the row first; retry from a fresh read
            raise StaleDataError(
                f"Stock item for product {product_id} at location {location_id} created concurrently"
            ) from e
        return item
