"""
Typed procurement errors.

Every error carries a machine-readable ``code``, the HTTP status it maps to,
and a ``details`` dict naming the offending statuses or quantities so an
operator can correct the input instead of retrying blindly.

    ProcurementError
    +-- InvalidTransition
    +-- QuantityOverrun
    +-- EmptyReceipt
    +-- NoSnapshotToRevert
    +-- ConcurrentModification
    +-- ReferentialIntegrityFailure
    +-- InsufficientStock
    +-- ValidationFailure
    +-- NotFound
        +-- PurchaseOrderNotFound
        +-- RequisitionNotFound

All of them are raised before any mutation is applied, except
ConcurrentModification which is raised when a flush hits a stale row.
"""

from decimal import Decimal
from typing import Any, Dict, Optional


def _plain(value: Any) -> Any:
    """Make a detail value JSON friendly."""
    if isinstance(value, Decimal):
        return str(value)
    if hasattr(value, "value"):
        return value.value
    return value


class ProcurementError(Exception):
    """Base exception for all procurement core errors."""

    code: str = "PROCUREMENT_ERROR"
    status_code: int = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = {k: _plain(v) for k, v in (details or {}).items()}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "message": self.message, "details": self.details}


class InvalidTransition(ProcurementError):
    """Status change not permitted from the current state."""

    code = "INVALID_TRANSITION"
    status_code = 409

    def __init__(self, current: Any, requested: Any, reason: Optional[str] = None):
        self.current = current
        self.requested = requested
        message = f"Cannot move purchase order from '{_plain(current)}' to '{_plain(requested)}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message, {"current_status": current, "requested": requested})


class QuantityOverrun(ProcurementError):
    """A receipt line asks for more than the line still has outstanding."""

    code = "QUANTITY_OVERRUN"
    status_code = 409

    def __init__(self, product_id: int, requested: Decimal, outstanding: Decimal):
        self.product_id = product_id
        self.requested = requested
        self.outstanding = outstanding
        super().__init__(
            f"Product {product_id}: receipt accounts for {requested} but only "
            f"{outstanding} is outstanding",
            {"product_id": product_id, "requested": requested, "outstanding": outstanding},
        )


class EmptyReceipt(ProcurementError):
    """No line in the receipt carries a non-zero quantity."""

    code = "EMPTY_RECEIPT"
    status_code = 422

    def __init__(self, purchase_order_id: int):
        self.purchase_order_id = purchase_order_id
        super().__init__(
            "Receipt does not contain any non-zero quantity",
            {"purchase_order_id": purchase_order_id},
        )


class NoSnapshotToRevert(ProcurementError):
    """Accept-original was invoked while no supplier proposal is under review."""

    code = "NO_SNAPSHOT_TO_REVERT"
    status_code = 422

    def __init__(self, purchase_order_id: int):
        self.purchase_order_id = purchase_order_id
        super().__init__(
            f"Purchase order {purchase_order_id} has no original terms to revert to",
            {"purchase_order_id": purchase_order_id},
        )


class ConcurrentModification(ProcurementError):
    """A concurrent writer invalidated the transaction's preconditions."""

    code = "CONCURRENT_MODIFICATION"
    status_code = 409

    def __init__(
        self,
        entity: str,
        entity_id: Any,
        expected_version: Optional[int] = None,
        current_version: Optional[int] = None,
    ):
        self.entity = entity
        self.entity_id = entity_id
        self.expected_version = expected_version
        self.current_version = current_version
        if expected_version is not None:
            message = (
                f"{entity} {entity_id} was modified concurrently: "
                f"expected version {expected_version}, current {current_version}"
            )
        else:
            message = f"{entity} {entity_id} was modified concurrently, reload and retry"
        super().__init__(message, {
            "entity": entity,
            "entity_id": entity_id,
            "expected_version": expected_version,
            "current_version": current_version,
        })


class ReferentialIntegrityFailure(ProcurementError):
    """A referenced product, supplier, location or requisition is missing or inactive."""

    code = "REFERENTIAL_INTEGRITY_FAILURE"
    status_code = 400

    def __init__(self, entity: str, entity_id: Any, reason: str = "not found"):
        self.entity = entity
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"{entity} {entity_id} is not usable: {reason}",
            {"entity": entity, "entity_id": entity_id, "reason": reason},
        )


class InsufficientStock(ProcurementError):
    """A stock change would drive a counter below zero."""

    code = "INSUFFICIENT_STOCK"
    status_code = 409

    def __init__(self, product_id: int, location_id: int, available: Decimal, requested: Decimal):
        self.product_id = product_id
        self.location_id = location_id
        self.available = available
        self.requested = requested
        super().__init__(
            f"Product {product_id} at location {location_id}: "
            f"need {requested}, have {available}",
            {
                "product_id": product_id,
                "location_id": location_id,
                "available": available,
                "requested": requested,
            },
        )


class ValidationFailure(ProcurementError):
    """Input that is well-formed but not acceptable for the operation."""

    code = "VALIDATION_FAILURE"
    status_code = 422

    def __init__(self, message: str, **details: Any):
        super().__init__(message, details)


class NotFound(ProcurementError):
    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, entity: str, entity_id: Any):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found", {"entity": entity, "entity_id": entity_id})


class PurchaseOrderNotFound(NotFound):
    def __init__(self, purchase_order_id: int):
        super().__init__("Purchase order", purchase_order_id)


class RequisitionNotFound(NotFound):
    def __init__(self, requisition_id: int):
        super().__init__("Requisition", requisition_id)
