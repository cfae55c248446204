"""Purchase order status state machine.

The transition table below is the single authority on which status changes
are legal. Delivery statuses (partially delivered, awaiting future delivery,
fully received) are never requested by a buyer: they are derived from the
line items' cumulative counters by ``derive_delivery_status``.
"""

from decimal import Decimal
from typing import Dict, FrozenSet, Iterable, Protocol

from stockpilot.core.exceptions import InvalidTransition
from stockpilot.models.purchase_order import PurchaseOrderStatus as S


class CountedLine(Protocol):
    ordered_quantity: Decimal
    received_quantity: Decimal
    received_damaged_quantity: Decimal
    received_missing_quantity: Decimal


PRE_CONFIRMATION_STATUSES: FrozenSet[S] = frozenset({
    S.PENDING,
    S.SENT_TO_SUPPLIER,
    S.CHANGES_PROPOSED_BY_SUPPLIER,
    S.PENDING_INTERNAL_REVIEW,
})

RECEIVABLE_STATUSES: FrozenSet[S] = frozenset({
    S.CONFIRMED_BY_SUPPLIER,
    S.PARTIALLY_DELIVERED,
    S.AWAITING_FUTURE_DELIVERY,
})

DELIVERY_STATUSES: FrozenSet[S] = frozenset({
    S.PARTIALLY_DELIVERED,
    S.AWAITING_FUTURE_DELIVERY,
    S.FULLY_RECEIVED,
})

TERMINAL_STATUSES: FrozenSet[S] = frozenset({
    S.COMPLETED,
    S.CANCELED,
    S.REJECTED_BY_SUPPLIER,
})

TRANSITIONS: Dict[S, FrozenSet[S]] = {
    S.PENDING: frozenset({S.SENT_TO_SUPPLIER, S.CANCELED}),
    S.SENT_TO_SUPPLIER: frozenset({
        S.CONFIRMED_BY_SUPPLIER,
        S.REJECTED_BY_SUPPLIER,
        S.CHANGES_PROPOSED_BY_SUPPLIER,
        S.PENDING_INTERNAL_REVIEW,
        S.CANCELED,
    }),
    S.CHANGES_PROPOSED_BY_SUPPLIER: frozenset({S.PENDING_INTERNAL_REVIEW, S.CANCELED}),
    S.PENDING_INTERNAL_REVIEW: frozenset({
        S.CONFIRMED_BY_SUPPLIER,
        S.CHANGES_PROPOSED_BY_SUPPLIER,
        S.REJECTED_BY_SUPPLIER,
        S.CANCELED,
    }),
    # Cancel after confirmation needs a reconciliation note, enforced by the service
    S.CONFIRMED_BY_SUPPLIER: DELIVERY_STATUSES | {S.CANCELED},
    S.PARTIALLY_DELIVERED: frozenset({S.AWAITING_FUTURE_DELIVERY, S.FULLY_RECEIVED}),
    S.AWAITING_FUTURE_DELIVERY: frozenset({S.PARTIALLY_DELIVERED, S.FULLY_RECEIVED}),
    S.FULLY_RECEIVED: frozenset({S.COMPLETED}),
    S.COMPLETED: frozenset(),
    S.CANCELED: frozenset(),
    S.REJECTED_BY_SUPPLIER: frozenset(),
}


def can_transition(current: S, requested: S) -> bool:
    return requested in TRANSITIONS.get(current, frozenset())


def assert_transition(current: S, requested: S) -> None:
    """Raise InvalidTransition unless ``current -> requested`` is in the table."""
    if not can_transition(current, requested):
        raise InvalidTransition(current, requested)


def is_fully_accounted(line: CountedLine) -> bool:
    return Decimal(line.ordered_quantity) == accounted_quantity(line)


def accounted_quantity(line: CountedLine) -> Decimal:
    return (
        Decimal(line.received_quantity or 0)
        + Decimal(line.received_damaged_quantity or 0)
        + Decimal(line.received_missing_quantity or 0)
    )


def derive_delivery_status(lines: Iterable[CountedLine], has_supplier_solution: bool) -> S:
    """Derive the delivery status from cumulative line counters.

    Pure and idempotent:
    - every line fully accounted for -> FULLY_RECEIVED
    - anything accounted for so far -> PARTIALLY_DELIVERED, or
      AWAITING_FUTURE_DELIVERY when a supplier solution is on file
    - nothing accounted for yet -> CONFIRMED_BY_SUPPLIER
    """
    lines = list(lines)
    if lines and all(is_fully_accounted(line) for line in lines):
        return S.FULLY_RECEIVED
    if any(accounted_quantity(line) > 0 for line in lines):
        return S.AWAITING_FUTURE_DELIVERY if has_supplier_solution else S.PARTIALLY_DELIVERED
    return S.CONFIRMED_BY_SUPPLIER
