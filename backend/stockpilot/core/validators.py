"""Reusable quantity validators."""

from decimal import Decimal
from typing import Any

from stockpilot.core.exceptions import ValidationFailure

# Quantity and price columns are Numeric(12, 2)
CENTS = Decimal("0.01")


def require_cents(value: Any, field: str, **context: Any) -> Decimal:
    """Return ``value`` as a Decimal, rejecting more than two decimal places.

    A value the database would round must never reach a counter or a status
    derivation, since the stored row would then disagree with what was checked.
    """
    amount = Decimal(value)
    if amount != amount.quantize(CENTS):
        raise ValidationFailure(
            f"{field} allows at most 2 decimal places",
            field=field,
            value=amount,
            **context,
        )
    return amount
