"""
Module: procurement_engines.fulfillment
Responsibility:
    Reconcile cumulative receipts against requested quantities: per-item
    ratio and reception status, the all-items-satisfied closure predicate,
    and the informational aggregate ratio.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import procurement_kernel/domain.

Invariants enforced:
    - Decimal-only arithmetic; floats are converted through ``str``.
    - Closure authority is the per-item rule ``received / requested >= 1``.
      Over-delivery satisfies it.
    - Zero line items is vacuously fully received.
    - A receipt quantity must be finite and strictly positive,
      with no more than QUANTITY_DECIMAL_PLACES decimal places.

Failure modes:
    - None.  ``quantity_violation`` reports problems as strings; the
      reconciler raises InvalidQuantityError.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any
from uuid import UUID

from procurement_engines.tracer import traced_engine
from procurement_kernel.domain.requisition import (
    QUANTITY_DECIMAL_PLACES,
    ItemFulfillment,
    ReceptionStatus,
)

_ZERO = Decimal("0")
_ONE = Decimal("1")


@dataclass(frozen=True)
class ItemQuantities:
    """Requested and cumulative received quantity of one line item."""

    line_item_id: UUID
    requested: Decimal
    received: Decimal


@dataclass(frozen=True)
class FulfillmentEvaluation:
    """Engine result; the reconciler turns it into a FulfillmentSummary."""

    items: tuple[ItemFulfillment, ...]
    fully_received: bool
    aggregate_ratio: Decimal


def to_quantity(value: Any) -> Decimal | None:
    """Coerce a caller-supplied quantity to Decimal (None if not numeric)."""
    if isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, (int, float, str)):
        try:
            return Decimal(str(value).strip())
        except InvalidOperation:
            return None
    return None


def exceeds_scale(value: Decimal) -> bool:
    """True when a finite value has more decimal places than the store keeps."""
    return -value.normalize().as_tuple().exponent > QUANTITY_DECIMAL_PLACES


def quantity_violation(value: Any) -> str | None:
    """Reason a receipt quantity is unacceptable, or None."""
    quantity = to_quantity(value)
    if quantity is None:
        return "must be a number"
    if not quantity.is_finite():
        return "must be finite"
    if quantity <= _ZERO:
        return "must be greater than zero"
    if exceeds_scale(quantity):
        return f"must have at most {QUANTITY_DECIMAL_PLACES} decimal places"
    return None


def reception_status(requested: Decimal, received: Decimal) -> ReceptionStatus:
    if received <= _ZERO:
        return ReceptionStatus.PENDING
    if received < requested:
        return ReceptionStatus.PARTIAL
    if received == requested:
        return ReceptionStatus.COMPLETE
    return ReceptionStatus.OVER_DELIVERED


def item_ratio(requested: Decimal, received: Decimal) -> Decimal:
    if requested <= _ZERO:
        return _ONE
    return received / requested


@traced_engine("fulfillment", "1.0")
def evaluate_fulfillment(items: Sequence[ItemQuantities]) -> FulfillmentEvaluation:
    """Per-item ratios and the closure predicate."""
    results = tuple(
        ItemFulfillment(
            line_item_id=item.line_item_id,
            requested=item.requested,
            received=item.received,
            ratio=item_ratio(item.requested, item.received),
            reception_status=reception_status(item.requested, item.received),
        )
        for item in items
    )

    total_requested = sum((item.requested for item in items), _ZERO)
    total_received = sum((item.received for item in items), _ZERO)
    aggregate = total_received / total_requested if total_requested > _ZERO else _ONE

    return FulfillmentEvaluation(
        items=results,
        fully_received=all(result.satisfied for result in results),
        aggregate_ratio=aggregate,
    )
