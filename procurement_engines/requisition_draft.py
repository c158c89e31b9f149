"""
Module: procurement_engines.requisition_draft
Responsibility:
    Validate a submission draft and derive the facts computed once at
    submission (urgency flag, duplicate-check keys).

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Requested quantities > 0, unit prices >= 0, priority in the closed
      set, non-empty description, no number finer than the stored scale.
    - A requisition is urgent iff any line item has priority ``urgent``.
"""

from __future__ import annotations

from decimal import Decimal

from procurement_engines.fulfillment import exceeds_scale, to_quantity
from procurement_kernel.domain.requisition import (
    QUANTITY_DECIMAL_PLACES,
    LineItemDraft,
    Priority,
    RequisitionDraft,
)


def draft_violations(draft: RequisitionDraft) -> list[str]:
    errors: list[str] = []
    for number, item in enumerate(draft.line_items, start=1):
        if not (item.description or "").strip():
            errors.append(f"line {number}: description is required")

        quantity = to_quantity(item.quantity)
        if quantity is None or not quantity.is_finite() or quantity <= 0:
            errors.append(f"line {number}: quantity must be a finite number > 0")
        elif exceeds_scale(quantity):
            errors.append(
                f"line {number}: quantity has more than {QUANTITY_DECIMAL_PLACES} decimal places"
            )

        price = to_quantity(item.unit_price)
        if price is None or not price.is_finite() or price < 0:
            errors.append(f"line {number}: unit price must be a finite number >= 0")
        elif exceeds_scale(price):
            errors.append(
                f"line {number}: unit price has more than {QUANTITY_DECIMAL_PLACES} decimal places"
            )

        try:
            Priority(item.priority)
        except ValueError:
            errors.append(f"line {number}: unknown priority {item.priority!r}")
    return errors


def is_urgent(items: tuple[LineItemDraft, ...]) -> bool:
    return any(Priority(item.priority) == Priority.URGENT for item in items)


def item_key(description: str, specifications: str | None) -> tuple[str, str]:
    """Items are duplicates when description and specifications match (case-insensitive)."""
    return (
        " ".join(description.split()).casefold(),
        " ".join((specifications or "").split()).casefold(),
    )


def duplicate_key(item: LineItemDraft) -> tuple[str, str]:
    return item_key(item.description, item.specifications)


def as_decimal(value: Decimal | int | float | str) -> Decimal:
    """Decimal form of an already validated draft number."""
    result = to_quantity(value)
    if result is None:
        raise ValueError(f"not a number: {value!r}")
    return result
