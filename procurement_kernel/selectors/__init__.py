"""Selectors for the procurement kernel (read side)."""

from procurement_kernel.selectors.requisition_selector import RequisitionSelector

__all__ = [
    "RequisitionSelector",
]
