"""Pure engines for approval chains, status derivation and fulfillment."""

from procurement_engines.approval_chain import (
    build_chain,
    chain_violations,
    derive_code_prefix,
    format_requisition_code,
    normalize_prefix,
    order_directory_entries,
)
from procurement_engines.approval_state import (
    DecisionCheck,
    chain_complete,
    check_decision,
    current_actionable_step,
    derive_status,
    is_terminal,
    plan_renumbering,
)
from procurement_engines.fulfillment import (
    FulfillmentEvaluation,
    ItemQuantities,
    evaluate_fulfillment,
    quantity_violation,
    reception_status,
)
from procurement_engines.requisition_draft import draft_violations, is_urgent

__all__ = [
    "DecisionCheck",
    "FulfillmentEvaluation",
    "ItemQuantities",
    "build_chain",
    "chain_complete",
    "chain_violations",
    "check_decision",
    "current_actionable_step",
    "derive_code_prefix",
    "derive_status",
    "draft_violations",
    "evaluate_fulfillment",
    "format_requisition_code",
    "is_terminal",
    "is_urgent",
    "normalize_prefix",
    "order_directory_entries",
    "plan_renumbering",
    "quantity_violation",
    "reception_status",
]
