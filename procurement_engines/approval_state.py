"""
Module: procurement_engines.approval_state
Responsibility:
    Pure derivations over an approval chain: which step is actionable,
    what aggregate status a requisition has, whether a given approver may
    decide now, and how a damaged chain is renumbered.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import procurement_kernel/domain.

Invariants enforced:
    - A step is actionable only if every lower-order step is approved.
      Once any step is rejected nothing is actionable again.
    - Aggregate status is a function of (step statuses, review flag,
      closed flag, receipts present) and nothing else.
    - Renumbering preserves relative order.

Failure modes:
    - None.  Callers map ``DecisionCheck`` results to typed errors.
"""

from __future__ import annotations

from collections.abc import Hashable, Sequence
from enum import Enum
from typing import TypeVar

from procurement_engines.tracer import traced_engine
from procurement_kernel.domain.requisition import (
    TERMINAL_STATUSES,
    ApprovalStepRecord,
    RequisitionStatus,
    StepStatus,
)

K = TypeVar("K", bound=Hashable)


class DecisionCheck(str, Enum):
    """Outcome of checking whether an approver may decide now."""

    ALLOWED = "allowed"
    NO_STEP = "no_step"
    NOT_YOUR_TURN = "not_your_turn"
    ALREADY_DECIDED = "already_decided"


def current_actionable_step(
    steps: Sequence[ApprovalStepRecord],
) -> ApprovalStepRecord | None:
    """Lowest-order pending step, provided every lower step is approved."""
    for step in sorted(steps, key=lambda s: s.order):
        if step.decision_status == StepStatus.APPROVED:
            continue
        if step.decision_status == StepStatus.PENDING:
            return step
        return None
    return None


@traced_engine("approval_state", "1.0", fingerprint_fields=("in_review", "closed", "has_receipts"))
def derive_status(
    steps: Sequence[ApprovalStepRecord],
    in_review: bool = False,
    closed: bool = False,
    has_receipts: bool = False,
) -> RequisitionStatus:
    """Aggregate requisition status.

    1. any step rejected -> rejected
    2. any step pending -> in_review if flagged, else pending_approval
    3. otherwise (all approved, or no steps) -> closed if the closed flag
       is set, fulfilling once a receipt exists, else
       approved_awaiting_fulfillment
    """
    statuses = {step.decision_status for step in steps}
    if StepStatus.REJECTED in statuses:
        return RequisitionStatus.REJECTED
    if StepStatus.PENDING in statuses:
        return RequisitionStatus.IN_REVIEW if in_review else RequisitionStatus.PENDING_APPROVAL
    if closed:
        return RequisitionStatus.CLOSED
    if has_receipts:
        return RequisitionStatus.FULFILLING
    return RequisitionStatus.APPROVED_AWAITING_FULFILLMENT


def is_terminal(status: RequisitionStatus) -> bool:
    return status in TERMINAL_STATUSES


def chain_complete(steps: Sequence[ApprovalStepRecord]) -> bool:
    """True when every step is approved (vacuously for an empty chain)."""
    return all(step.decision_status == StepStatus.APPROVED for step in steps)


def step_for_approver(
    steps: Sequence[ApprovalStepRecord], approver_id: str,
) -> ApprovalStepRecord | None:
    for step in steps:
        if step.approver_id == approver_id:
            return step
    return None


def check_decision(
    steps: Sequence[ApprovalStepRecord], approver_id: str,
) -> DecisionCheck:
    """Whether ``approver_id`` may decide on the chain right now."""
    own = step_for_approver(steps, approver_id)
    if own is None:
        return DecisionCheck.NO_STEP
    if own.decision_status != StepStatus.PENDING:
        return DecisionCheck.ALREADY_DECIDED
    actionable = current_actionable_step(steps)
    if actionable is None or actionable.approver_id != approver_id:
        return DecisionCheck.NOT_YOUR_TURN
    return DecisionCheck.ALLOWED


def plan_renumbering(ordered: Sequence[tuple[K, int]]) -> dict[K, int]:
    """New orders for steps whose position changed.

    ``ordered`` is the chain already sorted by (order, creation time);
    the result maps each key whose order must change to its 1-based
    position.
    """
    return {
        key: position
        for position, (key, order) in enumerate(ordered, start=1)
        if order != position
    }
