"""
Module: procurement_engines.approval_chain
Responsibility:
    Compute the ordered approval chain for a new requisition from the
    approver directory, applying the self-authorization rule, and validate
    chains before they are persisted.  Also derives the human-readable
    requisition code prefix and formats codes.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import procurement_kernel/domain.

Invariants enforced:
    - Directory ordering: standard approvers first, then administrators,
      each group by ascending identity.  Administrators therefore always
      close the chain.
    - Orders are assigned by list position, 1..N with no gaps.
    - At most one step is pre-approved: the submitter's own position.

Failure modes:
    - None.  ``chain_violations`` reports problems as strings; the calling
      service decides to raise InvalidChainError.

Usage:
    from procurement_engines.approval_chain import build_chain

    steps = build_chain(
        approvers=directory.authorized_approvers(unit_id),
        submitter_id="u-17",
        decided_at=clock.now(),
        self_authorization_comment="Self-authorized by submitter at submission",
    )
"""

from __future__ import annotations

import re
import unicodedata
from collections.abc import Iterable, Sequence
from datetime import datetime

from procurement_engines.tracer import traced_engine
from procurement_kernel.domain.requisition import (
    ApprovalStepRecord,
    ApproverEntry,
    ApproverRole,
    StepStatus,
)

MAX_PREFIX_LENGTH = 10

_ROLE_RANK = {
    ApproverRole.STANDARD: 0,
    ApproverRole.ADMINISTRATOR: 1,
}


def order_directory_entries(entries: Iterable[ApproverEntry]) -> tuple[ApproverEntry, ...]:
    """Deterministic directory order; inactive entries and repeats are dropped."""
    seen: set[str] = set()
    unique: list[ApproverEntry] = []
    for entry in entries:
        if not entry.active or entry.approver_id in seen:
            continue
        seen.add(entry.approver_id)
        unique.append(entry)
    return tuple(
        sorted(unique, key=lambda e: (_ROLE_RANK[ApproverRole(e.role)], str(e.approver_id)))
    )


@traced_engine("approval_chain", "1.0", fingerprint_fields=("submitter_id",))
def build_chain(
    approvers: Sequence[ApproverEntry],
    submitter_id: str,
    decided_at: datetime,
    self_authorization_comment: str,
) -> tuple[ApprovalStepRecord, ...]:
    """One step per approver, in the given order.

    The submitter's own step (if any) is created approved and attributed
    to the submitter.  An empty ``approvers`` sequence yields an empty
    chain, which means the requisition has no approval gate.
    """
    steps: list[ApprovalStepRecord] = []
    for position, approver in enumerate(approvers, start=1):
        if approver.approver_id == submitter_id:
            steps.append(ApprovalStepRecord(
                order=position,
                approver_id=approver.approver_id,
                approver_name=approver.display_name,
                decision_status=StepStatus.APPROVED,
                decided_at=decided_at,
                decided_by=submitter_id,
                comment=self_authorization_comment,
            ))
        else:
            steps.append(ApprovalStepRecord(
                order=position,
                approver_id=approver.approver_id,
                approver_name=approver.display_name,
            ))
    return tuple(steps)


def chain_violations(steps: Sequence[ApprovalStepRecord]) -> list[str]:
    """Problems that make a chain unusable (empty list when valid)."""
    violations: list[str] = []
    orders = sorted(step.order for step in steps)
    if orders != list(range(1, len(steps) + 1)):
        violations.append(f"step orders {orders} are not the gapless sequence 1..{len(steps)}")

    approver_ids = [step.approver_id for step in steps]
    duplicates = sorted({a for a in approver_ids if approver_ids.count(a) > 1})
    if duplicates:
        violations.append(f"approvers appear more than once: {', '.join(duplicates)}")

    return violations


# =========================================================================
# Requisition codes
# =========================================================================


def normalize_prefix(prefix: str | None) -> str | None:
    """Uppercase ASCII letters and digits only, capped in length."""
    if not prefix:
        return None
    ascii_text = (
        unicodedata.normalize("NFKD", prefix).encode("ascii", "ignore").decode("ascii")
    )
    cleaned = re.sub(r"[^A-Za-z0-9]", "", ascii_text).upper()[:MAX_PREFIX_LENGTH]
    return cleaned or None


def derive_code_prefix(display_name: str | None, fallback: str) -> str:
    """Initials of the submitter's name (``"José María Pérez"`` -> ``"JMP"``)."""
    words = (display_name or "").split()
    initials = normalize_prefix("".join(word[0] for word in words if word))
    return initials or normalize_prefix(fallback) or "REQ"


def format_requisition_code(prefix: str, value: int, width: int) -> str:
    """``PREFIX-000006`` style code."""
    return f"{prefix}-{value:0{width}d}"
