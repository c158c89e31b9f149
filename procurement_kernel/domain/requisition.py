"""
Requisition domain types (``procurement_kernel.domain.requisition``).

Responsibility
--------------
Pure value objects for the approval-and-fulfillment engine.  Defines the
closed role, status, decision and priority enumerations, the immutable
records returned by services and selectors, and the two pluggable
provider contracts (approver directory and caller authentication).

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, ``selectors/``, or outer layers.

Invariants enforced
-------------------
* Closed enumerations -- roles, statuses and priorities are ``str``
  enums; free-form role strings never reach the engine.
* Terminal statuses -- ``TERMINAL_STATUSES`` lists the statuses after
  which no approval decision may mutate a requisition.
* Receivable statuses -- ``RECEIVABLE_STATUSES`` lists the statuses in
  which receipts may be recorded (approval chain complete).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Protocol
from uuid import UUID


# =========================================================================
# Enumerations
# =========================================================================


class RequisitionStatus(str, Enum):
    """Aggregate requisition status (always derived, cached on the row)."""

    PENDING_APPROVAL = "pending_approval"
    IN_REVIEW = "in_review"
    APPROVED_AWAITING_FULFILLMENT = "approved_awaiting_fulfillment"
    REJECTED = "rejected"
    FULFILLING = "fulfilling"
    CLOSED = "closed"


TERMINAL_STATUSES: frozenset[RequisitionStatus] = frozenset({
    RequisitionStatus.REJECTED,
    RequisitionStatus.CLOSED,
})

RECEIVABLE_STATUSES: frozenset[RequisitionStatus] = frozenset({
    RequisitionStatus.APPROVED_AWAITING_FULFILLMENT,
    RequisitionStatus.FULFILLING,
    RequisitionStatus.CLOSED,
})

# Scale of stored quantities; finer values would be rounded by the store.
QUANTITY_DECIMAL_PLACES = 9


class StepStatus(str, Enum):
    """Decision status of a single approval step."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class Decision(str, Enum):
    """Decisions an approver can make on the actionable step."""

    APPROVE = "approve"
    REJECT = "reject"


class Priority(str, Enum):
    """Line item priority tag."""

    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class ReceptionStatus(str, Enum):
    """Per-item reception status, derived from cumulative received quantity."""

    PENDING = "pending"
    PARTIAL = "partial"
    COMPLETE = "complete"
    OVER_DELIVERED = "over_delivered"


class ApproverRole(str, Enum):
    """Directory role. Administrators always occupy the final chain positions."""

    STANDARD = "standard"
    ADMINISTRATOR = "administrator"


class CallerRole(str, Enum):
    """Role of an authenticated caller."""

    REQUESTER = "requester"
    APPROVER = "approver"
    ADMINISTRATOR = "administrator"


# =========================================================================
# Directory and caller identity
# =========================================================================


@dataclass(frozen=True)
class ApproverEntry:
    """A directory entry: one person authorized to decide for a set of units."""

    approver_id: str
    display_name: str
    role: ApproverRole
    units: frozenset[str] = frozenset()
    active: bool = True


@dataclass(frozen=True)
class CallerIdentity:
    """Resolved caller.  The engine trusts this resolution as-is."""

    identity: str
    role: CallerRole
    unit_id: str | None = None
    authorized_units: frozenset[str] = frozenset()
    display_name: str = ""

    @property
    def is_administrator(self) -> bool:
        return self.role == CallerRole.ADMINISTRATOR


# =========================================================================
# Drafts (submission input)
# =========================================================================


@dataclass(frozen=True)
class LineItemDraft:
    """One requested item.  Content is immutable after submission."""

    description: str
    quantity: Decimal
    unit_price: Decimal
    priority: Priority = Priority.NORMAL
    specifications: str | None = None
    image_ref: str | None = None


@dataclass(frozen=True)
class RequisitionDraft:
    """Submission payload.

    ``code_prefix`` overrides the prefix derived from the submitter's
    initials.
    """

    line_items: tuple[LineItemDraft, ...] = ()
    supplier: str | None = None
    notes: str | None = None
    code_prefix: str | None = None


@dataclass(frozen=True)
class ReceiptEntry:
    """One entry of a batch reception."""

    line_item_id: UUID
    quantity: Decimal
    source_document: str | None = None


# =========================================================================
# Records (read models)
# =========================================================================


@dataclass(frozen=True)
class ApprovalStepRecord:
    """One step of an approval chain.

    ``step_id`` is None for steps computed by the pure chain builder and
    not yet persisted.
    """

    order: int
    approver_id: str
    decision_status: StepStatus = StepStatus.PENDING
    approver_name: str = ""
    step_id: UUID | None = None
    decided_at: datetime | None = None
    decided_by: str | None = None
    comment: str | None = None


@dataclass(frozen=True)
class LineItemRecord:
    """A persisted line item with its cached reception state."""

    line_item_id: UUID
    line_number: int
    description: str
    quantity: Decimal
    unit_price: Decimal
    priority: Priority
    received_quantity: Decimal
    reception_status: ReceptionStatus
    specifications: str | None = None
    image_ref: str | None = None

    @property
    def line_total(self) -> Decimal:
        return self.quantity * self.unit_price


@dataclass(frozen=True)
class ReceiptRecord:
    """One append-only receipt event."""

    receipt_id: UUID
    line_item_id: UUID
    quantity: Decimal
    recorded_by: str
    recorded_at: datetime
    source_document: str | None = None


@dataclass(frozen=True)
class RequisitionRecord:
    """Full requisition snapshot: header, items and chain."""

    requisition_id: UUID
    code: str
    submitter_id: str
    submitter_unit_id: str
    submitted_at: datetime
    status: RequisitionStatus
    in_review: bool = False
    urgent: bool = False
    rejection_reason: str | None = None
    closed_at: datetime | None = None
    supplier: str | None = None
    notes: str | None = None
    submitter_name: str = ""
    line_items: tuple[LineItemRecord, ...] = ()
    steps: tuple[ApprovalStepRecord, ...] = ()

    @property
    def total_amount(self) -> Decimal:
        return sum((item.line_total for item in self.line_items), Decimal("0"))


@dataclass(frozen=True)
class RequisitionSummary:
    """Queue row for ``list_actionable``."""

    code: str
    submitter_id: str
    submitter_unit_id: str
    submitted_at: datetime
    status: RequisitionStatus
    urgent: bool
    actionable_step_order: int
    item_count: int = 0


@dataclass(frozen=True)
class DecisionOutcome:
    """Result of one approval decision."""

    requisition_code: str
    step_order: int
    decision_status: StepStatus
    status: RequisitionStatus
    next_approver_id: str | None = None


@dataclass(frozen=True)
class ItemFulfillment:
    """Per-item reconciliation result."""

    line_item_id: UUID
    requested: Decimal
    received: Decimal
    ratio: Decimal
    reception_status: ReceptionStatus

    @property
    def satisfied(self) -> bool:
        return self.ratio >= 1


@dataclass(frozen=True)
class FulfillmentSummary:
    """Result of ``recompute_fulfillment``.

    ``aggregate_ratio`` is informational; closure is decided per item.
    """

    requisition_code: str
    status: RequisitionStatus
    fully_received: bool
    aggregate_ratio: Decimal
    items: tuple[ItemFulfillment, ...] = ()
    closed_at: datetime | None = None


@dataclass(frozen=True)
class ChainRepairResult:
    """Result of the administrative ``repair_chain`` operation."""

    requisition_code: str
    renumbered: int
    self_authorized: bool
    previous_status: RequisitionStatus
    status: RequisitionStatus


@dataclass(frozen=True)
class HistoryEntry:
    """One event from a requisition's hash-chained history."""

    seq: int
    action: str
    actor_id: str
    occurred_at: datetime
    payload: dict = field(default_factory=dict)
    hash: str = ""


# =========================================================================
# Provider protocols
# =========================================================================


class ApproverDirectoryProvider(Protocol):
    """Read-only mapping from organizational unit to ordered approvers."""

    def authorized_approvers(self, unit_id: str) -> tuple[ApproverEntry, ...]:
        """Return standard approvers first, then administrators.

        Each group is ordered by ascending identity.  Empty when nothing
        is configured for the unit.
        """
        ...


class AuthProvider(Protocol):
    """Resolves a caller token to an identity (None when unknown)."""

    def resolve(self, token: str) -> CallerIdentity | None:
        ...
