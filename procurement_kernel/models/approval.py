"""
Module: procurement_kernel.models.approval
Responsibility: ORM persistence for approval chain steps.

Architecture position: Kernel > Models.  May import from db/ and domain/ only.

Invariants enforced:
    - UNIQUE(requisition_id, step_order) and UNIQUE(requisition_id, approver_id):
      no duplicate positions, no approver twice on one chain.
    - step_order >= 1 (check constraint); gaplessness is validated by the
      chain builder before insert and restored by repair_chain.
    - Approver assignment and requisition ownership are write-once.
    - step_order changes only inside a chain repair (session flag).
    - A decided step never changes its decision.
    - Steps are never deleted.

Failure modes:
    - IntegrityError on duplicate order or duplicate approver.
    - ImmutabilityViolationError on forbidden UPDATE or any DELETE.

Audit relevance:
    Decisions are written through an atomic conditional UPDATE in the
    approval state machine service (Core statement, not the ORM unit of
    work), so the compare-and-swap on decision_status decides races.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    event,
    func,
)
from sqlalchemy.orm import Mapped, attributes, mapped_column, object_session, relationship

from procurement_kernel.db.base import Base, UTCDateTime, UUIDString
from procurement_kernel.db.types import ActorId, DisplayName, ShortCode
from procurement_kernel.domain.requisition import ApprovalStepRecord, StepStatus
from procurement_kernel.exceptions import ImmutabilityViolationError

# Session.info key that allows step_order rewrites during repair_chain.
CHAIN_REPAIR_FLAG = "procurement_chain_repair"


class ApprovalStepModel(Base):
    """Persistent approval step.

    Contract:
        Created as a complete set by the chain builder; decided one at a
        time by the state machine.
    """

    __tablename__ = "approval_steps"

    __table_args__ = (
        UniqueConstraint(
            "requisition_id", "step_order",
            name="uq_approval_steps_order",
        ),
        UniqueConstraint(
            "requisition_id", "approver_id",
            name="uq_approval_steps_approver",
        ),
        CheckConstraint("step_order >= 1", name="ck_approval_steps_order_positive"),
        CheckConstraint(
            "decision_status IN ('pending', 'approved', 'rejected')",
            name="ck_approval_steps_valid_status",
        ),
        # Covering index for list_actionable()
        Index(
            "ix_approval_steps_approver_status",
            "approver_id", "decision_status", "requisition_id",
        ),
    )

    requisition_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("requisitions.id"), nullable=False,
    )
    step_order: Mapped[int] = mapped_column(nullable=False)
    approver_id: Mapped[ActorId] = mapped_column(nullable=False)
    approver_name: Mapped[DisplayName] = mapped_column(nullable=False, default="")
    decision_status: Mapped[ShortCode] = mapped_column(
        nullable=False, default=StepStatus.PENDING.value,
    )
    decided_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    decided_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), nullable=False, server_default=func.now(),
    )

    requisition: Mapped["RequisitionModel"] = relationship(  # noqa: F821
        "RequisitionModel", back_populates="steps",
    )

    def __repr__(self) -> str:
        return (
            f"<ApprovalStep {self.step_order} of {self.requisition_id} "
            f"approver={self.approver_id} status={self.decision_status}>"
        )

    def to_dto(self) -> ApprovalStepRecord:
        return ApprovalStepRecord(
            step_id=self.id,
            order=self.step_order,
            approver_id=self.approver_id,
            approver_name=self.approver_name,
            decision_status=StepStatus(self.decision_status),
            decided_at=self.decided_at,
            decided_by=self.decided_by,
            comment=self.comment,
        )

    @classmethod
    def from_dto(cls, dto: ApprovalStepRecord, requisition_id: UUID) -> ApprovalStepModel:
        return cls(
            requisition_id=requisition_id,
            step_order=dto.order,
            approver_id=dto.approver_id,
            approver_name=dto.approver_name,
            decision_status=dto.decision_status.value,
            decided_at=dto.decided_at,
            decided_by=dto.decided_by,
            comment=dto.comment,
        )


# =============================================================================
# ORM-Level Immutability
# =============================================================================


@event.listens_for(ApprovalStepModel, "before_update")
def prevent_step_reassignment(mapper, connection, target):
    """Guard approver assignment, ordering and recorded decisions."""
    for name in ("approver_id", "requisition_id"):
        if attributes.get_history(target, name).has_changes():
            raise ImmutabilityViolationError(
                entity_type="ApprovalStep",
                entity_id=str(target.id),
                reason=f"{name} is immutable after the chain is built",
            )

    if attributes.get_history(target, "step_order").has_changes():
        session = object_session(target)
        if session is None or not session.info.get(CHAIN_REPAIR_FLAG):
            raise ImmutabilityViolationError(
                entity_type="ApprovalStep",
                entity_id=str(target.id),
                reason="Steps are never reordered outside chain repair",
            )

    status_history = attributes.get_history(target, "decision_status")
    if status_history.has_changes():
        previous = status_history.deleted[0] if status_history.deleted else None
        if previous is not None and previous != StepStatus.PENDING.value:
            raise ImmutabilityViolationError(
                entity_type="ApprovalStep",
                entity_id=str(target.id),
                reason=f"Decided step cannot change from {previous}",
            )


@event.listens_for(ApprovalStepModel, "before_delete")
def prevent_step_delete(mapper, connection, target):
    """Approval steps are never deleted."""
    raise ImmutabilityViolationError(
        entity_type="ApprovalStep",
        entity_id=str(target.id),
        reason="Approval steps cannot be deleted",
    )
