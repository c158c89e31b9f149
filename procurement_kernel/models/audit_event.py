"""
Module: procurement_kernel.models.audit_event
Responsibility: ORM persistence for the per-requisition, hash-chained history.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Append-only; no UPDATE or DELETE (ORM listeners).
    - hash = H("requisition" | code | seq | action | payload_hash | prev_hash),
      validated by AuditorService.
    - seq is monotonic per requisition, allocated by SequenceService;
      UNIQUE(requisition_code, seq).

Failure modes:
    - ImmutabilityViolationError on any UPDATE/DELETE attempt.
    - AuditChainBrokenError when chain validation detects a hash mismatch.
"""

from datetime import datetime
from enum import Enum

from sqlalchemy import JSON, BigInteger, Index, String, UniqueConstraint, event
from sqlalchemy.orm import Mapped, mapped_column

from procurement_kernel.db.base import Base, UTCDateTime
from procurement_kernel.exceptions import ImmutabilityViolationError


class AuditAction(str, Enum):
    """Actions recorded in a requisition's history."""

    SUBMITTED = "submitted"
    STEP_SELF_AUTHORIZED = "step_self_authorized"
    STEP_APPROVED = "step_approved"
    STEP_REJECTED = "step_rejected"
    REVIEW_STARTED = "review_started"
    REVIEW_CLEARED = "review_cleared"
    RECEIPT_RECORDED = "receipt_recorded"
    REQUISITION_CLOSED = "requisition_closed"
    CHAIN_REPAIRED = "chain_repaired"


class RequisitionAuditEvent(Base):
    """
    History event with hash chain for tamper evidence.

    Guarantees:
        - prev_hash is None only for the first event of a requisition.
        - Rows are never updated or deleted.
    """

    __tablename__ = "requisition_audit_events"

    __table_args__ = (
        UniqueConstraint("requisition_code", "seq", name="uq_audit_requisition_seq"),
        Index("idx_audit_action", "action"),
        Index("idx_audit_occurred", "occurred_at"),
    )

    requisition_code: Mapped[str] = mapped_column(String(64), nullable=False)
    seq: Mapped[int] = mapped_column(BigInteger, nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    actor_id: Mapped[str] = mapped_column(String(64), nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return f"<RequisitionAuditEvent {self.action} on {self.requisition_code}#{self.seq}>"

    @property
    def is_genesis(self) -> bool:
        return self.prev_hash is None


@event.listens_for(RequisitionAuditEvent, "before_update")
def prevent_audit_update(mapper, connection, target):
    """Prevent updates to history events."""
    raise ImmutabilityViolationError(
        entity_type="RequisitionAuditEvent",
        entity_id=str(target.id),
        reason="History events are append-only -- cannot modify",
    )


@event.listens_for(RequisitionAuditEvent, "before_delete")
def prevent_audit_delete(mapper, connection, target):
    """Prevent deletion of history events."""
    raise ImmutabilityViolationError(
        entity_type="RequisitionAuditEvent",
        entity_id=str(target.id),
        reason="History events are append-only -- cannot delete",
    )
