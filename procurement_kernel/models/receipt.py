"""
Module: procurement_kernel.models.receipt
Responsibility: ORM persistence for append-only receipt (delivery) events.

Architecture position: Kernel > Models.  May import from db/ and domain/ only.

Invariants enforced:
    - quantity > 0 (check constraint, also validated by the reconciler).
    - Append-only: no UPDATE, no DELETE.
    - The cumulative received quantity of a line item is SUM(quantity) of
      its receipt events.

Failure modes:
    - ImmutabilityViolationError on any UPDATE/DELETE attempt.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, event
from sqlalchemy.orm import Mapped, mapped_column

from procurement_kernel.db.base import Base, UTCDateTime, UUIDString
from procurement_kernel.db.types import ActorId, Quantity
from procurement_kernel.domain.requisition import ReceiptRecord
from procurement_kernel.exceptions import ImmutabilityViolationError


class ReceiptEventModel(Base):
    """One delivery against one line item.  Append-only."""

    __tablename__ = "receipt_events"

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_receipt_events_positive_quantity"),
        Index("ix_receipt_events_line_item", "line_item_id", "recorded_at"),
        Index("ix_receipt_events_requisition", "requisition_id"),
    )

    line_item_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("requisition_line_items.id"), nullable=False,
    )
    requisition_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("requisitions.id"), nullable=False,
    )
    quantity: Mapped[Quantity] = mapped_column(nullable=False)
    recorded_by: Mapped[ActorId] = mapped_column(nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    source_document: Mapped[str | None] = mapped_column(String(200), nullable=True)

    def __repr__(self) -> str:
        return f"<ReceiptEvent {self.id} item={self.line_item_id} qty={self.quantity}>"

    def to_dto(self) -> ReceiptRecord:
        return ReceiptRecord(
            receipt_id=self.id,
            line_item_id=self.line_item_id,
            quantity=self.quantity,
            recorded_by=self.recorded_by,
            recorded_at=self.recorded_at,
            source_document=self.source_document,
        )


@event.listens_for(ReceiptEventModel, "before_update")
def prevent_receipt_update(mapper, connection, target):
    """Prevent updates to receipt events."""
    raise ImmutabilityViolationError(
        entity_type="ReceiptEvent",
        entity_id=str(target.id),
        reason="Receipt events are append-only -- cannot modify",
    )


@event.listens_for(ReceiptEventModel, "before_delete")
def prevent_receipt_delete(mapper, connection, target):
    """Prevent deletion of receipt events."""
    raise ImmutabilityViolationError(
        entity_type="ReceiptEvent",
        entity_id=str(target.id),
        reason="Receipt events are append-only -- cannot delete",
    )
