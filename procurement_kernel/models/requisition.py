"""
Module: procurement_kernel.models.requisition
Responsibility: ORM persistence for requisitions and their line items.

Architecture position: Kernel > Models.  May import from db/ and domain/ only.

Invariants enforced:
    - Requisition codes are unique.
    - Aggregate status is one of the six derived statuses (check constraint);
      the cached value is rewritten by services on every write.
    - Line item content (description, quantities, price, priority) is
      immutable after submission.  Only the cached reception fields change.
    - Requisitions and line items are never deleted.

Failure modes:
    - IntegrityError on duplicate code or duplicate line number.
    - ImmutabilityViolationError on content UPDATE or any DELETE.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import Mapped, attributes, mapped_column, relationship

from procurement_kernel.db.base import Base, UTCDateTime, UUIDString
from procurement_kernel.db.types import ActorId, DisplayName, Price, Quantity, ShortCode
from procurement_kernel.domain.requisition import (
    LineItemRecord,
    Priority,
    ReceptionStatus,
    RequisitionRecord,
    RequisitionStatus,
)
from procurement_kernel.exceptions import ImmutabilityViolationError


class RequisitionModel(Base):
    """Persistent requisition header.

    Contract:
        Mutated only by the approval state machine (status, review flag,
        rejection reason) and the receipt reconciler (status, closed_at).

    Guarantees:
        - code is unique and write-once.
        - submitter_id, submitter_unit_id and submitted_at are write-once.
    """

    __tablename__ = "requisitions"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending_approval', 'in_review', "
            "'approved_awaiting_fulfillment', 'rejected', 'fulfilling', 'closed')",
            name="ck_requisitions_valid_status",
        ),
        Index("ix_requisitions_submitter", "submitter_id", "submitted_at"),
        Index("ix_requisitions_submitted", "submitted_at", "code"),
    )

    code: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    code_prefix: Mapped[ShortCode] = mapped_column(nullable=False)
    submitter_id: Mapped[ActorId] = mapped_column(nullable=False)
    submitter_name: Mapped[DisplayName] = mapped_column(nullable=False, default="")
    submitter_unit_id: Mapped[ActorId] = mapped_column(nullable=False)
    submitted_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    status: Mapped[ShortCode] = mapped_column(
        nullable=False, default=RequisitionStatus.PENDING_APPROVAL.value,
    )
    in_review: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    urgent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    supplier: Mapped[str | None] = mapped_column(String(200), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    line_items: Mapped[list["LineItemModel"]] = relationship(
        "LineItemModel",
        back_populates="requisition",
        order_by="LineItemModel.line_number",
        lazy="selectin",
    )

    steps: Mapped[list["ApprovalStepModel"]] = relationship(  # noqa: F821
        "ApprovalStepModel",
        back_populates="requisition",
        order_by="ApprovalStepModel.step_order",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Requisition {self.code} status={self.status}>"

    @property
    def status_enum(self) -> RequisitionStatus:
        return RequisitionStatus(self.status)

    def to_dto(self) -> RequisitionRecord:
        """Convert ORM model (with items and chain) to frozen domain DTO."""
        return RequisitionRecord(
            requisition_id=self.id,
            code=self.code,
            submitter_id=self.submitter_id,
            submitter_name=self.submitter_name,
            submitter_unit_id=self.submitter_unit_id,
            submitted_at=self.submitted_at,
            status=RequisitionStatus(self.status),
            in_review=self.in_review,
            urgent=self.urgent,
            rejection_reason=self.rejection_reason,
            closed_at=self.closed_at,
            supplier=self.supplier,
            notes=self.notes,
            line_items=tuple(item.to_dto() for item in self.line_items),
            steps=tuple(step.to_dto() for step in self.steps),
        )


class LineItemModel(Base):
    """Persistent line item.

    Contract:
        Content columns are write-once.  received_quantity and
        reception_status are caches re-derived from receipt events.
    """

    __tablename__ = "requisition_line_items"

    __table_args__ = (
        UniqueConstraint(
            "requisition_id", "line_number",
            name="uq_line_items_requisition_line",
        ),
        CheckConstraint("quantity > 0", name="ck_line_items_positive_quantity"),
        CheckConstraint("unit_price >= 0", name="ck_line_items_nonnegative_price"),
        CheckConstraint(
            "received_quantity >= 0", name="ck_line_items_nonnegative_received",
        ),
        CheckConstraint(
            "priority IN ('normal', 'high', 'urgent')",
            name="ck_line_items_valid_priority",
        ),
        CheckConstraint(
            "reception_status IN ('pending', 'partial', 'complete', 'over_delivered')",
            name="ck_line_items_valid_reception_status",
        ),
        Index("ix_line_items_description", "description"),
    )

    requisition_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("requisitions.id"), nullable=False,
    )
    line_number: Mapped[int] = mapped_column(nullable=False)
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    specifications: Mapped[str | None] = mapped_column(Text, nullable=True)
    quantity: Mapped[Quantity] = mapped_column(nullable=False)
    unit_price: Mapped[Price] = mapped_column(nullable=False)
    priority: Mapped[ShortCode] = mapped_column(
        nullable=False, default=Priority.NORMAL.value,
    )
    image_ref: Mapped[str | None] = mapped_column(String(500), nullable=True)
    received_quantity: Mapped[Quantity] = mapped_column(
        nullable=False, default=Decimal("0"),
    )
    reception_status: Mapped[ShortCode] = mapped_column(
        nullable=False, default=ReceptionStatus.PENDING.value,
    )

    requisition: Mapped[RequisitionModel] = relationship(
        "RequisitionModel", back_populates="line_items",
    )

    def __repr__(self) -> str:
        return f"<LineItem {self.line_number} of {self.requisition_id} qty={self.quantity}>"

    def to_dto(self) -> LineItemRecord:
        return LineItemRecord(
            line_item_id=self.id,
            line_number=self.line_number,
            description=self.description,
            specifications=self.specifications,
            quantity=self.quantity,
            unit_price=self.unit_price,
            priority=Priority(self.priority),
            image_ref=self.image_ref,
            received_quantity=self.received_quantity,
            reception_status=ReceptionStatus(self.reception_status),
        )


# =============================================================================
# ORM-Level Immutability
# =============================================================================

_REQUISITION_WRITE_ONCE = ("code", "code_prefix", "submitter_id", "submitter_unit_id", "submitted_at")

_LINE_ITEM_WRITE_ONCE = (
    "requisition_id",
    "line_number",
    "description",
    "specifications",
    "quantity",
    "unit_price",
    "priority",
    "image_ref",
)


def _changed(target, names: tuple[str, ...]) -> list[str]:
    return [
        name for name in names
        if attributes.get_history(target, name).has_changes()
    ]


@event.listens_for(RequisitionModel, "before_update")
def prevent_requisition_identity_update(mapper, connection, target):
    """Requisition identity columns are write-once."""
    changed = _changed(target, _REQUISITION_WRITE_ONCE)
    if changed:
        raise ImmutabilityViolationError(
            entity_type="Requisition",
            entity_id=str(target.code),
            reason=f"Write-once columns cannot change: {', '.join(changed)}",
        )


@event.listens_for(RequisitionModel, "before_delete")
def prevent_requisition_delete(mapper, connection, target):
    """Requisitions are transitioned, never deleted."""
    raise ImmutabilityViolationError(
        entity_type="Requisition",
        entity_id=str(target.code),
        reason="Requisitions cannot be deleted",
    )


@event.listens_for(LineItemModel, "before_update")
def prevent_line_item_content_update(mapper, connection, target):
    """Line item content is immutable after submission."""
    changed = _changed(target, _LINE_ITEM_WRITE_ONCE)
    if changed:
        raise ImmutabilityViolationError(
            entity_type="LineItem",
            entity_id=str(target.id),
            reason=f"Line item content is immutable: {', '.join(changed)}",
        )


@event.listens_for(LineItemModel, "before_delete")
def prevent_line_item_delete(mapper, connection, target):
    """Line items are never deleted."""
    raise ImmutabilityViolationError(
        entity_type="LineItem",
        entity_id=str(target.id),
        reason="Line items cannot be deleted",
    )
