"""
Module: procurement_kernel.selectors.requisition_selector
Responsibility: Read-only queries over requisitions: full snapshots, status,
    chain, receipts, the approver's actionable queue, and the duplicate-item
    lookup used at submission.
Architecture position: Kernel > Selectors.  May import from models/, domain/
    and selectors/base.py.  MUST NOT import from services/ or outer layers.

Invariants enforced:
    - Read-only: no mutations performed on any queried data.
    - The actionable queue is computed in SQL from step rows (pending step
      for the approver and no lower-order step that is not approved), never
      from a cached "whose turn" column.
    - Queue ordering: newest submission first, ties by code descending.

Failure modes:
    - Returns None or empty collections when nothing matches (never raises on
      absence of data).
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import and_, exists, func, select
from sqlalchemy.orm import aliased

from procurement_kernel.domain.requisition import (
    ApprovalStepRecord,
    ReceiptRecord,
    RequisitionRecord,
    RequisitionStatus,
    RequisitionSummary,
    StepStatus,
)
from procurement_kernel.models.approval import ApprovalStepModel
from procurement_kernel.models.receipt import ReceiptEventModel
from procurement_kernel.models.requisition import LineItemModel, RequisitionModel
from procurement_kernel.selectors.base import BaseSelector


class RequisitionSelector(BaseSelector[RequisitionModel]):
    """Query side of the requisition engine."""

    def _get_model(self, code: str) -> RequisitionModel | None:
        return self.session.execute(
            select(RequisitionModel).where(RequisitionModel.code == code)
        ).scalar_one_or_none()

    def get_requisition(self, code: str) -> RequisitionRecord | None:
        model = self._get_model(code)
        return model.to_dto() if model else None

    def get_status(self, code: str) -> RequisitionStatus | None:
        status = self.session.execute(
            select(RequisitionModel.status).where(RequisitionModel.code == code)
        ).scalar_one_or_none()
        return RequisitionStatus(status) if status is not None else None

    def get_chain(self, code: str) -> tuple[ApprovalStepRecord, ...] | None:
        requisition_id = self.session.execute(
            select(RequisitionModel.id).where(RequisitionModel.code == code)
        ).scalar_one_or_none()
        if requisition_id is None:
            return None
        steps = self.session.execute(
            select(ApprovalStepModel)
            .where(ApprovalStepModel.requisition_id == requisition_id)
            .order_by(ApprovalStepModel.step_order)
        ).scalars().all()
        return tuple(step.to_dto() for step in steps)

    def get_receipts(self, line_item_id: UUID) -> tuple[ReceiptRecord, ...]:
        events = self.session.execute(
            select(ReceiptEventModel)
            .where(ReceiptEventModel.line_item_id == line_item_id)
            .order_by(ReceiptEventModel.recorded_at, ReceiptEventModel.id)
        ).scalars().all()
        return tuple(event.to_dto() for event in events)

    def list_actionable(self, approver_id: str) -> list[RequisitionSummary]:
        """Requisitions whose actionable step is assigned to ``approver_id``."""
        earlier = aliased(ApprovalStepModel)
        blocked_by_earlier_step = exists().where(
            and_(
                earlier.requisition_id == ApprovalStepModel.requisition_id,
                earlier.step_order < ApprovalStepModel.step_order,
                earlier.decision_status != StepStatus.APPROVED.value,
            )
        )
        item_count = (
            select(func.count(LineItemModel.id))
            .where(LineItemModel.requisition_id == RequisitionModel.id)
            .correlate(RequisitionModel)
            .scalar_subquery()
        )

        rows = self.session.execute(
            select(RequisitionModel, ApprovalStepModel.step_order, item_count)
            .join(ApprovalStepModel, ApprovalStepModel.requisition_id == RequisitionModel.id)
            .where(
                ApprovalStepModel.approver_id == approver_id,
                ApprovalStepModel.decision_status == StepStatus.PENDING.value,
                ~blocked_by_earlier_step,
            )
            .order_by(RequisitionModel.submitted_at.desc(), RequisitionModel.code.desc())
        ).all()

        return [
            RequisitionSummary(
                code=requisition.code,
                submitter_id=requisition.submitter_id,
                submitter_unit_id=requisition.submitter_unit_id,
                submitted_at=requisition.submitted_at,
                status=RequisitionStatus(requisition.status),
                urgent=requisition.urgent,
                actionable_step_order=step_order,
                item_count=count or 0,
            )
            for requisition, step_order, count in rows
        ]

    def find_recent_items(
        self,
        submitter_id: str,
        since: datetime,
    ) -> list[tuple[str, str, str | None]]:
        """(code, description, specifications) of the submitter's recent items.

        Rejected requisitions are excluded.
        """
        rows = self.session.execute(
            select(
                RequisitionModel.code,
                LineItemModel.description,
                LineItemModel.specifications,
            )
            .join(LineItemModel, LineItemModel.requisition_id == RequisitionModel.id)
            .where(
                RequisitionModel.submitter_id == submitter_id,
                RequisitionModel.submitted_at >= since,
                RequisitionModel.status != RequisitionStatus.REJECTED.value,
            )
            .order_by(RequisitionModel.submitted_at.desc(), RequisitionModel.code.desc())
        ).all()
        return [(code, description, specifications) for code, description, specifications in rows]
