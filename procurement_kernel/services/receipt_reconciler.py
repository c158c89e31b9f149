"""
ReceiptReconciler -- accumulates deliveries and derives closure.

Responsibility:
    Append receipt events against line items, keep each item's cached
    cumulative quantity and reception status in step with its events, and
    close the requisition once every item is fully received and the
    approval chain is complete.

Architecture position:
    Kernel > Services -- imperative shell around the pure
    ``procurement_engines.fulfillment`` evaluation.  Uses the approval
    state machine for requisition locking and status derivation.

Invariants enforced:
    - Receipt quantities are finite, > 0 and no finer than the stored
      scale; events are append-only.
    - Cumulative received quantity = SUM(events); never negative, may
      exceed the requested quantity (over-delivery is recorded).
    - Receipts are accepted only once the approval chain is complete.
    - Closure authority is the per-item ratio rule (>= 1).  Zero line
      items is vacuously fully received.
    - A requisition without line items closes as soon as its chain is
      complete (``close_if_empty``).
    - ``recompute_fulfillment`` is idempotent.
    - Every receipt runs the recomputation in the same transaction.

Failure modes:
    - InvalidQuantityError: non-numeric, non-finite, non-positive or too
      many decimal places.
    - LineItemNotFoundError: unknown item, or item of another requisition
      in a batch.
    - RequisitionNotReceivableError: approval chain not complete.
"""

from __future__ import annotations

from collections.abc import Sequence
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from procurement_engines.approval_state import chain_complete
from procurement_engines.fulfillment import (
    ItemQuantities,
    evaluate_fulfillment,
    quantity_violation,
    reception_status,
    to_quantity,
)
from procurement_kernel.domain.clock import Clock, SystemClock
from procurement_kernel.domain.requisition import (
    RECEIVABLE_STATUSES,
    FulfillmentSummary,
    ReceiptEntry,
    RequisitionStatus,
)
from procurement_kernel.exceptions import (
    InvalidQuantityError,
    LineItemNotFoundError,
    RequisitionNotReceivableError,
)
from procurement_kernel.logging_config import get_logger
from procurement_kernel.models.audit_event import AuditAction
from procurement_kernel.models.receipt import ReceiptEventModel
from procurement_kernel.models.requisition import LineItemModel, RequisitionModel
from procurement_kernel.services.approval_state_machine import ApprovalStateMachine
from procurement_kernel.services.auditor_service import AuditorService

logger = get_logger("services.receipt_reconciler")


class ReceiptReconciler:
    """
    Receipt recording and fulfillment recomputation.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        state_machine: ApprovalStateMachine | None = None,
        auditor: AuditorService | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._auditor = auditor or AuditorService(session, self._clock)
        self._state_machine = state_machine or ApprovalStateMachine(
            session, self._clock, self._auditor,
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _validated_quantity(quantity: Any) -> Decimal:
        reason = quantity_violation(quantity)
        if reason is not None:
            raise InvalidQuantityError(quantity, reason)
        return to_quantity(quantity)

    def _requisition_code_for_item(self, line_item_id: UUID) -> str:
        code = self._session.execute(
            select(RequisitionModel.code)
            .join(LineItemModel, LineItemModel.requisition_id == RequisitionModel.id)
            .where(LineItemModel.id == line_item_id)
        ).scalar_one_or_none()
        if code is None:
            raise LineItemNotFoundError(str(line_item_id))
        return code

    def _load_items(self, requisition_id: UUID) -> list[LineItemModel]:
        return list(
            self._session.execute(
                select(LineItemModel)
                .where(LineItemModel.requisition_id == requisition_id)
                .order_by(LineItemModel.line_number)
                .execution_options(populate_existing=True)
            ).scalars().all()
        )

    def _received_total(self, line_item_id: UUID) -> Decimal:
        quantities = self._session.execute(
            select(ReceiptEventModel.quantity)
            .where(ReceiptEventModel.line_item_id == line_item_id)
        ).scalars().all()
        return sum((Decimal(q) for q in quantities), Decimal("0"))

    def _ensure_receivable(self, requisition: RequisitionModel) -> None:
        status = RequisitionStatus(requisition.status)
        if status not in RECEIVABLE_STATUSES:
            raise RequisitionNotReceivableError(requisition.code, status.value)

    def _append(
        self,
        requisition: RequisitionModel,
        item: LineItemModel,
        quantity: Decimal,
        recorder_id: str,
        source_document: str | None,
    ) -> Decimal:
        event = ReceiptEventModel(
            line_item_id=item.id,
            requisition_id=requisition.id,
            quantity=quantity,
            recorded_by=recorder_id,
            recorded_at=self._clock.now(),
            source_document=source_document,
        )
        self._session.add(event)
        self._session.flush()

        total = self._received_total(item.id)
        item.received_quantity = total
        item.reception_status = reception_status(item.quantity, total).value
        self._session.flush()

        self._auditor.record(
            requisition.code,
            AuditAction.RECEIPT_RECORDED,
            recorder_id,
            {
                "line_item_id": item.id,
                "line_number": item.line_number,
                "quantity": quantity,
                "cumulative": total,
                "source_document": source_document,
            },
        )
        logger.info(
            "receipt_recorded",
            extra={
                "requisition_code": requisition.code,
                "line_item_id": str(item.id),
                "quantity": quantity,
                "cumulative": total,
                "reception_status": item.reception_status,
            },
        )
        return total

    # =========================================================================
    # Operations
    # =========================================================================

    def record_receipt(
        self,
        line_item_id: UUID,
        quantity: Any,
        recorder_id: str,
        source_document: str | None = None,
    ) -> Decimal:
        """Append one receipt and recompute fulfillment; returns the new cumulative total."""
        amount = self._validated_quantity(quantity)
        code = self._requisition_code_for_item(line_item_id)

        requisition = self._state_machine.lock_requisition(code)
        self._ensure_receivable(requisition)
        item = next(i for i in self._load_items(requisition.id) if i.id == line_item_id)

        total = self._append(requisition, item, amount, recorder_id, source_document)
        self._recompute(requisition, recorder_id)
        return total

    def record_receipts(
        self,
        code: str,
        entries: Sequence[ReceiptEntry],
        recorder_id: str,
    ) -> dict[UUID, Decimal]:
        """Record a batch reception for one requisition in one transaction.

        Returns the cumulative total of every touched line item.
        """
        amounts = [self._validated_quantity(entry.quantity) for entry in entries]

        requisition = self._state_machine.lock_requisition(code)
        self._ensure_receivable(requisition)
        if not entries:
            return {}
        items = {item.id: item for item in self._load_items(requisition.id)}
        for entry in entries:
            if entry.line_item_id not in items:
                raise LineItemNotFoundError(str(entry.line_item_id), code)

        totals: dict[UUID, Decimal] = {}
        for entry, amount in zip(entries, amounts):
            totals[entry.line_item_id] = self._append(
                requisition,
                items[entry.line_item_id],
                amount,
                recorder_id,
                entry.source_document,
            )

        self._recompute(requisition, recorder_id)
        logger.info(
            "receipt_batch_recorded",
            extra={"requisition_code": code, "entry_count": len(entries)},
        )
        return totals

    def recompute_fulfillment(self, code: str, actor_id: str = "system") -> FulfillmentSummary:
        """Idempotent recomputation of reception state and closure."""
        requisition = self._state_machine.lock_requisition(code)
        return self._recompute(requisition, actor_id)

    def close_if_empty(self, code: str, actor_id: str) -> FulfillmentSummary | None:
        """Closure check for a requisition without line items.

        Run after submission and after a decision completes the chain, so a
        vacuously received requisition closes without an explicit recompute.
        Returns None and changes nothing when the requisition has items.
        """
        requisition = self._state_machine.lock_requisition(code)
        if self._load_items(requisition.id):
            return None
        return self._recompute(requisition, actor_id)

    def _recompute(self, requisition: RequisitionModel, actor_id: str) -> FulfillmentSummary:
        items = self._load_items(requisition.id)
        for item in items:
            total = self._received_total(item.id)
            derived = reception_status(item.quantity, total).value
            if item.received_quantity != total or item.reception_status != derived:
                item.received_quantity = total
                item.reception_status = derived

        evaluation = evaluate_fulfillment([
            ItemQuantities(
                line_item_id=item.id,
                requested=item.quantity,
                received=item.received_quantity,
            )
            for item in items
        ])

        steps = self._state_machine.load_steps(requisition.id)
        approved = chain_complete([step.to_dto() for step in steps])

        if (
            evaluation.fully_received
            and approved
            and requisition.closed_at is None
            and requisition.status != RequisitionStatus.REJECTED.value
        ):
            requisition.closed_at = self._clock.now()
            self._auditor.record(
                requisition.code,
                AuditAction.REQUISITION_CLOSED,
                actor_id,
                {
                    "item_count": len(items),
                    "aggregate_ratio": evaluation.aggregate_ratio,
                },
            )
            logger.info(
                "requisition_closed",
                extra={
                    "requisition_code": requisition.code,
                    "item_count": len(items),
                    "aggregate_ratio": evaluation.aggregate_ratio,
                },
            )

        status = self._state_machine.refresh_status(requisition, steps)
        return FulfillmentSummary(
            requisition_code=requisition.code,
            status=status,
            fully_received=evaluation.fully_received,
            aggregate_ratio=evaluation.aggregate_ratio,
            items=evaluation.items,
            closed_at=requisition.closed_at,
        )
