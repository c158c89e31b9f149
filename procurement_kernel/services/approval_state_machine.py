"""
ApprovalStateMachine -- advances a requisition through its approval chain.

Responsibility:
    Owns every write to approval steps after the chain is built: approval
    and rejection decisions, the manual review flag, and the administrative
    chain repair.  Re-derives and caches the aggregate requisition status
    on every write.

Architecture position:
    Kernel > Services -- imperative shell around the pure
    ``procurement_engines.approval_state`` derivations.  Called by the
    lifecycle coordinator and by the receipt reconciler (for locking and
    status refresh).

Invariants enforced:
    - Per-requisition linearizability: every mutation starts by locking the
      requisition row (``SELECT ... FOR UPDATE``) and reloads steps with
      ``populate_existing``.
    - Strict sequential gating: only the assignee of the actionable step
      may decide.
    - Exactly one winner per step: the decision is an atomic conditional
      UPDATE (``WHERE decision_status = 'pending'``); a zero rowcount is
      AlreadyDecidedError, never an application-level retry.
    - Terminal requisitions (rejected, closed) are never mutated by a
      decision.
    - Aggregate status is always ``derive_status`` over the current rows.

Failure modes:
    - InvalidDecisionError: decision outside approve/reject.
    - RequisitionNotFoundError: unknown code.
    - RequisitionFinalizedError: decision on a terminal requisition.
    - ActionableStepNotFoundError: approver holds no step.
    - NotYourTurnError: approver's step pending but not actionable.
    - AlreadyDecidedError: approver's step no longer pending.
    - ReviewNotAllowedError: review toggle by someone other than the
      actionable approver.

Audit relevance:
    Every decision, review toggle and repair appends a history event in
    the same transaction as the write.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from uuid import UUID

from sqlalchemy import exists, select, update
from sqlalchemy.orm import Session

from procurement_engines.approval_state import (
    DecisionCheck,
    check_decision,
    current_actionable_step,
    derive_status,
    is_terminal,
    plan_renumbering,
    step_for_approver,
)
from procurement_kernel.domain.clock import Clock, SystemClock
from procurement_kernel.domain.requisition import (
    ApprovalStepRecord,
    ChainRepairResult,
    Decision,
    DecisionOutcome,
    RequisitionStatus,
    RequisitionSummary,
    StepStatus,
)
from procurement_kernel.exceptions import (
    ActionableStepNotFoundError,
    AlreadyDecidedError,
    InvalidDecisionError,
    NotYourTurnError,
    RequisitionFinalizedError,
    RequisitionNotFoundError,
    ReviewNotAllowedError,
)
from procurement_kernel.logging_config import get_logger
from procurement_kernel.models.approval import CHAIN_REPAIR_FLAG, ApprovalStepModel
from procurement_kernel.models.audit_event import AuditAction
from procurement_kernel.models.receipt import ReceiptEventModel
from procurement_kernel.models.requisition import RequisitionModel
from procurement_kernel.selectors.requisition_selector import RequisitionSelector
from procurement_kernel.services.approval_chain_builder import (
    DEFAULT_SELF_AUTHORIZATION_COMMENT,
)
from procurement_kernel.services.auditor_service import AuditorService

logger = get_logger("services.approval_state_machine")


class ApprovalStateMachine:
    """
    Decision, review and repair operations over one requisition's chain.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
        - Does NOT authenticate callers; ``approver_id`` is trusted.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        auditor: AuditorService | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._auditor = auditor or AuditorService(session, self._clock)

    # =========================================================================
    # Row access
    # =========================================================================

    def lock_requisition(self, code: str) -> RequisitionModel:
        """Lock and reload the requisition row.

        Raises:
            RequisitionNotFoundError: If no requisition has this code.
        """
        requisition = self._session.execute(
            select(RequisitionModel)
            .where(RequisitionModel.code == code)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if requisition is None:
            raise RequisitionNotFoundError(code)
        return requisition

    def load_steps(self, requisition_id: UUID) -> list[ApprovalStepModel]:
        return list(
            self._session.execute(
                select(ApprovalStepModel)
                .where(ApprovalStepModel.requisition_id == requisition_id)
                .order_by(
                    ApprovalStepModel.step_order,
                    ApprovalStepModel.created_at,
                    ApprovalStepModel.id,
                )
                .execution_options(populate_existing=True)
            ).scalars().all()
        )

    def has_receipts(self, requisition_id: UUID) -> bool:
        return bool(
            self._session.execute(
                select(exists().where(ReceiptEventModel.requisition_id == requisition_id))
            ).scalar()
        )

    def refresh_status(
        self,
        requisition: RequisitionModel,
        steps: Sequence[ApprovalStepModel] | None = None,
    ) -> RequisitionStatus:
        """Re-derive the aggregate status and write it to the cached column."""
        if steps is None:
            steps = self.load_steps(requisition.id)
        status = derive_status(
            [step.to_dto() for step in steps],
            in_review=requisition.in_review,
            closed=requisition.closed_at is not None,
            has_receipts=self.has_receipts(requisition.id),
        )
        if requisition.status != status.value:
            logger.info(
                "requisition_status_changed",
                extra={
                    "requisition_code": requisition.code,
                    "from_status": requisition.status,
                    "to_status": status.value,
                },
            )
            requisition.status = status.value
        self._session.flush()
        return status

    # =========================================================================
    # Queries
    # =========================================================================

    def current_actionable_step(self, code: str) -> ApprovalStepRecord | None:
        """The step currently eligible for a decision, computed from the rows."""
        chain = RequisitionSelector(self._session).get_chain(code)
        if chain is None:
            raise RequisitionNotFoundError(code)
        return current_actionable_step(chain)

    def list_actionable(self, approver_id: str) -> list[RequisitionSummary]:
        return RequisitionSelector(self._session).list_actionable(approver_id)

    # =========================================================================
    # Decisions
    # =========================================================================

    def apply_decision(
        self,
        requisition_code: str,
        step_id: UUID,
        approver_id: str,
        step_status: StepStatus,
        comment: str | None,
        decided_at: datetime,
    ) -> None:
        """Compare-and-swap a pending step to its decided status.

        Raises:
            AlreadyDecidedError: If the step was no longer pending.
        """
        result = self._session.execute(
            update(ApprovalStepModel)
            .where(
                ApprovalStepModel.id == step_id,
                ApprovalStepModel.decision_status == StepStatus.PENDING.value,
            )
            .values(
                decision_status=step_status.value,
                decided_at=decided_at,
                decided_by=approver_id,
                comment=comment,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            current = self._session.execute(
                select(ApprovalStepModel.step_order, ApprovalStepModel.decision_status)
                .where(ApprovalStepModel.id == step_id)
            ).one_or_none()
            logger.warning(
                "approval_decision_lost_race",
                extra={"requisition_code": requisition_code, "approver_id": approver_id},
            )
            raise AlreadyDecidedError(
                requisition_code,
                approver_id,
                current[0] if current else None,
                current[1] if current else None,
            )

    def decide(
        self,
        code: str,
        approver_id: str,
        decision: Decision,
        comment: str | None = None,
    ) -> DecisionOutcome:
        """Record an approval or rejection on the actionable step."""
        try:
            decision = Decision(decision)
        except ValueError:
            raise InvalidDecisionError(decision) from None
        requisition = self.lock_requisition(code)
        status = RequisitionStatus(requisition.status)
        if is_terminal(status):
            raise RequisitionFinalizedError(code, approver_id, status.value)

        steps = self.load_steps(requisition.id)
        records = [step.to_dto() for step in steps]
        check = check_decision(records, approver_id)

        if check == DecisionCheck.NO_STEP:
            raise ActionableStepNotFoundError(code, approver_id)
        if check == DecisionCheck.ALREADY_DECIDED:
            own = step_for_approver(records, approver_id)
            raise AlreadyDecidedError(code, approver_id, own.order, own.decision_status.value)
        if check == DecisionCheck.NOT_YOUR_TURN:
            actionable = current_actionable_step(records)
            raise NotYourTurnError(
                code, approver_id, actionable.approver_id if actionable else None,
            )

        own = step_for_approver(records, approver_id)
        step_status = StepStatus.APPROVED if decision == Decision.APPROVE else StepStatus.REJECTED
        self.apply_decision(code, own.step_id, approver_id, step_status, comment, self._clock.now())

        steps = self.load_steps(requisition.id)
        requisition.in_review = False
        if step_status == StepStatus.REJECTED:
            requisition.rejection_reason = comment
        new_status = self.refresh_status(requisition, steps)

        self._auditor.record(
            code,
            AuditAction.STEP_APPROVED if step_status == StepStatus.APPROVED else AuditAction.STEP_REJECTED,
            approver_id,
            {"step_order": own.order, "comment": comment, "status": new_status.value},
        )

        next_step = current_actionable_step([step.to_dto() for step in steps])
        logger.info(
            "approval_decision_recorded",
            extra={
                "requisition_code": code,
                "approver_id": approver_id,
                "step_order": own.order,
                "decision": decision.value,
                "status": new_status.value,
            },
        )
        return DecisionOutcome(
            requisition_code=code,
            step_order=own.order,
            decision_status=step_status,
            status=new_status,
            next_approver_id=next_step.approver_id if next_step else None,
        )

    # =========================================================================
    # Review flag
    # =========================================================================

    def set_review_flag(self, code: str, approver_id: str, in_review: bool) -> RequisitionStatus:
        """Toggle the manual ``in_review`` substate; actionability is unchanged."""
        requisition = self.lock_requisition(code)
        steps = self.load_steps(requisition.id)
        actionable = current_actionable_step([step.to_dto() for step in steps])
        if actionable is None or actionable.approver_id != approver_id:
            raise ReviewNotAllowedError(code, approver_id, requisition.status)

        if requisition.in_review == in_review:
            return RequisitionStatus(requisition.status)

        requisition.in_review = in_review
        status = self.refresh_status(requisition, steps)
        self._auditor.record(
            code,
            AuditAction.REVIEW_STARTED if in_review else AuditAction.REVIEW_CLEARED,
            approver_id,
            {"step_order": actionable.order},
        )
        logger.info(
            "review_flag_changed",
            extra={"requisition_code": code, "approver_id": approver_id, "in_review": in_review},
        )
        return status

    # =========================================================================
    # Administrative repair
    # =========================================================================

    def repair_chain(
        self,
        code: str,
        actor_id: str,
        self_authorization_comment: str = DEFAULT_SELF_AUTHORIZATION_COMMENT,
    ) -> ChainRepairResult:
        """Restore chain invariants without touching assignments or decisions.

        Closes gaps in step orders (relative order kept, ties by creation
        order), applies a missing self-authorization on a non-terminal
        requisition, and re-derives the cached status.
        """
        requisition = self.lock_requisition(code)
        previous_status = RequisitionStatus(requisition.status)
        steps = self.load_steps(requisition.id)

        plan = plan_renumbering([(step.id, step.step_order) for step in steps])
        if plan:
            # Two passes so no intermediate state collides on (requisition, order).
            offset = max(step.step_order for step in steps) + 1
            self._session.info[CHAIN_REPAIR_FLAG] = True
            try:
                for step in steps:
                    if step.id in plan:
                        step.step_order = step.step_order + offset
                self._session.flush()
                for step in steps:
                    if step.id in plan:
                        step.step_order = plan[step.id]
                self._session.flush()
            finally:
                self._session.info.pop(CHAIN_REPAIR_FLAG, None)

        self_authorized = False
        if not is_terminal(previous_status):
            own = next(
                (
                    step for step in steps
                    if step.approver_id == requisition.submitter_id
                    and step.decision_status == StepStatus.PENDING.value
                ),
                None,
            )
            if own is not None:
                own.decision_status = StepStatus.APPROVED.value
                own.decided_at = self._clock.now()
                own.decided_by = requisition.submitter_id
                own.comment = self_authorization_comment
                self._session.flush()
                self_authorized = True

        status = self.refresh_status(requisition, steps)
        self._auditor.record(
            code,
            AuditAction.CHAIN_REPAIRED,
            actor_id,
            {
                "renumbered": len(plan),
                "self_authorized": self_authorized,
                "previous_status": previous_status.value,
                "status": status.value,
            },
        )
        logger.warning(
            "approval_chain_repaired",
            extra={
                "requisition_code": code,
                "actor_id": actor_id,
                "renumbered": len(plan),
                "self_authorized": self_authorized,
                "previous_status": previous_status.value,
                "status": status.value,
            },
        )
        return ChainRepairResult(
            requisition_code=code,
            renumbered=len(plan),
            self_authorized=self_authorized,
            previous_status=previous_status,
            status=status,
        )
