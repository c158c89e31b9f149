"""
ApprovalChainBuilder -- persists the approval chain of a new requisition.

Responsibility:
    Resolve the submitter's unit, fetch the authorized approvers from the
    directory, compute the chain (with self-authorization) through the
    pure ``procurement_engines.approval_chain`` engine, validate it, and
    insert the steps as one set.

Architecture position:
    Kernel > Services -- imperative shell around a pure engine.  Called by
    the lifecycle coordinator inside the submission unit of work.

Invariants enforced:
    - Steps are created atomically as a set; orders are 1..N.
    - No approver appears twice on a chain.
    - The submitter's own position is pre-approved and attributed to them.
    - An empty directory yields a zero-step chain (logged, not an error).

Failure modes:
    - UnitNotResolvedError: neither the requisition nor the caller names a unit.
    - InvalidChainError: the computed chain fails validation.

Audit relevance:
    Self-authorizations are recorded as ``step_self_authorized`` history
    events on the requisition.
"""

from __future__ import annotations

from sqlalchemy.orm import Session

from procurement_engines.approval_chain import build_chain, chain_violations
from procurement_kernel.domain.clock import Clock, SystemClock
from procurement_kernel.domain.requisition import (
    ApprovalStepRecord,
    ApproverDirectoryProvider,
    CallerIdentity,
    StepStatus,
)
from procurement_kernel.exceptions import InvalidChainError, UnitNotResolvedError
from procurement_kernel.logging_config import get_logger
from procurement_kernel.models.approval import ApprovalStepModel
from procurement_kernel.models.audit_event import AuditAction
from procurement_kernel.models.requisition import RequisitionModel
from procurement_kernel.services.auditor_service import AuditorService

logger = get_logger("services.approval_chain_builder")

DEFAULT_SELF_AUTHORIZATION_COMMENT = "Self-authorized by submitter at submission"


class ApprovalChainBuilder:
    """
    Builds and persists the approval chain for a requisition.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
        - Does NOT derive the requisition status; the state machine does.
    """

    def __init__(
        self,
        session: Session,
        directory: ApproverDirectoryProvider,
        clock: Clock | None = None,
        auditor: AuditorService | None = None,
        self_authorization_comment: str = DEFAULT_SELF_AUTHORIZATION_COMMENT,
    ):
        self._session = session
        self._directory = directory
        self._clock = clock or SystemClock()
        self._auditor = auditor or AuditorService(session, self._clock)
        self._self_authorization_comment = self_authorization_comment

    def build_chain(
        self,
        requisition: RequisitionModel,
        submitter: CallerIdentity,
    ) -> tuple[ApprovalStepRecord, ...]:
        """Compute, validate and insert the chain; returns the persisted steps."""
        unit_id = requisition.submitter_unit_id or submitter.unit_id
        if not unit_id:
            raise UnitNotResolvedError(submitter.identity)

        approvers = self._directory.authorized_approvers(unit_id)
        steps = build_chain(
            approvers,
            submitter.identity,
            self._clock.now(),
            self._self_authorization_comment,
        )

        violations = chain_violations(steps)
        if violations:
            logger.error(
                "approval_chain_invalid",
                extra={"requisition_code": requisition.code, "violations": violations},
            )
            raise InvalidChainError(requisition.code, violations)

        if not steps:
            logger.info(
                "approval_chain_empty",
                extra={"requisition_code": requisition.code, "unit_id": unit_id},
            )
            return ()

        models = [ApprovalStepModel.from_dto(step, requisition.id) for step in steps]
        self._session.add_all(models)
        self._session.flush()

        for model in models:
            if model.decision_status == StepStatus.APPROVED.value:
                self._auditor.record(
                    requisition.code,
                    AuditAction.STEP_SELF_AUTHORIZED,
                    submitter.identity,
                    {"step_order": model.step_order, "comment": model.comment},
                )
                logger.info(
                    "step_self_authorized",
                    extra={
                        "requisition_code": requisition.code,
                        "step_order": model.step_order,
                    },
                )

        logger.info(
            "approval_chain_built",
            extra={
                "requisition_code": requisition.code,
                "unit_id": unit_id,
                "chain_length": len(models),
                "approver_ids": [model.approver_id for model in models],
            },
        )
        return tuple(model.to_dto() for model in models)
