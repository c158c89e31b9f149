"""
procurement_services.lifecycle_coordinator -- Unit-of-work boundary for the engine.

Responsibility:
    Exposes the mutation and query surface of the approval-and-fulfillment
    engine.  Resolves the caller through the AuthProvider, opens one
    session per logical operation, wires the kernel services onto it, and
    commits or rolls back as a whole.

Architecture position:
    Services -- the only layer that calls ``session.commit()``.  Kernel
    services below it never manage transaction boundaries.

Invariants enforced:
    - One transaction per logical operation: submission (requisition,
      items, chain, status, history) is all-or-nothing, as is every
      decision, review toggle, receipt, batch reception and repair.
    - Kernel errors roll back and propagate unchanged.
    - Store errors roll back and propagate as StoreFailureError (chained);
      the coordinator never retries.
    - A requisition without line items closes in the same transaction
      that completes its chain (submission or final approval).
    - Every operation runs inside a LogContext carrying a fresh
      correlation id, the caller and the requisition code when known.

Failure modes:
    - UnauthenticatedError: the token does not resolve to a caller.
    - AdministratorRequiredError: admin-only operation by a non-admin.
    - InvalidDraftError / DuplicateLineItemError: rejected submission.
    - Any error raised by the kernel services, unchanged.
    - StoreFailureError: database failure during the unit of work.

Usage:
    coordinator = RequisitionLifecycleCoordinator(
        session_factory=get_session_factory(),
        auth_provider=StaticAuthProvider({...}),
    )
    code = coordinator.submit(token, RequisitionDraft(line_items=(...,)))
    coordinator.decide(approver_token, code, Decision.APPROVE)
"""

from __future__ import annotations

import time
from collections.abc import Callable, Generator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import timedelta
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from procurement_config.schema import EngineSettings
from procurement_engines.approval_chain import (
    derive_code_prefix,
    format_requisition_code,
    normalize_prefix,
)
from procurement_engines.requisition_draft import (
    as_decimal,
    draft_violations,
    duplicate_key,
    is_urgent,
    item_key,
)
from procurement_kernel.domain.clock import Clock, SystemClock
from procurement_kernel.domain.requisition import (
    ApprovalStepRecord,
    ApproverDirectoryProvider,
    AuthProvider,
    CallerIdentity,
    ChainRepairResult,
    Decision,
    DecisionOutcome,
    FulfillmentSummary,
    HistoryEntry,
    Priority,
    ReceiptEntry,
    RequisitionDraft,
    RequisitionRecord,
    RequisitionStatus,
    RequisitionSummary,
)
from procurement_kernel.exceptions import (
    AdministratorRequiredError,
    DuplicateLineItemError,
    InvalidDraftError,
    ProcurementKernelError,
    RequisitionNotFoundError,
    StoreFailureError,
    UnauthenticatedError,
    UnitNotResolvedError,
)
from procurement_kernel.logging_config import LogContext, get_logger
from procurement_kernel.models.audit_event import AuditAction
from procurement_kernel.models.requisition import LineItemModel, RequisitionModel
from procurement_kernel.selectors.requisition_selector import RequisitionSelector
from procurement_kernel.services.approval_chain_builder import ApprovalChainBuilder
from procurement_kernel.services.approval_state_machine import ApprovalStateMachine
from procurement_kernel.services.approver_directory import SqlApproverDirectory
from procurement_kernel.services.auditor_service import AuditorService
from procurement_kernel.services.receipt_reconciler import ReceiptReconciler
from procurement_kernel.services.sequence_service import (
    SequenceService,
    requisition_code_sequence,
)

logger = get_logger("services.lifecycle_coordinator")

DirectoryFactory = Callable[[Session], ApproverDirectoryProvider]


@dataclass
class _UnitServices:
    """Kernel services bound to one unit-of-work session."""

    session: Session
    auditor: AuditorService
    state_machine: ApprovalStateMachine
    chain_builder: ApprovalChainBuilder
    reconciler: ReceiptReconciler
    selector: RequisitionSelector
    sequences: SequenceService


class RequisitionLifecycleCoordinator:
    """Mutation and query API over requisitions.

    Contract:
        Every public method opens its own session from ``session_factory``
        and closes it before returning.  Mutations resolve ``token``
        first; queries take no token.

    Non-goals:
        - Does NOT cache anything between calls.
        - Does NOT retry on store failure or on a lost decision race.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session] | Callable[[], Session],
        auth_provider: AuthProvider,
        directory_factory: DirectoryFactory = SqlApproverDirectory,
        settings: EngineSettings | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._auth = auth_provider
        self._directory_factory = directory_factory
        self._settings = settings or EngineSettings()
        self._clock = clock or SystemClock()

    # =========================================================================
    # Plumbing
    # =========================================================================

    def _resolve(self, token: str) -> CallerIdentity:
        caller = self._auth.resolve(token)
        if caller is None:
            logger.warning("caller_unauthenticated")
            raise UnauthenticatedError()
        return caller

    def _require_administrator(self, caller: CallerIdentity, operation: str) -> None:
        if not caller.is_administrator:
            logger.warning(
                "administrator_required",
                extra={"operation": operation, "caller_id": caller.identity},
            )
            raise AdministratorRequiredError(operation, caller.identity)

    def _services(self, session: Session) -> _UnitServices:
        auditor = AuditorService(session, self._clock)
        state_machine = ApprovalStateMachine(session, self._clock, auditor)
        return _UnitServices(
            session=session,
            auditor=auditor,
            state_machine=state_machine,
            chain_builder=ApprovalChainBuilder(
                session,
                self._directory_factory(session),
                self._clock,
                auditor,
                self._settings.self_authorization_comment,
            ),
            reconciler=ReceiptReconciler(session, self._clock, state_machine, auditor),
            selector=RequisitionSelector(session),
            sequences=SequenceService(session),
        )

    @contextmanager
    def _unit_of_work(
        self,
        operation: str,
        actor_id: str | None = None,
        requisition_code: str | None = None,
        read_only: bool = False,
    ) -> Generator[_UnitServices, None, None]:
        """One session, one transaction, one log context."""
        session = self._session_factory()
        with LogContext.bind(
            correlation_id=str(uuid4()),
            actor_id=actor_id,
            requisition_code=requisition_code,
        ):
            t0 = time.monotonic()
            try:
                yield self._services(session)
                if read_only:
                    session.rollback()
                else:
                    session.commit()
                    logger.debug(
                        "unit_of_work_committed",
                        extra={
                            "operation": operation,
                            "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                        },
                    )
            except ProcurementKernelError as exc:
                session.rollback()
                logger.info(
                    "unit_of_work_rejected",
                    extra={"operation": operation, "error_code": exc.code},
                )
                raise
            except SQLAlchemyError as exc:
                session.rollback()
                logger.error(
                    "store_failure",
                    extra={"operation": operation},
                    exc_info=True,
                )
                raise StoreFailureError(operation, str(exc)) from exc
            finally:
                session.close()

    # =========================================================================
    # Submission
    # =========================================================================

    def submit(self, token: str, draft: RequisitionDraft) -> str:
        """Validate and persist a requisition with its approval chain.

        Returns:
            The allocated requisition code.
        """
        caller = self._resolve(token)
        errors = draft_violations(draft)
        if errors:
            logger.info(
                "requisition_draft_rejected",
                extra={"caller_id": caller.identity, "errors": errors},
            )
            raise InvalidDraftError(errors)
        if not caller.unit_id:
            raise UnitNotResolvedError(caller.identity)

        with self._unit_of_work("submit", actor_id=caller.identity) as uow:
            self._check_duplicates(uow, caller, draft)

            prefix = normalize_prefix(draft.code_prefix) or derive_code_prefix(
                caller.display_name, self._settings.default_code_prefix,
            )
            value = uow.sequences.next_value(requisition_code_sequence(prefix))
            code = format_requisition_code(prefix, value, self._settings.code_width)
            with LogContext.bind(requisition_code=code):
                self._insert_requisition(uow, caller, draft, prefix, code)
                if not draft.line_items:
                    uow.reconciler.close_if_empty(code, caller.identity)
            return code

    def _insert_requisition(
        self,
        uow: _UnitServices,
        caller: CallerIdentity,
        draft: RequisitionDraft,
        prefix: str,
        code: str,
    ) -> RequisitionModel:
        requisition = RequisitionModel(
            code=code,
            code_prefix=prefix,
            submitter_id=caller.identity,
            submitter_name=caller.display_name,
            submitter_unit_id=caller.unit_id,
            submitted_at=self._clock.now(),
            status=RequisitionStatus.PENDING_APPROVAL.value,
            urgent=is_urgent(draft.line_items),
            supplier=draft.supplier,
            notes=draft.notes,
        )
        uow.session.add(requisition)
        uow.session.flush()

        for number, item in enumerate(draft.line_items, start=1):
            uow.session.add(
                LineItemModel(
                    requisition_id=requisition.id,
                    line_number=number,
                    description=item.description.strip(),
                    specifications=item.specifications,
                    quantity=as_decimal(item.quantity),
                    unit_price=as_decimal(item.unit_price),
                    priority=Priority(item.priority).value,
                    image_ref=item.image_ref,
                )
            )
        uow.session.flush()

        uow.auditor.record(
            code,
            AuditAction.SUBMITTED,
            caller.identity,
            {
                "unit_id": caller.unit_id,
                "item_count": len(draft.line_items),
                "urgent": requisition.urgent,
            },
        )

        steps = uow.chain_builder.build_chain(requisition, caller)
        status = uow.state_machine.refresh_status(requisition)

        logger.info(
            "requisition_submitted",
            extra={
                "requisition_code": code,
                "unit_id": caller.unit_id,
                "item_count": len(draft.line_items),
                "chain_length": len(steps),
                "status": status.value,
            },
        )
        return requisition

    def _check_duplicates(
        self,
        uow: _UnitServices,
        caller: CallerIdentity,
        draft: RequisitionDraft,
    ) -> None:
        check = self._settings.duplicate_check
        if not check.enabled or not draft.line_items:
            return

        now = self._clock.now()
        recent: dict[tuple[str, str], str] = {}
        for code, description, specifications in uow.selector.find_recent_items(
            caller.identity, now - timedelta(days=check.window_days),
        ):
            recent.setdefault(item_key(description, specifications), code)

        in_grace = check.grace_period_end is not None and now.date() <= check.grace_period_end
        for item in draft.line_items:
            existing = recent.get(duplicate_key(item))
            if existing is None:
                continue
            if in_grace:
                logger.warning(
                    "duplicate_line_item_within_grace",
                    extra={
                        "description": item.description,
                        "existing_requisition_code": existing,
                        "grace_period_end": check.grace_period_end.isoformat(),
                    },
                )
                continue
            raise DuplicateLineItemError(item.description, existing, check.window_days)

    # =========================================================================
    # Approval
    # =========================================================================

    def decide(
        self,
        token: str,
        code: str,
        decision: Decision,
        comment: str | None = None,
    ) -> DecisionOutcome:
        caller = self._resolve(token)
        with self._unit_of_work("decide", caller.identity, code) as uow:
            outcome = uow.state_machine.decide(code, caller.identity, decision, comment)
            if outcome.status == RequisitionStatus.APPROVED_AWAITING_FULFILLMENT:
                summary = uow.reconciler.close_if_empty(code, caller.identity)
                if summary is not None:
                    outcome = replace(outcome, status=summary.status)
            return outcome

    def set_review_flag(self, token: str, code: str, in_review: bool) -> RequisitionStatus:
        caller = self._resolve(token)
        with self._unit_of_work("set_review_flag", caller.identity, code) as uow:
            return uow.state_machine.set_review_flag(code, caller.identity, in_review)

    def repair_chain(self, token: str, code: str) -> ChainRepairResult:
        """Administrator-only chain repair."""
        caller = self._resolve(token)
        self._require_administrator(caller, "repair_chain")
        with self._unit_of_work("repair_chain", caller.identity, code) as uow:
            return uow.state_machine.repair_chain(
                code, caller.identity, self._settings.self_authorization_comment,
            )

    # =========================================================================
    # Fulfillment
    # =========================================================================

    def record_receipt(
        self,
        token: str,
        line_item_id: UUID,
        quantity: Any,
        source_document: str | None = None,
    ) -> Decimal:
        """Record one delivery; returns the item's new cumulative quantity."""
        caller = self._resolve(token)
        with self._unit_of_work("record_receipt", caller.identity) as uow:
            return uow.reconciler.record_receipt(
                line_item_id, quantity, caller.identity, source_document,
            )

    def record_receipts(
        self,
        token: str,
        code: str,
        entries: Sequence[ReceiptEntry],
    ) -> dict[UUID, Decimal]:
        caller = self._resolve(token)
        with self._unit_of_work("record_receipts", caller.identity, code) as uow:
            return uow.reconciler.record_receipts(code, entries, caller.identity)

    def recompute_fulfillment(self, token: str, code: str) -> FulfillmentSummary:
        """Administrator-only idempotent recomputation."""
        caller = self._resolve(token)
        self._require_administrator(caller, "recompute_fulfillment")
        with self._unit_of_work("recompute_fulfillment", caller.identity, code) as uow:
            return uow.reconciler.recompute_fulfillment(code, caller.identity)

    # =========================================================================
    # Queries
    # =========================================================================

    def list_actionable(self, approver_id: str) -> list[RequisitionSummary]:
        with self._unit_of_work("list_actionable", approver_id, read_only=True) as uow:
            return uow.selector.list_actionable(approver_id)

    def get_status(self, code: str) -> RequisitionStatus:
        with self._unit_of_work("get_status", requisition_code=code, read_only=True) as uow:
            status = uow.selector.get_status(code)
            if status is None:
                raise RequisitionNotFoundError(code)
            return status

    def get_chain(self, code: str) -> tuple[ApprovalStepRecord, ...]:
        with self._unit_of_work("get_chain", requisition_code=code, read_only=True) as uow:
            chain = uow.selector.get_chain(code)
            if chain is None:
                raise RequisitionNotFoundError(code)
            return chain

    def get_requisition(self, code: str) -> RequisitionRecord:
        with self._unit_of_work("get_requisition", requisition_code=code, read_only=True) as uow:
            record = uow.selector.get_requisition(code)
            if record is None:
                raise RequisitionNotFoundError(code)
            return record

    def get_history(self, code: str) -> tuple[HistoryEntry, ...]:
        with self._unit_of_work("get_history", requisition_code=code, read_only=True) as uow:
            if uow.selector.get_status(code) is None:
                raise RequisitionNotFoundError(code)
            return uow.auditor.get_trace(code).entries
