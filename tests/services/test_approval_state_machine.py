"""
Tests for ApprovalStateMachine.

Verifies:
- Strict sequential gating (NotYourTurnError vs AlreadyDecidedError)
- Rejection is terminal and blocks every later step
- Compare-and-swap decision write: exactly one winner per step
- Review flag: only the actionable approver, idempotent, no effect on gating
- Administrative chain repair: gap closing, missing self-authorization
"""

from uuid import uuid4

import pytest

from procurement_kernel.domain.requisition import (
    CallerIdentity,
    CallerRole,
    Decision,
    RequisitionStatus,
    StepStatus,
)
from procurement_kernel.exceptions import (
    ActionableStepNotFoundError,
    AlreadyDecidedError,
    ImmutabilityViolationError,
    InvalidDecisionError,
    NotYourTurnError,
    RequisitionFinalizedError,
    RequisitionNotFoundError,
    ReviewNotAllowedError,
)
from procurement_kernel.models.approval import ApprovalStepModel
from tests.factories import ALVAREZ_CALLER, REQUESTER


class TestDecide:

    def test_first_approver_approves(self, make_requisition, state_machine):
        requisition = make_requisition()
        outcome = state_machine.decide(requisition.code, "a.alvarez", Decision.APPROVE, "ok")
        assert outcome.step_order == 1
        assert outcome.decision_status == StepStatus.APPROVED
        assert outcome.status == RequisitionStatus.PENDING_APPROVAL
        assert outcome.next_approver_id == "b.okafor"

    def test_full_chain_approval(self, make_requisition, state_machine):
        requisition = make_requisition()
        for approver in ("a.alvarez", "b.okafor", "c.lindqvist"):
            outcome = state_machine.decide(requisition.code, approver, Decision.APPROVE)
        assert outcome.status == RequisitionStatus.APPROVED_AWAITING_FULFILLMENT
        assert outcome.next_approver_id is None
        assert state_machine.current_actionable_step(requisition.code) is None

    def test_decision_recorded_on_step(self, make_requisition, state_machine, deterministic_clock):
        requisition = make_requisition()
        state_machine.decide(requisition.code, "a.alvarez", Decision.APPROVE, "fine by me")
        step = state_machine.load_steps(requisition.id)[0]
        assert step.decided_by == "a.alvarez"
        assert step.decided_at == deterministic_clock.now()
        assert step.comment == "fine by me"

    def test_not_your_turn(self, make_requisition, state_machine):
        requisition = make_requisition()
        with pytest.raises(NotYourTurnError) as exc_info:
            state_machine.decide(requisition.code, "b.okafor", Decision.APPROVE)
        assert exc_info.value.code == "NOT_YOUR_TURN"
        assert exc_info.value.actionable_approver_id == "a.alvarez"

    def test_already_decided(self, make_requisition, state_machine):
        requisition = make_requisition()
        state_machine.decide(requisition.code, "a.alvarez", Decision.APPROVE)
        with pytest.raises(AlreadyDecidedError) as exc_info:
            state_machine.decide(requisition.code, "a.alvarez", Decision.APPROVE)
        assert exc_info.value.code == "ALREADY_DECIDED"
        assert not isinstance(exc_info.value, NotYourTurnError)

    def test_self_authorized_submitter_cannot_decide_again(self, make_requisition, state_machine):
        requisition = make_requisition(submitter=ALVAREZ_CALLER)
        with pytest.raises(AlreadyDecidedError):
            state_machine.decide(requisition.code, "a.alvarez", Decision.REJECT)

    def test_stranger_has_no_step(self, make_requisition, state_machine):
        requisition = make_requisition()
        with pytest.raises(ActionableStepNotFoundError):
            state_machine.decide(requisition.code, "x.stranger", Decision.APPROVE)

    @pytest.mark.parametrize("decision", ["escalate", "", None])
    def test_unknown_decision(self, make_requisition, state_machine, decision):
        requisition = make_requisition()
        with pytest.raises(InvalidDecisionError):
            state_machine.decide(requisition.code, "a.alvarez", decision)
        assert state_machine.load_steps(requisition.id)[0].decision_status == StepStatus.PENDING.value

    def test_decision_accepts_plain_string(self, make_requisition, state_machine):
        requisition = make_requisition()
        outcome = state_machine.decide(requisition.code, "a.alvarez", "approve")
        assert outcome.decision_status == StepStatus.APPROVED

    def test_unknown_requisition(self, state_machine, engine):
        with pytest.raises(RequisitionNotFoundError):
            state_machine.decide("NOPE-000001", "a.alvarez", Decision.APPROVE)

    def test_decision_writes_history(self, make_requisition, state_machine, auditor):
        requisition = make_requisition()
        state_machine.decide(requisition.code, "a.alvarez", Decision.APPROVE)
        assert auditor.get_trace(requisition.code).last_action == "step_approved"
        assert auditor.validate_chain(requisition.code)


class TestRejection:

    def test_rejection_is_terminal(self, make_requisition, state_machine):
        requisition = make_requisition()
        outcome = state_machine.decide(requisition.code, "a.alvarez", Decision.REJECT, "too pricey")
        assert outcome.status == RequisitionStatus.REJECTED
        assert outcome.next_approver_id is None
        assert requisition.rejection_reason == "too pricey"

    def test_later_steps_stay_pending_and_never_actionable(self, make_requisition, state_machine):
        requisition = make_requisition()
        state_machine.decide(requisition.code, "a.alvarez", Decision.REJECT)
        steps = state_machine.load_steps(requisition.id)
        assert [s.decision_status for s in steps] == [
            StepStatus.REJECTED.value, StepStatus.PENDING.value, StepStatus.PENDING.value,
        ]
        assert state_machine.current_actionable_step(requisition.code) is None
        assert state_machine.list_actionable("b.okafor") == []

    def test_decision_on_rejected_requisition_is_finalized(self, make_requisition, state_machine):
        requisition = make_requisition()
        state_machine.decide(requisition.code, "a.alvarez", Decision.REJECT)
        with pytest.raises(RequisitionFinalizedError) as exc_info:
            state_machine.decide(requisition.code, "b.okafor", Decision.APPROVE)
        assert isinstance(exc_info.value, AlreadyDecidedError)
        assert exc_info.value.status == "rejected"


class TestCompareAndSwap:
    """The decision write is a conditional UPDATE; a second writer loses."""

    def test_second_write_on_same_step_loses(self, make_requisition, state_machine, deterministic_clock):
        requisition = make_requisition()
        step = state_machine.load_steps(requisition.id)[0]
        state_machine.apply_decision(
            requisition.code, step.id, "a.alvarez", StepStatus.APPROVED, None, deterministic_clock.now(),
        )
        with pytest.raises(AlreadyDecidedError) as exc_info:
            state_machine.apply_decision(
                requisition.code, step.id, "a.alvarez", StepStatus.REJECTED, None, deterministic_clock.now(),
            )
        assert exc_info.value.decision_status == StepStatus.APPROVED.value
        reloaded = state_machine.load_steps(requisition.id)[0]
        assert reloaded.decision_status == StepStatus.APPROVED.value

    def test_lost_race_logged(self, make_requisition, state_machine, deterministic_clock, captured_logs):
        requisition = make_requisition()
        step = state_machine.load_steps(requisition.id)[0]
        for _ in range(2):
            try:
                state_machine.apply_decision(
                    requisition.code, step.id, "a.alvarez", StepStatus.APPROVED, None,
                    deterministic_clock.now(),
                )
            except AlreadyDecidedError:
                pass
        assert any(r["message"] == "approval_decision_lost_race" for r in captured_logs())

    def test_decided_step_guarded_at_orm_level(self, make_requisition, state_machine, session):
        requisition = make_requisition()
        state_machine.decide(requisition.code, "a.alvarez", Decision.APPROVE)
        step = state_machine.load_steps(requisition.id)[0]
        step.decision_status = StepStatus.REJECTED.value
        with pytest.raises(ImmutabilityViolationError):
            session.flush()


class TestReviewFlag:

    def test_actionable_approver_sets_in_review(self, make_requisition, state_machine):
        requisition = make_requisition()
        status = state_machine.set_review_flag(requisition.code, "a.alvarez", True)
        assert status == RequisitionStatus.IN_REVIEW

    def test_review_does_not_change_actionability(self, make_requisition, state_machine):
        requisition = make_requisition()
        state_machine.set_review_flag(requisition.code, "a.alvarez", True)
        assert state_machine.current_actionable_step(requisition.code).approver_id == "a.alvarez"
        outcome = state_machine.decide(requisition.code, "a.alvarez", Decision.APPROVE)
        assert outcome.status == RequisitionStatus.PENDING_APPROVAL

    def test_clear_review(self, make_requisition, state_machine):
        requisition = make_requisition()
        state_machine.set_review_flag(requisition.code, "a.alvarez", True)
        status = state_machine.set_review_flag(requisition.code, "a.alvarez", False)
        assert status == RequisitionStatus.PENDING_APPROVAL

    def test_idempotent(self, make_requisition, state_machine, auditor):
        requisition = make_requisition()
        state_machine.set_review_flag(requisition.code, "a.alvarez", True)
        before = len(auditor.get_trace(requisition.code).entries)
        state_machine.set_review_flag(requisition.code, "a.alvarez", True)
        assert len(auditor.get_trace(requisition.code).entries) == before

    def test_only_actionable_approver(self, make_requisition, state_machine):
        requisition = make_requisition()
        with pytest.raises(ReviewNotAllowedError):
            state_machine.set_review_flag(requisition.code, "b.okafor", True)

    def test_not_allowed_once_chain_complete(self, make_requisition, state_machine):
        lonely = CallerIdentity("e.lonely", CallerRole.REQUESTER, "unit-empty")
        requisition = make_requisition(submitter=lonely)
        with pytest.raises(ReviewNotAllowedError):
            state_machine.set_review_flag(requisition.code, "e.lonely", True)


class TestListActionable:

    def test_queue_follows_gating(self, make_requisition, state_machine):
        requisition = make_requisition()
        assert [s.code for s in state_machine.list_actionable("a.alvarez")] == [requisition.code]
        assert state_machine.list_actionable("b.okafor") == []
        state_machine.decide(requisition.code, "a.alvarez", Decision.APPROVE)
        assert state_machine.list_actionable("a.alvarez") == []
        queue = state_machine.list_actionable("b.okafor")
        assert [s.code for s in queue] == [requisition.code]
        assert queue[0].actionable_step_order == 2
        assert queue[0].item_count == 1

    def test_newest_first(self, make_requisition, state_machine, deterministic_clock):
        first = make_requisition()
        deterministic_clock.advance(60)
        second = make_requisition()
        codes = [s.code for s in state_machine.list_actionable("a.alvarez")]
        assert codes == [second.code, first.code]

    def test_ties_broken_by_code_descending(self, make_requisition, state_machine):
        first = make_requisition()
        second = make_requisition()
        codes = [s.code for s in state_machine.list_actionable("a.alvarez")]
        assert codes == sorted([first.code, second.code], reverse=True)


class TestRepairChain:

    def _gapped(self, session, make_requisition, orders):
        requisition = make_requisition(build_chain=False)
        for order, approver_id in zip(orders, ("a.alvarez", "b.okafor", "c.lindqvist")):
            session.add(ApprovalStepModel(
                requisition_id=requisition.id,
                step_order=order,
                approver_id=approver_id,
            ))
        session.flush()
        return requisition

    def test_gaps_closed_preserving_order(self, session, make_requisition, state_machine):
        requisition = self._gapped(session, make_requisition, [1, 4, 9])
        result = state_machine.repair_chain(requisition.code, "ops")
        assert result.renumbered == 2
        steps = state_machine.load_steps(requisition.id)
        assert [(s.step_order, s.approver_id) for s in steps] == [
            (1, "a.alvarez"), (2, "b.okafor"), (3, "c.lindqvist"),
        ]

    def test_gapless_chain_untouched(self, make_requisition, state_machine):
        requisition = make_requisition()
        result = state_machine.repair_chain(requisition.code, "ops")
        assert result.renumbered == 0
        assert not result.self_authorized
        assert result.status == result.previous_status

    def test_missing_self_authorization_applied(self, session, make_requisition, state_machine):
        requisition = make_requisition(submitter=ALVAREZ_CALLER, build_chain=False)
        for order, approver_id in enumerate(("a.alvarez", "b.okafor"), start=1):
            session.add(ApprovalStepModel(
                requisition_id=requisition.id, step_order=order, approver_id=approver_id,
            ))
        session.flush()

        result = state_machine.repair_chain(requisition.code, "ops", "repaired self-authorization")
        assert result.self_authorized
        first = state_machine.load_steps(requisition.id)[0]
        assert first.decision_status == StepStatus.APPROVED.value
        assert first.decided_by == "a.alvarez"
        assert first.comment == "repaired self-authorization"
        assert state_machine.current_actionable_step(requisition.code).approver_id == "b.okafor"

    def test_repair_records_history(self, session, make_requisition, state_machine, auditor):
        requisition = self._gapped(session, make_requisition, [2, 3, 5])
        state_machine.repair_chain(requisition.code, "ops")
        assert auditor.get_trace(requisition.code).last_action == "chain_repaired"

    def test_reordering_outside_repair_blocked(self, make_requisition, state_machine, session):
        requisition = make_requisition()
        step = state_machine.load_steps(requisition.id)[2]
        step.step_order = 10
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_unknown_requisition(self, state_machine, engine):
        with pytest.raises(RequisitionNotFoundError):
            state_machine.repair_chain(f"NOPE-{uuid4().hex[:6]}", "ops")


def test_requester_fixture_has_no_step(make_requisition, state_machine):
    requisition = make_requisition(submitter=REQUESTER)
    with pytest.raises(ActionableStepNotFoundError):
        state_machine.decide(requisition.code, REQUESTER.identity, Decision.APPROVE)
