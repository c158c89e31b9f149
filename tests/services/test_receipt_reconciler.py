"""
Tests for ReceiptReconciler.

Verifies:
- Receipts only once the approval chain is complete
- Cumulative totals equal the sum of append-only events
- Closure by the per-item ratio rule, including over-delivery
- Batch reception is all-or-nothing
- recompute_fulfillment is idempotent and closes zero-item requisitions
- close_if_empty only acts on requisitions without line items
- Quantities finer than the stored scale are refused
"""

from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from procurement_kernel.domain.requisition import (
    CallerIdentity,
    CallerRole,
    Decision,
    ReceiptEntry,
    ReceptionStatus,
    RequisitionStatus,
)
from procurement_kernel.exceptions import (
    ImmutabilityViolationError,
    InvalidQuantityError,
    LineItemNotFoundError,
    RequisitionNotReceivableError,
)
from procurement_kernel.models.receipt import ReceiptEventModel
from procurement_kernel.selectors.requisition_selector import RequisitionSelector
from tests.factories import UNIT_EMPTY

UNGATED = CallerIdentity("e.lonely", CallerRole.REQUESTER, UNIT_EMPTY)


@pytest.fixture
def approved(make_requisition):
    """Requisition with no approval gate, so receipts are accepted at once."""

    def _make(quantities=(Decimal("10"),)):
        return make_requisition(submitter=UNGATED, quantities=list(quantities))

    return _make


class TestRecordReceipt:

    def test_partial_then_complete_closes(self, approved, reconciler):
        requisition = approved()
        item = requisition.line_items[0]

        assert reconciler.record_receipt(item.id, 4, "dock") == Decimal("4")
        assert requisition.status == RequisitionStatus.FULFILLING.value
        assert item.reception_status == ReceptionStatus.PARTIAL.value

        assert reconciler.record_receipt(item.id, Decimal("6"), "dock") == Decimal("10")
        assert item.reception_status == ReceptionStatus.COMPLETE.value
        assert requisition.status == RequisitionStatus.CLOSED.value
        assert requisition.closed_at is not None

    def test_over_delivery_closes(self, approved, reconciler):
        requisition = approved()
        item = requisition.line_items[0]
        reconciler.record_receipt(item.id, 7, "dock")
        reconciler.record_receipt(item.id, 5, "dock")
        assert item.received_quantity == Decimal("12")
        assert item.reception_status == ReceptionStatus.OVER_DELIVERED.value
        assert requisition.status == RequisitionStatus.CLOSED.value

    def test_short_item_keeps_requisition_open(self, approved, reconciler):
        requisition = approved([Decimal("10"), Decimal("5")])
        first, second = requisition.line_items
        reconciler.record_receipt(first.id, 20, "dock")
        reconciler.record_receipt(second.id, 4, "dock")
        assert requisition.status == RequisitionStatus.FULFILLING.value
        assert requisition.closed_at is None

    def test_receipt_after_closure_recorded(self, approved, reconciler):
        requisition = approved()
        item = requisition.line_items[0]
        reconciler.record_receipt(item.id, 10, "dock")
        closed_at = requisition.closed_at
        assert reconciler.record_receipt(item.id, 1, "dock") == Decimal("11")
        assert requisition.status == RequisitionStatus.CLOSED.value
        assert requisition.closed_at == closed_at

    def test_cumulative_equals_sum_of_events(self, approved, reconciler, session):
        requisition = approved([Decimal("100")])
        item = requisition.line_items[0]
        for quantity in ("0.5", "1.25", "3", "10"):
            reconciler.record_receipt(item.id, quantity, "dock")
        events = RequisitionSelector(session).get_receipts(item.id)
        assert sum(e.quantity for e in events) == item.received_quantity == Decimal("14.75")

    def test_source_document_kept(self, approved, reconciler, session):
        requisition = approved()
        item = requisition.line_items[0]
        reconciler.record_receipt(item.id, 1, "dock", source_document="PL-88121")
        events = RequisitionSelector(session).get_receipts(item.id)
        assert events[0].source_document == "PL-88121"
        assert events[0].recorded_by == "dock"

    @pytest.mark.parametrize("quantity", [0, -3, "abc", float("nan"), None, True])
    def test_invalid_quantity(self, approved, reconciler, session, quantity):
        requisition = approved()
        with pytest.raises(InvalidQuantityError):
            reconciler.record_receipt(requisition.line_items[0].id, quantity, "dock")
        count = session.execute(select(func.count()).select_from(ReceiptEventModel)).scalar()
        assert count == 0

    @pytest.mark.parametrize("quantity", ["0.0000000004", Decimal("1.0000000001")])
    def test_quantity_finer_than_stored_scale(self, approved, reconciler, session, quantity):
        requisition = approved()
        item = requisition.line_items[0]
        with pytest.raises(InvalidQuantityError) as exc_info:
            reconciler.record_receipt(item.id, quantity, "dock")
        assert "decimal places" in str(exc_info.value)
        count = session.execute(select(func.count()).select_from(ReceiptEventModel)).scalar()
        assert count == 0
        assert requisition.status == RequisitionStatus.APPROVED_AWAITING_FULFILLMENT.value
        assert item.reception_status == ReceptionStatus.PENDING.value

    def test_smallest_stored_quantity_accepted(self, approved, reconciler):
        requisition = approved()
        item = requisition.line_items[0]
        assert reconciler.record_receipt(item.id, Decimal("0.000000001"), "dock") > 0
        assert item.reception_status == ReceptionStatus.PARTIAL.value
        assert requisition.status == RequisitionStatus.FULFILLING.value

    def test_unknown_line_item(self, reconciler, engine):
        with pytest.raises(LineItemNotFoundError):
            reconciler.record_receipt(uuid4(), 1, "dock")

    def test_pending_approval_not_receivable(self, make_requisition, reconciler):
        requisition = make_requisition()
        with pytest.raises(RequisitionNotReceivableError) as exc_info:
            reconciler.record_receipt(requisition.line_items[0].id, 1, "dock")
        assert exc_info.value.status == "pending_approval"

    def test_rejected_not_receivable(self, make_requisition, reconciler, state_machine):
        requisition = make_requisition()
        state_machine.decide(requisition.code, "a.alvarez", Decision.REJECT)
        with pytest.raises(RequisitionNotReceivableError):
            reconciler.record_receipt(requisition.line_items[0].id, 1, "dock")

    def test_receivable_after_full_approval(self, make_requisition, reconciler, state_machine):
        requisition = make_requisition()
        for approver in ("a.alvarez", "b.okafor", "c.lindqvist"):
            state_machine.decide(requisition.code, approver, Decision.APPROVE)
        reconciler.record_receipt(requisition.line_items[0].id, 10, "dock")
        assert requisition.status == RequisitionStatus.CLOSED.value

    def test_receipt_events_append_only(self, approved, reconciler, session):
        requisition = approved()
        reconciler.record_receipt(requisition.line_items[0].id, 1, "dock")
        event = session.execute(select(ReceiptEventModel)).scalar_one()
        event.quantity = Decimal("2")
        with pytest.raises(ImmutabilityViolationError):
            session.flush()


class TestRecordReceipts:

    def test_batch_touches_every_item(self, approved, reconciler):
        requisition = approved([Decimal("10"), Decimal("5")])
        first, second = requisition.line_items
        totals = reconciler.record_receipts(
            requisition.code,
            [ReceiptEntry(first.id, Decimal("10")), ReceiptEntry(second.id, Decimal("5"))],
            "dock",
        )
        assert totals == {first.id: Decimal("10"), second.id: Decimal("5")}
        assert requisition.status == RequisitionStatus.CLOSED.value

    def test_repeated_item_in_batch_accumulates(self, approved, reconciler):
        requisition = approved()
        item = requisition.line_items[0]
        totals = reconciler.record_receipts(
            requisition.code,
            [ReceiptEntry(item.id, Decimal("3")), ReceiptEntry(item.id, Decimal("4"))],
            "dock",
        )
        assert totals[item.id] == Decimal("7")

    def test_invalid_entry_rejects_whole_batch(self, approved, reconciler, session):
        requisition = approved([Decimal("10"), Decimal("5")])
        first, second = requisition.line_items
        with pytest.raises(InvalidQuantityError):
            reconciler.record_receipts(
                requisition.code,
                [ReceiptEntry(first.id, Decimal("10")), ReceiptEntry(second.id, Decimal("-1"))],
                "dock",
            )
        count = session.execute(select(func.count()).select_from(ReceiptEventModel)).scalar()
        assert count == 0

    def test_item_of_other_requisition_rejected(self, approved, reconciler):
        mine = approved()
        other = approved()
        with pytest.raises(LineItemNotFoundError):
            reconciler.record_receipts(
                mine.code, [ReceiptEntry(other.line_items[0].id, Decimal("1"))], "dock",
            )

    def test_empty_batch_is_noop(self, approved, reconciler):
        requisition = approved()
        assert reconciler.record_receipts(requisition.code, [], "dock") == {}
        assert requisition.status == RequisitionStatus.APPROVED_AWAITING_FULFILLMENT.value

    def test_empty_batch_still_requires_receivable(self, make_requisition, reconciler):
        requisition = make_requisition()
        with pytest.raises(RequisitionNotReceivableError):
            reconciler.record_receipts(requisition.code, [], "dock")


class TestRecomputeFulfillment:

    def test_idempotent(self, approved, reconciler, auditor):
        requisition = approved([Decimal("10"), Decimal("5")])
        reconciler.record_receipt(requisition.line_items[0].id, 4, "dock")
        first = reconciler.recompute_fulfillment(requisition.code)
        history = len(auditor.get_trace(requisition.code).entries)
        second = reconciler.recompute_fulfillment(requisition.code)
        assert first == second
        assert len(auditor.get_trace(requisition.code).entries) == history

    def test_zero_item_requisition_closes(self, approved, reconciler):
        requisition = approved([])
        assert requisition.status == RequisitionStatus.APPROVED_AWAITING_FULFILLMENT.value
        summary = reconciler.recompute_fulfillment(requisition.code, "admin")
        assert summary.fully_received
        assert summary.status == RequisitionStatus.CLOSED
        assert summary.aggregate_ratio == 1

    def test_close_if_empty_closes_vacuous_requisition(self, approved, reconciler):
        requisition = approved([])
        summary = reconciler.close_if_empty(requisition.code, "r.requester")
        assert summary.status == RequisitionStatus.CLOSED
        assert requisition.closed_at is not None

    def test_close_if_empty_leaves_requisition_with_items(self, approved, reconciler, auditor):
        requisition = approved()
        history = len(auditor.get_trace(requisition.code).entries)
        assert reconciler.close_if_empty(requisition.code, "r.requester") is None
        assert requisition.status == RequisitionStatus.APPROVED_AWAITING_FULFILLMENT.value
        assert len(auditor.get_trace(requisition.code).entries) == history

    def test_close_if_empty_waits_for_chain(self, make_requisition, reconciler):
        requisition = make_requisition(quantities=[])
        summary = reconciler.close_if_empty(requisition.code, "r.requester")
        assert summary.status == RequisitionStatus.PENDING_APPROVAL
        assert summary.closed_at is None

    def test_does_not_close_pending_approval(self, make_requisition, reconciler):
        requisition = make_requisition(quantities=[])
        summary = reconciler.recompute_fulfillment(requisition.code)
        assert summary.fully_received
        assert summary.status == RequisitionStatus.PENDING_APPROVAL
        assert summary.closed_at is None

    def test_summary_items(self, approved, reconciler):
        requisition = approved([Decimal("10")])
        reconciler.record_receipt(requisition.line_items[0].id, 5, "dock")
        summary = reconciler.recompute_fulfillment(requisition.code)
        assert summary.items[0].ratio == Decimal("0.5")
        assert summary.items[0].reception_status == ReceptionStatus.PARTIAL
        assert not summary.fully_received

    def test_closure_recorded_in_history(self, approved, reconciler, auditor):
        requisition = approved()
        reconciler.record_receipt(requisition.line_items[0].id, 10, "dock")
        actions = auditor.get_trace(requisition.code).actions
        assert actions[-2:] == ("receipt_recorded", "requisition_closed")
        assert auditor.validate_chain(requisition.code)
