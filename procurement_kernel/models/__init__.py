"""Domain models for the procurement kernel."""

from procurement_kernel.models.approval import CHAIN_REPAIR_FLAG, ApprovalStepModel
from procurement_kernel.models.audit_event import AuditAction, RequisitionAuditEvent
from procurement_kernel.models.directory import ApproverModel, ApproverUnitModel
from procurement_kernel.models.receipt import ReceiptEventModel
from procurement_kernel.models.requisition import LineItemModel, RequisitionModel
from procurement_kernel.models.sequence import SequenceCounter

__all__ = [
    "ApprovalStepModel",
    "ApproverModel",
    "ApproverUnitModel",
    "AuditAction",
    "CHAIN_REPAIR_FLAG",
    "LineItemModel",
    "ReceiptEventModel",
    "RequisitionAuditEvent",
    "RequisitionModel",
    "SequenceCounter",
]
