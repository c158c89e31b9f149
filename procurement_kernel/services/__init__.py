"""Services for the procurement kernel (write side)."""

from procurement_kernel.services.approval_chain_builder import (
    DEFAULT_SELF_AUTHORIZATION_COMMENT,
    ApprovalChainBuilder,
)
from procurement_kernel.services.approval_state_machine import ApprovalStateMachine
from procurement_kernel.services.approver_directory import (
    SqlApproverDirectory,
    StaticApproverDirectory,
)
from procurement_kernel.services.auditor_service import AuditorService, AuditTrace
from procurement_kernel.services.receipt_reconciler import ReceiptReconciler
from procurement_kernel.services.sequence_service import SequenceService

__all__ = [
    "ApprovalChainBuilder",
    "ApprovalStateMachine",
    "AuditTrace",
    "AuditorService",
    "DEFAULT_SELF_AUTHORIZATION_COMMENT",
    "ReceiptReconciler",
    "SequenceService",
    "SqlApproverDirectory",
    "StaticApproverDirectory",
]
