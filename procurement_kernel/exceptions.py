"""
Typed Exception Hierarchy for the Procurement Kernel.

===============================================================================
TYPED EXCEPTIONS
===============================================================================

Callers never parse messages. Every error:
  1. Has a TYPED exception class (catch by type, not message)
  2. Has a CODE class attribute (machine-readable, API-safe)
  3. Carries structured DATA as attributes (requisition code, approver, ...)

Example:
    try:
        coordinator.decide(token, code, Decision.APPROVE, None)
    except NotYourTurnError as e:
        api_response(status=403, code=e.code, actionable=e.actionable_approver_id)
    except AlreadyDecidedError as e:
        api_response(status=409, code=e.code, step=e.step_order)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ProcurementKernelError (base)
    |
    +-- NotFoundError
    |   +-- RequisitionNotFoundError
    |   +-- LineItemNotFoundError
    |   +-- ActionableStepNotFoundError
    |   +-- UnitNotResolvedError
    |
    +-- ForbiddenError
    |   +-- NotYourTurnError
    |   +-- UnauthenticatedError
    |   +-- AdministratorRequiredError
    |
    +-- AlreadyDecidedError
    |   +-- RequisitionFinalizedError
    |
    +-- InvalidQuantityError
    +-- InvalidChainError
    |
    +-- RequisitionStateError
    |   +-- RequisitionNotReceivableError
    |   +-- ReviewNotAllowedError
    |
    +-- InvalidDraftError
    |   +-- DuplicateLineItemError
    |
    +-- ImmutabilityViolationError
    +-- AuditChainBrokenError
    +-- StoreFailureError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                       | When Raised
-------------|----------------------------|--------------------------------------------
NotFound     | REQUISITION_NOT_FOUND      | Unknown requisition code
             | LINE_ITEM_NOT_FOUND        | Unknown line item id
             | ACTIONABLE_STEP_NOT_FOUND  | Approver holds no step on the chain
             | UNIT_NOT_RESOLVED          | Submitter has no organizational unit
-------------|----------------------------|--------------------------------------------
Forbidden    | NOT_YOUR_TURN              | Caller's step is pending but not actionable
             | UNAUTHENTICATED            | Token did not resolve to an identity
             | ADMINISTRATOR_REQUIRED     | Administrative operation by non-admin
-------------|----------------------------|--------------------------------------------
Conflict     | ALREADY_DECIDED            | Caller's step is no longer pending
             | REQUISITION_FINALIZED      | Requisition is rejected or closed
             | REQUISITION_NOT_RECEIVABLE | Receipt before the chain is complete
             | REVIEW_NOT_ALLOWED         | Review toggle by a non-actionable approver
-------------|----------------------------|--------------------------------------------
Validation   | INVALID_QUANTITY           | Receipt quantity not finite or <= 0
             | INVALID_CHAIN              | Built chain has gaps or duplicate approvers
             | INVALID_DRAFT              | Draft line items fail validation
             | DUPLICATE_LINE_ITEM        | Same item requested again inside the window
-------------|----------------------------|--------------------------------------------
Integrity    | IMMUTABILITY_VIOLATION     | UPDATE/DELETE on append-only rows
             | AUDIT_CHAIN_BROKEN         | Requisition history hash mismatch
             | STORE_FAILURE              | Persistence layer failed; unit rolled back

===============================================================================
"""


class ProcurementKernelError(Exception):
    """
    Base exception for all procurement kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "PROCUREMENT_KERNEL_ERROR"


# Not-found exceptions


class NotFoundError(ProcurementKernelError):
    """Base exception for lookups that resolved to nothing."""

    code: str = "NOT_FOUND"


class RequisitionNotFoundError(NotFoundError):
    """Requisition with the given code does not exist."""

    code: str = "REQUISITION_NOT_FOUND"

    def __init__(self, requisition_code: str):
        self.requisition_code = requisition_code
        super().__init__(f"Requisition not found: {requisition_code}")


class LineItemNotFoundError(NotFoundError):
    """Line item does not exist (or does not belong to the requisition)."""

    code: str = "LINE_ITEM_NOT_FOUND"

    def __init__(self, line_item_id: str, requisition_code: str | None = None):
        self.line_item_id = line_item_id
        self.requisition_code = requisition_code
        if requisition_code:
            msg = f"Line item {line_item_id} not found on requisition {requisition_code}"
        else:
            msg = f"Line item not found: {line_item_id}"
        super().__init__(msg)


class ActionableStepNotFoundError(NotFoundError):
    """The approver holds no step on the requisition's chain."""

    code: str = "ACTIONABLE_STEP_NOT_FOUND"

    def __init__(self, requisition_code: str, approver_id: str):
        self.requisition_code = requisition_code
        self.approver_id = approver_id
        super().__init__(
            f"Approver {approver_id} has no step on requisition {requisition_code}"
        )


class UnitNotResolvedError(NotFoundError):
    """The submitter's organizational unit could not be resolved."""

    code: str = "UNIT_NOT_RESOLVED"

    def __init__(self, submitter_id: str):
        self.submitter_id = submitter_id
        super().__init__(f"No organizational unit resolved for submitter {submitter_id}")


# Authorization exceptions


class ForbiddenError(ProcurementKernelError):
    """Base exception for callers not permitted to perform an operation."""

    code: str = "FORBIDDEN"


class NotYourTurnError(ForbiddenError):
    """
    The caller holds a pending step, but an earlier step is still open.

    Distinct from AlreadyDecidedError: the caller may act later.
    """

    code: str = "NOT_YOUR_TURN"

    def __init__(
        self,
        requisition_code: str,
        approver_id: str,
        actionable_approver_id: str | None = None,
    ):
        self.requisition_code = requisition_code
        self.approver_id = approver_id
        self.actionable_approver_id = actionable_approver_id
        super().__init__(
            f"Approver {approver_id} cannot decide on {requisition_code} yet: "
            f"step of {actionable_approver_id} is actionable"
        )


class UnauthenticatedError(ForbiddenError):
    """The caller's token did not resolve to an identity."""

    code: str = "UNAUTHENTICATED"

    def __init__(self):
        super().__init__("Caller could not be authenticated")


class AdministratorRequiredError(ForbiddenError):
    """An administrative operation was attempted by a non-administrator."""

    code: str = "ADMINISTRATOR_REQUIRED"

    def __init__(self, operation: str, caller_id: str):
        self.operation = operation
        self.caller_id = caller_id
        super().__init__(f"Operation {operation} requires an administrator (caller {caller_id})")


# Decision conflicts


class AlreadyDecidedError(ProcurementKernelError):
    """The caller's step has already been decided (possibly by a concurrent request)."""

    code: str = "ALREADY_DECIDED"

    def __init__(
        self,
        requisition_code: str,
        approver_id: str,
        step_order: int | None = None,
        decision_status: str | None = None,
    ):
        self.requisition_code = requisition_code
        self.approver_id = approver_id
        self.step_order = step_order
        self.decision_status = decision_status
        super().__init__(
            f"Step {step_order} of {requisition_code} for approver {approver_id} "
            f"is already decided ({decision_status})"
        )


class RequisitionFinalizedError(AlreadyDecidedError):
    """The requisition is terminal (rejected or closed); no decision may mutate it."""

    code: str = "REQUISITION_FINALIZED"

    def __init__(self, requisition_code: str, approver_id: str, status: str):
        self.status = status
        super().__init__(requisition_code, approver_id, None, status)
        self.args = (f"Requisition {requisition_code} is finalized ({status})",)


# Validation exceptions


class InvalidQuantityError(ProcurementKernelError):
    """A received quantity is not a finite number greater than zero, or is finer
    than the stored scale.
    """

    code: str = "INVALID_QUANTITY"

    def __init__(self, quantity: object, reason: str = "must be a finite number > 0"):
        self.quantity = quantity
        self.reason = reason
        super().__init__(f"Invalid quantity {quantity!r}: {reason}")


class InvalidDecisionError(ProcurementKernelError):
    """A decision is not one of the closed set (approve, reject)."""

    code: str = "INVALID_DECISION"

    def __init__(self, decision: object):
        self.decision = decision
        super().__init__(f"Unknown decision {decision!r}")


class InvalidChainError(ProcurementKernelError):
    """A built approval chain violates ordering or uniqueness."""

    code: str = "INVALID_CHAIN"

    def __init__(self, requisition_code: str, violations: list[str]):
        self.requisition_code = requisition_code
        self.violations = list(violations)
        super().__init__(
            f"Invalid approval chain for {requisition_code}: {'; '.join(self.violations)}"
        )


# Requisition state exceptions


class RequisitionStateError(ProcurementKernelError):
    """Base exception for operations not allowed in the requisition's current status."""

    code: str = "REQUISITION_STATE_ERROR"


class RequisitionNotReceivableError(RequisitionStateError):
    """Receipts are accepted only once the approval chain is complete."""

    code: str = "REQUISITION_NOT_RECEIVABLE"

    def __init__(self, requisition_code: str, status: str):
        self.requisition_code = requisition_code
        self.status = status
        super().__init__(
            f"Requisition {requisition_code} cannot receive goods in status {status}"
        )


class ReviewNotAllowedError(RequisitionStateError):
    """Only the assignee of the actionable step may toggle the review flag."""

    code: str = "REVIEW_NOT_ALLOWED"

    def __init__(self, requisition_code: str, approver_id: str, status: str):
        self.requisition_code = requisition_code
        self.approver_id = approver_id
        self.status = status
        super().__init__(
            f"Approver {approver_id} may not change review state of "
            f"{requisition_code} (status {status})"
        )


# Draft validation


class InvalidDraftError(ProcurementKernelError):
    """A requisition draft failed validation."""

    code: str = "INVALID_DRAFT"

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__(f"Invalid requisition draft: {'; '.join(self.errors)}")


class DuplicateLineItemError(InvalidDraftError):
    """The same item was requested by the same submitter inside the duplicate window."""

    code: str = "DUPLICATE_LINE_ITEM"

    def __init__(self, description: str, existing_requisition_code: str, window_days: int):
        self.description = description
        self.existing_requisition_code = existing_requisition_code
        self.window_days = window_days
        super().__init__([
            f"Item {description!r} already requested on {existing_requisition_code} "
            f"within the last {window_days} days"
        ])


# Integrity exceptions


class ImmutabilityViolationError(ProcurementKernelError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


class AuditChainBrokenError(ProcurementKernelError):
    """Requisition history hash chain validation failed."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, audit_event_id: str, expected_hash: str, actual_hash: str):
        self.audit_event_id = audit_event_id
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken at {audit_event_id}: "
            f"expected {expected_hash}, found {actual_hash}"
        )


class StoreFailureError(ProcurementKernelError):
    """The persistence layer failed; the unit of work was rolled back."""

    code: str = "STORE_FAILURE"

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"Store failure during {operation}: {detail}")
