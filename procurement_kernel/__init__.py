"""
Procurement Kernel

Approval-and-fulfillment engine for purchase requisitions:
- Deterministic approval chains with self-authorization
- Strictly sequential, race-safe approval decisions
- Append-only receipts reconciled into closure
- Per-requisition hash-chained history
"""

__version__ = "0.1.0"
