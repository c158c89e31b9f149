"""
procurement_services -- Transaction-owning services over the procurement kernel.

The lifecycle coordinator is the public entry point: it resolves callers,
opens one unit of work per operation and composes the kernel services.
"""

from procurement_services.auth import StaticAuthProvider
from procurement_services.lifecycle_coordinator import RequisitionLifecycleCoordinator

__all__ = [
    "RequisitionLifecycleCoordinator",
    "StaticAuthProvider",
]
