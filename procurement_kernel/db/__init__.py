"""Database layer - engine, base classes and column types."""

from procurement_kernel.db.base import UUID, Base, TrackedBase, UTCDateTime, UUIDString
from procurement_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_engine,
    get_session,
    get_session_factory,
    init_engine_from_url,
    is_postgres,
    reset_engine,
    session_scope,
)
from procurement_kernel.db.types import ActorId, PayloadHash, Price, Quantity, Sequence

__all__ = [
    "init_engine_from_url",
    "get_engine",
    "get_session",
    "get_session_factory",
    "session_scope",
    "create_tables",
    "drop_tables",
    "reset_engine",
    "is_postgres",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UTCDateTime",
    "UUID",
    "ActorId",
    "Quantity",
    "Price",
    "Sequence",
    "PayloadHash",
]
