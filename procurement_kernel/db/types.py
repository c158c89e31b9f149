"""
Module: procurement_kernel.db.types
Responsibility: Annotated type aliases for procurement column types.  Centralizes
    precision and string widths so that every model uses identical definitions.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/, and selectors/.  MUST NOT import from any of those layers.

Invariants enforced:
    - No floats anywhere in the kernel.  Quantities and prices use Decimal
      with explicit precision.
    - Actor identities are opaque strings (ActorId), never parsed.
"""

from decimal import Decimal
from typing import Annotated

from sqlalchemy import BigInteger, Numeric, String, Text


# Requested / received quantities: 38 digits, 9 decimal places
# (domain.requisition.QUANTITY_DECIMAL_PLACES)
Quantity = Annotated[Decimal, Numeric(38, 9)]

# Unit price
Price = Annotated[Decimal, Numeric(38, 9)]

# Monotonic sequence number for ordering
Sequence = Annotated[int, BigInteger]

# SHA-256 hash as hex string (64 characters)
PayloadHash = Annotated[str, String(64)]

# Opaque identity of a caller, approver or organizational unit
ActorId = Annotated[str, String(64)]

# Short identifier strings (status, priority, role tags, codes)
ShortCode = Annotated[str, String(50)]

# Human-readable name
DisplayName = Annotated[str, String(200)]

# Long text for descriptions and comments
LongText = Annotated[str, Text]
