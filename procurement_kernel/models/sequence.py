"""
Module: procurement_kernel.models.sequence
Responsibility: Named counter rows backing SequenceService.

Each row holds the last value handed out for one sequence name, e.g.
``requisition_code:JD`` (per-prefix code counter) or ``audit:JD-000001``
(per-requisition history sequence).
"""

from sqlalchemy import BigInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from procurement_kernel.db.base import Base


class SequenceCounter(Base):
    """
    Sequence counter table.

    Row-level locking ensures monotonicity under concurrency.
    """

    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        unique=True,
    )

    current_value: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )
