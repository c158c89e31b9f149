"""
Module: procurement_kernel.models.directory
Responsibility: ORM persistence for the approver directory.

Architecture position: Kernel > Models.  May import from db/ and domain/ only.

Invariants enforced:
    - approver_id is unique; role is one of the closed role set.
    - An approver is linked to a unit at most once.

Directory editing is owned by an external administration surface; the
kernel reads these tables and seeds them from YAML.
"""

from __future__ import annotations

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from procurement_kernel.db.base import Base, TrackedBase
from procurement_kernel.db.types import ActorId, DisplayName, ShortCode
from procurement_kernel.domain.requisition import ApproverEntry, ApproverRole


class ApproverModel(TrackedBase):
    """Directory entry for one approver."""

    __tablename__ = "approvers"

    __table_args__ = (
        CheckConstraint(
            "role IN ('standard', 'administrator')",
            name="ck_approvers_valid_role",
        ),
    )

    approver_id: Mapped[ActorId] = mapped_column(nullable=False, unique=True)
    display_name: Mapped[DisplayName] = mapped_column(nullable=False)
    role: Mapped[ShortCode] = mapped_column(nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    units: Mapped[list["ApproverUnitModel"]] = relationship(
        "ApproverUnitModel",
        back_populates="approver",
        lazy="selectin",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Approver {self.approver_id} role={self.role}>"

    def to_dto(self) -> ApproverEntry:
        return ApproverEntry(
            approver_id=self.approver_id,
            display_name=self.display_name,
            role=ApproverRole(self.role),
            units=frozenset(link.unit_id for link in self.units),
            active=self.active,
        )


class ApproverUnitModel(Base):
    """Authorization of one approver for one organizational unit."""

    __tablename__ = "approver_units"

    __table_args__ = (
        UniqueConstraint("approver_id", "unit_id", name="uq_approver_units"),
    )

    approver_id: Mapped[ActorId] = mapped_column(
        String(64), ForeignKey("approvers.approver_id"), nullable=False, index=True,
    )
    unit_id: Mapped[ActorId] = mapped_column(nullable=False, index=True)

    approver: Mapped[ApproverModel] = relationship(
        "ApproverModel", back_populates="units",
    )
