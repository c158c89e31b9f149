"""
Approver directory providers.

Responsibility:
    Answer ``authorized_approvers(unit_id)``: the active approvers who may
    decide for an organizational unit, standard approvers first, then
    administrators, each group by ascending identity.

Architecture position:
    Kernel > Services.  ``SqlApproverDirectory`` reads the ``approvers`` /
    ``approver_units`` tables; ``StaticApproverDirectory`` is an in-memory
    implementation for pure tests and embedding.  Both satisfy
    ``ApproverDirectoryProvider`` from domain/requisition.py.

Invariants enforced:
    - Ordering is computed by ``order_directory_entries`` for both
      implementations, never by database collation.
    - An empty result is a valid state (no approval gate for the unit).
"""

from __future__ import annotations

from collections.abc import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from procurement_engines.approval_chain import order_directory_entries
from procurement_kernel.domain.requisition import ApproverEntry, ApproverRole
from procurement_kernel.logging_config import get_logger
from procurement_kernel.models.directory import ApproverModel, ApproverUnitModel

logger = get_logger("services.approver_directory")


class StaticApproverDirectory:
    """In-memory directory backed by a list of entries."""

    def __init__(self, entries: Iterable[ApproverEntry] = ()) -> None:
        self._entries: tuple[ApproverEntry, ...] = tuple(entries)

    def authorized_approvers(self, unit_id: str) -> tuple[ApproverEntry, ...]:
        return order_directory_entries(
            entry for entry in self._entries if unit_id in entry.units
        )

    def entries(self) -> tuple[ApproverEntry, ...]:
        return self._entries


class SqlApproverDirectory:
    """Directory read from the approver tables through the given session."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def authorized_approvers(self, unit_id: str) -> tuple[ApproverEntry, ...]:
        approvers = self._session.execute(
            select(ApproverModel)
            .join(ApproverUnitModel, ApproverUnitModel.approver_id == ApproverModel.approver_id)
            .where(
                ApproverUnitModel.unit_id == unit_id,
                ApproverModel.active.is_(True),
            )
        ).scalars().unique().all()

        ordered = order_directory_entries(model.to_dto() for model in approvers)
        logger.debug(
            "directory_resolved",
            extra={"unit_id": unit_id, "approver_count": len(ordered)},
        )
        return ordered

    def get_approver(self, approver_id: str) -> ApproverEntry | None:
        model = self._session.execute(
            select(ApproverModel).where(ApproverModel.approver_id == approver_id)
        ).scalar_one_or_none()
        return model.to_dto() if model else None

    def register_approver(
        self,
        entry: ApproverEntry,
        actor_id: str = "system",
    ) -> ApproverModel:
        """Insert or update a directory entry (seeding helper).

        Unit links are replaced by ``entry.units``.  Does not commit.
        """
        model = self._session.execute(
            select(ApproverModel).where(ApproverModel.approver_id == entry.approver_id)
        ).scalar_one_or_none()

        if model is None:
            model = ApproverModel(
                approver_id=entry.approver_id,
                display_name=entry.display_name,
                role=ApproverRole(entry.role).value,
                active=entry.active,
                created_by_id=actor_id,
            )
            self._session.add(model)
            created = True
        else:
            model.display_name = entry.display_name
            model.role = ApproverRole(entry.role).value
            model.active = entry.active
            created = False

        current = {link.unit_id: link for link in model.units}
        for unit_id, link in current.items():
            if unit_id not in entry.units:
                model.units.remove(link)
        for unit_id in sorted(entry.units):
            if unit_id not in current:
                model.units.append(ApproverUnitModel(unit_id=unit_id))

        self._session.flush()
        logger.info(
            "approver_registered",
            extra={
                "approver_id": entry.approver_id,
                "role": ApproverRole(entry.role).value,
                "unit_count": len(entry.units),
                "created": created,
            },
        )
        return model
