"""
AuditorService -- per-requisition, tamper-evident history.

Responsibility:
    Creates immutable, hash-chained history events for every significant
    state change of a requisition (submission, decisions, review toggles,
    receipts, closure, chain repair).  Provides chain validation for tamper
    detection and history queries.

Architecture position:
    Kernel > Services -- imperative shell, called by the chain builder,
    the approval state machine, the receipt reconciler and the lifecycle
    coordinator.

Invariants enforced:
    - Sequence monotonicity via SequenceService, one counter per
      requisition (never MAX()+1).
    - Chain integrity: each event's hash covers its predecessor's hash
      within the same requisition.
    - Append-only: history events are never modified or deleted (ORM
      listeners on RequisitionAuditEvent).

Failure modes:
    - AuditChainBrokenError: recomputed hash does not match the stored
      hash, or prev_hash does not match the predecessor's hash.

Audit relevance:
    This IS the history service.  Chains are scoped per requisition so
    that writers to different requisitions never contend on a global row.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from procurement_kernel.domain.clock import Clock, SystemClock
from procurement_kernel.domain.requisition import HistoryEntry
from procurement_kernel.exceptions import AuditChainBrokenError
from procurement_kernel.logging_config import get_logger
from procurement_kernel.models.audit_event import AuditAction, RequisitionAuditEvent
from procurement_kernel.services.sequence_service import SequenceService, audit_sequence
from procurement_kernel.utils.hashing import hash_audit_event, hash_payload, to_json_safe

logger = get_logger("services.auditor")


@dataclass(frozen=True)
class AuditTrace:
    """Complete history of one requisition, in sequence order."""

    requisition_code: str
    entries: tuple[HistoryEntry, ...]

    @property
    def is_empty(self) -> bool:
        return len(self.entries) == 0

    @property
    def actions(self) -> tuple[str, ...]:
        return tuple(entry.action for entry in self.entries)

    @property
    def last_action(self) -> str | None:
        return self.entries[-1].action if self.entries else None


class AuditorService:
    """
    Service for creating and validating requisition history events.

    Guarantees:
        - Every event's ``hash`` is a deterministic function of
          ``(requisition_code, seq, action, payload_hash, prev_hash)``.
        - ``seq`` starts at 1 for each requisition and has no gaps.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._sequence_service = SequenceService(session)

    def _get_last_hash(self, requisition_code: str) -> str | None:
        last_event = self._session.execute(
            select(RequisitionAuditEvent)
            .where(RequisitionAuditEvent.requisition_code == requisition_code)
            .order_by(RequisitionAuditEvent.seq.desc())
            .limit(1)
        ).scalar_one_or_none()

        return last_event.hash if last_event else None

    def record(
        self,
        requisition_code: str,
        action: AuditAction,
        actor_id: str,
        payload: dict[str, Any] | None = None,
    ) -> RequisitionAuditEvent:
        """
        Append a history event with hash chain linkage.

        The per-requisition counter row is locked first, so concurrent
        writers to the same requisition append in a single order.
        """
        seq = self._sequence_service.next_value(audit_sequence(requisition_code))
        prev_hash = self._get_last_hash(requisition_code)

        payload_data = to_json_safe(payload or {})
        computed_payload_hash = hash_payload(payload_data)

        event_hash = hash_audit_event(
            requisition_code=requisition_code,
            seq=seq,
            action=action.value,
            payload_hash=computed_payload_hash,
            prev_hash=prev_hash,
        )

        audit_event = RequisitionAuditEvent(
            requisition_code=requisition_code,
            seq=seq,
            action=action.value,
            actor_id=actor_id,
            occurred_at=self._clock.now(),
            payload=payload_data,
            payload_hash=computed_payload_hash,
            prev_hash=prev_hash,
            hash=event_hash,
        )

        self._session.add(audit_event)
        self._session.flush()

        logger.info(
            "audit_event_created",
            extra={
                "requisition_code": requisition_code,
                "action": action.value,
                "seq": seq,
            },
        )

        return audit_event

    def validate_chain(self, requisition_code: str) -> bool:
        """
        Validate one requisition's history chain.

        Raises:
            AuditChainBrokenError: If chain validation fails at any point.
        """
        events = self._session.execute(
            select(RequisitionAuditEvent)
            .where(RequisitionAuditEvent.requisition_code == requisition_code)
            .order_by(RequisitionAuditEvent.seq)
        ).scalars().all()

        if not events:
            return True

        if events[0].prev_hash is not None:
            logger.critical(
                "audit_chain_broken",
                extra={"requisition_code": requisition_code, "seq": events[0].seq},
            )
            raise AuditChainBrokenError(str(events[0].id), "None", events[0].prev_hash)

        for i, event in enumerate(events):
            recomputed_payload_hash = hash_payload(event.payload or {})
            expected_hash = hash_audit_event(
                requisition_code=event.requisition_code,
                seq=event.seq,
                action=event.action,
                payload_hash=recomputed_payload_hash,
                prev_hash=event.prev_hash,
            )

            if event.hash != expected_hash:
                logger.critical(
                    "audit_chain_broken",
                    extra={"requisition_code": requisition_code, "seq": event.seq},
                )
                raise AuditChainBrokenError(str(event.id), expected_hash, event.hash)

            if i > 0:
                expected_prev = events[i - 1].hash
                if event.prev_hash != expected_prev:
                    logger.critical(
                        "audit_chain_broken",
                        extra={"requisition_code": requisition_code, "seq": event.seq},
                    )
                    raise AuditChainBrokenError(
                        str(event.id), expected_prev, event.prev_hash or "None",
                    )

        logger.info(
            "audit_chain_valid",
            extra={"requisition_code": requisition_code, "event_count": len(events)},
        )
        return True

    def get_trace(self, requisition_code: str) -> AuditTrace:
        """Get the complete history of a requisition in sequence order."""
        events = self._session.execute(
            select(RequisitionAuditEvent)
            .where(RequisitionAuditEvent.requisition_code == requisition_code)
            .order_by(RequisitionAuditEvent.seq)
        ).scalars().all()

        return AuditTrace(
            requisition_code=requisition_code,
            entries=tuple(
                HistoryEntry(
                    seq=event.seq,
                    action=event.action,
                    actor_id=event.actor_id,
                    occurred_at=event.occurred_at,
                    payload=event.payload or {},
                    hash=event.hash,
                )
                for event in events
            ),
        )

    def last_event_at(self, requisition_code: str) -> datetime | None:
        """Timestamp of the most recent history event, if any."""
        return self._session.execute(
            select(RequisitionAuditEvent.occurred_at)
            .where(RequisitionAuditEvent.requisition_code == requisition_code)
            .order_by(RequisitionAuditEvent.seq.desc())
            .limit(1)
        ).scalar_one_or_none()
