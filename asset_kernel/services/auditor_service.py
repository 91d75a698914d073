"""
AuditorService -- append-only movement log and hash-chained audit trail.

Responsibility:
    The single sink for lifecycle records.  ``log_movement`` appends one
    MovementLog row per asset lifecycle event; ``record`` appends one
    hash-chained AuditEvent per significant entity change.  Chain
    validation detects tampering.

Architecture position:
    Kernel > Services -- imperative shell, called by every mutating service.

Invariants enforced:
    - Append-only: both tables are guarded by ORM listeners.
    - Audit ``seq`` comes from SequenceService (locked counter row).
    - ``hash = H(entity_type | entity_id | action | payload_hash | prev_hash)``.

Failure modes:
    - AuditChainBrokenError from ``validate_chain()``.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from asset_kernel.domain.clock import Clock
from asset_kernel.domain.values import AssetStatus
from asset_kernel.exceptions import AuditChainBrokenError
from asset_kernel.logging_config import get_logger
from asset_kernel.models.asset import Asset
from asset_kernel.models.audit_event import AuditAction, AuditEvent
from asset_kernel.models.movement_log import MovementLog
from asset_kernel.services.sequence_service import SequenceService
from asset_kernel.utils.hashing import hash_audit_event, hash_payload, to_json_safe

logger = get_logger("services.auditor")


@dataclass(frozen=True)
class AuditTraceEntry:
    seq: int
    action: AuditAction
    occurred_at: datetime
    actor_id: UUID
    payload: dict[str, Any]


class AuditorService:
    """
    Service for writing movement logs and tamper-evident audit events.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    def __init__(self, session: Session, clock: Clock, sequences: SequenceService):
        self._session = session
        self._clock = clock
        self._sequences = sequences

    # ------------------------------------------------------------------
    # Movement log
    # ------------------------------------------------------------------

    def log_movement(
        self,
        *,
        serial_number: str,
        action: str,
        actor_id: UUID,
        asset: Asset | None = None,
        from_status: AssetStatus | None = None,
        to_status: AssetStatus | None = None,
        branch_id: UUID | None = None,
        notes: str | None = None,
        details: dict[str, Any] | None = None,
        movement_id: UUID | None = None,
    ) -> MovementLog:
        row = MovementLog(
            id=movement_id or uuid4(),
            asset_id=asset.id if asset is not None else None,
            serial_number=serial_number,
            action=action,
            from_status=from_status.value if from_status is not None else None,
            to_status=to_status.value if to_status is not None else None,
            branch_id=branch_id if branch_id is not None else (asset.branch_id if asset else None),
            actor_id=actor_id,
            notes=notes,
            details=to_json_safe(details) if details else None,
            occurred_at=self._clock.now(),
        )
        self._session.add(row)
        return row

    def movements_for(self, serial_number: str) -> list[MovementLog]:
        return list(
            self._session.execute(
                select(MovementLog)
                .where(MovementLog.serial_number == serial_number)
                .order_by(MovementLog.occurred_at, MovementLog.id)
            ).scalars()
        )

    # ------------------------------------------------------------------
    # Audit chain
    # ------------------------------------------------------------------

    def _get_last_hash(self) -> str | None:
        last_event = self._session.execute(
            select(AuditEvent).order_by(AuditEvent.seq.desc()).limit(1)
        ).scalar_one_or_none()
        return last_event.hash if last_event else None

    def record(
        self,
        entity_type: str,
        entity_id: UUID,
        action: AuditAction,
        actor_id: UUID,
        payload: dict[str, Any] | None = None,
    ) -> AuditEvent:
        """
        Append one hash-chained audit event.

        Postconditions:
            - A new AuditEvent is flushed with the next ``seq`` and a hash
              linked to its predecessor.
        """
        seq = self._sequences.next_value(SequenceService.AUDIT_EVENT)
        prev_hash = self._get_last_hash()

        payload_data = to_json_safe(payload or {})
        payload_hash = hash_payload(payload_data)
        event_hash = hash_audit_event(
            entity_type=entity_type,
            entity_id=str(entity_id),
            action=action.value,
            payload_hash=payload_hash,
            prev_hash=prev_hash,
        )

        event = AuditEvent(
            seq=seq,
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            actor_id=actor_id,
            occurred_at=self._clock.now(),
            payload=payload_data,
            payload_hash=payload_hash,
            prev_hash=prev_hash,
            hash=event_hash,
        )
        self._session.add(event)
        self._session.flush()

        logger.debug(
            "audit_event_recorded",
            extra={
                "seq": seq,
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "action": action.value,
            },
        )
        return event

    def validate_chain(self) -> bool:
        """
        Validate the entire audit chain.

        Raises:
            AuditChainBrokenError: If any stored hash or link does not match.
        """
        events = self._session.execute(
            select(AuditEvent).order_by(AuditEvent.seq)
        ).scalars().all()

        prev: AuditEvent | None = None
        for event in events:
            expected_prev = prev.hash if prev is not None else None
            if event.prev_hash != expected_prev:
                logger.critical("audit_chain_broken", extra={"event_id": str(event.id)})
                raise AuditChainBrokenError(
                    str(event.id), str(expected_prev), str(event.prev_hash)
                )

            expected_hash = hash_audit_event(
                entity_type=event.entity_type,
                entity_id=str(event.entity_id),
                action=event.action.value,
                payload_hash=hash_payload(event.payload or {}),
                prev_hash=event.prev_hash,
            )
            if event.hash != expected_hash:
                logger.critical("audit_chain_broken", extra={"event_id": str(event.id)})
                raise AuditChainBrokenError(str(event.id), expected_hash, event.hash)
            prev = event

        logger.info("audit_chain_valid", extra={"event_count": len(events)})
        return True

    def get_trace(self, entity_type: str, entity_id: UUID) -> tuple[AuditTraceEntry, ...]:
        events = self._session.execute(
            select(AuditEvent)
            .where(
                AuditEvent.entity_type == entity_type,
                AuditEvent.entity_id == entity_id,
            )
            .order_by(AuditEvent.seq)
        ).scalars()
        return tuple(
            AuditTraceEntry(
                seq=e.seq,
                action=e.action,
                occurred_at=e.occurred_at,
                actor_id=e.actor_id,
                payload=e.payload or {},
            )
            for e in events
        )
