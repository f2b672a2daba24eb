"""
AuditorService -- tamper-evident audit trail for lending actions.

Responsibility:
    Creates immutable, hash-chained audit events for every state change
    made by the stored procedures (role grants, disbursement transitions,
    repayments, late fees, workflow decisions). Provides chain validation
    and per-entity trace queries.

Architecture position:
    Kernel > Services. Called by namlend_services.procedures inside the
    procedure's transaction.

Invariants enforced:
    - hash = H(entity_type | entity_id | action | payload_hash | prev_hash).
    - seq strictly increases; the chain head is read in the same
      transaction that appends to it.
    - Append-only (ORM listeners on AuditEvent).

Failure modes:
    - AuditChainBrokenError from validate_chain() on any mismatch.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from namlend_kernel.domain.clock import Clock, SystemClock
from namlend_kernel.exceptions import AuditChainBrokenError
from namlend_kernel.logging_config import get_logger
from namlend_kernel.models.audit_event import AuditAction, AuditEvent
from namlend_kernel.utils.hashing import hash_audit_event, hash_payload, to_json_safe

logger = get_logger("services.auditor")


@dataclass(frozen=True)
class AuditTraceEntry:
    seq: int
    action: str
    occurred_at: datetime
    actor_id: UUID | None
    payload: dict[str, Any]
    hash: str


@dataclass(frozen=True)
class AuditTrace:
    """All audit events for one entity, oldest first."""

    entity_type: str
    entity_id: UUID
    entries: tuple[AuditTraceEntry, ...]

    @property
    def is_empty(self) -> bool:
        return len(self.entries) == 0

    @property
    def actions(self) -> tuple[str, ...]:
        return tuple(e.action for e in self.entries)


class AuditorService:
    """
    Appends audit events and validates the chain.

    Does NOT commit; the caller owns the transaction boundary.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()

    def _chain_head(self) -> AuditEvent | None:
        return self._session.execute(
            select(AuditEvent).order_by(AuditEvent.seq.desc()).limit(1)
        ).scalar_one_or_none()

    def record(
        self,
        entity_type: str,
        entity_id: UUID,
        action: AuditAction,
        actor_id: UUID | None,
        payload: dict[str, Any] | None = None,
    ) -> AuditEvent:
        """Append one event linked to the current chain head."""
        head = self._chain_head()
        seq = (head.seq + 1) if head is not None else 1
        prev_hash = head.hash if head is not None else None

        payload_data = to_json_safe(payload or {})
        payload_hash = hash_payload(payload_data)
        event_hash = hash_audit_event(
            entity_type=entity_type,
            entity_id=str(entity_id),
            action=action.value,
            payload_hash=payload_hash,
            prev_hash=prev_hash,
        )

        audit_event = AuditEvent(
            seq=seq,
            entity_type=entity_type,
            entity_id=entity_id,
            action=action.value,
            actor_id=actor_id,
            occurred_at=self._clock.now(),
            payload=payload_data,
            payload_hash=payload_hash,
            prev_hash=prev_hash,
            hash=event_hash,
        )
        self._session.add(audit_event)
        self._session.flush()

        logger.info(
            "audit_event_created",
            extra={
                "entity_type": entity_type,
                "audited_entity_id": str(entity_id),
                "action": action.value,
                "seq": seq,
            },
        )
        return audit_event

    def get_trace(self, entity_type: str, entity_id: UUID) -> AuditTrace:
        events = self._session.execute(
            select(AuditEvent)
            .where(
                AuditEvent.entity_type == entity_type,
                AuditEvent.entity_id == entity_id,
            )
            .order_by(AuditEvent.seq)
        ).scalars().all()

        return AuditTrace(
            entity_type=entity_type,
            entity_id=entity_id,
            entries=tuple(
                AuditTraceEntry(
                    seq=e.seq,
                    action=e.action,
                    occurred_at=e.occurred_at,
                    actor_id=e.actor_id,
                    payload=e.payload or {},
                    hash=e.hash,
                )
                for e in events
            ),
        )

    def validate_chain(self) -> bool:
        """
        Recompute every hash and check each link to its predecessor.

        Raises:
            AuditChainBrokenError: at the first event that does not match.
        """
        events = self._session.execute(
            select(AuditEvent).order_by(AuditEvent.seq)
        ).scalars().all()

        prev: AuditEvent | None = None
        for audit_event in events:
            expected_prev = prev.hash if prev is not None else None
            if audit_event.prev_hash != expected_prev:
                logger.critical("audit_chain_broken", extra={"seq": audit_event.seq})
                raise AuditChainBrokenError(
                    str(audit_event.id), expected_prev or "None", audit_event.prev_hash or "None",
                )

            expected_hash = hash_audit_event(
                entity_type=audit_event.entity_type,
                entity_id=str(audit_event.entity_id),
                action=audit_event.action,
                payload_hash=audit_event.payload_hash,
                prev_hash=audit_event.prev_hash,
            )
            if audit_event.hash != expected_hash:
                logger.critical("audit_chain_broken", extra={"seq": audit_event.seq})
                raise AuditChainBrokenError(str(audit_event.id), expected_hash, audit_event.hash)
            prev = audit_event

        return True
