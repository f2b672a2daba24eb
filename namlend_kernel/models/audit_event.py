"""
Module: namlend_kernel.models.audit_event
Responsibility: ORM persistence for the tamper-evident audit hash chain.
Architecture position: Kernel > Models. May import from db/base.py only
    (plus exceptions).

Invariants enforced:
    - Audit records are append-only; no UPDATE or DELETE (ORM listeners).
    - hash = H(entity_type | entity_id | action | payload_hash | prev_hash),
      validated by AuditorService.validate_chain().
    - seq is strictly increasing.

Failure modes:
    - ImmutabilityViolationError on any UPDATE/DELETE attempt.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, BigInteger, Index, String, event
from sqlalchemy.orm import Mapped, mapped_column

from namlend_kernel.db.base import Base, UTCDateTime, UUIDString
from namlend_kernel.exceptions import ImmutabilityViolationError


class AuditAction(str, Enum):
    """Types of auditable actions.

    Adding a member requires a matching recording call in the procedure
    that performs the action.
    """

    # Roles
    ROLE_ASSIGNED = "role_assigned"
    ROLE_REMOVED = "role_removed"

    # Loan lifecycle
    LOAN_APPROVED = "loan_approved"
    LOAN_REJECTED = "loan_rejected"
    LOAN_DISBURSED = "loan_disbursed"
    LOAN_REPAID = "loan_repaid"

    # Disbursement lifecycle
    DISBURSEMENT_CREATED = "disbursement_created"
    DISBURSEMENT_APPROVED = "disbursement_approved"
    DISBURSEMENT_PROCESSING = "disbursement_processing"
    DISBURSEMENT_COMPLETED = "disbursement_completed"
    DISBURSEMENT_FAILED = "disbursement_failed"

    # Repayment
    SCHEDULE_GENERATED = "schedule_generated"
    PAYMENT_RECORDED = "payment_recorded"
    PAYMENT_APPLIED = "payment_applied"
    LATE_FEE_ASSESSED = "late_fee_assessed"
    LATE_FEE_WAIVED = "late_fee_waived"

    # Workflow
    WORKFLOW_DEFINED = "workflow_defined"
    WORKFLOW_STARTED = "workflow_started"
    WORKFLOW_STAGE_DECIDED = "workflow_stage_decided"
    WORKFLOW_COMPLETED = "workflow_completed"
    WORKFLOW_REJECTED = "workflow_rejected"
    WORKFLOW_CANCELLED = "workflow_cancelled"


class AuditEvent(Base):
    """
    Audit event with hash chain for tamper evidence.

    prev_hash is None only for the genesis event.
    """

    __tablename__ = "audit_events"

    __table_args__ = (
        Index("ix_audit_events_entity", "entity_type", "entity_id"),
        Index("ix_audit_events_action", "action"),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)

    # e.g. "Disbursement", "Loan", "WorkflowInstance"
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    actor_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return f"<AuditEvent {self.action} on {self.entity_type}:{self.entity_id}>"

    @property
    def is_genesis(self) -> bool:
        return self.prev_hash is None


@event.listens_for(AuditEvent, "before_update")
def prevent_audit_update(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="AuditEvent",
        entity_id=str(target.id),
        operation="update",
    )


@event.listens_for(AuditEvent, "before_delete")
def prevent_audit_delete(mapper, connection, target):
    raise ImmutabilityViolationError(
        entity_type="AuditEvent",
        entity_id=str(target.id),
        operation="delete",
    )
