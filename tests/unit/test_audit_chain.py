"""
Tests for the hash-chained audit trail (AuditorService + AuditEvent).
"""

from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

import pytest
from sqlalchemy import select, text

from namlend_kernel.exceptions import AuditChainBrokenError, ImmutabilityViolationError
from namlend_kernel.models import AuditEvent
from namlend_kernel.models.audit_event import AuditAction
from namlend_kernel.services.auditor_service import AuditorService
from namlend_kernel.utils.hashing import canonicalize_json, hash_audit_event, hash_payload


@pytest.fixture
def recorded(db, clock):
    """Three events on two entities; returns (disbursement_id, loan_id)."""
    disbursement_id, loan_id = uuid4(), uuid4()
    actor = uuid4()
    with db() as session:
        auditor = AuditorService(session, clock)
        auditor.record("Disbursement", disbursement_id, AuditAction.DISBURSEMENT_CREATED, actor,
                       {"amount": Decimal("5000.00"), "loan_id": loan_id})
        auditor.record("Loan", loan_id, AuditAction.LOAN_APPROVED, actor)
        auditor.record("Disbursement", disbursement_id, AuditAction.DISBURSEMENT_APPROVED, actor,
                       {"notes": "ok"})
    return disbursement_id, loan_id


class TestRecording:
    def test_chain_links(self, db, recorded):
        with db() as session:
            events = session.execute(select(AuditEvent).order_by(AuditEvent.seq)).scalars().all()

            assert [e.seq for e in events] == [1, 2, 3]
            assert events[0].is_genesis
            assert events[1].prev_hash == events[0].hash
            assert events[2].prev_hash == events[1].hash

    def test_payload_stored_json_safe(self, db, recorded):
        disbursement_id, loan_id = recorded
        with db() as session:
            first = session.execute(
                select(AuditEvent).where(AuditEvent.seq == 1)
            ).scalar_one()

            assert first.payload == {"amount": "5000", "loan_id": str(loan_id)}
            assert first.payload_hash == hash_payload(first.payload)

    def test_validate_chain(self, db, recorded, clock):
        with db() as session:
            assert AuditorService(session, clock).validate_chain() is True

    def test_empty_chain_is_valid(self, db, clock):
        with db() as session:
            assert AuditorService(session, clock).validate_chain() is True


class TestTrace:
    def test_trace_for_entity(self, db, recorded, clock):
        disbursement_id, _ = recorded
        with db() as session:
            trace = AuditorService(session, clock).get_trace("Disbursement", disbursement_id)

        assert trace.actions == ("disbursement_created", "disbursement_approved")
        assert trace.entries[1].payload == {"notes": "ok"}

    def test_unknown_entity(self, db, clock):
        with db() as session:
            trace = AuditorService(session, clock).get_trace("Loan", uuid4())

        assert trace.is_empty
        assert trace.actions == ()


class TestImmutability:
    """Audit events are append-only at the ORM layer."""

    def test_update_refused(self, db, recorded):
        with pytest.raises(ImmutabilityViolationError, match="append-only; update refused"):
            with db() as session:
                event = session.execute(
                    select(AuditEvent).where(AuditEvent.seq == 1)
                ).scalar_one()
                event.action = "loan_rejected"
                session.flush()

    def test_delete_refused(self, db, recorded):
        with pytest.raises(ImmutabilityViolationError) as exc_info:
            with db() as session:
                event = session.execute(
                    select(AuditEvent).where(AuditEvent.seq == 2)
                ).scalar_one()
                session.delete(event)
                session.flush()

        assert exc_info.value.code == "IMMUTABILITY_VIOLATION"
        assert exc_info.value.operation == "delete"

    def test_tampering_below_the_orm_is_detected(self, db, recorded, clock):
        with db() as session:
            session.execute(text("UPDATE audit_events SET payload_hash = 'x' WHERE seq = 2"))

        with db() as session:
            with pytest.raises(AuditChainBrokenError):
                AuditorService(session, clock).validate_chain()

    def test_broken_link_is_detected(self, db, recorded, clock):
        with db() as session:
            session.execute(text("UPDATE audit_events SET prev_hash = NULL WHERE seq = 3"))

        with db() as session:
            with pytest.raises(AuditChainBrokenError) as exc_info:
                AuditorService(session, clock).validate_chain()

        assert exc_info.value.actual_hash == "None"


class TestHashing:
    def test_canonical_json_is_order_independent(self):
        assert canonicalize_json({"b": 1, "a": 2}) == canonicalize_json({"a": 2, "b": 1})
        assert canonicalize_json({"b": 1, "a": 2}) == '{"a":2,"b":1}'

    def test_domain_values(self):
        loan_id = UUID("12345678-1234-5678-1234-567812345678")

        encoded = canonicalize_json({
            "amount": Decimal("400.50"),
            "due": date(2025, 2, 15),
            "loan": loan_id,
            "action": AuditAction.PAYMENT_APPLIED,
        })

        assert encoded == (
            '{"action":"payment_applied","amount":"400.5","due":"2025-02-15",'
            '"loan":"12345678-1234-5678-1234-567812345678"}'
        )

    def test_equal_decimals_hash_equally(self):
        assert hash_payload({"fee": Decimal("4.50")}) == hash_payload({"fee": Decimal("4.5")})

    def test_event_hash_depends_on_predecessor(self):
        args = dict(entity_type="Loan", entity_id="l-1", action="loan_approved", payload_hash="p")

        genesis = hash_audit_event(prev_hash=None, **args)

        assert genesis == hash_audit_event(prev_hash="", **args)
        assert genesis != hash_audit_event(prev_hash=genesis, **args)
        assert len(genesis) == 64

    def test_unsupported_type(self):
        with pytest.raises(TypeError, match="not JSON serializable"):
            canonicalize_json({"when": object()})
