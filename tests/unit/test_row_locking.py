"""
Tests for row locking in the mutating procedures.

SQLite ignores FOR UPDATE, so locked reads are checked by compiling the
statements the procedures issue against the PostgreSQL dialect.
"""

import pytest
from sqlalchemy import event, select, update
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import IntegrityError

from namlend_kernel.domain.roles import Role
from namlend_kernel.models import DisbursementModel, LoanModel
from namlend_kernel.services.auditor_service import AuditorService
from namlend_services.procedures.registry import ProcedureContext


@pytest.fixture
def locked_reads(session_factory):
    """Collects the mapped classes every SELECT ... FOR UPDATE read."""
    locked = []

    @event.listens_for(session_factory, "do_orm_execute")
    def _collect(state):
        if not state.is_select or state.bind_mapper is None:
            return
        sql = str(state.statement.compile(dialect=postgresql.dialect()))
        if "FOR UPDATE" in sql:
            locked.append(state.bind_mapper.class_)

    return locked


@pytest.fixture
def disbursement_id(executor, make_loan):
    result = executor.execute("approve_loan", {"p_loan_id": str(make_loan())})
    assert result["success"], result
    return str(result["disbursement_id"])


def _disbursement(loan_id, status, clock, reference):
    return DisbursementModel(
        loan_id=loan_id,
        amount=5000,
        status=status,
        reference=reference,
        scheduled_at=clock.now(),
        created_at=clock.now(),
        updated_at=clock.now(),
    )


class TestLockedReads:
    def test_locked_get_refreshes_a_stale_row(self, db, users, clock, config, disbursement_id):
        with db() as session:
            ctx = ProcedureContext(
                session=session,
                actor_id=users.admin,
                actor_roles=frozenset({Role.ADMIN}),
                clock=clock,
                config=config,
                auditor=AuditorService(session, clock),
            )
            stale = ctx.get(DisbursementModel, disbursement_id)
            table = DisbursementModel.__table__
            session.execute(
                update(table).where(table.c.id == stale.id).values(status="approved")
            )

            assert ctx.get(DisbursementModel, disbursement_id).status == "pending"
            assert ctx.get(DisbursementModel, disbursement_id, for_update=True).status == "approved"

    def test_transitions_lock_the_disbursement(self, executor, disbursement_id, locked_reads):
        executor.execute("approve_disbursement", {"p_disbursement_id": disbursement_id})
        executor.execute("mark_disbursement_processing", {"p_disbursement_id": disbursement_id})

        assert locked_reads == [DisbursementModel, DisbursementModel]

    def test_completion_locks_disbursement_then_loan(self, executor, disbursement_id, locked_reads):
        executor.execute("approve_disbursement", {"p_disbursement_id": disbursement_id})
        locked_reads.clear()

        result = executor.execute("complete_disbursement", {
            "p_disbursement_id": disbursement_id,
            "p_payment_method": "bank_transfer",
            "p_payment_reference": "EFT-20250115-01",
        })

        assert result["success"], result
        assert locked_reads == [DisbursementModel, LoanModel]

    def test_second_completion_sees_the_first(self, executor, disbursement_id):
        args = {
            "p_disbursement_id": disbursement_id,
            "p_payment_method": "cash",
            "p_payment_reference": "RCPT-7",
        }
        executor.execute("approve_disbursement", {"p_disbursement_id": disbursement_id})

        assert executor.execute("complete_disbursement", args)["success"] is True
        assert executor.execute("complete_disbursement", args)["code"] == "ALREADY_DISBURSED"

    def test_approval_locks_the_loan(self, executor, make_loan, locked_reads):
        executor.execute("approve_loan", {"p_loan_id": str(make_loan())})

        assert locked_reads[0] is LoanModel


class TestOneOpenDisbursementPerLoan:
    """The store itself refuses a second non-failed disbursement."""

    def test_second_open_disbursement_refused(self, db, clock, make_loan):
        loan_id = make_loan(status="approved")
        with db() as session:
            session.add(_disbursement(loan_id, "pending", clock, "DISB-A"))

        with pytest.raises(IntegrityError):
            with db() as session:
                session.add(_disbursement(loan_id, "approved", clock, "DISB-B"))

    def test_failed_disbursement_does_not_count(self, db, clock, make_loan):
        loan_id = make_loan(status="approved")
        with db() as session:
            session.add(_disbursement(loan_id, "failed", clock, "DISB-A"))
            session.add(_disbursement(loan_id, "failed", clock, "DISB-B"))
            session.add(_disbursement(loan_id, "pending", clock, "DISB-C"))

        with db() as session:
            rows = session.execute(
                select(DisbursementModel.reference).where(DisbursementModel.loan_id == loan_id)
            ).scalars().all()
        assert sorted(rows) == ["DISB-A", "DISB-B", "DISB-C"]

    def test_other_loans_unaffected(self, db, clock, make_loan):
        first, second = make_loan(status="approved"), make_loan(status="approved")
        with db() as session:
            session.add(_disbursement(first, "pending", clock, "DISB-A"))
            session.add(_disbursement(second, "pending", clock, "DISB-B"))

        with db() as session:
            assert len(session.execute(select(DisbursementModel)).scalars().all()) == 2
