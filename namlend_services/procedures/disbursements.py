"""
Disbursement lifecycle procedures.

Every transition loads the disbursement, checks the caller, checks the
current status against DISBURSEMENT_TRANSITIONS, applies the change and
appends an audit event, all in the executor's single transaction. The
disbursement row (and the loan row where it changes) is read FOR UPDATE,
so two concurrent transitions on one disbursement serialize and the second
sees the first one's result.

complete_disbursement checks, in order:
    caller is staff -> payment method recognised -> payment reference
    present -> disbursement exists -> disbursement not terminal -> loan
    not already disbursed -> transition allowed from current status.
"""

from __future__ import annotations

from typing import Any
from uuid import uuid4

from sqlalchemy import select

from namlend_engines.amortization import calculate_monthly_payment
from namlend_kernel.domain.disbursement import (
    TERMINAL_DISBURSEMENT_STATUSES,
    DisbursementStatus,
    LoanStatus,
    PaymentMethod,
    can_transition,
)
from namlend_kernel.exceptions import (
    AlreadyDisbursedError,
    AuthorizationError,
    DisbursementExistsError,
    InvalidPaymentMethodError,
    InvalidTransitionError,
    MissingPaymentReferenceError,
    MissingReasonError,
    StateConflictError,
)
from namlend_kernel.logging_config import get_logger
from namlend_kernel.models.audit_event import AuditAction
from namlend_kernel.models.disbursement import DisbursementModel
from namlend_kernel.models.loan import LoanModel
from namlend_services.procedures.notify import write_notification
from namlend_services.procedures.registry import (
    ProcedureContext,
    parse_uuid,
    procedure,
    require_text,
)

logger = get_logger("services.procedures.disbursements")

OPEN_STATUSES = (
    DisbursementStatus.PENDING.value,
    DisbursementStatus.APPROVED.value,
    DisbursementStatus.PROCESSING.value,
)


def _new_reference(ctx: ProcedureContext) -> str:
    return f"DISB-{ctx.clock.now():%Y%m%d}-{uuid4().hex[:8].upper()}"


def _envelope(d: DisbursementModel, message: str, **extra: Any) -> dict[str, Any]:
    return {
        "success": True,
        "disbursement_id": d.id,
        "loan_id": d.loan_id,
        "amount": d.amount,
        "status": d.status,
        "message": message,
        **extra,
    }


def _check_transition(d: DisbursementModel, target: DisbursementStatus) -> DisbursementStatus:
    current = DisbursementStatus(d.status)
    if current in TERMINAL_DISBURSEMENT_STATUSES:
        raise AlreadyDisbursedError("Disbursement", str(d.id), state=current.value)
    if not can_transition(current, target):
        raise InvalidTransitionError("Disbursement", current.value, target.value)
    return current


def _open_disbursement(ctx: ProcedureContext, loan: LoanModel) -> DisbursementModel | None:
    return ctx.session.execute(
        select(DisbursementModel)
        .where(
            DisbursementModel.loan_id == loan.id,
            DisbursementModel.status != DisbursementStatus.FAILED.value,
        )
        .limit(1)
    ).scalar_one_or_none()


def create_pending_disbursement(ctx: ProcedureContext, loan: LoanModel) -> DisbursementModel:
    """Create the pending disbursement for an approved loan (one per loan)."""
    if loan.status != LoanStatus.APPROVED.value:
        raise StateConflictError(
            f"Loan {loan.id} is {loan.status}; only approved loans can be disbursed"
        )
    existing = _open_disbursement(ctx, loan)
    if existing is not None:
        raise DisbursementExistsError(str(loan.id), str(existing.id))

    now = ctx.clock.now()
    d = DisbursementModel(
        loan_id=loan.id,
        amount=loan.amount,
        status=DisbursementStatus.PENDING.value,
        reference=_new_reference(ctx),
        created_by=ctx.actor_id,
        scheduled_at=now,
        created_at=now,
        updated_at=now,
    )
    ctx.session.add(d)
    ctx.session.flush()
    ctx.auditor.record(
        "Disbursement", d.id, AuditAction.DISBURSEMENT_CREATED, ctx.actor_id,
        {"loan_id": loan.id, "amount": d.amount, "reference": d.reference},
    )
    logger.info(
        "disbursement_created",
        extra={"disbursement_id": str(d.id), "loan_id": str(loan.id), "amount": d.amount},
    )
    return d


def approve_pending_loan(ctx: ProcedureContext, loan: LoanModel, notes: str | None = None) -> DisbursementModel:
    """Move a pending loan to approved and open its disbursement."""
    if loan.status != LoanStatus.PENDING.value:
        raise InvalidTransitionError("Loan", loan.status, LoanStatus.APPROVED.value)

    now = ctx.clock.now()
    loan.status = LoanStatus.APPROVED.value
    loan.approved_at = now
    loan.updated_at = now
    loan.monthly_payment = calculate_monthly_payment(
        loan.amount, loan.interest_rate, loan.term_months,
    )
    ctx.auditor.record(
        "Loan", loan.id, AuditAction.LOAN_APPROVED, ctx.actor_id,
        {"notes": notes, "monthly_payment": loan.monthly_payment},
    )
    d = create_pending_disbursement(ctx, loan)
    write_notification(
        ctx, loan.user_id, "loan_approved", "Loan approved",
        f"Your loan of N${loan.amount:,.2f} has been approved.",
        {"loan_id": str(loan.id)},
    )
    logger.info("loan_approved", extra={"loan_id": str(loan.id)})
    return d


@procedure("approve_loan")
def approve_loan(ctx: ProcedureContext, p_loan_id: Any, p_notes: str | None = None) -> dict:
    ctx.require_staff("approve_loan")
    loan = ctx.get(LoanModel, p_loan_id, "Loan", for_update=True)
    d = approve_pending_loan(ctx, loan, require_text(p_notes))
    return _envelope(d, "Loan approved and disbursement created", reference=d.reference)


@procedure("create_disbursement_on_approval")
def create_disbursement_on_approval(ctx: ProcedureContext, p_loan_id: Any) -> dict:
    ctx.require_staff("create_disbursement_on_approval")
    loan = ctx.get(LoanModel, p_loan_id, "Loan", for_update=True)
    d = create_pending_disbursement(ctx, loan)
    return _envelope(d, "Disbursement created", reference=d.reference)


@procedure("approve_disbursement")
def approve_disbursement(
    ctx: ProcedureContext, p_disbursement_id: Any, p_notes: str | None = None,
) -> dict:
    ctx.require_staff("approve_disbursement")
    d = ctx.get(DisbursementModel, p_disbursement_id, "Disbursement", for_update=True)
    previous = _check_transition(d, DisbursementStatus.APPROVED)

    notes = require_text(p_notes)
    d.status = DisbursementStatus.APPROVED.value
    d.append_note(notes)
    d.updated_at = ctx.clock.now()
    ctx.auditor.record(
        "Disbursement", d.id, AuditAction.DISBURSEMENT_APPROVED, ctx.actor_id,
        {"from_status": previous.value, "notes": notes},
    )
    logger.info("disbursement_approved", extra={"disbursement_id": str(d.id)})
    return _envelope(d, "Disbursement approved")


@procedure("mark_disbursement_processing")
def mark_disbursement_processing(
    ctx: ProcedureContext, p_disbursement_id: Any, p_notes: str | None = None,
) -> dict:
    ctx.require_staff("mark_disbursement_processing")
    d = ctx.get(DisbursementModel, p_disbursement_id, "Disbursement", for_update=True)
    previous = _check_transition(d, DisbursementStatus.PROCESSING)

    notes = require_text(p_notes)
    d.status = DisbursementStatus.PROCESSING.value
    d.append_note(notes)
    d.updated_at = ctx.clock.now()
    ctx.auditor.record(
        "Disbursement", d.id, AuditAction.DISBURSEMENT_PROCESSING, ctx.actor_id,
        {"from_status": previous.value, "notes": notes},
    )
    logger.info("disbursement_processing", extra={"disbursement_id": str(d.id)})
    return _envelope(d, "Disbursement marked as processing")


@procedure("complete_disbursement")
def complete_disbursement(
    ctx: ProcedureContext,
    p_disbursement_id: Any,
    p_payment_method: str | None = None,
    p_payment_reference: str | None = None,
    p_notes: str | None = None,
) -> dict:
    ctx.require_staff("complete_disbursement")
    if not PaymentMethod.is_valid(p_payment_method):
        raise InvalidPaymentMethodError(p_payment_method)
    reference = require_text(p_payment_reference)
    if reference is None:
        raise MissingPaymentReferenceError()

    d = ctx.get(DisbursementModel, p_disbursement_id, "Disbursement", for_update=True)
    current = DisbursementStatus(d.status)
    if current in TERMINAL_DISBURSEMENT_STATUSES:
        raise AlreadyDisbursedError("Disbursement", str(d.id), state=current.value)

    loan = ctx.get(LoanModel, d.loan_id, "Loan", for_update=True)
    if loan.status == LoanStatus.DISBURSED.value or loan.disbursed_at is not None:
        raise AlreadyDisbursedError("Loan", str(loan.id), state="disbursed")
    if not can_transition(current, DisbursementStatus.COMPLETED):
        raise InvalidTransitionError("Disbursement", current.value, "completed")

    now = ctx.clock.now()
    notes = require_text(p_notes)
    d.status = DisbursementStatus.COMPLETED.value
    d.method = p_payment_method
    d.payment_reference = reference
    d.processed_at = now
    d.updated_at = now
    d.append_note(notes)

    loan.status = LoanStatus.DISBURSED.value
    loan.disbursed_at = now
    loan.updated_at = now

    ctx.auditor.record(
        "Disbursement", d.id, AuditAction.DISBURSEMENT_COMPLETED, ctx.actor_id,
        {
            "loan_id": loan.id,
            "amount": d.amount,
            "payment_method": p_payment_method,
            "payment_reference": reference,
            "notes": notes,
        },
    )
    ctx.auditor.record(
        "Loan", loan.id, AuditAction.LOAN_DISBURSED, ctx.actor_id,
        {"disbursement_id": d.id},
    )
    write_notification(
        ctx, loan.user_id, "loan_disbursed", "Loan disbursed",
        f"N${d.amount:,.2f} has been paid out via {p_payment_method.replace('_', ' ')} "
        f"(reference {reference}).",
        {"loan_id": str(loan.id), "disbursement_id": str(d.id)},
    )
    logger.info(
        "disbursement_completed",
        extra={
            "disbursement_id": str(d.id),
            "loan_id": str(loan.id),
            "payment_method": p_payment_method,
        },
    )
    return _envelope(
        d,
        "Disbursement completed",
        payment_method=p_payment_method,
        payment_reference=reference,
        borrower_id=loan.user_id,
    )


@procedure("fail_disbursement")
def fail_disbursement(ctx: ProcedureContext, p_disbursement_id: Any, p_reason: str | None = None) -> dict:
    ctx.require_staff("fail_disbursement")
    reason = require_text(p_reason)
    if reason is None:
        raise MissingReasonError("Failure reason")
    d = ctx.get(DisbursementModel, p_disbursement_id, "Disbursement", for_update=True)
    previous = _check_transition(d, DisbursementStatus.FAILED)

    now = ctx.clock.now()
    d.status = DisbursementStatus.FAILED.value
    d.processed_at = now
    d.updated_at = now
    d.append_note(f"Failed: {reason}")
    ctx.auditor.record(
        "Disbursement", d.id, AuditAction.DISBURSEMENT_FAILED, ctx.actor_id,
        {"from_status": previous.value, "reason": reason},
    )
    logger.warning(
        "disbursement_failed", extra={"disbursement_id": str(d.id), "reason": reason},
    )
    loan = ctx.get(LoanModel, d.loan_id, "Loan")
    return _envelope(d, "Disbursement marked as failed", borrower_id=loan.user_id)


def _rows_with_borrower(ctx: ProcedureContext, stmt) -> list[dict[str, Any]]:
    return [d.to_row(borrower_id=user_id) for d, user_id in ctx.session.execute(stmt).all()]


@procedure("get_pending_disbursements", mutates=False)
def get_pending_disbursements(ctx: ProcedureContext) -> list[dict[str, Any]]:
    ctx.require_staff("get_pending_disbursements")
    stmt = (
        select(DisbursementModel, LoanModel.user_id)
        .join(LoanModel, LoanModel.id == DisbursementModel.loan_id)
        .where(DisbursementModel.status.in_(OPEN_STATUSES))
        .order_by(DisbursementModel.created_at, DisbursementModel.reference)
    )
    return _rows_with_borrower(ctx, stmt)


def _require_staff_or_owner(ctx: ProcedureContext, loan: LoanModel, action: str) -> None:
    if not ctx.is_staff and loan.user_id != ctx.actor_id:
        raise AuthorizationError(action, required="admin, loan_officer or loan owner")


@procedure("get_disbursement", mutates=False)
def get_disbursement(ctx: ProcedureContext, p_disbursement_id: Any) -> dict[str, Any]:
    d = ctx.get(DisbursementModel, p_disbursement_id, "Disbursement")
    loan = ctx.get(LoanModel, d.loan_id, "Loan")
    _require_staff_or_owner(ctx, loan, "get_disbursement")
    return d.to_row(borrower_id=loan.user_id)


@procedure("get_disbursements_for_loan", mutates=False)
def get_disbursements_for_loan(ctx: ProcedureContext, p_loan_id: Any) -> list[dict[str, Any]]:
    loan = ctx.get(LoanModel, parse_uuid(p_loan_id, "Loan"), "Loan")
    _require_staff_or_owner(ctx, loan, "get_disbursements_for_loan")
    stmt = (
        select(DisbursementModel, LoanModel.user_id)
        .join(LoanModel, LoanModel.id == DisbursementModel.loan_id)
        .where(DisbursementModel.loan_id == loan.id)
        .order_by(DisbursementModel.created_at.desc())
    )
    return _rows_with_borrower(ctx, stmt)
