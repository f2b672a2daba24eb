"""
Payment schedule ledger procedures.

Amounts arriving as RPC arguments are parsed with ``to_decimal`` (never
through float). All ledger arithmetic is delegated to the pure engines in
``namlend_engines``; these procedures only load rows, call the engine and
write the result back together with the audit trail.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import delete, select, update

from namlend_engines.allocation import AllocationTarget, allocate_payment
from namlend_engines.amortization import add_months, build_schedule
from namlend_engines.late_fee import LateFeePolicy, calculate_late_fee as quote_late_fee
from namlend_engines.overdue import OverdueCandidate, days_overdue, scan_overdue
from namlend_kernel.domain.disbursement import LoanStatus, PaymentMethod
from namlend_kernel.domain.schedule import (
    OPEN_SCHEDULE_STATUSES,
    SETTLED_SCHEDULE_STATUSES,
    LateFeeStatus,
    PaymentStatus,
    RegenerationPolicy,
    ScheduleStatus,
)
from namlend_kernel.domain.values import ZERO, to_decimal
from namlend_kernel.exceptions import (
    AuthorizationError,
    InvalidAmountError,
    InvalidPaymentMethodError,
    LateFeeAlreadyWaivedError,
    MissingReasonError,
    ScheduleAlreadyExistsError,
    StateConflictError,
    ValidationError,
)
from namlend_kernel.logging_config import get_logger
from namlend_kernel.models.audit_event import AuditAction
from namlend_kernel.models.loan import LoanModel
from namlend_kernel.models.payment import PaymentModel
from namlend_kernel.models.schedule import LateFeeModel, PaymentScheduleModel
from namlend_services.procedures.registry import (
    ProcedureContext,
    procedure,
    require_text,
)

logger = get_logger("services.procedures.schedule")

SCHEDULABLE_LOAN_STATUSES = frozenset({LoanStatus.APPROVED.value, LoanStatus.DISBURSED.value})
_OPEN = tuple(s.value for s in OPEN_SCHEDULE_STATUSES)
_SETTLED = frozenset(s.value for s in SETTLED_SCHEDULE_STATUSES)


def _late_fee_policy(ctx: ProcedureContext) -> LateFeePolicy:
    cfg = ctx.config.late_fee
    return LateFeePolicy(
        grace_days=cfg.grace_days,
        daily_rate=cfg.daily_rate,
        max_fee_ratio=cfg.max_fee_ratio,
        max_fee=cfg.max_fee,
    )


def _positive_amount(value: Any) -> Any:
    try:
        amount = to_decimal(value)
    except ValueError:
        raise InvalidAmountError(value, "not a number") from None
    if amount <= ZERO:
        raise InvalidAmountError(amount, "must be positive")
    return amount


def _require_staff_or_owner(ctx: ProcedureContext, loan: LoanModel, action: str) -> None:
    if not ctx.is_staff and loan.user_id != ctx.actor_id:
        raise AuthorizationError(action, required="admin, loan_officer or loan owner")


def _entries(
    ctx: ProcedureContext,
    loan_id: Any,
    statuses: tuple[str, ...] | None = None,
    *,
    for_update: bool = False,
):
    stmt = select(PaymentScheduleModel).where(PaymentScheduleModel.loan_id == loan_id)
    if statuses is not None:
        stmt = stmt.where(PaymentScheduleModel.status.in_(statuses))
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    return ctx.session.execute(
        stmt.order_by(PaymentScheduleModel.due_date, PaymentScheduleModel.installment_number)
    ).scalars().all()


def _schedule_row(entry: PaymentScheduleModel) -> dict[str, Any]:
    return {**entry.to_row(), "balance": entry.balance}


def _mark_repaid_if_settled(ctx: ProcedureContext, loan: LoanModel) -> bool:
    entries = _entries(ctx, loan.id)
    if not entries or any(e.status not in _SETTLED for e in entries):
        return False
    if loan.status == LoanStatus.REPAID.value:
        return False
    loan.status = LoanStatus.REPAID.value
    loan.updated_at = ctx.clock.now()
    ctx.auditor.record("Loan", loan.id, AuditAction.LOAN_REPAID, ctx.actor_id, {})
    logger.info("loan_repaid", extra={"loan_id": str(loan.id)})
    return True


# ---------------------------------------------------------------------------
# Schedule generation
# ---------------------------------------------------------------------------


@procedure("generate_payment_schedule")
def generate_payment_schedule(ctx: ProcedureContext, p_loan_id: Any) -> dict:
    ctx.require_staff("generate_payment_schedule")
    loan = ctx.get(LoanModel, p_loan_id, "Loan", for_update=True)
    if loan.status not in SCHEDULABLE_LOAN_STATUSES:
        raise StateConflictError(
            f"Loan {loan.id} is {loan.status}; schedules need an approved or disbursed loan"
        )

    existing = _entries(ctx, loan.id)
    if existing:
        policy = ctx.config.schedule.regeneration_policy
        if policy == RegenerationPolicy.ERROR:
            raise ScheduleAlreadyExistsError(str(loan.id), len(existing))
        if any(e.amount_paid > ZERO for e in existing):
            raise StateConflictError(
                f"Cannot replace the schedule for loan {loan.id}: payments have been applied"
            )
        ids = [e.id for e in existing]
        ctx.session.execute(delete(LateFeeModel).where(LateFeeModel.schedule_id.in_(ids)))
        ctx.session.execute(delete(PaymentScheduleModel).where(PaymentScheduleModel.id.in_(ids)))
        logger.info(
            "payment_schedule_replaced",
            extra={"loan_id": str(loan.id), "removed": len(ids)},
        )

    start = loan.disbursed_at or loan.approved_at or ctx.clock.now()
    installments = build_schedule(
        principal=loan.amount,
        annual_rate_percent=loan.interest_rate,
        term_months=loan.term_months,
        first_due_date=add_months(start.date(), 1),
        fee_per_installment=ctx.config.schedule.fee_per_installment,
        apr_limit=ctx.config.schedule.apr_limit,
    )

    now = ctx.clock.now()
    for inst in installments:
        ctx.session.add(
            PaymentScheduleModel(
                loan_id=loan.id,
                installment_number=inst.installment_number,
                due_date=inst.due_date,
                principal_amount=inst.principal_amount,
                interest_amount=inst.interest_amount,
                fee_amount=inst.fee_amount,
                late_fee_applied=ZERO,
                total_amount=inst.total_amount,
                amount_paid=ZERO,
                status=ScheduleStatus.PENDING.value,
                days_overdue=0,
                created_at=now,
                updated_at=now,
            )
        )
    monthly_payment = installments[0].total_amount
    loan.monthly_payment = monthly_payment
    loan.updated_at = now
    ctx.session.flush()

    ctx.auditor.record(
        "Loan", loan.id, AuditAction.SCHEDULE_GENERATED, ctx.actor_id,
        {"installments": len(installments), "monthly_payment": monthly_payment},
    )
    logger.info(
        "payment_schedule_generated",
        extra={"loan_id": str(loan.id), "installments": len(installments)},
    )
    return {
        "success": True,
        "loan_id": loan.id,
        "schedules_created": len(installments),
        "monthly_payment": monthly_payment,
    }


@procedure("get_payment_schedule", mutates=False)
def get_payment_schedule(ctx: ProcedureContext, p_loan_id: Any) -> list[dict[str, Any]]:
    loan = ctx.get(LoanModel, p_loan_id, "Loan")
    _require_staff_or_owner(ctx, loan, "get_payment_schedule")
    return [_schedule_row(e) for e in _entries(ctx, loan.id)]


# ---------------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------------


@procedure("record_payment")
def record_payment(
    ctx: ProcedureContext,
    p_loan_id: Any,
    p_amount: Any,
    p_payment_method: str | None = None,
    p_reference: str | None = None,
) -> dict:
    loan = ctx.get(LoanModel, p_loan_id, "Loan")
    _require_staff_or_owner(ctx, loan, "record_payment")
    amount = _positive_amount(p_amount)
    if not PaymentMethod.is_valid(p_payment_method):
        raise InvalidPaymentMethodError(p_payment_method)
    if loan.status not in SCHEDULABLE_LOAN_STATUSES:
        raise StateConflictError(f"Loan {loan.id} is {loan.status}; it cannot accept payments")

    now = ctx.clock.now()
    payment = PaymentModel(
        loan_id=loan.id,
        amount=amount,
        applied_amount=ZERO,
        method=p_payment_method,
        reference=require_text(p_reference),
        status=PaymentStatus.COMPLETED.value,
        paid_at=now,
        recorded_by=ctx.actor_id,
        created_at=now,
        updated_at=now,
    )
    ctx.session.add(payment)
    ctx.session.flush()
    ctx.auditor.record(
        "Payment", payment.id, AuditAction.PAYMENT_RECORDED, ctx.actor_id,
        {"loan_id": loan.id, "amount": amount, "method": p_payment_method},
    )
    logger.info(
        "payment_recorded",
        extra={"payment_id": str(payment.id), "loan_id": str(loan.id), "amount": amount},
    )
    return {"success": True, "payment_id": payment.id, "status": payment.status}


@procedure("get_payments", mutates=False)
def get_payments(ctx: ProcedureContext, p_loan_id: Any, p_status: str | None = None) -> list[dict[str, Any]]:
    """Payments recorded against a loan, newest first, with their unapplied remainder."""
    loan = ctx.get(LoanModel, p_loan_id, "Loan")
    _require_staff_or_owner(ctx, loan, "get_payments")
    stmt = select(PaymentModel).where(PaymentModel.loan_id == loan.id)
    if p_status is not None:
        try:
            status = PaymentStatus(p_status)
        except ValueError:
            raise ValidationError(f"Invalid payment status: {p_status!r}") from None
        stmt = stmt.where(PaymentModel.status == status.value)
    rows = ctx.session.execute(
        stmt.order_by(PaymentModel.paid_at.desc(), PaymentModel.created_at.desc())
    ).scalars().all()
    return [p.to_row() for p in rows]


@procedure("apply_payment_to_schedule")
def apply_payment_to_schedule(ctx: ProcedureContext, p_payment_id: Any, p_amount: Any) -> dict:
    ctx.require_staff("apply_payment_to_schedule")
    payment = ctx.get(PaymentModel, p_payment_id, "Payment", for_update=True)
    if payment.status != PaymentStatus.COMPLETED.value:
        raise StateConflictError(f"Payment {payment.id} is {payment.status}; only completed payments apply")
    amount = _positive_amount(p_amount)
    if amount > payment.unapplied:
        raise InvalidAmountError(
            amount, f"exceeds the unapplied balance {payment.unapplied} of payment {payment.id}",
        )

    entries = {str(e.id): e for e in _entries(ctx, payment.loan_id, _OPEN, for_update=True)}
    allocation = allocate_payment(
        amount=amount,
        targets=[
            AllocationTarget(
                schedule_id=sid,
                installment_number=e.installment_number,
                due_date=e.due_date,
                balance=e.balance,
            )
            for sid, e in entries.items()
        ],
    )

    now = ctx.clock.now()
    for line in allocation.lines:
        entry = entries[line.schedule_id]
        entry.amount_paid = entry.amount_paid + line.amount
        entry.updated_at = now
        if line.settles:
            entry.status = ScheduleStatus.PAID.value
            entry.paid_at = now
        elif entry.status != ScheduleStatus.OVERDUE.value:
            entry.status = ScheduleStatus.PARTIALLY_PAID.value

    payment.applied_amount = payment.applied_amount + allocation.amount_applied
    payment.updated_at = now
    ctx.session.flush()

    ctx.auditor.record(
        "Payment", payment.id, AuditAction.PAYMENT_APPLIED, ctx.actor_id,
        {
            "amount": amount,
            "amount_applied": allocation.amount_applied,
            "unapplied_amount": allocation.unapplied_amount,
            "installments": [line.installment_number for line in allocation.lines],
        },
    )
    loan = ctx.get(LoanModel, payment.loan_id, "Loan", for_update=True)
    _mark_repaid_if_settled(ctx, loan)

    logger.info(
        "payment_applied",
        extra={
            "payment_id": str(payment.id),
            "schedules_updated": allocation.entries_updated,
            "amount_applied": allocation.amount_applied,
        },
    )
    return {
        "success": True,
        "payment_id": payment.id,
        "schedules_updated": allocation.entries_updated,
        "amount_applied": allocation.amount_applied,
        "unapplied_amount": allocation.unapplied_amount,
        "remaining_amount": allocation.unapplied_amount,
    }


# ---------------------------------------------------------------------------
# Overdue and late fees
# ---------------------------------------------------------------------------


@procedure("mark_overdue_payments")
def mark_overdue_payments(ctx: ProcedureContext) -> dict:
    ctx.require_staff("mark_overdue_payments")
    today = ctx.clock.today()
    rows = ctx.session.execute(
        select(PaymentScheduleModel).where(PaymentScheduleModel.status.in_(_OPEN))
    ).scalars().all()
    by_id = {str(r.id): r for r in rows}

    scan = scan_overdue(
        candidates=[
            OverdueCandidate(
                schedule_id=sid,
                status=ScheduleStatus(r.status),
                due_date=r.due_date,
                balance=r.balance,
            )
            for sid, r in by_id.items()
        ],
        as_of=today,
    )

    now = ctx.clock.now()
    # Conditional updates: a row settled by a concurrent payment since the
    # read above is no longer open and is left alone.
    still_open = PaymentScheduleModel.status.in_(_OPEN)
    marked = 0
    for sid in scan.newly_overdue:
        result = ctx.session.execute(
            update(PaymentScheduleModel)
            .where(PaymentScheduleModel.id == by_id[sid].id, still_open)
            .values(status=ScheduleStatus.OVERDUE.value, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        marked += result.rowcount
    for sid, days in scan.days_by_schedule.items():
        if by_id[sid].days_overdue != days:
            ctx.session.execute(
                update(PaymentScheduleModel)
                .where(PaymentScheduleModel.id == by_id[sid].id, still_open)
                .values(days_overdue=days, updated_at=now)
                .execution_options(synchronize_session=False)
            )

    logger.info(
        "overdue_payments_marked",
        extra={"schedules_marked": marked, "as_of": today},
    )
    return {
        "success": True,
        "schedules_marked": marked,
        "marked_at": now,
        "processed_at": now,
    }


def _quote(ctx: ProcedureContext, entry: PaymentScheduleModel):
    days = days_overdue(entry.due_date, ctx.clock.today())
    quote = quote_late_fee(balance=entry.balance, days_overdue=days, policy=_late_fee_policy(ctx))
    return days, quote


@procedure("calculate_late_fee", mutates=False)
def calculate_late_fee(ctx: ProcedureContext, p_schedule_id: Any) -> dict:
    entry = ctx.get(PaymentScheduleModel, p_schedule_id, "PaymentSchedule")
    loan = ctx.get(LoanModel, entry.loan_id, "Loan")
    _require_staff_or_owner(ctx, loan, "calculate_late_fee")

    days, quote = _quote(ctx, entry)
    return {
        "success": True,
        "schedule_id": entry.id,
        "late_fee": quote.fee,
        "days_overdue": days,
        "balance": entry.balance,
        "outstanding_balance": entry.balance,
        "calculation_method": "daily_rate_after_grace",
        "grace_days": ctx.config.late_fee.grace_days,
        "max_fee_cap": quote.cap,
    }


@procedure("assess_late_fee")
def assess_late_fee(ctx: ProcedureContext, p_schedule_id: Any) -> dict:
    ctx.require_staff("assess_late_fee")
    entry = ctx.get(PaymentScheduleModel, p_schedule_id, "PaymentSchedule", for_update=True)

    active = ctx.session.execute(
        select(LateFeeModel).where(
            LateFeeModel.schedule_id == entry.id,
            LateFeeModel.status == LateFeeStatus.APPLIED.value,
        )
    ).scalar_one_or_none()
    if active is not None:
        raise StateConflictError(
            f"Late fee already assessed for schedule {entry.id}: {active.id}"
        )

    days, quote = _quote(ctx, entry)
    if quote.fee <= ZERO:
        raise StateConflictError(f"No late fee is due for schedule {entry.id}")

    now = ctx.clock.now()
    fee = LateFeeModel(
        schedule_id=entry.id,
        loan_id=entry.loan_id,
        fee_amount=quote.fee,
        days_overdue=days,
        status=LateFeeStatus.APPLIED.value,
        assessed_by=ctx.actor_id,
        created_at=now,
        updated_at=now,
    )
    ctx.session.add(fee)
    entry.late_fee_applied = entry.late_fee_applied + quote.fee
    entry.total_amount = entry.total_amount + quote.fee
    entry.updated_at = now
    ctx.session.flush()

    ctx.auditor.record(
        "LateFee", fee.id, AuditAction.LATE_FEE_ASSESSED, ctx.actor_id,
        {"schedule_id": entry.id, "fee": quote.fee, "days_overdue": days},
    )
    logger.info(
        "late_fee_assessed",
        extra={"late_fee_id": str(fee.id), "schedule_id": str(entry.id), "fee": quote.fee},
    )
    return {
        "success": True,
        "late_fee_id": fee.id,
        "late_fee": quote.fee,
        "days_overdue": days,
        "balance": entry.balance,
    }


@procedure("waive_late_fee")
def waive_late_fee(ctx: ProcedureContext, p_late_fee_id: Any, p_reason: str | None = None) -> dict:
    """Forgive an assessed late fee; principal and interest are untouched.

    Only the unpaid part of the fee can be forgiven, so the waived amount is
    ``min(fee, entry balance)``. An entry whose balance reaches zero this
    way becomes ``waived``.
    """
    ctx.require_staff("waive_late_fee")
    reason = require_text(p_reason)
    if reason is None:
        raise MissingReasonError("Waiver reason")
    fee = ctx.get(LateFeeModel, p_late_fee_id, "LateFee", for_update=True)
    if fee.status == LateFeeStatus.WAIVED.value:
        raise LateFeeAlreadyWaivedError(str(fee.id))

    entry = ctx.get(PaymentScheduleModel, fee.schedule_id, "PaymentSchedule", for_update=True)
    waived = min(fee.fee_amount, entry.balance)
    now = ctx.clock.now()

    fee.status = LateFeeStatus.WAIVED.value
    fee.waived_amount = waived
    fee.waived_by = ctx.actor_id
    fee.waived_at = now
    fee.waiver_reason = reason
    fee.updated_at = now

    entry.late_fee_applied = entry.late_fee_applied - waived
    entry.total_amount = entry.total_amount - waived
    entry.updated_at = now
    if waived > ZERO and entry.balance == ZERO:
        entry.status = ScheduleStatus.WAIVED.value
    ctx.session.flush()

    ctx.auditor.record(
        "LateFee", fee.id, AuditAction.LATE_FEE_WAIVED, ctx.actor_id,
        {"schedule_id": entry.id, "waived_amount": waived, "reason": reason},
    )
    loan = ctx.get(LoanModel, entry.loan_id, "Loan")
    _mark_repaid_if_settled(ctx, loan)

    logger.info(
        "late_fee_waived",
        extra={"late_fee_id": str(fee.id), "waived_amount": waived},
    )
    return {
        "success": True,
        "late_fee_id": fee.id,
        "fee_amount": fee.fee_amount,
        "waived_amount": waived,
        "balance": entry.balance,
        "message": "Late fee waived",
    }
