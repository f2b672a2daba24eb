"""
Module: namlend_engines.amortization
Responsibility:
    Build the installment schedule for a fixed-term loan.

Architecture position:
    Engines -- pure calculation layer, zero I/O. The caller supplies the
    first due date; this module never reads a clock.

Method:
    Monthly rate r = APR / 12 / 100.
    - r > 0: level payment ``P*r*(1+r)^n / ((1+r)^n - 1)`` rounded to cents.
      Each period's interest is ``balance * r`` rounded; principal is the
      remainder. The final installment takes the whole remaining balance
      as principal and the rest of the level payment as interest, so
      principal sums exactly to P and every installment totals the level
      payment.
    - r = 0: principal split equally, rounding residue on the last entry.

Failure modes:
    - InvalidAmountError for non-positive principal, non-positive term,
      negative rate, or a rate above the APR cap.
"""

from __future__ import annotations

import calendar
from datetime import date
from decimal import Decimal

from namlend_kernel.domain.schedule import Installment
from namlend_kernel.domain.values import APR_LIMIT, ZERO, round_money
from namlend_kernel.exceptions import InvalidAmountError
from namlend_engines.tracer import traced_engine

_MONTHS_PER_YEAR = Decimal("12")
_HUNDRED = Decimal("100")


def add_months(start: date, months: int) -> date:
    """Same day-of-month ``months`` later, clamped to the month's last day."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def monthly_rate(annual_rate_percent: Decimal) -> Decimal:
    return annual_rate_percent / _HUNDRED / _MONTHS_PER_YEAR


def _validate(principal: Decimal, annual_rate_percent: Decimal, term_months: int,
              apr_limit: Decimal) -> None:
    if principal <= ZERO:
        raise InvalidAmountError(principal, "principal must be positive")
    if term_months <= 0:
        raise InvalidAmountError(term_months, "term must be at least one month")
    if annual_rate_percent < ZERO:
        raise InvalidAmountError(annual_rate_percent, "interest rate cannot be negative")
    if annual_rate_percent > apr_limit:
        raise InvalidAmountError(
            annual_rate_percent, f"interest rate exceeds the {apr_limit}% APR limit",
        )


def calculate_monthly_payment(
    principal: Decimal,
    annual_rate_percent: Decimal,
    term_months: int,
) -> Decimal:
    """Level monthly payment, rounded to cents."""
    r = monthly_rate(annual_rate_percent)
    if r == ZERO:
        return round_money(principal / term_months)
    growth = (1 + r) ** term_months
    return round_money(principal * r * growth / (growth - 1))


@traced_engine(
    "amortization", "1.0",
    fingerprint_fields=("principal", "annual_rate_percent", "term_months", "first_due_date"),
)
def build_schedule(
    *,
    principal: Decimal,
    annual_rate_percent: Decimal,
    term_months: int,
    first_due_date: date,
    fee_per_installment: Decimal = ZERO,
    apr_limit: Decimal = APR_LIMIT,
) -> tuple[Installment, ...]:
    """Compute ``term_months`` installments, oldest first."""
    _validate(principal, annual_rate_percent, term_months, apr_limit)

    r = monthly_rate(annual_rate_percent)
    payment = calculate_monthly_payment(principal, annual_rate_percent, term_months)
    fee = round_money(fee_per_installment)

    installments: list[Installment] = []
    balance = principal
    for number in range(1, term_months + 1):
        is_last = number == term_months
        if r == ZERO:
            interest = ZERO
            principal_part = balance if is_last else min(payment, balance)
        elif is_last:
            principal_part = balance
            interest = max(payment - balance, ZERO)
        else:
            interest = round_money(balance * r)
            principal_part = min(payment - interest, balance)

        balance = balance - principal_part
        installments.append(
            Installment(
                installment_number=number,
                due_date=add_months(first_due_date, number - 1),
                principal_amount=principal_part,
                interest_amount=interest,
                fee_amount=fee,
                total_amount=principal_part + interest + fee,
                remaining_principal=balance,
            )
        )

    return tuple(installments)
