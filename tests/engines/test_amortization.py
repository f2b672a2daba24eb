"""
Tests for the amortization engine.

Covers:
- Level monthly payment (standard and zero-rate)
- Schedule totals and principal conservation
- Due-date stepping with month-end clamping
- Per-installment fees
- Input validation (principal, term, APR limit)
"""

from datetime import date
from decimal import Decimal

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from namlend_engines.amortization import (
    add_months,
    build_schedule,
    calculate_monthly_payment,
    monthly_rate,
)
from namlend_kernel.exceptions import InvalidAmountError


def _schedule(principal="5000", rate="32", term=12, **kwargs):
    return build_schedule(
        principal=Decimal(principal),
        annual_rate_percent=Decimal(rate),
        term_months=term,
        first_due_date=kwargs.pop("first_due_date", date(2025, 2, 15)),
        **kwargs,
    )


class TestMonthlyPayment:
    """Tests for the level payment formula."""

    def test_monthly_rate_from_apr(self):
        assert monthly_rate(Decimal("12")) == Decimal("0.01")

    def test_standard_loan(self):
        """5000 over 12 months at 32% APR."""
        payment = calculate_monthly_payment(Decimal("5000"), Decimal("32"), 12)

        assert Decimal("490") < payment < Decimal("495")
        assert payment == payment.quantize(Decimal("0.01"))

    def test_zero_rate_divides_evenly(self):
        assert calculate_monthly_payment(Decimal("1200"), Decimal("0"), 12) == Decimal("100.00")


class TestBuildSchedule:
    """Tests for the generated installment rows."""

    def test_standard_loan_has_twelve_installments(self):
        installments = _schedule()

        assert [i.installment_number for i in installments] == list(range(1, 13))

    def test_totals_sum_to_payment_times_term(self):
        """Sum of installment totals equals monthly payment * term within a cent."""
        installments = _schedule()
        payment = calculate_monthly_payment(Decimal("5000"), Decimal("32"), 12)

        total = sum(i.total_amount for i in installments)

        assert abs(total - payment * 12) <= Decimal("0.01")

    def test_principal_is_fully_amortized(self):
        installments = _schedule()

        assert sum(i.principal_amount for i in installments) == Decimal("5000")
        assert installments[-1].remaining_principal == Decimal("0")

    def test_interest_declines_over_time(self):
        installments = _schedule()

        interest = [i.interest_amount for i in installments[:-1]]
        assert interest == sorted(interest, reverse=True)

    def test_first_interest_is_one_month_of_rate(self):
        """First installment interest = principal * APR / 12, rounded to cents."""
        installments = _schedule()

        assert installments[0].interest_amount == Decimal("133.33")

    def test_zero_rate_schedule(self):
        installments = _schedule(principal="1000", rate="0", term=3)

        assert [i.interest_amount for i in installments] == [Decimal("0")] * 3
        assert sum(i.principal_amount for i in installments) == Decimal("1000")

    def test_fee_added_to_each_installment(self):
        installments = _schedule(fee_per_installment=Decimal("5"))

        for inst in installments:
            assert inst.fee_amount == Decimal("5.00")
            assert inst.total_amount == inst.principal_amount + inst.interest_amount + Decimal("5.00")

    def test_due_dates_step_monthly(self):
        installments = _schedule(term=3, first_due_date=date(2025, 1, 31))

        assert [i.due_date for i in installments] == [
            date(2025, 1, 31),
            date(2025, 2, 28),
            date(2025, 3, 31),
        ]

    def test_rejects_rate_above_apr_limit(self):
        with pytest.raises(InvalidAmountError, match="APR limit"):
            _schedule(rate="32.5")

    def test_custom_apr_limit(self):
        installments = _schedule(rate="40", apr_limit=Decimal("45"))

        assert len(installments) == 12

    @pytest.mark.parametrize(
        "principal, rate, term",
        [("0", "32", 12), ("-10", "32", 12), ("5000", "32", 0), ("5000", "-1", 12)],
    )
    def test_rejects_invalid_inputs(self, principal, rate, term):
        with pytest.raises(InvalidAmountError):
            _schedule(principal=principal, rate=rate, term=term)

    @given(
        principal=st.decimals(
            min_value=Decimal("100"), max_value=Decimal("100000"), places=2,
            allow_nan=False, allow_infinity=False,
        ),
        rate=st.decimals(
            min_value=Decimal("0"), max_value=Decimal("32"), places=2,
            allow_nan=False, allow_infinity=False,
        ),
        term=st.integers(min_value=1, max_value=60),
    )
    @settings(max_examples=100)
    def test_principal_conserved_for_any_loan(self, principal, rate, term):
        installments = _schedule(principal=str(principal), rate=str(rate), term=term)

        assert len(installments) == term
        assert sum(i.principal_amount for i in installments) == principal
        assert all(i.principal_amount >= 0 and i.interest_amount >= 0 for i in installments)


class TestAddMonths:
    """Tests for calendar month stepping."""

    def test_clamps_to_month_end(self):
        assert add_months(date(2025, 1, 31), 1) == date(2025, 2, 28)

    def test_leap_year(self):
        assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)

    def test_crosses_year(self):
        assert add_months(date(2025, 11, 15), 3) == date(2026, 2, 15)
