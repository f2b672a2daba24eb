"""
Tests for overdue marking and the late fee formula.

Covers:
- Which installments flip to overdue on a scan
- Days-overdue refresh for entries already overdue
- Grace period, daily rate and both caps of the late fee
"""

from datetime import date
from decimal import Decimal

import pytest
from hypothesis import given
from hypothesis import strategies as st

from namlend_engines.late_fee import LateFeePolicy, calculate_late_fee
from namlend_engines.overdue import OverdueCandidate, days_overdue, is_past_due, scan_overdue
from namlend_kernel.domain.schedule import ScheduleStatus

AS_OF = date(2025, 3, 20)


def _candidate(sid, status, due, balance="100"):
    return OverdueCandidate(
        schedule_id=sid, status=status, due_date=due, balance=Decimal(balance),
    )


class TestScanOverdue:
    """Tests for scan_overdue."""

    def test_past_due_pending_is_flagged(self):
        scan = scan_overdue(
            candidates=[_candidate("a", ScheduleStatus.PENDING, date(2025, 3, 1))],
            as_of=AS_OF,
        )

        assert scan.newly_overdue == ("a",)
        assert scan.days_by_schedule == {"a": 19}

    def test_partially_paid_is_flagged(self):
        scan = scan_overdue(
            candidates=[_candidate("a", ScheduleStatus.PARTIALLY_PAID, date(2025, 3, 1), "10")],
            as_of=AS_OF,
        )

        assert scan.newly_overdue == ("a",)

    def test_due_today_is_not_overdue(self):
        scan = scan_overdue(
            candidates=[_candidate("a", ScheduleStatus.PENDING, AS_OF)], as_of=AS_OF,
        )

        assert scan.newly_overdue == ()

    def test_settled_entries_never_flagged(self):
        candidates = [
            _candidate("paid", ScheduleStatus.PAID, date(2025, 1, 1), "0"),
            _candidate("waived", ScheduleStatus.WAIVED, date(2025, 1, 1), "0"),
            _candidate("zero", ScheduleStatus.PENDING, date(2025, 1, 1), "0"),
        ]

        scan = scan_overdue(candidates=candidates, as_of=AS_OF)

        assert scan.newly_overdue == ()
        assert scan.days_by_schedule == {}

    def test_rescan_refreshes_days_without_reflagging(self):
        """An entry already overdue is not counted again but its age is updated."""
        scan = scan_overdue(
            candidates=[_candidate("a", ScheduleStatus.OVERDUE, date(2025, 3, 1))],
            as_of=AS_OF,
        )

        assert scan.newly_overdue == ()
        assert scan.days_by_schedule == {"a": 19}

    def test_days_overdue_never_negative(self):
        assert days_overdue(date(2025, 4, 1), AS_OF) == 0

    @given(
        status=st.sampled_from(list(ScheduleStatus)),
        offset=st.integers(min_value=-60, max_value=60),
        balance=st.sampled_from([Decimal("0"), Decimal("0.01"), Decimal("250")]),
    )
    def test_flagged_entries_have_balance_and_passed_due_date(self, status, offset, balance):
        due = date.fromordinal(AS_OF.toordinal() + offset)

        flagged = is_past_due(status, balance, due, AS_OF)

        if flagged:
            assert balance > 0 and due < AS_OF
            assert status in (ScheduleStatus.PENDING, ScheduleStatus.PARTIALLY_PAID)


class TestLateFee:
    """Tests for calculate_late_fee with the default policy."""

    def setup_method(self):
        self.policy = LateFeePolicy()

    def test_within_grace_is_free(self):
        quote = calculate_late_fee(balance=Decimal("1000"), days_overdue=5, policy=self.policy)

        assert quote.fee == Decimal("0.00")
        assert quote.chargeable_days == 0

    def test_daily_rate_after_grace(self):
        """1000 balance, 35 days late: 30 chargeable days at 0.1% = 30.00."""
        quote = calculate_late_fee(balance=Decimal("1000"), days_overdue=35, policy=self.policy)

        assert quote.fee == Decimal("30.00")
        assert quote.chargeable_days == 30
        assert not quote.capped

    def test_capped_at_ratio_of_balance(self):
        quote = calculate_late_fee(balance=Decimal("1000"), days_overdue=400, policy=self.policy)

        assert quote.fee == Decimal("250.00")
        assert quote.capped

    def test_capped_at_absolute_maximum(self):
        quote = calculate_late_fee(balance=Decimal("10000"), days_overdue=1000, policy=self.policy)

        assert quote.fee == Decimal("500.00")
        assert quote.cap == Decimal("500.00")

    def test_rounded_half_up_to_cents(self):
        quote = calculate_late_fee(balance=Decimal("123.45"), days_overdue=8, policy=self.policy)

        # 123.45 * 0.001 * 3 = 0.37035
        assert quote.fee == Decimal("0.37")

    def test_zero_balance_has_no_fee(self):
        quote = calculate_late_fee(balance=Decimal("0"), days_overdue=90, policy=self.policy)

        assert quote.fee == Decimal("0")

    def test_custom_policy(self):
        policy = LateFeePolicy(grace_days=0, daily_rate=Decimal("0.01"))

        quote = calculate_late_fee(balance=Decimal("200"), days_overdue=3, policy=policy)

        assert quote.fee == Decimal("6.00")

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"grace_days": -1},
            {"daily_rate": Decimal("1.5")},
            {"max_fee_ratio": Decimal("-0.1")},
            {"max_fee": Decimal("-1")},
        ],
    )
    def test_policy_rejects_out_of_range_values(self, kwargs):
        with pytest.raises(ValueError):
            LateFeePolicy(**kwargs)

    @given(
        balance=st.decimals(
            min_value=Decimal("0"), max_value=Decimal("1000000"), places=2,
            allow_nan=False, allow_infinity=False,
        ),
        days=st.integers(min_value=0, max_value=3650),
    )
    def test_fee_never_exceeds_either_cap(self, balance, days):
        quote = calculate_late_fee(balance=balance, days_overdue=days, policy=self.policy)

        assert Decimal("0") <= quote.fee <= Decimal("500.00")
        assert quote.fee <= (balance * Decimal("0.25")).quantize(Decimal("0.01")) + Decimal("0.01")
