"""
Module: namlend_engines.late_fee
Responsibility:
    Compute the late fee for an overdue installment.

Method:
    chargeable_days = max(0, days_overdue - grace_days)
    fee = balance * daily_rate * chargeable_days
    fee is capped at min(max_fee, balance * max_fee_ratio) and rounded to
    cents. A zero balance always yields a zero fee.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from namlend_kernel.domain.values import ZERO, round_money
from namlend_engines.tracer import traced_engine


@dataclass(frozen=True)
class LateFeePolicy:
    grace_days: int = 5
    daily_rate: Decimal = Decimal("0.001")
    max_fee_ratio: Decimal = Decimal("0.25")
    max_fee: Decimal = Decimal("500.00")

    def __post_init__(self) -> None:
        if self.grace_days < 0:
            raise ValueError("grace_days cannot be negative")
        if not (ZERO <= self.daily_rate <= 1):
            raise ValueError("daily_rate must be within [0, 1]")
        if not (ZERO <= self.max_fee_ratio <= 1):
            raise ValueError("max_fee_ratio must be within [0, 1]")
        if self.max_fee < ZERO:
            raise ValueError("max_fee cannot be negative")


@dataclass(frozen=True)
class LateFeeQuote:
    fee: Decimal
    chargeable_days: int
    cap: Decimal

    @property
    def capped(self) -> bool:
        return self.fee == self.cap and self.fee > ZERO


@traced_engine(
    "late_fee", "1.0", fingerprint_fields=("balance", "days_overdue", "policy"),
)
def calculate_late_fee(
    *,
    balance: Decimal,
    days_overdue: int,
    policy: LateFeePolicy,
) -> LateFeeQuote:
    if balance <= ZERO:
        return LateFeeQuote(fee=ZERO, chargeable_days=0, cap=ZERO)

    chargeable = max(days_overdue - policy.grace_days, 0)
    cap = round_money(min(policy.max_fee, balance * policy.max_fee_ratio))
    raw = balance * policy.daily_rate * chargeable
    return LateFeeQuote(fee=min(round_money(raw), cap), chargeable_days=chargeable, cap=cap)
