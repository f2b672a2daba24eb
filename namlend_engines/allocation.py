"""
Module: namlend_engines.allocation
Responsibility:
    Split an incoming payment across a loan's outstanding installments,
    oldest first.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Targets are visited in ascending (due_date, installment_number).
    - No line exceeds its target's balance; the sum of lines never exceeds
      the payment amount.
    - amount_applied + unapplied_amount == amount.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from namlend_kernel.domain.values import ZERO
from namlend_kernel.exceptions import InvalidAmountError
from namlend_engines.tracer import traced_engine


@dataclass(frozen=True)
class AllocationTarget:
    """An installment that may receive money."""

    schedule_id: str
    installment_number: int
    due_date: date
    balance: Decimal


@dataclass(frozen=True)
class AllocationLine:
    schedule_id: str
    installment_number: int
    amount: Decimal
    settles: bool


@dataclass(frozen=True)
class PaymentAllocation:
    lines: tuple[AllocationLine, ...]
    amount_applied: Decimal
    unapplied_amount: Decimal

    @property
    def entries_updated(self) -> int:
        return len(self.lines)


@traced_engine("allocation", "1.0", fingerprint_fields=("amount",))
def allocate_payment(
    *,
    amount: Decimal,
    targets: Sequence[AllocationTarget],
) -> PaymentAllocation:
    """Apply ``amount`` to the oldest balances first, rolling excess forward."""
    if amount <= ZERO:
        raise InvalidAmountError(amount, "payment amount must be positive")

    remaining = amount
    lines: list[AllocationLine] = []
    for target in sorted(targets, key=lambda t: (t.due_date, t.installment_number)):
        if remaining <= ZERO:
            break
        if target.balance <= ZERO:
            continue
        applied = min(remaining, target.balance)
        remaining -= applied
        lines.append(
            AllocationLine(
                schedule_id=target.schedule_id,
                installment_number=target.installment_number,
                amount=applied,
                settles=applied == target.balance,
            )
        )

    return PaymentAllocation(
        lines=tuple(lines),
        amount_applied=amount - remaining,
        unapplied_amount=remaining,
    )
