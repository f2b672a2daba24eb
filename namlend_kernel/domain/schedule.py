"""
Payment schedule domain types (``namlend_kernel.domain.schedule``).

Invariants carried by every schedule entry:

* ``balance == total_amount - amount_paid`` and is never negative.
* ``overdue`` only when balance > 0 and the due date has passed.
* ``waived`` is terminal: the entry was settled by forgiving its late fee.
  Principal and interest are never forgiven.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from namlend_kernel.domain.values import ZERO, optional_decimal, to_decimal


class ScheduleStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    PARTIALLY_PAID = "partially_paid"
    OVERDUE = "overdue"
    WAIVED = "waived"


# Entries that can still receive money.
OPEN_SCHEDULE_STATUSES: frozenset[ScheduleStatus] = frozenset({
    ScheduleStatus.PENDING,
    ScheduleStatus.PARTIALLY_PAID,
    ScheduleStatus.OVERDUE,
})

SETTLED_SCHEDULE_STATUSES: frozenset[ScheduleStatus] = frozenset({
    ScheduleStatus.PAID,
    ScheduleStatus.WAIVED,
})


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class LateFeeStatus(str, Enum):
    APPLIED = "applied"
    WAIVED = "waived"


class RegenerationPolicy(str, Enum):
    """What ``generate_payment_schedule`` does when installments already exist."""

    ERROR = "error"
    REPLACE = "replace"


@dataclass(frozen=True)
class Installment:
    """One computed (not yet persisted) amortization row."""

    installment_number: int
    due_date: date
    principal_amount: Decimal
    interest_amount: Decimal
    fee_amount: Decimal
    total_amount: Decimal
    remaining_principal: Decimal


@dataclass(frozen=True)
class ScheduleEntry:
    """Transient view of a persisted installment."""

    id: str
    loan_id: str
    installment_number: int
    due_date: date
    principal_amount: Decimal
    interest_amount: Decimal
    fee_amount: Decimal
    late_fee_applied: Decimal
    total_amount: Decimal
    amount_paid: Decimal
    status: ScheduleStatus
    paid_at: datetime | None = None
    days_overdue: int = 0

    @property
    def balance(self) -> Decimal:
        return max(self.total_amount - self.amount_paid, ZERO)

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> ScheduleEntry:
        due = row["due_date"]
        if isinstance(due, str):
            due = date.fromisoformat(due)
        return cls(
            id=str(row["id"]),
            loan_id=str(row["loan_id"]),
            installment_number=int(row["installment_number"]),
            due_date=due,
            principal_amount=to_decimal(row["principal_amount"]),
            interest_amount=to_decimal(row["interest_amount"]),
            fee_amount=to_decimal(row.get("fee_amount", 0)),
            late_fee_applied=to_decimal(row.get("late_fee_applied", 0)),
            total_amount=to_decimal(row["total_amount"]),
            amount_paid=to_decimal(row.get("amount_paid", 0)),
            status=ScheduleStatus(row["status"]),
            paid_at=row.get("paid_at"),
            days_overdue=int(row.get("days_overdue") or 0),
        )


@dataclass(frozen=True)
class ScheduleGenerationResult:
    success: bool
    schedules_created: int = 0
    monthly_payment: Decimal | None = None
    error: str | None = None
    code: str | None = None


@dataclass(frozen=True)
class ScheduleListResult:
    success: bool
    schedule: tuple[ScheduleEntry, ...] = ()
    error: str | None = None


@dataclass(frozen=True)
class PaymentRecordResult:
    success: bool
    payment_id: str | None = None
    error: str | None = None
    code: str | None = None


@dataclass(frozen=True)
class PaymentRecord:
    """Transient view of a recorded repayment."""

    id: str
    loan_id: str
    amount: Decimal
    applied_amount: Decimal
    method: str
    status: PaymentStatus
    paid_at: datetime | None = None
    reference: str | None = None

    @property
    def unapplied(self) -> Decimal:
        return self.amount - self.applied_amount

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> PaymentRecord:
        paid_at = row.get("paid_at")
        if isinstance(paid_at, str):
            paid_at = datetime.fromisoformat(paid_at)
        return cls(
            id=str(row["id"]),
            loan_id=str(row["loan_id"]),
            amount=to_decimal(row["amount"]),
            applied_amount=to_decimal(row.get("applied_amount", 0)),
            method=row["method"],
            status=PaymentStatus(row["status"]),
            paid_at=paid_at,
            reference=row.get("reference"),
        )


@dataclass(frozen=True)
class PaymentListResult:
    success: bool
    payments: tuple[PaymentRecord, ...] = ()
    error: str | None = None
    code: str | None = None


@dataclass(frozen=True)
class PaymentApplicationResult:
    success: bool
    schedules_updated: int = 0
    amount_applied: Decimal = ZERO
    unapplied_amount: Decimal = ZERO
    error: str | None = None
    code: str | None = None


@dataclass(frozen=True)
class OverdueMarkResult:
    success: bool
    schedules_marked: int = 0
    marked_at: datetime | None = None
    error: str | None = None
    code: str | None = None


@dataclass(frozen=True)
class LateFeeResult:
    success: bool
    late_fee: Decimal | None = None
    days_overdue: int | None = None
    balance: Decimal | None = None
    late_fee_id: str | None = None
    waived_amount: Decimal | None = None
    error: str | None = None
    code: str | None = None

    @classmethod
    def from_envelope(cls, data: dict[str, Any]) -> LateFeeResult:
        return cls(
            success=bool(data.get("success")),
            late_fee=optional_decimal(data.get("late_fee")),
            days_overdue=data.get("days_overdue"),
            balance=optional_decimal(data.get("balance")),
            late_fee_id=None if data.get("late_fee_id") is None else str(data["late_fee_id"]),
            waived_amount=optional_decimal(data.get("waived_amount")),
            error=data.get("error"),
            code=data.get("code"),
        )
