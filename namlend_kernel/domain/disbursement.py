"""
Disbursement domain types (``namlend_kernel.domain.disbursement``).

Lifecycle::

    pending -> approved -> processing -> completed
       \\          \\            \\
        +----------+------------+------> failed

``approved -> completed`` is also permitted (manual payout recorded
without a separate processing step). ``completed`` and ``failed`` are
terminal.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from namlend_kernel.domain.values import optional_decimal


class DisbursementStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


DISBURSEMENT_TRANSITIONS: dict[DisbursementStatus, frozenset[DisbursementStatus]] = {
    DisbursementStatus.PENDING: frozenset({
        DisbursementStatus.APPROVED,
        DisbursementStatus.FAILED,
    }),
    DisbursementStatus.APPROVED: frozenset({
        DisbursementStatus.PROCESSING,
        DisbursementStatus.COMPLETED,
        DisbursementStatus.FAILED,
    }),
    DisbursementStatus.PROCESSING: frozenset({
        DisbursementStatus.COMPLETED,
        DisbursementStatus.FAILED,
    }),
    DisbursementStatus.COMPLETED: frozenset(),
    DisbursementStatus.FAILED: frozenset(),
}

TERMINAL_DISBURSEMENT_STATUSES: frozenset[DisbursementStatus] = frozenset({
    DisbursementStatus.COMPLETED,
    DisbursementStatus.FAILED,
})


def can_transition(current: DisbursementStatus, target: DisbursementStatus) -> bool:
    return target in DISBURSEMENT_TRANSITIONS.get(current, frozenset())


class PaymentMethod(str, Enum):
    """Recognised channels for moving money out of (or into) the lender."""

    BANK_TRANSFER = "bank_transfer"
    MOBILE_MONEY = "mobile_money"
    CASH = "cash"
    DEBIT_ORDER = "debit_order"

    @classmethod
    def is_valid(cls, value: Any) -> bool:
        return value in {m.value for m in cls}


class LoanStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    DISBURSED = "disbursed"
    REPAID = "repaid"


@dataclass(frozen=True)
class Disbursement:
    """Transient view of a disbursement row."""

    id: str
    loan_id: str
    amount: Decimal
    status: DisbursementStatus
    method: str | None = None
    reference: str | None = None
    payment_reference: str | None = None
    processing_notes: str | None = None
    created_by: str | None = None
    borrower_id: str | None = None
    scheduled_at: datetime | None = None
    processed_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_DISBURSEMENT_STATUSES

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Disbursement:
        return cls(
            id=str(row["id"]),
            loan_id=str(row["loan_id"]),
            amount=optional_decimal(row["amount"]),
            status=DisbursementStatus(row["status"]),
            method=row.get("method"),
            reference=row.get("reference"),
            payment_reference=row.get("payment_reference"),
            processing_notes=row.get("processing_notes"),
            created_by=_opt_str(row.get("created_by")),
            borrower_id=_opt_str(row.get("borrower_id")),
            scheduled_at=row.get("scheduled_at"),
            processed_at=row.get("processed_at"),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )


@dataclass(frozen=True)
class DisbursementResult:
    """Outcome of a disbursement operation.

    Business failures come back with ``success=False`` and a human-readable
    ``error``; they are never raised.
    """

    success: bool
    disbursement_id: str | None = None
    loan_id: str | None = None
    amount: Decimal | None = None
    status: str | None = None
    payment_method: str | None = None
    payment_reference: str | None = None
    borrower_id: str | None = None
    message: str | None = None
    error: str | None = None
    code: str | None = None

    @classmethod
    def from_envelope(cls, data: dict[str, Any]) -> DisbursementResult:
        return cls(
            success=bool(data.get("success")),
            disbursement_id=_opt_str(data.get("disbursement_id")),
            loan_id=_opt_str(data.get("loan_id")),
            amount=optional_decimal(data.get("amount")),
            status=data.get("status"),
            payment_method=data.get("payment_method"),
            payment_reference=data.get("payment_reference"),
            borrower_id=_opt_str(data.get("borrower_id")),
            message=data.get("message"),
            error=data.get("error"),
            code=data.get("code"),
        )

    @classmethod
    def failure(cls, error: str, code: str | None = None) -> DisbursementResult:
        return cls(success=False, error=error, code=code)


@dataclass(frozen=True)
class DisbursementListResult:
    success: bool
    disbursements: tuple[Disbursement, ...] = ()
    error: str | None = None


def _opt_str(value: Any) -> str | None:
    return None if value is None else str(value)
