"""
Module: namlend_kernel.models.schedule
Responsibility: ORM persistence for installment rows and assessed late fees.

Invariants enforced:
    - (loan_id, installment_number) is unique.
    - 0 <= amount_paid <= total_amount (check constraint).
    - total_amount = principal + interest + fee + late_fee_applied; the
      late fee procedures adjust both columns together.
    - At most one ``applied`` late fee per schedule entry (enforced by
      assess_late_fee before insert).
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from namlend_kernel.db.base import TrackedBase, UTCDateTime, UUIDString
from namlend_kernel.domain.values import ZERO


class PaymentScheduleModel(TrackedBase):
    __tablename__ = "payment_schedules"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'paid', 'partially_paid', 'overdue', 'waived')",
            name="ck_payment_schedules_valid_status",
        ),
        CheckConstraint(
            "amount_paid >= 0 AND amount_paid <= total_amount",
            name="ck_payment_schedules_paid_within_total",
        ),
        UniqueConstraint(
            "loan_id", "installment_number", name="uq_payment_schedules_installment",
        ),
        Index("ix_payment_schedules_due", "status", "due_date"),
    )

    loan_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("loans.id"), nullable=False,
    )
    installment_number: Mapped[int] = mapped_column(Integer, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    principal_amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    interest_amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    fee_amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False, default=ZERO)
    late_fee_applied: Mapped[Decimal] = mapped_column(
        Numeric(38, 9), nullable=False, default=ZERO,
    )
    total_amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    amount_paid: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False, default=ZERO)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    days_overdue: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    paid_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    @property
    def balance(self) -> Decimal:
        return max(self.total_amount - self.amount_paid, ZERO)

    def __repr__(self) -> str:
        return (
            f"<PaymentSchedule loan={self.loan_id} #{self.installment_number} "
            f"status={self.status}>"
        )

    def to_row(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "loan_id": self.loan_id,
            "installment_number": self.installment_number,
            "due_date": self.due_date,
            "principal_amount": self.principal_amount,
            "interest_amount": self.interest_amount,
            "fee_amount": self.fee_amount,
            "late_fee_applied": self.late_fee_applied,
            "total_amount": self.total_amount,
            "amount_paid": self.amount_paid,
            "status": self.status,
            "days_overdue": self.days_overdue,
            "paid_at": self.paid_at,
        }


class LateFeeModel(TrackedBase):
    __tablename__ = "late_fees"

    __table_args__ = (
        CheckConstraint(
            "status IN ('applied', 'waived')", name="ck_late_fees_valid_status",
        ),
        CheckConstraint("fee_amount > 0", name="ck_late_fees_positive"),
        Index("ix_late_fees_schedule", "schedule_id"),
    )

    schedule_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("payment_schedules.id"), nullable=False,
    )
    loan_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("loans.id"), nullable=False,
    )
    fee_amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    days_overdue: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="applied")
    assessed_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    waived_amount: Mapped[Decimal | None] = mapped_column(Numeric(38, 9), nullable=True)
    waived_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    waived_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    waiver_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<LateFee {self.id} {self.fee_amount} status={self.status}>"
