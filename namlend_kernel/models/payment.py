"""
Module: namlend_kernel.models.payment
Responsibility: ORM persistence for borrower repayments.

``applied_amount`` tracks how much of the payment has been allocated to
schedule entries and never exceeds ``amount``.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from namlend_kernel.db.base import TrackedBase, UTCDateTime, UUIDString
from namlend_kernel.domain.values import ZERO


class PaymentModel(TrackedBase):
    __tablename__ = "payments"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'completed', 'failed')",
            name="ck_payments_valid_status",
        ),
        CheckConstraint("amount > 0", name="ck_payments_positive_amount"),
        CheckConstraint(
            "applied_amount >= 0 AND applied_amount <= amount",
            name="ck_payments_applied_within_amount",
        ),
        Index("ix_payments_loan", "loan_id"),
    )

    loan_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("loans.id"), nullable=False,
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    applied_amount: Mapped[Decimal] = mapped_column(
        Numeric(38, 9), nullable=False, default=ZERO,
    )
    method: Mapped[str] = mapped_column(String(30), nullable=False)
    reference: Mapped[str | None] = mapped_column(String(128), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="completed")
    paid_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    recorded_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    @property
    def unapplied(self) -> Decimal:
        return self.amount - self.applied_amount

    def __repr__(self) -> str:
        return f"<Payment {self.id} {self.amount} loan={self.loan_id}>"

    def to_row(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "loan_id": self.loan_id,
            "amount": self.amount,
            "applied_amount": self.applied_amount,
            "unapplied_amount": self.unapplied,
            "method": self.method,
            "reference": self.reference,
            "status": self.status,
            "paid_at": self.paid_at,
            "recorded_by": self.recorded_by,
            "created_at": self.created_at,
        }
