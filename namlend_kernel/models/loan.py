"""
Module: namlend_kernel.models.loan
Responsibility: ORM persistence for loans.

Only the fields the disbursement and schedule procedures read or write are
modelled here; application forms, KYC and pricing live elsewhere.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, Index, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from namlend_kernel.db.base import TrackedBase, UTCDateTime, UUIDString


class LoanModel(TrackedBase):
    __tablename__ = "loans"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected', 'disbursed', 'repaid')",
            name="ck_loans_valid_status",
        ),
        CheckConstraint("amount > 0", name="ck_loans_positive_amount"),
        CheckConstraint("term_months > 0", name="ck_loans_positive_term"),
        Index("ix_loans_user", "user_id"),
    )

    user_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    term_months: Mapped[int] = mapped_column(Integer, nullable=False)
    # Annual percentage rate, e.g. 32 for 32 %.
    interest_rate: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    purpose: Mapped[str | None] = mapped_column(String(200), nullable=True)
    monthly_payment: Mapped[Decimal | None] = mapped_column(Numeric(38, 9), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    disbursed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    def __repr__(self) -> str:
        return f"<Loan {self.id} {self.amount} status={self.status}>"
