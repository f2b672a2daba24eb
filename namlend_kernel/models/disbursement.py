"""
Module: namlend_kernel.models.disbursement
Responsibility: ORM persistence for loan disbursements.

Invariants enforced:
    - Status values limited by check constraint; transitions enforced by the
      disbursement procedures against DISBURSEMENT_TRANSITIONS.
    - At most one non-failed disbursement per loan: checked under the
      locked loan row by the procedures and backed by the partial unique
      index uq_disbursements_open_per_loan.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, Numeric, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from namlend_kernel.db.base import TrackedBase, UTCDateTime, UUIDString


class DisbursementModel(TrackedBase):
    __tablename__ = "disbursements"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'processing', 'completed', 'failed')",
            name="ck_disbursements_valid_status",
        ),
        Index("ix_disbursements_loan", "loan_id"),
        Index("ix_disbursements_status", "status", "created_at"),
        Index(
            "uq_disbursements_open_per_loan",
            "loan_id",
            unique=True,
            postgresql_where=text("status <> 'failed'"),
            sqlite_where=text("status <> 'failed'"),
        ),
    )

    loan_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("loans.id"), nullable=False,
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    method: Mapped[str | None] = mapped_column(String(30), nullable=True)
    reference: Mapped[str] = mapped_column(String(64), nullable=False)
    payment_reference: Mapped[str | None] = mapped_column(String(128), nullable=True)
    processing_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    scheduled_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    def __repr__(self) -> str:
        return f"<Disbursement {self.id} loan={self.loan_id} status={self.status}>"

    def append_note(self, note: str | None) -> None:
        if not note:
            return
        self.processing_notes = (
            f"{self.processing_notes}\n{note}" if self.processing_notes else note
        )

    def to_row(self, borrower_id: UUID | None = None) -> dict[str, Any]:
        return {
            "id": self.id,
            "loan_id": self.loan_id,
            "amount": self.amount,
            "status": self.status,
            "method": self.method,
            "reference": self.reference,
            "payment_reference": self.payment_reference,
            "processing_notes": self.processing_notes,
            "created_by": self.created_by,
            "borrower_id": borrower_id,
            "scheduled_at": self.scheduled_at,
            "processed_at": self.processed_at,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
