"""
Module: namlend_kernel.models.user_role
Responsibility: ORM persistence for per-user role grants.

Rows are only created/removed by the role procedures after the role
hierarchy validator has accepted the change; nothing updates them in place.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import CheckConstraint, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from namlend_kernel.db.base import Base, UTCDateTime, UUIDString


class UserRoleModel(Base):
    __tablename__ = "user_roles"

    __table_args__ = (
        CheckConstraint(
            "role IN ('client', 'loan_officer', 'admin')",
            name="ck_user_roles_valid_role",
        ),
        UniqueConstraint("user_id", "role", name="uq_user_roles_user_role"),
        Index("ix_user_roles_user", "user_id"),
    )

    user_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    def __repr__(self) -> str:
        return f"<UserRole {self.user_id} {self.role}>"

    def to_row(self) -> dict:
        return {"role": self.role, "created_at": self.created_at}
