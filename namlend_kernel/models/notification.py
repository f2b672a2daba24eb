"""
Module: namlend_kernel.models.notification
Responsibility: In-app notifications written as a side effect of
    disbursement and workflow procedures.

Writes happen inside a savepoint; a failed insert never rolls back the
business change that triggered it.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, Boolean, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from namlend_kernel.db.base import Base, UTCDateTime, UUIDString


class NotificationModel(Base):
    __tablename__ = "notifications"

    __table_args__ = (
        Index("ix_notifications_user", "user_id", "is_read"),
    )

    user_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    data: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
