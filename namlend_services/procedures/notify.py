"""In-transaction notification writes that never undo the business change."""

from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError

from namlend_kernel.logging_config import get_logger
from namlend_kernel.models.notification import NotificationModel
from namlend_services.procedures.registry import ProcedureContext

logger = get_logger("services.procedures.notify")


def write_notification(
    ctx: ProcedureContext,
    user_id: UUID,
    type: str,
    title: str,
    message: str,
    data: dict[str, Any] | None = None,
) -> bool:
    """Insert a notification inside a savepoint.

    A failed insert rolls back to the savepoint only; the enclosing
    transition still commits. Returns whether the notification was stored.
    """
    try:
        with ctx.session.begin_nested():
            ctx.session.add(
                NotificationModel(
                    user_id=user_id,
                    type=type,
                    title=title,
                    message=message,
                    data=data,
                    created_at=ctx.clock.now(),
                )
            )
    except SQLAlchemyError:
        logger.error(
            "notification_write_failed",
            extra={"recipient_id": str(user_id), "notification_type": type},
            exc_info=True,
        )
        return False
    return True
