"""
Fire-and-forget side-effect sinks.

Client services hand notifications and audit entries to a sink after the
primary transition has already committed remotely. A sink that raises is
reported to the ErrorMonitor and otherwise ignored: the caller still gets
the successful result of the transition.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from namlend_kernel.logging_config import get_logger
from namlend_services.observability import ErrorMonitor

logger = get_logger("services.notifications")


@dataclass(frozen=True)
class Notification:
    user_id: str
    type: str
    title: str
    message: str
    data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class AuditEntry:
    entity_type: str
    entity_id: str
    action: str
    actor_id: str | None
    metadata: dict[str, Any] = field(default_factory=dict)


class NotificationSink(Protocol):
    def send(self, notification: Notification) -> None:
        ...


class AuditSink(Protocol):
    def record(self, entry: AuditEntry) -> None:
        ...


class LoggingNotificationSink:
    """Writes notifications to the structured log."""

    def send(self, notification: Notification) -> None:
        logger.info(
            "notification_sent",
            extra={
                "recipient_id": notification.user_id,
                "notification_type": notification.type,
                "title": notification.title,
            },
        )


class LoggingAuditSink:
    def record(self, entry: AuditEntry) -> None:
        logger.info(
            "client_audit_recorded",
            extra={
                "entity_type": entry.entity_type,
                "audited_entity_id": entry.entity_id,
                "action": entry.action,
                "actor_id": entry.actor_id,
            },
        )


def notify_safely(
    sink: NotificationSink | None,
    notification: Notification,
    monitor: ErrorMonitor,
) -> bool:
    """Deliver ``notification``; return False if the sink failed."""
    if sink is None:
        return False
    try:
        sink.send(notification)
    except Exception as exc:
        logger.warning(
            "notification_delivery_failed",
            extra={"recipient_id": notification.user_id, "notification_type": notification.type},
            exc_info=exc,
        )
        monitor.monitor_side_effect_failure("notification", exc)
        return False
    return True


def audit_safely(sink: AuditSink | None, entry: AuditEntry, monitor: ErrorMonitor) -> bool:
    if sink is None:
        return False
    try:
        sink.record(entry)
    except Exception as exc:
        logger.warning(
            "audit_delivery_failed",
            extra={"entity_type": entry.entity_type, "action": entry.action},
            exc_info=exc,
        )
        monitor.monitor_side_effect_failure("audit", exc)
        return False
    return True
