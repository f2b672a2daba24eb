"""
Tests for ErrorMonitor and the fire-and-forget side-effect helpers.
"""

import pytest

from namlend_services.notifications import (
    AuditEntry,
    Notification,
    audit_safely,
    notify_safely,
)
from namlend_services.observability import (
    ErrorCategory,
    ErrorMonitor,
    HealthStatus,
    Severity,
)


class RecordingSink:
    def __init__(self):
        self.sent = []

    def send(self, notification):
        self.sent.append(notification)

    def record(self, entry):
        self.sent.append(entry)


class FailingSink:
    def send(self, notification):
        raise ConnectionError("smtp down")

    def record(self, entry):
        raise ConnectionError("audit store down")


@pytest.fixture
def monitor(clock):
    return ErrorMonitor(clock, max_errors=10)


NOTIFICATION = Notification(
    user_id="u-1",
    type="disbursement_completed",
    title="Funds sent",
    message="Your loan has been disbursed.",
)
ENTRY = AuditEntry(
    entity_type="Disbursement",
    entity_id="d-1",
    action="disbursement_completed",
    actor_id="a-1",
)


class TestErrorMonitor:
    def test_log_error_records_event(self, monitor, clock, captured_logs):
        error = monitor.log_error(
            "database unreachable",
            category=ErrorCategory.DATABASE,
            severity=Severity.HIGH,
            metadata={"attempts": 2},
        )

        assert monitor.errors == (error,)
        assert error.timestamp == clock.now()
        record = next(r for r in captured_logs() if r["message"] == "system_error_recorded")
        assert record["level"] == "ERROR"
        assert record["category"] == "database"
        assert record["metadata"] == {"attempts": 2}

    def test_newest_first(self, monitor):
        monitor.log_error("first")
        monitor.log_error("second")

        assert [e.message for e in monitor.errors] == ["second", "first"]

    def test_history_is_bounded(self, monitor):
        for i in range(15):
            monitor.log_error(f"error {i}", severity=Severity.LOW)

        assert len(monitor.errors) == 10
        assert monitor.errors[0].message == "error 14"
        assert monitor.errors[-1].message == "error 5"

    def test_failed_call(self, monitor):
        monitor.monitor_rpc_call("complete_disbursement", 120.0, success=False)

        (error,) = monitor.errors
        assert error.category == ErrorCategory.RPC
        assert error.severity == Severity.HIGH
        assert error.context_keys == ("rpc_failure", "complete_disbursement")

    @pytest.mark.parametrize(
        ("duration_ms", "severity"),
        [(2500.0, Severity.MEDIUM), (6000.0, Severity.CRITICAL)],
    )
    def test_slow_call(self, monitor, duration_ms, severity):
        monitor.monitor_rpc_call("get_payment_schedule", duration_ms, success=True)

        (error,) = monitor.errors
        assert error.category == ErrorCategory.PERFORMANCE
        assert error.severity == severity

    def test_fast_successful_call_not_recorded(self, monitor):
        monitor.monitor_rpc_call("get_user_roles", 15.0, success=True)

        assert monitor.errors == ()

    def test_clear(self, monitor):
        monitor.log_error("gone")
        monitor.clear()

        assert monitor.errors == ()


class TestSystemHealth:
    def test_healthy_when_quiet(self, monitor):
        assert monitor.get_system_health().status == HealthStatus.HEALTHY

    def test_any_critical_error(self, monitor):
        monitor.log_error("ledger mismatch", severity=Severity.CRITICAL)

        health = monitor.get_system_health()
        assert health.status == HealthStatus.CRITICAL
        assert health.issues == ("1 critical errors detected",)

    def test_degraded_after_more_than_five_high(self, monitor):
        for _ in range(5):
            monitor.log_error("timeout", severity=Severity.HIGH)
        assert monitor.get_system_health().status == HealthStatus.HEALTHY

        monitor.log_error("timeout", severity=Severity.HIGH)

        assert monitor.get_system_health().status == HealthStatus.DEGRADED


class TestSideEffects:
    """Side-effect failures never reach the caller."""

    def test_notify_delivers(self, monitor):
        sink = RecordingSink()

        assert notify_safely(sink, NOTIFICATION, monitor) is True
        assert sink.sent == [NOTIFICATION]

    def test_notify_without_sink(self, monitor):
        assert notify_safely(None, NOTIFICATION, monitor) is False
        assert monitor.errors == ()

    def test_notify_failure_reported(self, monitor, captured_logs):
        assert notify_safely(FailingSink(), NOTIFICATION, monitor) is False

        (error,) = monitor.errors
        assert error.category == ErrorCategory.SYSTEM
        assert error.severity == Severity.HIGH
        assert error.context_keys == ("side_effect_failure", "notification")
        assert error.metadata["exc_type"] == "ConnectionError"
        assert any(r["message"] == "notification_delivery_failed" for r in captured_logs())

    def test_audit_delivers(self, monitor):
        sink = RecordingSink()

        assert audit_safely(sink, ENTRY, monitor) is True
        assert sink.sent == [ENTRY]

    def test_audit_failure_reported(self, monitor):
        assert audit_safely(FailingSink(), ENTRY, monitor) is False
        assert monitor.errors[0].context_keys == ("side_effect_failure", "audit")

    def test_audit_without_sink(self, monitor):
        assert audit_safely(None, ENTRY, monitor) is False
