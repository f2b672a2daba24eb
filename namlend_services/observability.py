"""
ErrorMonitor -- structured error events for failed and slow RPC calls.

Responsibility:
    Receives categorised events (category, severity, message, metadata)
    from the RPC gateway and from fire-and-forget side effects
    (notifications, audit sinks), logs them, and keeps a bounded in-memory
    history from which a coarse health status is derived.

Architecture position:
    Services -- observability collaborator. Never raises into callers.

Thresholds (configurable through GatewayConfig):
    - failed call: category rpc, severity high
    - duration > slow_call_ms: category performance, severity medium
    - duration > critical_call_ms: category performance, severity critical
"""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from namlend_kernel.domain.clock import Clock, SystemClock
from namlend_kernel.logging_config import get_logger

logger = get_logger("services.observability")


class ErrorCategory(str, Enum):
    DATABASE = "database"
    AUTHENTICATION = "authentication"
    PERFORMANCE = "performance"
    RPC = "rpc"
    SYSTEM = "system"


class Severity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    CRITICAL = "critical"


_LOG_LEVEL_BY_SEVERITY = {
    Severity.CRITICAL: "critical",
    Severity.HIGH: "error",
    Severity.MEDIUM: "warning",
    Severity.LOW: "info",
}


@dataclass(frozen=True)
class MonitoredError:
    id: str
    message: str
    category: ErrorCategory
    severity: Severity
    timestamp: datetime
    context_keys: tuple[str, ...] = ()
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SystemHealth:
    status: HealthStatus
    issues: tuple[str, ...] = ()


class ErrorMonitor:
    """Bounded, thread-safe error history."""

    def __init__(
        self,
        clock: Clock | None = None,
        *,
        slow_call_ms: float = 2000,
        critical_call_ms: float = 5000,
        max_errors: int = 100,
        degraded_high_count: int = 5,
    ):
        self._clock = clock or SystemClock()
        self._slow_call_ms = slow_call_ms
        self._critical_call_ms = critical_call_ms
        self._degraded_high_count = degraded_high_count
        self._errors: deque[MonitoredError] = deque(maxlen=max_errors)
        self._lock = threading.Lock()

    @property
    def errors(self) -> tuple[MonitoredError, ...]:
        """Most recent first."""
        with self._lock:
            return tuple(reversed(self._errors))

    def log_error(
        self,
        message: str,
        *,
        category: ErrorCategory = ErrorCategory.SYSTEM,
        severity: Severity = Severity.MEDIUM,
        context_keys: tuple[str, ...] = (),
        metadata: dict[str, Any] | None = None,
    ) -> MonitoredError:
        error = MonitoredError(
            id=str(uuid4()),
            message=message,
            category=category,
            severity=severity,
            timestamp=self._clock.now(),
            context_keys=context_keys,
            metadata=dict(metadata or {}),
        )
        with self._lock:
            self._errors.append(error)

        log = getattr(logger, _LOG_LEVEL_BY_SEVERITY[severity])
        log(
            "system_error_recorded",
            extra={
                "error_message": message,
                "category": category.value,
                "severity": severity.value,
                "context_keys": list(context_keys),
                "metadata": error.metadata,
            },
        )
        return error

    def monitor_rpc_call(self, procedure: str, duration_ms: float, success: bool) -> None:
        if not success:
            self.log_error(
                f"RPC call failed: {procedure}",
                category=ErrorCategory.RPC,
                severity=Severity.HIGH,
                context_keys=("rpc_failure", procedure),
                metadata={"procedure": procedure, "duration_ms": duration_ms, "success": success},
            )

        if duration_ms > self._slow_call_ms:
            self.log_error(
                f"Slow RPC detected: {procedure} took {duration_ms:.1f}ms",
                category=ErrorCategory.PERFORMANCE,
                severity=(
                    Severity.CRITICAL if duration_ms > self._critical_call_ms else Severity.MEDIUM
                ),
                context_keys=("slow_operation", procedure),
                metadata={"procedure": procedure, "duration_ms": duration_ms},
            )

    def monitor_side_effect_failure(self, sink: str, exc: BaseException) -> None:
        """A fire-and-forget write (notification, audit) failed."""
        self.log_error(
            f"Side effect failed: {sink}: {exc}",
            category=ErrorCategory.SYSTEM,
            severity=Severity.HIGH,
            context_keys=("side_effect_failure", sink),
            metadata={"sink": sink, "exc_type": type(exc).__name__},
        )

    def get_system_health(self) -> SystemHealth:
        errors = self.errors
        critical = sum(1 for e in errors if e.severity == Severity.CRITICAL)
        high = sum(1 for e in errors if e.severity == Severity.HIGH)
        if critical > 0:
            return SystemHealth(HealthStatus.CRITICAL, (f"{critical} critical errors detected",))
        if high > self._degraded_high_count:
            return SystemHealth(HealthStatus.DEGRADED, (f"{high} high-priority errors detected",))
        return SystemHealth(HealthStatus.HEALTHY)

    def clear(self) -> None:
        with self._lock:
            self._errors.clear()
