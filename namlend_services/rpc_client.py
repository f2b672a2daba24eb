"""
GatewayClient -- common base for the client-side services.

Every remote call can fail in two ways that callers must tell apart:

    - transport: the gateway could not get an answer (timeout, store
      error, open circuit). ``RpcResult.ok`` is False.
    - business: the procedure answered ``{"success": False, ...}``.

``GatewayClient._invoke`` folds both into a ``CallOutcome`` so service
methods branch once. Services convert outcomes into their own result
dataclasses and never raise for either kind of failure.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from namlend_kernel.logging_config import get_logger
from namlend_services.observability import ErrorCategory, ErrorMonitor, Severity
from namlend_services.rpc_gateway import RpcGateway

logger = get_logger("services.rpc_client")

UNEXPECTED_ERROR = "Unexpected error occurred"
UNEXPECTED_ERROR_CODE = "UNEXPECTED_ERROR"


@dataclass(frozen=True)
class CallOutcome:
    ok: bool
    data: Any = None
    error: str | None = None
    code: str | None = None
    transport: bool = False


class GatewayClient:
    """Holds the gateway and the monitor that unexpected failures go to."""

    def __init__(self, gateway: RpcGateway, monitor: ErrorMonitor | None = None):
        self._gateway = gateway
        self._monitor = monitor or gateway.monitor

    @property
    def gateway(self) -> RpcGateway:
        return self._gateway

    def _invoke(self, procedure: str, args: Mapping[str, Any] | None = None) -> CallOutcome:
        result = self._gateway.call(procedure, args)
        if not result.ok:
            return CallOutcome(
                ok=False,
                error=result.error_message,
                code=getattr(result.error, "code", None),
                transport=True,
            )
        data = result.data
        if isinstance(data, Mapping) and data.get("success") is False:
            return CallOutcome(
                ok=False,
                data=data,
                error=data.get("error") or f"{procedure} failed",
                code=data.get("code"),
            )
        return CallOutcome(ok=True, data=data)

    def _report_unexpected(self, operation: str, exc: Exception) -> None:
        logger.error(
            "service_unexpected_error",
            extra={"operation": operation, "exc_type": type(exc).__name__},
            exc_info=exc,
        )
        self._monitor.log_error(
            f"{operation} failed unexpectedly: {exc}",
            category=ErrorCategory.SYSTEM,
            severity=Severity.HIGH,
            context_keys=("unexpected_error", operation),
            metadata={"operation": operation, "exc_type": type(exc).__name__},
        )
