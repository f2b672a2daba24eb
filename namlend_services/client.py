"""
NamlendClient -- wiring for one signed-in user.

Builds a single ErrorMonitor, CircuitBreakerRegistry and RpcGateway and
hands them to every client service, so breaker state and error history
are scoped to this client and shared by its services. No service
constructs its own gateway.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable
from typing import Any
from uuid import UUID

from namlend_config.schema import NamlendConfig
from namlend_kernel.domain.clock import Clock, SystemClock
from namlend_kernel.domain.roles import Role
from namlend_kernel.logging_config import get_logger
from namlend_services.disbursement_service import DisbursementService
from namlend_services.notifications import AuditSink, NotificationSink
from namlend_services.observability import ErrorMonitor
from namlend_services.payment_schedule import PaymentScheduleLedger
from namlend_services.role_management import RoleManagementService
from namlend_services.rpc_gateway import CircuitBreakerRegistry, CommandExecutor, RpcGateway
from namlend_services.workflow_engine import ApprovalWorkflowEngine

logger = get_logger("services.client")


class NamlendClient:
    def __init__(
        self,
        executor: CommandExecutor,
        *,
        caller_roles: Iterable[Role | str],
        caller_id: UUID | str | None = None,
        config: NamlendConfig | None = None,
        clock: Clock | None = None,
        notifier: NotificationSink | None = None,
        audit_sink: AuditSink | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config or NamlendConfig()
        clock = clock or SystemClock()
        gateway_config = self.config.gateway

        self.monitor = ErrorMonitor(
            clock,
            slow_call_ms=gateway_config.slow_call_ms,
            critical_call_ms=gateway_config.critical_call_ms,
        )
        self.breakers = CircuitBreakerRegistry(gateway_config.breaker, clock)
        self.gateway = RpcGateway(
            executor,
            config=gateway_config,
            breakers=self.breakers,
            monitor=self.monitor,
            clock=clock,
            sleep=sleep,
        )

        super_admin_id = self.config.roles.super_admin_id
        self.disbursements = DisbursementService(
            self.gateway, monitor=self.monitor, notifier=notifier,
        )
        self.workflow = ApprovalWorkflowEngine(
            self.gateway,
            caller_roles=caller_roles,
            caller_id=caller_id,
            super_admin_id=super_admin_id,
            monitor=self.monitor,
            audit_sink=audit_sink,
        )
        self.schedule = PaymentScheduleLedger(self.gateway, monitor=self.monitor)
        self.roles = RoleManagementService(
            self.gateway, super_admin_id=super_admin_id, monitor=self.monitor,
        )
        logger.debug(
            "namlend_client_created",
            extra={"caller_id": None if caller_id is None else str(caller_id)},
        )

    def close(self) -> None:
        self.gateway.close()

    def __enter__(self) -> NamlendClient:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()
