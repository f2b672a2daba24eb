"""
namlend_services -- Package init and public API.

Responsibility:
    Everything that talks to the store: the RPC gateway and its circuit
    breakers, the error monitor, the in-process procedure executor that
    plays the remote side, and the client services built on the gateway.

Architecture position:
    Services -- orchestration over engines + kernel.

        namlend_services/ -> namlend_engines/  (allowed)
        namlend_services/ -> namlend_kernel/   (allowed)
        namlend_engines/  -> namlend_services/ (FORBIDDEN)
        namlend_kernel/   -> namlend_services/ (FORBIDDEN)
"""

from namlend_services.client import NamlendClient
from namlend_services.disbursement_service import DisbursementService
from namlend_services.notifications import (
    AuditEntry,
    AuditSink,
    LoggingAuditSink,
    LoggingNotificationSink,
    Notification,
    NotificationSink,
    audit_safely,
    notify_safely,
)
from namlend_services.observability import ErrorMonitor, HealthStatus
from namlend_services.payment_schedule import PaymentScheduleLedger
from namlend_services.procedures import SqlProcedureExecutor
from namlend_services.role_management import RoleManagementService
from namlend_services.rpc_gateway import (
    CircuitBreakerRegistry,
    CommandExecutor,
    RpcGateway,
    RpcOptions,
    RpcResult,
    RpcSource,
)
from namlend_services.workflow_engine import ApprovalWorkflowEngine

__all__ = [
    "ApprovalWorkflowEngine",
    "AuditEntry",
    "AuditSink",
    "CircuitBreakerRegistry",
    "CommandExecutor",
    "DisbursementService",
    "ErrorMonitor",
    "HealthStatus",
    "LoggingAuditSink",
    "LoggingNotificationSink",
    "NamlendClient",
    "Notification",
    "NotificationSink",
    "PaymentScheduleLedger",
    "RoleManagementService",
    "RpcGateway",
    "RpcOptions",
    "RpcResult",
    "RpcSource",
    "SqlProcedureExecutor",
    "audit_safely",
    "notify_safely",
]
