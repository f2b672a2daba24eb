"""ORM models. Importing this package registers every table on Base.metadata."""

from namlend_kernel.models.audit_event import AuditAction, AuditEvent
from namlend_kernel.models.disbursement import DisbursementModel
from namlend_kernel.models.loan import LoanModel
from namlend_kernel.models.notification import NotificationModel
from namlend_kernel.models.payment import PaymentModel
from namlend_kernel.models.schedule import LateFeeModel, PaymentScheduleModel
from namlend_kernel.models.user_role import UserRoleModel
from namlend_kernel.models.workflow import (
    WorkflowDefinitionModel,
    WorkflowInstanceModel,
    WorkflowStageExecutionModel,
)

__all__ = [
    "AuditAction",
    "AuditEvent",
    "DisbursementModel",
    "LateFeeModel",
    "LoanModel",
    "NotificationModel",
    "PaymentModel",
    "PaymentScheduleModel",
    "UserRoleModel",
    "WorkflowDefinitionModel",
    "WorkflowInstanceModel",
    "WorkflowStageExecutionModel",
]
