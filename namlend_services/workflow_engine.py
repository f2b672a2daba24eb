"""
ApprovalWorkflowEngine -- client side of the multi-stage approval workflow.

Contract:
    - ``approve_stage`` / ``reject_stage`` run the same decision rules as
      the store (``check_decision``) against the stage as last read and the
      caller's claimed roles. A non-pending stage, an insufficient role or
      a rejection without notes is refused before ``decide_workflow_stage``
      is called.
    - The store re-validates every decision against persisted state.
    - ``get_progress`` is a derived read (approved stages / total stages).

Failures are returned, never raised.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import Any
from uuid import UUID

from namlend_engines.role_hierarchy import is_super_admin
from namlend_engines.workflow_rules import check_decision, compute_progress
from namlend_kernel.domain.roles import Role
from namlend_kernel.domain.workflow import (
    StageDecision,
    StageExecution,
    WorkflowDecisionResult,
    WorkflowDefinition,
    WorkflowInstance,
    WorkflowProgress,
    WorkflowStage,
    WorkflowStartResult,
    WorkflowStats,
)
from namlend_kernel.exceptions import EntityNotFoundError, NamlendError
from namlend_kernel.logging_config import get_logger
from namlend_services.notifications import AuditEntry, AuditSink, audit_safely
from namlend_services.observability import ErrorMonitor
from namlend_services.rpc_client import UNEXPECTED_ERROR, UNEXPECTED_ERROR_CODE, GatewayClient
from namlend_services.rpc_gateway import RpcGateway

logger = get_logger("services.workflow_engine")


class ApprovalWorkflowEngine(GatewayClient):
    """Workflow operations on behalf of one signed-in caller."""

    def __init__(
        self,
        gateway: RpcGateway,
        *,
        caller_roles: Iterable[Role | str],
        caller_id: UUID | str | None = None,
        super_admin_id: UUID | str | None = None,
        monitor: ErrorMonitor | None = None,
        audit_sink: AuditSink | None = None,
    ):
        super().__init__(gateway, monitor)
        roles = frozenset(Role.parse(r) for r in caller_roles)
        if is_super_admin(caller_id, super_admin_id):
            roles = roles | {Role.ADMIN}
        self._caller_roles = roles
        self._caller_id = None if caller_id is None else str(caller_id)
        self._audit_sink = audit_sink

    @property
    def caller_roles(self) -> frozenset[Role]:
        return self._caller_roles

    # -- definitions and instances ------------------------------------------

    def define(
        self, name: str, entity_type: str, stages: Iterable[WorkflowStage],
    ) -> WorkflowStartResult:
        """Publish a new active definition version (admin only)."""
        try:
            outcome = self._invoke(
                "create_workflow_definition",
                {
                    "p_name": name,
                    "p_entity_type": entity_type,
                    "p_stages": [s.to_dict() for s in stages],
                },
            )
            if not outcome.ok:
                return WorkflowStartResult(success=False, error=outcome.error, code=outcome.code)
            return WorkflowStartResult(
                success=True, total_stages=outcome.data.get("total_stages"),
            )
        except Exception as exc:
            self._report_unexpected("workflow.define", exc)
            return WorkflowStartResult(
                success=False, error=UNEXPECTED_ERROR, code=UNEXPECTED_ERROR_CODE,
            )

    def start(
        self, entity_type: str, entity_id: str, metadata: dict[str, Any] | None = None,
    ) -> WorkflowStartResult:
        try:
            outcome = self._invoke(
                "start_workflow_instance",
                {
                    "p_entity_type": entity_type,
                    "p_entity_id": str(entity_id),
                    "p_metadata": dict(metadata or {}),
                },
            )
            if not outcome.ok:
                return WorkflowStartResult(success=False, error=outcome.error, code=outcome.code)
            return WorkflowStartResult(
                success=True,
                workflow_instance_id=str(outcome.data["workflow_instance_id"]),
                total_stages=outcome.data.get("total_stages"),
            )
        except Exception as exc:
            self._report_unexpected("workflow.start", exc)
            return WorkflowStartResult(
                success=False, error=UNEXPECTED_ERROR, code=UNEXPECTED_ERROR_CODE,
            )

    def get_active_workflow(self, entity_type: str) -> WorkflowDefinition | None:
        return self._read(
            "get_active_workflow",
            {"p_entity_type": entity_type},
            lambda rows: WorkflowDefinition.from_row(rows[0]) if rows else None,
        )

    def get_instance(self, workflow_instance_id: str) -> WorkflowInstance | None:
        return self._read(
            "get_workflow_instance",
            {"p_workflow_instance_id": str(workflow_instance_id)},
            WorkflowInstance.from_row,
        )

    def get_stage_execution(self, stage_execution_id: str) -> StageExecution | None:
        return self._read(
            "get_workflow_stage_execution",
            {"p_stage_execution_id": str(stage_execution_id)},
            StageExecution.from_row,
        )

    def get_stage_executions(self, workflow_instance_id: str) -> tuple[StageExecution, ...]:
        stages = self._read(
            "get_stage_executions",
            {"p_workflow_instance_id": str(workflow_instance_id)},
            lambda rows: tuple(StageExecution.from_row(r) for r in rows),
        )
        return stages or ()

    def get_current_stage(self, workflow_instance_id: str) -> StageExecution | None:
        for stage in self.get_stage_executions(workflow_instance_id):
            if stage.is_pending:
                return stage
        return None

    # -- decisions -----------------------------------------------------------

    def approve_stage(
        self,
        stage_execution_id: str,
        notes: str | None = None,
        *,
        stage: StageExecution | None = None,
    ) -> WorkflowDecisionResult:
        return self._decide(stage_execution_id, StageDecision.APPROVED, notes, stage)

    def reject_stage(
        self,
        stage_execution_id: str,
        notes: str | None,
        *,
        stage: StageExecution | None = None,
    ) -> WorkflowDecisionResult:
        return self._decide(stage_execution_id, StageDecision.REJECTED, notes, stage)

    def cancel(self, workflow_instance_id: str, reason: str | None = None) -> WorkflowDecisionResult:
        try:
            outcome = self._invoke(
                "cancel_workflow_instance",
                {"p_workflow_instance_id": str(workflow_instance_id), "p_reason": reason},
            )
            if not outcome.ok:
                return WorkflowDecisionResult.failure(outcome.error, outcome.code)
            return WorkflowDecisionResult.from_envelope(outcome.data)
        except Exception as exc:
            self._report_unexpected("workflow.cancel", exc)
            return WorkflowDecisionResult.failure(UNEXPECTED_ERROR, UNEXPECTED_ERROR_CODE)

    def assign_stage(self, stage_execution_id: str, user_id: str) -> WorkflowDecisionResult:
        try:
            outcome = self._invoke(
                "assign_workflow_stage",
                {"p_stage_execution_id": str(stage_execution_id), "p_user_id": str(user_id)},
            )
            if not outcome.ok:
                return WorkflowDecisionResult.failure(outcome.error, outcome.code)
            return WorkflowDecisionResult(success=True, message="Stage assigned")
        except Exception as exc:
            self._report_unexpected("workflow.assign_stage", exc)
            return WorkflowDecisionResult.failure(UNEXPECTED_ERROR, UNEXPECTED_ERROR_CODE)

    # -- derived reads -------------------------------------------------------

    def get_progress(self, workflow_instance_id: str) -> WorkflowProgress | None:
        instance = self.get_instance(workflow_instance_id)
        if instance is None:
            return None
        return compute_progress(
            self.get_stage_executions(workflow_instance_id),
            total_stages=instance.total_stages,
            current_stage=instance.current_stage,
            status=instance.status,
        )

    def get_stats(self) -> WorkflowStats | None:
        return self._read(
            "get_workflow_stats",
            {},
            lambda data: WorkflowStats(
                total_active=int(data["total_active"]),
                pending_my_action=int(data["pending_my_action"]),
                completed_today=int(data["completed_today"]),
                rejected_today=int(data["rejected_today"]),
            ),
        )

    # -- internals -----------------------------------------------------------

    def _decide(
        self,
        stage_execution_id: str,
        decision: StageDecision,
        notes: str | None,
        stage: StageExecution | None,
    ) -> WorkflowDecisionResult:
        operation = f"workflow.{decision.value}"
        try:
            if stage is None:
                stage = self.get_stage_execution(stage_execution_id)
                if stage is None:
                    return WorkflowDecisionResult.failure(
                        f"Stage execution not found: {stage_execution_id}",
                        EntityNotFoundError.code,
                    )
            try:
                cleaned = check_decision(
                    stage_execution_id=str(stage_execution_id),
                    stage_status=stage.status,
                    required_role=stage.assigned_role,
                    caller_roles=self._caller_roles,
                    decision=decision,
                    notes=notes,
                )
            except NamlendError as exc:
                logger.info(
                    "workflow_precheck_failed",
                    extra={
                        "stage_execution_id": str(stage_execution_id),
                        "reason": str(exc),
                        "error_code": exc.code,
                    },
                )
                return WorkflowDecisionResult.failure(str(exc), exc.code)

            outcome = self._invoke(
                "decide_workflow_stage",
                {
                    "p_stage_execution_id": str(stage_execution_id),
                    "p_decision": decision.value,
                    "p_notes": cleaned,
                },
            )
            if not outcome.ok:
                return WorkflowDecisionResult.failure(outcome.error, outcome.code)

            result = WorkflowDecisionResult.from_envelope(outcome.data)
            audit_safely(
                self._audit_sink,
                AuditEntry(
                    entity_type="workflow_stage",
                    entity_id=str(stage_execution_id),
                    action=f"workflow_stage_{decision.value}",
                    actor_id=self._caller_id,
                    metadata={"notes": cleaned, "workflow_status": result.workflow_status},
                ),
                self._monitor,
            )
            return result
        except Exception as exc:
            self._report_unexpected(operation, exc)
            return WorkflowDecisionResult.failure(UNEXPECTED_ERROR, UNEXPECTED_ERROR_CODE)

    def _read(self, procedure: str, args: dict[str, Any], parse: Callable[[Any], Any]) -> Any:
        """Parsed getter result, or None when the call failed."""
        try:
            outcome = self._invoke(procedure, args)
            if not outcome.ok:
                logger.info(
                    "workflow_read_failed",
                    extra={"rpc_procedure": procedure, "reason": outcome.error},
                )
                return None
            return parse(outcome.data)
        except Exception as exc:
            self._report_unexpected(f"workflow.{procedure}", exc)
            return None
