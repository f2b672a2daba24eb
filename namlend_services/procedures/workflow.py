"""
Approval workflow procedures.

Stage decisions are re-validated here against the persisted stage and the
caller's stored roles with the same rules the client engine applies
locally; a client-side pass is never taken on trust.
"""

from __future__ import annotations

from datetime import datetime, time, timezone
from typing import Any

from sqlalchemy import func, select, update

from namlend_engines.workflow_rules import (
    check_decision,
    plan_decision,
    role_satisfies,
    validate_stages,
)
from namlend_kernel.domain.disbursement import LoanStatus
from namlend_kernel.domain.roles import Role
from namlend_kernel.domain.workflow import (
    StageDecision,
    StageStatus,
    WorkflowEntityType,
    WorkflowStage,
    WorkflowStatus,
)
from namlend_kernel.exceptions import (
    AuthorizationError,
    EntityNotFoundError,
    StageNotPendingError,
    StateConflictError,
    ValidationError,
    WorkflowNotActiveError,
)
from namlend_kernel.logging_config import get_logger
from namlend_kernel.models.audit_event import AuditAction
from namlend_kernel.models.loan import LoanModel
from namlend_kernel.models.workflow import (
    WorkflowDefinitionModel,
    WorkflowInstanceModel,
    WorkflowStageExecutionModel,
)
from namlend_services.procedures.disbursements import approve_pending_loan
from namlend_services.procedures.notify import write_notification
from namlend_services.procedures.registry import (
    ProcedureContext,
    load_roles,
    parse_uuid,
    procedure,
    require_text,
)

logger = get_logger("services.procedures.workflow")


def _parse_stages(value: Any) -> tuple[WorkflowStage, ...]:
    if not isinstance(value, (list, tuple)):
        raise ValidationError("p_stages must be a list of stage objects")
    try:
        stages = [WorkflowStage.from_dict(s) for s in value]
    except (KeyError, TypeError, ValueError) as exc:
        raise ValidationError(f"Invalid workflow stage: {exc}") from None
    return validate_stages(stages)


def _active_definition(ctx: ProcedureContext, entity_type: str) -> WorkflowDefinitionModel | None:
    return ctx.session.execute(
        select(WorkflowDefinitionModel)
        .where(
            WorkflowDefinitionModel.entity_type == entity_type,
            WorkflowDefinitionModel.is_active.is_(True),
        )
        .order_by(WorkflowDefinitionModel.version.desc())
        .limit(1)
    ).scalar_one_or_none()


def _stage_from_definition(definition: WorkflowDefinitionModel, number: int) -> WorkflowStage:
    for raw in definition.stages:
        if int(raw["stage"]) == number:
            return WorkflowStage.from_dict(raw)
    raise EntityNotFoundError("WorkflowStage", f"{definition.id}#{number}")


def _open_stage(
    ctx: ProcedureContext, instance: WorkflowInstanceModel, stage: WorkflowStage,
) -> WorkflowStageExecutionModel:
    now = ctx.clock.now()
    execution = WorkflowStageExecutionModel(
        workflow_instance_id=instance.id,
        stage_number=stage.stage,
        stage_name=stage.name,
        assigned_role=stage.required_role.value,
        status=StageStatus.PENDING.value,
        created_at=now,
        updated_at=now,
    )
    ctx.session.add(execution)
    return execution


# ---------------------------------------------------------------------------
# Definitions
# ---------------------------------------------------------------------------


@procedure("create_workflow_definition")
def create_workflow_definition(
    ctx: ProcedureContext, p_name: str, p_entity_type: str, p_stages: Any,
) -> dict:
    """Publish a new definition version and make it the active one."""
    ctx.require_admin("create_workflow_definition")
    name = require_text(p_name)
    entity_type = require_text(p_entity_type)
    if name is None or entity_type is None:
        raise ValidationError("Workflow name and entity type are required")
    stages = _parse_stages(p_stages)

    latest = ctx.session.execute(
        select(func.max(WorkflowDefinitionModel.version)).where(
            WorkflowDefinitionModel.entity_type == entity_type,
            WorkflowDefinitionModel.name == name,
        )
    ).scalar_one()
    ctx.session.execute(
        update(WorkflowDefinitionModel)
        .where(
            WorkflowDefinitionModel.entity_type == entity_type,
            WorkflowDefinitionModel.is_active.is_(True),
        )
        .values(is_active=False)
    )

    now = ctx.clock.now()
    definition = WorkflowDefinitionModel(
        name=name,
        entity_type=entity_type,
        version=(latest or 0) + 1,
        stages=[s.to_dict() for s in stages],
        is_active=True,
        created_by=ctx.actor_id,
        created_at=now,
        updated_at=now,
    )
    ctx.session.add(definition)
    ctx.session.flush()
    ctx.auditor.record(
        "WorkflowDefinition", definition.id, AuditAction.WORKFLOW_DEFINED, ctx.actor_id,
        {"name": name, "entity_type": entity_type, "version": definition.version},
    )
    logger.info(
        "workflow_defined",
        extra={"entity_type": entity_type, "version": definition.version, "stages": len(stages)},
    )
    return {
        "success": True,
        "workflow_definition_id": definition.id,
        "version": definition.version,
        "total_stages": len(stages),
    }


@procedure("get_active_workflow", mutates=False)
def get_active_workflow(ctx: ProcedureContext, p_entity_type: str) -> list[dict[str, Any]]:
    definition = _active_definition(ctx, p_entity_type)
    return [] if definition is None else [definition.to_row()]


# ---------------------------------------------------------------------------
# Instances
# ---------------------------------------------------------------------------


@procedure("start_workflow_instance")
def start_workflow_instance(
    ctx: ProcedureContext,
    p_entity_type: str,
    p_entity_id: Any,
    p_metadata: dict[str, Any] | None = None,
) -> dict:
    entity_id = parse_uuid(p_entity_id, "entity")
    if not ctx.is_staff:
        # Borrowers may only open the approval of their own application.
        loan = (
            ctx.session.get(LoanModel, entity_id)
            if p_entity_type == WorkflowEntityType.LOAN_APPLICATION.value
            else None
        )
        if loan is None or loan.user_id != ctx.actor_id:
            raise AuthorizationError("start_workflow_instance")

    definition = _active_definition(ctx, p_entity_type)
    if definition is None:
        raise EntityNotFoundError("WorkflowDefinition", p_entity_type)

    running = ctx.session.execute(
        select(WorkflowInstanceModel.id).where(
            WorkflowInstanceModel.entity_type == p_entity_type,
            WorkflowInstanceModel.entity_id == entity_id,
            WorkflowInstanceModel.status == WorkflowStatus.IN_PROGRESS.value,
        )
    ).scalar_one_or_none()
    if running is not None:
        raise StateConflictError(
            f"Workflow already in progress for {p_entity_type} {entity_id}: {running}"
        )

    now = ctx.clock.now()
    instance = WorkflowInstanceModel(
        workflow_definition_id=definition.id,
        entity_type=p_entity_type,
        entity_id=entity_id,
        current_stage=1,
        total_stages=len(definition.stages),
        status=WorkflowStatus.IN_PROGRESS.value,
        started_by=ctx.actor_id,
        started_at=now,
        instance_metadata=dict(p_metadata or {}),
        created_at=now,
        updated_at=now,
    )
    ctx.session.add(instance)
    ctx.session.flush()
    _open_stage(ctx, instance, _stage_from_definition(definition, 1))
    ctx.session.flush()

    ctx.auditor.record(
        "WorkflowInstance", instance.id, AuditAction.WORKFLOW_STARTED, ctx.actor_id,
        {"entity_type": p_entity_type, "entity_id": entity_id, "definition_version": definition.version},
    )
    logger.info(
        "workflow_started",
        extra={"workflow_instance_id": str(instance.id), "entity_type": p_entity_type},
    )
    return {
        "success": True,
        "workflow_instance_id": instance.id,
        "current_stage": 1,
        "total_stages": instance.total_stages,
    }


def _require_instance_access(ctx: ProcedureContext, instance: WorkflowInstanceModel, action: str) -> None:
    """Staff see every workflow; a borrower sees only their own application's."""
    if ctx.is_staff:
        return
    loan = (
        ctx.session.get(LoanModel, instance.entity_id)
        if instance.entity_type == WorkflowEntityType.LOAN_APPLICATION.value
        else None
    )
    if loan is None or loan.user_id != ctx.actor_id:
        raise AuthorizationError(action, required="admin, loan_officer or loan owner")


@procedure("get_workflow_instance", mutates=False)
def get_workflow_instance(ctx: ProcedureContext, p_workflow_instance_id: Any) -> dict[str, Any]:
    instance = ctx.get(WorkflowInstanceModel, p_workflow_instance_id, "WorkflowInstance")
    _require_instance_access(ctx, instance, "get_workflow_instance")
    return instance.to_row()


@procedure("get_workflow_stage_execution", mutates=False)
def get_workflow_stage_execution(ctx: ProcedureContext, p_stage_execution_id: Any) -> dict[str, Any]:
    execution = ctx.get(
        WorkflowStageExecutionModel, p_stage_execution_id, "WorkflowStageExecution",
    )
    instance = ctx.get(WorkflowInstanceModel, execution.workflow_instance_id, "WorkflowInstance")
    _require_instance_access(ctx, instance, "get_workflow_stage_execution")
    return execution.to_row()


@procedure("get_stage_executions", mutates=False)
def get_stage_executions(ctx: ProcedureContext, p_workflow_instance_id: Any) -> list[dict[str, Any]]:
    instance = ctx.get(WorkflowInstanceModel, p_workflow_instance_id, "WorkflowInstance")
    _require_instance_access(ctx, instance, "get_stage_executions")
    rows = ctx.session.execute(
        select(WorkflowStageExecutionModel)
        .where(WorkflowStageExecutionModel.workflow_instance_id == instance.id)
        .order_by(WorkflowStageExecutionModel.stage_number)
    ).scalars().all()
    return [r.to_row() for r in rows]


# ---------------------------------------------------------------------------
# Decisions
# ---------------------------------------------------------------------------


def _apply_to_entity(ctx: ProcedureContext, instance: WorkflowInstanceModel, notes: str | None) -> None:
    if instance.entity_type != WorkflowEntityType.LOAN_APPLICATION.value:
        return
    loan = ctx.session.execute(
        select(LoanModel)
        .where(LoanModel.id == instance.entity_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if loan is None or loan.status != LoanStatus.PENDING.value:
        logger.warning(
            "workflow_entity_not_pending",
            extra={"workflow_instance_id": str(instance.id), "entity_id": str(instance.entity_id)},
        )
        return

    if instance.status == WorkflowStatus.COMPLETED.value:
        approve_pending_loan(ctx, loan, notes)
        return

    now = ctx.clock.now()
    loan.status = LoanStatus.REJECTED.value
    loan.updated_at = now
    ctx.auditor.record(
        "Loan", loan.id, AuditAction.LOAN_REJECTED, ctx.actor_id,
        {"workflow_instance_id": instance.id, "notes": notes},
    )
    write_notification(
        ctx, loan.user_id, "loan_rejected", "Loan application declined",
        f"Your loan application was declined: {notes}",
        {"loan_id": str(loan.id)},
    )


@procedure("decide_workflow_stage")
def decide_workflow_stage(
    ctx: ProcedureContext,
    p_stage_execution_id: Any,
    p_decision: str,
    p_notes: str | None = None,
) -> dict:
    try:
        decision = StageDecision(p_decision)
    except ValueError:
        raise ValidationError(f"Invalid decision: {p_decision!r}") from None

    execution = ctx.get(
        WorkflowStageExecutionModel, p_stage_execution_id, "WorkflowStageExecution",
    )
    # Instance before execution, the same order cancel_workflow_instance locks in.
    instance = ctx.get(
        WorkflowInstanceModel, execution.workflow_instance_id, "WorkflowInstance", for_update=True,
    )
    execution = ctx.get(
        WorkflowStageExecutionModel, execution.id, "WorkflowStageExecution", for_update=True,
    )
    notes = check_decision(
        stage_execution_id=str(execution.id),
        stage_status=StageStatus(execution.status),
        required_role=Role.parse(execution.assigned_role),
        caller_roles=ctx.effective_roles,
        decision=decision,
        notes=p_notes,
    )
    if (
        execution.assigned_to is not None
        and execution.assigned_to != ctx.actor_id
        and not ctx.is_admin
    ):
        raise AuthorizationError(
            f"deciding stage {execution.id}", required="the assigned reviewer or admin",
        )

    if instance.status != WorkflowStatus.IN_PROGRESS.value:
        raise WorkflowNotActiveError(str(instance.id), instance.status)

    outcome = plan_decision(execution.stage_number, instance.total_stages, decision)
    now = ctx.clock.now()
    execution.status = outcome.stage_status.value
    execution.decision_notes = notes
    execution.decided_by = ctx.actor_id
    execution.decided_at = now
    execution.updated_at = now

    instance.status = outcome.workflow_status.value
    instance.updated_at = now
    if outcome.next_stage is not None:
        definition = ctx.get(
            WorkflowDefinitionModel, instance.workflow_definition_id, "WorkflowDefinition",
        )
        instance.current_stage = outcome.next_stage
        _open_stage(ctx, instance, _stage_from_definition(definition, outcome.next_stage))
    else:
        instance.completed_at = now
    ctx.session.flush()

    ctx.auditor.record(
        "WorkflowStageExecution", execution.id, AuditAction.WORKFLOW_STAGE_DECIDED, ctx.actor_id,
        {
            "workflow_instance_id": instance.id,
            "stage_number": execution.stage_number,
            "decision": decision.value,
            "notes": notes,
        },
    )
    if outcome.is_terminal:
        action = (
            AuditAction.WORKFLOW_COMPLETED
            if outcome.workflow_status == WorkflowStatus.COMPLETED
            else AuditAction.WORKFLOW_REJECTED
        )
        ctx.auditor.record(
            "WorkflowInstance", instance.id, action, ctx.actor_id,
            {"final_stage": execution.stage_number},
        )
        _apply_to_entity(ctx, instance, notes)

    logger.info(
        "workflow_stage_decided",
        extra={
            "stage_execution_id": str(execution.id),
            "decision": decision.value,
            "workflow_status": instance.status,
        },
    )
    return {
        "success": True,
        "workflow_instance_id": instance.id,
        "stage_status": execution.status,
        "workflow_status": instance.status,
        "current_stage": instance.current_stage,
        "message": f"Stage {execution.stage_number} {decision.value}",
    }


@procedure("cancel_workflow_instance")
def cancel_workflow_instance(
    ctx: ProcedureContext, p_workflow_instance_id: Any, p_reason: str | None = None,
) -> dict:
    ctx.require_admin("cancel_workflow_instance")
    instance = ctx.get(
        WorkflowInstanceModel, p_workflow_instance_id, "WorkflowInstance", for_update=True,
    )
    if instance.status != WorkflowStatus.IN_PROGRESS.value:
        raise WorkflowNotActiveError(str(instance.id), instance.status)

    now = ctx.clock.now()
    ctx.session.execute(
        update(WorkflowStageExecutionModel)
        .where(
            WorkflowStageExecutionModel.workflow_instance_id == instance.id,
            WorkflowStageExecutionModel.status == StageStatus.PENDING.value,
        )
        .values(status=StageStatus.SKIPPED.value, updated_at=now)
        .execution_options(synchronize_session="fetch")
    )
    instance.status = WorkflowStatus.CANCELLED.value
    instance.completed_at = now
    instance.updated_at = now

    reason = require_text(p_reason)
    ctx.auditor.record(
        "WorkflowInstance", instance.id, AuditAction.WORKFLOW_CANCELLED, ctx.actor_id,
        {"reason": reason, "stage": instance.current_stage},
    )
    logger.info("workflow_cancelled", extra={"workflow_instance_id": str(instance.id)})
    return {
        "success": True,
        "workflow_instance_id": instance.id,
        "workflow_status": instance.status,
        "current_stage": instance.current_stage,
        "message": "Workflow cancelled",
    }


@procedure("assign_workflow_stage")
def assign_workflow_stage(ctx: ProcedureContext, p_stage_execution_id: Any, p_user_id: Any) -> dict:
    ctx.require_staff("assign_workflow_stage")
    execution = ctx.get(
        WorkflowStageExecutionModel, p_stage_execution_id, "WorkflowStageExecution", for_update=True,
    )
    if execution.status != StageStatus.PENDING.value:
        raise StageNotPendingError(str(execution.id), execution.status)

    assignee = parse_uuid(p_user_id, "user")
    if not role_satisfies(load_roles(ctx.session, assignee), Role.parse(execution.assigned_role)):
        raise ValidationError(
            f"User {assignee} cannot decide a {execution.assigned_role} stage"
        )
    execution.assigned_to = assignee
    execution.updated_at = ctx.clock.now()
    logger.info(
        "workflow_stage_assigned",
        extra={"stage_execution_id": str(execution.id), "assignee_id": str(assignee)},
    )
    return {"success": True, "stage_execution_id": execution.id, "assigned_to": assignee}


@procedure("get_workflow_stats", mutates=False)
def get_workflow_stats(ctx: ProcedureContext) -> dict[str, int]:
    ctx.require_staff("get_workflow_stats")
    start_of_day = datetime.combine(ctx.clock.today(), time.min, tzinfo=timezone.utc)

    def count_instances(status: WorkflowStatus, since: datetime | None = None) -> int:
        stmt = select(func.count(WorkflowInstanceModel.id)).where(
            WorkflowInstanceModel.status == status.value
        )
        if since is not None:
            stmt = stmt.where(WorkflowInstanceModel.completed_at >= since)
        return ctx.session.execute(stmt).scalar_one()

    pending_mine = ctx.session.execute(
        select(func.count(WorkflowStageExecutionModel.id)).where(
            WorkflowStageExecutionModel.assigned_to == ctx.actor_id,
            WorkflowStageExecutionModel.status == StageStatus.PENDING.value,
        )
    ).scalar_one()
    return {
        "total_active": count_instances(WorkflowStatus.IN_PROGRESS),
        "pending_my_action": pending_mine,
        "completed_today": count_instances(WorkflowStatus.COMPLETED, start_of_day),
        "rejected_today": count_instances(WorkflowStatus.REJECTED, start_of_day),
    }
