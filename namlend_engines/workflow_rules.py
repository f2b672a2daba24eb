"""
Module: namlend_engines.workflow_rules
Responsibility:
    Stage-level rules for the approval workflow: who may decide a stage,
    what a decision does to the workflow, and how progress is derived.

Architecture position:
    Engines -- pure calculation layer, zero I/O. Called twice per
    decision: once by ApprovalWorkflowEngine as a local precondition check
    (no round-trip when it fails), and again by decide_workflow_stage
    against the persisted state, since caller role claims are not trusted.

Invariants enforced:
    - Only a pending stage can be decided.
    - ``admin`` satisfies any staff stage; ``loan_officer`` satisfies only
      loan_officer stages; ``client`` never decides a stage.
    - Rejection requires non-empty notes.
    - Approving stage k < n advances to k + 1; approving stage n completes
      the workflow; any rejection ends it as rejected.

Failure modes:
    - StageNotPendingError, AuthorizationError, MissingReasonError,
      ValidationError (malformed definitions).
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from namlend_kernel.domain.roles import STAFF_ROLES, Role
from namlend_kernel.domain.workflow import (
    StageDecision,
    StageExecution,
    StageStatus,
    WorkflowProgress,
    WorkflowStage,
    WorkflowStatus,
)
from namlend_kernel.exceptions import (
    AuthorizationError,
    MissingReasonError,
    StageNotPendingError,
    ValidationError,
)


@dataclass(frozen=True)
class StageOutcome:
    """Effect of one decision on its workflow instance."""

    stage_status: StageStatus
    workflow_status: WorkflowStatus
    next_stage: int | None

    @property
    def is_terminal(self) -> bool:
        return self.workflow_status != WorkflowStatus.IN_PROGRESS


def role_satisfies(held: Iterable[Role], required: Role) -> bool:
    held = frozenset(held)
    match required:
        case Role.ADMIN:
            return Role.ADMIN in held
        case Role.LOAN_OFFICER:
            return bool(held & STAFF_ROLES)
        case Role.CLIENT:
            return False


def normalize_notes(notes: str | None) -> str | None:
    if notes is None:
        return None
    stripped = notes.strip()
    return stripped or None


def validate_stages(stages: Sequence[WorkflowStage]) -> tuple[WorkflowStage, ...]:
    """Return stages ordered by number, checking they run 1..n with staff roles."""
    if not stages:
        raise ValidationError("Workflow definition needs at least one stage")
    ordered = tuple(sorted(stages, key=lambda s: s.stage))
    numbers = [s.stage for s in ordered]
    if numbers != list(range(1, len(ordered) + 1)):
        raise ValidationError(f"Stage numbers must run 1..{len(ordered)}, got {numbers}")
    for s in ordered:
        if s.required_role not in STAFF_ROLES:
            raise ValidationError(
                f"Stage {s.stage} ({s.name}) must be assigned to admin or loan_officer"
            )
    return ordered


def check_decision(
    *,
    stage_execution_id: str,
    stage_status: StageStatus,
    required_role: Role,
    caller_roles: Iterable[Role],
    decision: StageDecision,
    notes: str | None,
) -> str | None:
    """Raise if the caller may not make this decision; return cleaned notes.

    Check order: stage state, then role, then notes.
    """
    if stage_status != StageStatus.PENDING:
        raise StageNotPendingError(stage_execution_id, stage_status.value)
    if not role_satisfies(caller_roles, required_role):
        raise AuthorizationError(
            f"deciding stage {stage_execution_id}", required=required_role.value,
        )
    cleaned = normalize_notes(notes)
    if decision == StageDecision.REJECTED and cleaned is None:
        raise MissingReasonError("Rejection notes")
    return cleaned


def plan_decision(stage_number: int, total_stages: int, decision: StageDecision) -> StageOutcome:
    match decision:
        case StageDecision.REJECTED:
            return StageOutcome(StageStatus.REJECTED, WorkflowStatus.REJECTED, None)
        case StageDecision.APPROVED if stage_number >= total_stages:
            return StageOutcome(StageStatus.APPROVED, WorkflowStatus.COMPLETED, None)
        case StageDecision.APPROVED:
            return StageOutcome(
                StageStatus.APPROVED, WorkflowStatus.IN_PROGRESS, stage_number + 1,
            )


def compute_progress(
    executions: Sequence[StageExecution],
    *,
    total_stages: int,
    current_stage: int,
    status: WorkflowStatus,
) -> WorkflowProgress:
    ordered = tuple(sorted(executions, key=lambda e: e.stage_number))
    approved = sum(1 for e in ordered if e.status == StageStatus.APPROVED)
    return WorkflowProgress(
        total_stages=total_stages,
        completed_stages=approved,
        current_stage=current_stage,
        status=status,
        stages=ordered,
    )
