"""
Approval workflow domain types (``namlend_kernel.domain.workflow``).

A workflow definition is an ordered tuple of role-gated stages. A workflow
instance walks those stages one at a time; each visited stage is recorded
as a stage execution.

Instance lifecycle::

    in_progress -> completed   (final stage approved)
    in_progress -> rejected    (any stage rejected)
    in_progress -> cancelled   (external cancellation)

Within ``in_progress`` exactly one stage execution is ``pending``. Stages
after the current one are not instantiated until reached.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from namlend_kernel.domain.roles import Role


class WorkflowStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


TERMINAL_WORKFLOW_STATUSES: frozenset[WorkflowStatus] = frozenset({
    WorkflowStatus.COMPLETED,
    WorkflowStatus.REJECTED,
    WorkflowStatus.CANCELLED,
})


class StageStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    SKIPPED = "skipped"


class StageDecision(str, Enum):
    APPROVED = "approved"
    REJECTED = "rejected"


class WorkflowEntityType(str, Enum):
    LOAN_APPLICATION = "loan_application"
    DISBURSEMENT = "disbursement"
    PAYMENT = "payment"
    USER_ROLE_CHANGE = "user_role_change"


@dataclass(frozen=True)
class WorkflowStage:
    """One step of a workflow definition."""

    stage: int
    name: str
    required_role: Role
    description: str = ""
    timeout_hours: int | None = None

    def __post_init__(self) -> None:
        if self.stage < 1:
            raise ValueError("stage numbers start at 1")
        if not self.name or not self.name.strip():
            raise ValueError("stage name must be non-empty")

    def to_dict(self) -> dict[str, Any]:
        return {
            "stage": self.stage,
            "name": self.name,
            "required_role": self.required_role.value,
            "description": self.description,
            "timeout_hours": self.timeout_hours,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WorkflowStage:
        return cls(
            stage=int(data["stage"]),
            name=data["name"],
            required_role=Role.parse(data["required_role"]),
            description=data.get("description") or "",
            timeout_hours=data.get("timeout_hours"),
        )


@dataclass(frozen=True)
class WorkflowDefinition:
    id: str
    name: str
    entity_type: str
    version: int
    stages: tuple[WorkflowStage, ...]
    is_active: bool = True

    @property
    def stage_count(self) -> int:
        return len(self.stages)

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> WorkflowDefinition:
        stages = tuple(
            sorted(
                (WorkflowStage.from_dict(s) for s in row.get("stages") or ()),
                key=lambda s: s.stage,
            )
        )
        return cls(
            id=str(row["id"]),
            name=row["name"],
            entity_type=row["entity_type"],
            version=int(row.get("version", 1)),
            stages=stages,
            is_active=bool(row.get("is_active", True)),
        )


@dataclass(frozen=True)
class StageExecution:
    """Transient view of one visited stage."""

    id: str
    workflow_instance_id: str
    stage_number: int
    stage_name: str
    assigned_role: Role
    status: StageStatus
    assigned_to: str | None = None
    decision_notes: str | None = None
    decided_by: str | None = None
    decided_at: datetime | None = None
    created_at: datetime | None = None

    @property
    def is_pending(self) -> bool:
        return self.status == StageStatus.PENDING

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> StageExecution:
        return cls(
            id=str(row["id"]),
            workflow_instance_id=str(row["workflow_instance_id"]),
            stage_number=int(row["stage_number"]),
            stage_name=row["stage_name"],
            assigned_role=Role.parse(row["assigned_role"]),
            status=StageStatus(row["status"]),
            assigned_to=_opt_str(row.get("assigned_to")),
            decision_notes=row.get("decision_notes"),
            decided_by=_opt_str(row.get("decided_by")),
            decided_at=row.get("decided_at"),
            created_at=row.get("created_at"),
        )


@dataclass(frozen=True)
class WorkflowInstance:
    id: str
    workflow_definition_id: str
    entity_type: str
    entity_id: str
    current_stage: int
    status: WorkflowStatus
    total_stages: int
    started_at: datetime | None = None
    completed_at: datetime | None = None
    metadata: dict[str, Any] | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> WorkflowInstance:
        return cls(
            id=str(row["id"]),
            workflow_definition_id=str(row["workflow_definition_id"]),
            entity_type=row["entity_type"],
            entity_id=str(row["entity_id"]),
            current_stage=int(row["current_stage"]),
            status=WorkflowStatus(row["status"]),
            total_stages=int(row["total_stages"]),
            started_at=row.get("started_at"),
            completed_at=row.get("completed_at"),
            metadata=row.get("metadata") or {},
        )


@dataclass(frozen=True)
class WorkflowProgress:
    """Derived read: never stored."""

    total_stages: int
    completed_stages: int
    current_stage: int
    status: WorkflowStatus
    stages: tuple[StageExecution, ...] = ()

    @property
    def percent_complete(self) -> float:
        if self.total_stages == 0:
            return 0.0
        return round(100.0 * self.completed_stages / self.total_stages, 2)


@dataclass(frozen=True)
class WorkflowDecisionResult:
    success: bool
    workflow_status: WorkflowStatus | None = None
    current_stage: int | None = None
    message: str | None = None
    error: str | None = None
    code: str | None = None

    @classmethod
    def from_envelope(cls, data: dict[str, Any]) -> WorkflowDecisionResult:
        status = data.get("workflow_status")
        return cls(
            success=bool(data.get("success")),
            workflow_status=WorkflowStatus(status) if status else None,
            current_stage=data.get("current_stage"),
            message=data.get("message"),
            error=data.get("error"),
            code=data.get("code"),
        )

    @classmethod
    def failure(cls, error: str, code: str | None = None) -> WorkflowDecisionResult:
        return cls(success=False, error=error, code=code)


@dataclass(frozen=True)
class WorkflowStartResult:
    success: bool
    workflow_instance_id: str | None = None
    total_stages: int | None = None
    error: str | None = None
    code: str | None = None


@dataclass(frozen=True)
class WorkflowStats:
    total_active: int
    pending_my_action: int
    completed_today: int
    rejected_today: int


def _opt_str(value: Any) -> str | None:
    return None if value is None else str(value)
