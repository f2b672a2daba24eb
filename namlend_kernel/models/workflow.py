"""
Module: namlend_kernel.models.workflow
Responsibility: ORM persistence for approval workflow definitions,
    instances and per-stage executions.

Invariants enforced:
    - Only one active definition per (entity_type, name); creating a new
      version deactivates the previous one.
    - One stage execution per (instance, stage_number).
    - While an instance is in_progress, exactly one of its stage
      executions is pending (maintained by decide_workflow_stage).
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from namlend_kernel.db.base import TrackedBase, UTCDateTime, UUIDString


class WorkflowDefinitionModel(TrackedBase):
    __tablename__ = "workflow_definitions"

    __table_args__ = (
        UniqueConstraint(
            "entity_type", "name", "version", name="uq_workflow_definitions_version",
        ),
        Index("ix_workflow_definitions_active", "entity_type", "is_active"),
    )

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    # Ordered list of {stage, name, required_role, description, timeout_hours}.
    stages: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    def to_row(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "entity_type": self.entity_type,
            "version": self.version,
            "stages": self.stages,
            "is_active": self.is_active,
        }


class WorkflowInstanceModel(TrackedBase):
    __tablename__ = "workflow_instances"

    __table_args__ = (
        CheckConstraint(
            "status IN ('in_progress', 'completed', 'rejected', 'cancelled')",
            name="ck_workflow_instances_valid_status",
        ),
        Index("ix_workflow_instances_entity", "entity_type", "entity_id"),
    )

    workflow_definition_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("workflow_definitions.id"), nullable=False,
    )
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    current_stage: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    total_stages: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="in_progress")
    started_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    started_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    # "metadata" is reserved on declarative classes.
    instance_metadata: Mapped[dict[str, Any] | None] = mapped_column(
        "metadata", JSON, nullable=True,
    )

    def to_row(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "workflow_definition_id": self.workflow_definition_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "current_stage": self.current_stage,
            "total_stages": self.total_stages,
            "status": self.status,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "metadata": self.instance_metadata or {},
        }


class WorkflowStageExecutionModel(TrackedBase):
    __tablename__ = "workflow_stage_executions"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected', 'skipped')",
            name="ck_workflow_stage_executions_valid_status",
        ),
        UniqueConstraint(
            "workflow_instance_id", "stage_number", name="uq_workflow_stage_executions_stage",
        ),
        Index("ix_workflow_stage_executions_role", "assigned_role", "status"),
    )

    workflow_instance_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("workflow_instances.id"), nullable=False,
    )
    stage_number: Mapped[int] = mapped_column(Integer, nullable=False)
    stage_name: Mapped[str] = mapped_column(String(100), nullable=False)
    assigned_role: Mapped[str] = mapped_column(String(20), nullable=False)
    assigned_to: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    decision_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    decided_by: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    decided_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    def to_row(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "workflow_instance_id": self.workflow_instance_id,
            "stage_number": self.stage_number,
            "stage_name": self.stage_name,
            "assigned_role": self.assigned_role,
            "assigned_to": self.assigned_to,
            "status": self.status,
            "decision_notes": self.decision_notes,
            "decided_by": self.decided_by,
            "decided_at": self.decided_at,
            "created_at": self.created_at,
        }
