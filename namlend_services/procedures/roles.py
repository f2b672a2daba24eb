"""
Role management procedures.

Mutations require an admin (or the configured super admin) and are checked
against the role hierarchy using the *target* user's identity, so the
super-admin exemption applies to that account's own role set.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy import delete, select

from namlend_engines.role_hierarchy import (
    validate_role_change,
    validate_role_operation,
    validate_role_set,
)
from namlend_kernel.domain.roles import Role, RoleOperation, parse_roles
from namlend_kernel.exceptions import AuthorizationError, RoleHierarchyViolationError, ValidationError
from namlend_kernel.logging_config import get_logger
from namlend_kernel.models.audit_event import AuditAction
from namlend_kernel.models.user_role import UserRoleModel
from namlend_services.procedures.registry import (
    ProcedureContext,
    load_roles,
    parse_uuid,
    procedure,
)

logger = get_logger("services.procedures.roles")


def _grant(ctx: ProcedureContext, user_id: UUID, role: Role) -> None:
    ctx.session.add(UserRoleModel(user_id=user_id, role=role.value, created_at=ctx.clock.now()))
    ctx.auditor.record(
        "UserRole", user_id, AuditAction.ROLE_ASSIGNED, ctx.actor_id, {"role": role.value},
    )


def _revoke(ctx: ProcedureContext, user_id: UUID, role: Role) -> None:
    ctx.session.execute(
        delete(UserRoleModel).where(
            UserRoleModel.user_id == user_id, UserRoleModel.role == role.value,
        )
    )
    ctx.auditor.record(
        "UserRole", user_id, AuditAction.ROLE_REMOVED, ctx.actor_id, {"role": role.value},
    )


def _parse_role_list(value: Any) -> frozenset[Role]:
    if value is None or isinstance(value, (str, bytes)):
        raise ValidationError("p_roles must be a list of roles")
    return parse_roles(value)


@procedure("assign_user_role_with_validation")
def assign_user_role_with_validation(ctx: ProcedureContext, p_user_id: Any, p_role: Any) -> dict:
    ctx.require_admin("assign_user_role_with_validation")
    user_id = parse_uuid(p_user_id, "user")
    role = Role.parse(p_role)
    current = load_roles(ctx.session, user_id)

    check = validate_role_operation(
        current, role, RoleOperation.ADD,
        user_id=user_id, super_admin_id=ctx.super_admin_id,
    )
    if not check.allowed:
        raise RoleHierarchyViolationError(check.reason)

    _grant(ctx, user_id, role)
    logger.info("role_assigned", extra={"target_user_id": str(user_id), "role": role.value})
    return {"success": True, "roles": sorted(r.value for r in current | {role})}


@procedure("remove_user_role")
def remove_user_role(ctx: ProcedureContext, p_user_id: Any, p_role: Any) -> dict:
    ctx.require_admin("remove_user_role")
    user_id = parse_uuid(p_user_id, "user")
    role = Role.parse(p_role)
    current = load_roles(ctx.session, user_id)

    check = validate_role_operation(
        current, role, RoleOperation.REMOVE,
        user_id=user_id, super_admin_id=ctx.super_admin_id,
    )
    if not check.allowed:
        raise RoleHierarchyViolationError(check.reason)

    _revoke(ctx, user_id, role)
    logger.info("role_removed", extra={"target_user_id": str(user_id), "role": role.value})
    return {"success": True, "roles": sorted(r.value for r in current - {role})}


@procedure("set_user_roles")
def set_user_roles(ctx: ProcedureContext, p_user_id: Any, p_roles: Any) -> dict:
    """Replace the user's whole role set.

    The target must be a legal combination reachable from the current set
    by changes the hierarchy permits; a client cannot be turned into an
    admin this way any more than through assign_user_role_with_validation.
    """
    ctx.require_admin("set_user_roles")
    user_id = parse_uuid(p_user_id, "user")
    target = _parse_role_list(p_roles)
    current = load_roles(ctx.session, user_id)

    check = validate_role_change(
        current, target, user_id=user_id, super_admin_id=ctx.super_admin_id,
    )
    if not check.allowed:
        raise RoleHierarchyViolationError(check.reason)

    for role in sorted(current - target):
        _revoke(ctx, user_id, role)
    for role in sorted(target - current):
        _grant(ctx, user_id, role)

    logger.info(
        "roles_set",
        extra={"target_user_id": str(user_id), "roles": sorted(r.value for r in target)},
    )
    return {"success": True, "roles": sorted(r.value for r in target)}


@procedure("get_user_roles", mutates=False)
def get_user_roles(ctx: ProcedureContext, p_user_id: Any) -> list[dict[str, Any]]:
    user_id = parse_uuid(p_user_id, "user")
    if user_id != ctx.actor_id and not ctx.is_staff:
        raise AuthorizationError("get_user_roles")
    rows = ctx.session.execute(
        select(UserRoleModel)
        .where(UserRoleModel.user_id == user_id)
        .order_by(UserRoleModel.created_at, UserRoleModel.role)
    ).scalars().all()
    return [r.to_row() for r in rows]


@procedure("validate_role_hierarchy", mutates=False)
def validate_role_hierarchy(ctx: ProcedureContext, p_user_id: Any, p_roles: Any) -> bool:
    user_id = parse_uuid(p_user_id, "user")
    target = _parse_role_list(p_roles)
    return validate_role_set(target, user_id=user_id, super_admin_id=ctx.super_admin_id).allowed
