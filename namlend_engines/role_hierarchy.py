"""
Module: namlend_engines.role_hierarchy
Responsibility:
    Decide which role combinations are legal and which single-role add or
    remove operations are permitted from a given role set.

Architecture position:
    Engines -- pure calculation layer, zero I/O. Used locally by
    RoleManagementService for cheap pre-checks and by the role procedures
    as the authoritative check before any user_roles row is touched.

Rules, in precedence order:
    1. The designated super-admin identity may add any role it does not
       hold and remove any role it holds.
    2. A set containing ``client`` is fixed: nothing may be added/removed.
    3. A set containing ``loan_officer`` but not ``admin`` is fixed.
    4. A set containing ``admin`` may gain or lose ``loan_officer`` only.
    5. An empty set may gain any single role; nothing to remove.

    Replacing a whole set (validate_role_change) is held to the same rules
    role by role.

Invariants enforced:
    - Total: every input yields an answer, never an exception.
    - Roles are the closed ``Role`` enumeration; every branch below is an
      exhaustive ``match`` over ``RoleProfile``.
"""

from __future__ import annotations

from collections.abc import Iterable
from enum import Enum
from uuid import UUID

from namlend_kernel.domain.roles import (
    ALL_ROLES,
    AllowedRoleChanges,
    Role,
    RoleOperation,
    RoleValidation,
)
from namlend_engines.tracer import traced_engine

# Combinations a user may legally hold (super admin excepted).
LEGAL_ROLE_SETS: frozenset[frozenset[Role]] = frozenset({
    frozenset(),
    frozenset({Role.CLIENT}),
    frozenset({Role.LOAN_OFFICER}),
    frozenset({Role.ADMIN}),
    frozenset({Role.ADMIN, Role.LOAN_OFFICER}),
})


class RoleProfile(str, Enum):
    """Which precedence rule governs a role set."""

    SUPER_ADMIN = "super_admin"
    CLIENT = "client"
    LOAN_OFFICER = "loan_officer"
    ADMIN = "admin"
    UNASSIGNED = "unassigned"


def is_super_admin(
    user_id: UUID | str | None,
    super_admin_id: UUID | str | None,
) -> bool:
    if user_id is None or super_admin_id is None:
        return False
    return str(user_id) == str(super_admin_id)


def classify(
    roles: Iterable[Role],
    *,
    user_id: UUID | str | None = None,
    super_admin_id: UUID | str | None = None,
) -> RoleProfile:
    held = frozenset(roles)
    if is_super_admin(user_id, super_admin_id):
        return RoleProfile.SUPER_ADMIN
    if Role.CLIENT in held:
        return RoleProfile.CLIENT
    if Role.LOAN_OFFICER in held and Role.ADMIN not in held:
        return RoleProfile.LOAN_OFFICER
    if Role.ADMIN in held:
        return RoleProfile.ADMIN
    return RoleProfile.UNASSIGNED


@traced_engine("role_hierarchy", "1.0")
def allowed_role_changes(
    roles: Iterable[Role],
    *,
    user_id: UUID | str | None = None,
    super_admin_id: UUID | str | None = None,
) -> AllowedRoleChanges:
    """Enumerate roles that may be added to / removed from ``roles``."""
    held = frozenset(roles)
    profile = classify(held, user_id=user_id, super_admin_id=super_admin_id)

    match profile:
        case RoleProfile.SUPER_ADMIN:
            can_add = [r for r in ALL_ROLES if r not in held]
            can_remove = [r for r in ALL_ROLES if r in held]
        case RoleProfile.CLIENT | RoleProfile.LOAN_OFFICER:
            can_add, can_remove = [], []
        case RoleProfile.ADMIN:
            if Role.LOAN_OFFICER in held:
                can_add, can_remove = [], [Role.LOAN_OFFICER]
            else:
                can_add, can_remove = [Role.LOAN_OFFICER], []
        case RoleProfile.UNASSIGNED:
            can_add, can_remove = list(ALL_ROLES), []

    return AllowedRoleChanges(can_add=tuple(can_add), can_remove=tuple(can_remove))


def validate_role_operation(
    roles: Iterable[Role],
    role: Role,
    operation: RoleOperation,
    *,
    user_id: UUID | str | None = None,
    super_admin_id: UUID | str | None = None,
) -> RoleValidation:
    """Check one add/remove against the current role set.

    Returns ``RoleValidation(allowed=False, reason=...)`` instead of
    raising, so callers can show the reason directly.
    """
    held = frozenset(roles)
    profile = classify(held, user_id=user_id, super_admin_id=super_admin_id)
    changes = allowed_role_changes(held, user_id=user_id, super_admin_id=super_admin_id)

    match operation:
        case RoleOperation.ADD:
            if role in changes.can_add:
                return RoleValidation(allowed=True)
            if role in held:
                return RoleValidation(False, f"User already has the {role.value} role")
        case RoleOperation.REMOVE:
            if role in changes.can_remove:
                return RoleValidation(allowed=True)
            if role not in held:
                return RoleValidation(False, f"User does not have the {role.value} role")

    return RoleValidation(False, _denial_reason(profile, role, operation))


def _denial_reason(profile: RoleProfile, role: Role, operation: RoleOperation) -> str:
    match profile:
        case RoleProfile.CLIENT:
            return "Client role is exclusive and cannot be combined or changed"
        case RoleProfile.LOAN_OFFICER:
            return "Loan officer role is exclusive unless the user is also an admin"
        case RoleProfile.ADMIN:
            if operation == RoleOperation.ADD:
                return f"Admins may only additionally hold loan_officer, not {role.value}"
            return "Admins may only have the loan_officer role removed"
        case RoleProfile.UNASSIGNED:
            return "User has no roles to remove"
        case RoleProfile.SUPER_ADMIN:
            return f"Cannot {operation.value} role {role.value}"


def validate_role_set(
    roles: Iterable[Role],
    *,
    user_id: UUID | str | None = None,
    super_admin_id: UUID | str | None = None,
) -> RoleValidation:
    """Check that a complete role set is a legal combination."""
    held = frozenset(roles)
    if is_super_admin(user_id, super_admin_id) or held in LEGAL_ROLE_SETS:
        return RoleValidation(allowed=True)
    if Role.CLIENT in held:
        return RoleValidation(False, "Client role cannot be combined with other roles")
    return RoleValidation(False, "Invalid role combination: " + ", ".join(
        r.value for r in ALL_ROLES if r in held
    ))


def validate_role_change(
    current: Iterable[Role],
    target: Iterable[Role],
    *,
    user_id: UUID | str | None = None,
    super_admin_id: UUID | str | None = None,
) -> RoleValidation:
    """Check replacing the whole set ``current`` with ``target``.

    The target must be a legal combination and every role added or removed
    on the way must be a change the current set permits, so a replacement
    can never do what the single add/remove operations refuse.
    """
    held, wanted = frozenset(current), frozenset(target)
    check = validate_role_set(wanted, user_id=user_id, super_admin_id=super_admin_id)
    if not check.allowed:
        return check

    changes = allowed_role_changes(held, user_id=user_id, super_admin_id=super_admin_id)
    for role in sorted(held - wanted):
        if role not in changes.can_remove:
            return validate_role_operation(
                held, role, RoleOperation.REMOVE, user_id=user_id, super_admin_id=super_admin_id,
            )
    for role in sorted(wanted - held):
        if role not in changes.can_add:
            return validate_role_operation(
                held, role, RoleOperation.ADD, user_id=user_id, super_admin_id=super_admin_id,
            )
    return RoleValidation(allowed=True)
