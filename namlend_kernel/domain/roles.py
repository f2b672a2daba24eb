"""
Role domain types (``namlend_kernel.domain.roles``).

Roles are a closed enumeration. Strings coming from the store or from a
caller are parsed through ``Role.parse`` so that a misspelt role fails
loudly instead of silently matching nothing.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable

from namlend_kernel.exceptions import ValidationError


class Role(str, Enum):
    """Application roles held per user."""

    CLIENT = "client"
    LOAN_OFFICER = "loan_officer"
    ADMIN = "admin"

    @classmethod
    def parse(cls, value: "str | Role") -> Role:
        if isinstance(value, Role):
            return value
        try:
            return cls(value)
        except ValueError:
            raise ValidationError(f"Unknown role: {value!r}") from None


# Roles allowed to operate the backoffice (disbursements, schedules, stages).
STAFF_ROLES: frozenset[Role] = frozenset({Role.ADMIN, Role.LOAN_OFFICER})

ALL_ROLES: tuple[Role, ...] = (Role.ADMIN, Role.LOAN_OFFICER, Role.CLIENT)


class RoleOperation(str, Enum):
    ADD = "add"
    REMOVE = "remove"


def parse_roles(values: Iterable["str | Role"]) -> frozenset[Role]:
    return frozenset(Role.parse(v) for v in values)


def is_staff(roles: Iterable[Role]) -> bool:
    return any(r in STAFF_ROLES for r in roles)


@dataclass(frozen=True)
class RoleValidation:
    """Outcome of checking a single add/remove against a role set."""

    allowed: bool
    reason: str = ""


@dataclass(frozen=True)
class AllowedRoleChanges:
    """Roles that may be added to / removed from the current role set.

    Tuples are ordered admin, loan_officer, client for stable display.
    """

    can_add: tuple[Role, ...]
    can_remove: tuple[Role, ...]


@dataclass(frozen=True)
class UserRoleGrant:
    role: Role
    created_at: str | None = None

    @classmethod
    def from_row(cls, row: dict) -> UserRoleGrant:
        created = row.get("created_at")
        return cls(
            role=Role.parse(row["role"]),
            created_at=str(created) if created is not None else None,
        )


@dataclass(frozen=True)
class RoleManagementResult:
    success: bool
    roles: tuple[UserRoleGrant, ...] = ()
    valid: bool | None = None
    error: str | None = None
    code: str | None = None
