"""
Procedure registry and per-call context.

Each stored procedure is a plain function ``fn(ctx, **p_args)`` registered
under its RPC name with ``@procedure("name")``. The executor binds the
caller's flat argument object against the function signature, so a
missing or unexpected ``p_`` argument is a validation failure rather than
a crash.
"""

from __future__ import annotations

import inspect
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from namlend_config.schema import NamlendConfig
from namlend_kernel.domain.clock import Clock
from namlend_kernel.domain.roles import STAFF_ROLES, Role
from namlend_kernel.exceptions import (
    AuthorizationError,
    EntityNotFoundError,
    UnknownProcedureError,
    ValidationError,
)
from namlend_kernel.models.user_role import UserRoleModel
from namlend_kernel.services.auditor_service import AuditorService

ProcedureFn = Callable[..., Any]


@dataclass(frozen=True)
class RegisteredProcedure:
    name: str
    fn: ProcedureFn
    signature: inspect.Signature
    mutates: bool


PROCEDURES: dict[str, RegisteredProcedure] = {}


def procedure(name: str, *, mutates: bool = True) -> Callable[[ProcedureFn], ProcedureFn]:
    """Register ``fn`` as the implementation of RPC ``name``."""

    def decorator(fn: ProcedureFn) -> ProcedureFn:
        if name in PROCEDURES:
            raise ValueError(f"Procedure already registered: {name}")
        PROCEDURES[name] = RegisteredProcedure(
            name=name, fn=fn, signature=inspect.signature(fn), mutates=mutates,
        )
        return fn

    return decorator


def lookup(name: str) -> RegisteredProcedure:
    try:
        return PROCEDURES[name]
    except KeyError:
        raise UnknownProcedureError(name) from None


def bind_arguments(registered: RegisteredProcedure, ctx: ProcedureContext,
                   args: dict[str, Any]) -> inspect.BoundArguments:
    try:
        return registered.signature.bind(ctx, **args)
    except TypeError as exc:
        raise ValidationError(f"Invalid arguments for {registered.name}: {exc}") from None


@dataclass
class ProcedureContext:
    """What a procedure knows about its caller and environment."""

    session: Session
    actor_id: UUID
    actor_roles: frozenset[Role]
    clock: Clock
    config: NamlendConfig
    auditor: AuditorService

    @property
    def super_admin_id(self) -> str | None:
        return self.config.roles.super_admin_id

    @property
    def is_super_admin(self) -> bool:
        return self.super_admin_id is not None and str(self.actor_id) == self.super_admin_id

    @property
    def is_admin(self) -> bool:
        return self.is_super_admin or Role.ADMIN in self.actor_roles

    @property
    def is_staff(self) -> bool:
        return self.is_super_admin or bool(self.actor_roles & STAFF_ROLES)

    @property
    def effective_roles(self) -> frozenset[Role]:
        """Roles used for stage checks; the super admin acts as admin."""
        if self.is_super_admin:
            return self.actor_roles | {Role.ADMIN}
        return self.actor_roles

    def require_staff(self, action: str) -> None:
        if not self.is_staff:
            raise AuthorizationError(action)

    def require_admin(self, action: str) -> None:
        if not self.is_admin:
            raise AuthorizationError(action, required="admin")

    def get(
        self,
        model: type,
        entity_id: Any,
        entity_type: str | None = None,
        *,
        for_update: bool = False,
    ) -> Any:
        """Load a row by primary key or raise EntityNotFoundError.

        With ``for_update`` the row is read with SELECT ... FOR UPDATE and
        refreshed from the store, so a concurrent transition on the same
        row waits for this transaction and then sees its result.
        """
        key = parse_uuid(entity_id, entity_type or model.__name__)
        if for_update:
            row = self.session.execute(
                select(model)
                .where(model.id == key)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()
        else:
            row = self.session.get(model, key)
        if row is None:
            raise EntityNotFoundError(entity_type or model.__name__, entity_id)
        return row


def load_roles(session: Session, user_id: UUID) -> frozenset[Role]:
    rows = session.execute(
        select(UserRoleModel.role).where(UserRoleModel.user_id == user_id)
    ).scalars().all()
    return frozenset(Role.parse(r) for r in rows)


def parse_uuid(value: Any, what: str = "id") -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        raise ValidationError(f"Invalid {what} id: {value!r}") from None


def require_text(value: Any) -> str | None:
    """Trimmed non-empty string, or None."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None
