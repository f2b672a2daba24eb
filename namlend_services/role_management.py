"""
RoleManagementService -- role assignment through the validated procedures.

``allowed_changes`` and ``check_change`` answer from the pure validator
without a round-trip (for disabling UI options); the mutation procedures
apply the same rules again in the store.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import Any
from uuid import UUID

from namlend_engines.role_hierarchy import allowed_role_changes, validate_role_operation
from namlend_kernel.domain.roles import (
    AllowedRoleChanges,
    Role,
    RoleManagementResult,
    RoleOperation,
    RoleValidation,
    UserRoleGrant,
)
from namlend_kernel.logging_config import get_logger
from namlend_services.observability import ErrorMonitor
from namlend_services.rpc_client import UNEXPECTED_ERROR, UNEXPECTED_ERROR_CODE, GatewayClient
from namlend_services.rpc_gateway import RpcGateway

logger = get_logger("services.role_management")


def _grants(values: Iterable[Any]) -> tuple[UserRoleGrant, ...]:
    return tuple(UserRoleGrant(role=Role.parse(v)) for v in values)


def _role_value(role: Role | str) -> str:
    # Unknown names are passed through for the store to reject.
    return role.value if isinstance(role, Role) else str(role)


class RoleManagementService(GatewayClient):
    def __init__(
        self,
        gateway: RpcGateway,
        *,
        super_admin_id: UUID | str | None = None,
        monitor: ErrorMonitor | None = None,
    ):
        super().__init__(gateway, monitor)
        self._super_admin_id = super_admin_id

    # -- local checks --------------------------------------------------------

    def allowed_changes(
        self, roles: Iterable[Role | str], user_id: UUID | str | None = None,
    ) -> AllowedRoleChanges:
        return allowed_role_changes(
            [Role.parse(r) for r in roles],
            user_id=user_id,
            super_admin_id=self._super_admin_id,
        )

    def check_change(
        self,
        roles: Iterable[Role | str],
        role: Role | str,
        operation: RoleOperation,
        user_id: UUID | str | None = None,
    ) -> RoleValidation:
        return validate_role_operation(
            [Role.parse(r) for r in roles],
            Role.parse(role),
            operation,
            user_id=user_id,
            super_admin_id=self._super_admin_id,
        )

    # -- remote operations ---------------------------------------------------

    def assign_role(self, user_id: str, role: Role | str) -> RoleManagementResult:
        return self._mutate(
            "assign_role",
            "assign_user_role_with_validation",
            {"p_user_id": str(user_id), "p_role": _role_value(role)},
        )

    def remove_role(self, user_id: str, role: Role | str) -> RoleManagementResult:
        return self._mutate(
            "remove_role",
            "remove_user_role",
            {"p_user_id": str(user_id), "p_role": _role_value(role)},
        )

    def set_roles(self, user_id: str, roles: Iterable[Role | str]) -> RoleManagementResult:
        return self._mutate(
            "set_roles",
            "set_user_roles",
            {"p_user_id": str(user_id), "p_roles": sorted(_role_value(r) for r in roles)},
        )

    def get_roles(self, user_id: str) -> RoleManagementResult:
        return self._call(
            "get_roles",
            "get_user_roles",
            {"p_user_id": str(user_id)},
            lambda rows: RoleManagementResult(
                success=True, roles=tuple(UserRoleGrant.from_row(r) for r in rows or ()),
            ),
        )

    def validate_hierarchy(self, user_id: str, roles: Iterable[Role | str]) -> RoleManagementResult:
        """Ask the store whether ``roles`` would be a legal set for ``user_id``."""
        return self._call(
            "validate_hierarchy",
            "validate_role_hierarchy",
            {"p_user_id": str(user_id), "p_roles": sorted(_role_value(r) for r in roles)},
            lambda valid: RoleManagementResult(success=True, valid=bool(valid)),
        )

    # -- internals -----------------------------------------------------------

    def _mutate(self, operation: str, procedure: str, args: dict[str, Any]) -> RoleManagementResult:
        return self._call(
            operation,
            procedure,
            args,
            lambda data: RoleManagementResult(success=True, roles=_grants(data.get("roles", ()))),
        )

    def _call(
        self,
        operation: str,
        procedure: str,
        args: dict[str, Any],
        parse: Callable[[Any], RoleManagementResult],
    ) -> RoleManagementResult:
        try:
            outcome = self._invoke(procedure, args)
            if not outcome.ok:
                logger.info(
                    "role_operation_failed",
                    extra={"operation": operation, "reason": outcome.error, "error_code": outcome.code},
                )
                return RoleManagementResult(success=False, error=outcome.error, code=outcome.code)
            return parse(outcome.data)
        except Exception as exc:
            self._report_unexpected(f"roles.{operation}", exc)
            return RoleManagementResult(success=False, error=UNEXPECTED_ERROR, code=UNEXPECTED_ERROR_CODE)
