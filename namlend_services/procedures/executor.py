"""
SqlProcedureExecutor -- in-process implementation of the NamLend RPC surface.

Responsibility:
    Plays the role of the remote store: authenticates as one actor, loads
    the actor's roles, runs the named procedure inside a single
    transaction and returns its result row or ``{success, ...}`` envelope.

Architecture position:
    Services > procedures. Satisfies the ``CommandExecutor`` protocol used
    by ``RpcGateway``; swap it for a network client to talk to a real
    database RPC endpoint.

Error mapping:
    - Validation, authorization, state-conflict and not-found errors are
      business failures: the transaction rolls back and the caller gets
      ``{"success": False, "error": <message>, "code": <code>}``.
    - SQLAlchemy errors become ``TransportError`` (retryable by the gateway).
    - Unknown procedure names raise ``UnknownProcedureError``.
    - Anything else propagates unchanged.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from namlend_config.schema import NamlendConfig
from namlend_kernel.db.engine import session_scope
from namlend_kernel.domain.clock import Clock, SystemClock
from namlend_kernel.exceptions import (
    AuthorizationError,
    EntityNotFoundError,
    StateConflictError,
    TransportError,
    ValidationError,
)
from namlend_kernel.logging_config import LogContext, get_logger
from namlend_kernel.services.auditor_service import AuditorService
from namlend_services.procedures.registry import (
    ProcedureContext,
    bind_arguments,
    load_roles,
    lookup,
    parse_uuid,
)

logger = get_logger("services.procedures")

BUSINESS_ERRORS = (ValidationError, AuthorizationError, StateConflictError, EntityNotFoundError)


def failure_envelope(exc: ValidationError | AuthorizationError | StateConflictError
                     | EntityNotFoundError) -> dict[str, Any]:
    return {"success": False, "error": str(exc), "code": exc.code}


class SqlProcedureExecutor:
    """Runs registered procedures as ``actor_id`` against a SQLAlchemy store."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        actor_id: UUID | str,
        clock: Clock | None = None,
        config: NamlendConfig | None = None,
    ):
        self._session_factory = session_factory
        self._actor_id = parse_uuid(actor_id, "actor")
        self._clock = clock or SystemClock()
        self._config = config or NamlendConfig()

    @property
    def actor_id(self) -> UUID:
        return self._actor_id

    def as_actor(self, actor_id: UUID | str) -> SqlProcedureExecutor:
        """Same store and settings, different signed-in user."""
        return SqlProcedureExecutor(self._session_factory, actor_id, self._clock, self._config)

    def execute(self, procedure: str, args: Mapping[str, Any]) -> Any:
        registered = lookup(procedure)

        with LogContext.bind(procedure=procedure, actor_id=str(self._actor_id)):
            try:
                with session_scope(self._session_factory) as session:
                    ctx = ProcedureContext(
                        session=session,
                        actor_id=self._actor_id,
                        actor_roles=load_roles(session, self._actor_id),
                        clock=self._clock,
                        config=self._config,
                        auditor=AuditorService(session, self._clock),
                    )
                    bound = bind_arguments(registered, ctx, dict(args))
                    result = registered.fn(*bound.args, **bound.kwargs)
            except BUSINESS_ERRORS as exc:
                logger.info(
                    "procedure_rejected",
                    extra={"error_code": exc.code, "reason": str(exc)},
                )
                return failure_envelope(exc)
            except SQLAlchemyError as exc:
                logger.error("procedure_store_error", exc_info=True)
                raise TransportError(f"{procedure} failed: {type(exc).__name__}") from exc

            logger.debug("procedure_completed", extra={"mutates": registered.mutates})
            return result
