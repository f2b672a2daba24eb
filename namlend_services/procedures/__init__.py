"""
In-process RPC surface.

Importing this package registers every procedure module with the registry.
"""

from namlend_services.procedures import disbursements, roles, schedule, workflow  # noqa: F401
from namlend_services.procedures.executor import SqlProcedureExecutor, failure_envelope
from namlend_services.procedures.registry import PROCEDURES, ProcedureContext, procedure

__all__ = [
    "PROCEDURES",
    "ProcedureContext",
    "SqlProcedureExecutor",
    "failure_envelope",
    "procedure",
]
