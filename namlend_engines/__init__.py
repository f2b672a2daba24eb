"""
Module: namlend_engines
Responsibility:
    Re-exports the pure calculation engines used by the procedures and
    client services.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import namlend_kernel (domain, values, exceptions) and sibling
    engine modules. MUST NOT import namlend_services or namlend_config.

Invariants enforced:
    - Engines never read a clock; dates are passed in.
    - Money is Decimal throughout.
"""

from namlend_engines.allocation import (
    AllocationLine,
    AllocationTarget,
    PaymentAllocation,
    allocate_payment,
)
from namlend_engines.amortization import (
    add_months,
    build_schedule,
    calculate_monthly_payment,
)
from namlend_engines.late_fee import LateFeePolicy, LateFeeQuote, calculate_late_fee
from namlend_engines.overdue import (
    OverdueCandidate,
    OverdueScan,
    days_overdue,
    scan_overdue,
)
from namlend_engines.role_hierarchy import (
    LEGAL_ROLE_SETS,
    RoleProfile,
    allowed_role_changes,
    classify,
    validate_role_operation,
    validate_role_set,
)
from namlend_engines.workflow_rules import (
    StageOutcome,
    check_decision,
    compute_progress,
    plan_decision,
    role_satisfies,
    validate_stages,
)

__all__ = [
    "AllocationLine",
    "AllocationTarget",
    "LEGAL_ROLE_SETS",
    "LateFeePolicy",
    "LateFeeQuote",
    "OverdueCandidate",
    "OverdueScan",
    "PaymentAllocation",
    "RoleProfile",
    "StageOutcome",
    "add_months",
    "allocate_payment",
    "allowed_role_changes",
    "build_schedule",
    "calculate_late_fee",
    "calculate_monthly_payment",
    "check_decision",
    "classify",
    "compute_progress",
    "days_overdue",
    "plan_decision",
    "role_satisfies",
    "scan_overdue",
    "validate_role_operation",
    "validate_role_set",
    "validate_stages",
]
