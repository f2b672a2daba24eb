"""
Typed exception hierarchy for the NamLend lending core.

Every error carries a ``code`` class attribute so callers and RPC envelopes
can branch on a stable, machine-readable value instead of parsing messages.

    NamlendError (base)
    |
    +-- ValidationError
    |   +-- MissingPaymentReferenceError
    |   +-- InvalidPaymentMethodError
    |   +-- MissingReasonError
    |   +-- InvalidAmountError
    |   +-- RoleHierarchyViolationError
    |
    +-- AuthorizationError            (message always contains "Unauthorized")
    |
    +-- StateConflictError
    |   +-- InvalidTransitionError
    |   +-- AlreadyDisbursedError
    |   +-- DisbursementExistsError
    |   +-- StageNotPendingError
    |   +-- WorkflowNotActiveError
    |   +-- ScheduleAlreadyExistsError
    |   +-- LateFeeAlreadyWaivedError
    |
    +-- EntityNotFoundError
    |
    +-- TransportError
    |   +-- RpcTimeoutError
    |   +-- UnknownProcedureError
    |
    +-- CircuitOpenError
    |
    +-- ConfigurationError
    |
    +-- ImmutabilityViolationError
    |
    +-- AuditChainBrokenError

Validation, authorization and state-conflict errors are business failures:
the procedure executor turns them into ``{"success": False, ...}`` envelopes
and the gateway never retries them. Transport errors are retried by the
gateway and count towards its circuit breaker.
"""


class NamlendError(Exception):
    """Base exception for all NamLend errors."""

    code: str = "NAMLEND_ERROR"


# Validation


class ValidationError(NamlendError):
    """Input rejected before any state was touched."""

    code: str = "VALIDATION_ERROR"


class MissingPaymentReferenceError(ValidationError):
    code: str = "PAYMENT_REFERENCE_REQUIRED"

    def __init__(self) -> None:
        super().__init__("Payment reference is required")


class InvalidPaymentMethodError(ValidationError):
    code: str = "INVALID_PAYMENT_METHOD"

    def __init__(self, method: str | None):
        self.method = method
        super().__init__(f"Invalid payment method: {method}")


class MissingReasonError(ValidationError):
    """A free-text justification (failure reason, rejection notes) is empty."""

    code: str = "REASON_REQUIRED"

    def __init__(self, what: str = "Reason"):
        self.what = what
        super().__init__(f"{what} is required")


class InvalidAmountError(ValidationError):
    code: str = "INVALID_AMOUNT"

    def __init__(self, amount: object, detail: str = "must be positive"):
        self.amount = amount
        super().__init__(f"Invalid amount {amount}: {detail}")


class RoleHierarchyViolationError(ValidationError):
    code: str = "ROLE_HIERARCHY_VIOLATION"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


# Authorization


class AuthorizationError(NamlendError):
    """Caller's roles do not permit the operation."""

    code: str = "UNAUTHORIZED"

    def __init__(self, action: str, required: str = "admin or loan_officer"):
        self.action = action
        self.required = required
        super().__init__(f"Unauthorized: {action} requires {required} role")


# State conflicts


class StateConflictError(NamlendError):
    """Entity is not in the state the operation expects; refresh, don't retry."""

    code: str = "STATE_CONFLICT"


class InvalidTransitionError(StateConflictError):
    code: str = "INVALID_TRANSITION"

    def __init__(self, entity_type: str, from_state: str, to_state: str):
        self.entity_type = entity_type
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(
            f"{entity_type} cannot move from '{from_state}' to '{to_state}'"
        )


class AlreadyDisbursedError(StateConflictError):
    code: str = "ALREADY_DISBURSED"

    def __init__(self, subject: str, entity_id: str, state: str = "completed"):
        self.subject = subject
        self.entity_id = entity_id
        self.state = state
        super().__init__(f"{subject} already {state}: {entity_id}")


class DisbursementExistsError(StateConflictError):
    code: str = "DISBURSEMENT_EXISTS"

    def __init__(self, loan_id: str, disbursement_id: str):
        self.loan_id = loan_id
        self.disbursement_id = disbursement_id
        super().__init__(
            f"Disbursement already exists for loan {loan_id}: {disbursement_id}"
        )


class StageNotPendingError(StateConflictError):
    code: str = "STAGE_NOT_PENDING"

    def __init__(self, stage_execution_id: str, status: str):
        self.stage_execution_id = stage_execution_id
        self.status = status
        super().__init__(
            f"Stage {stage_execution_id} is already {status}; only pending stages can be decided"
        )


class WorkflowNotActiveError(StateConflictError):
    code: str = "WORKFLOW_NOT_ACTIVE"

    def __init__(self, workflow_instance_id: str, status: str):
        self.workflow_instance_id = workflow_instance_id
        self.status = status
        super().__init__(f"Workflow {workflow_instance_id} is {status}")


class ScheduleAlreadyExistsError(StateConflictError):
    code: str = "SCHEDULE_ALREADY_EXISTS"

    def __init__(self, loan_id: str, entry_count: int):
        self.loan_id = loan_id
        self.entry_count = entry_count
        super().__init__(
            f"Payment schedule already exists for loan {loan_id} ({entry_count} installments)"
        )


class LateFeeAlreadyWaivedError(StateConflictError):
    code: str = "LATE_FEE_ALREADY_WAIVED"

    def __init__(self, late_fee_id: str):
        self.late_fee_id = late_fee_id
        super().__init__(f"Late fee already waived: {late_fee_id}")


# Lookup


class EntityNotFoundError(NamlendError):
    code: str = "NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: object):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        super().__init__(f"{entity_type} not found: {entity_id}")


# Transport


class TransportError(NamlendError):
    """The call did not produce a trustworthy answer (network, DB, timeout)."""

    code: str = "TRANSPORT_ERROR"


class RpcTimeoutError(TransportError):
    """The outcome is unknown: the remote side may or may not have applied it."""

    code: str = "RPC_TIMEOUT"

    def __init__(self, procedure: str, timeout_ms: int):
        self.procedure = procedure
        self.timeout_ms = timeout_ms
        super().__init__(f"timeout: {procedure} exceeded {timeout_ms}ms")


class UnknownProcedureError(TransportError):
    code: str = "UNKNOWN_PROCEDURE"

    def __init__(self, procedure: str):
        self.procedure = procedure
        super().__init__(f"Unknown procedure: {procedure}")


class CircuitOpenError(NamlendError):
    """Call refused without being attempted."""

    code: str = "CIRCUIT_OPEN"

    def __init__(self, procedure: str, retry_after_seconds: float):
        self.procedure = procedure
        self.retry_after_seconds = retry_after_seconds
        super().__init__("circuit_open")


class UnexpectedRpcError(NamlendError):
    """The executor raised something other than a transport failure."""

    code: str = "UNEXPECTED_ERROR"

    def __init__(self, procedure: str, exc_type: str):
        self.procedure = procedure
        self.exc_type = exc_type
        super().__init__("Unexpected error occurred")


class ConfigurationError(NamlendError):
    code: str = "CONFIGURATION_ERROR"


class ImmutabilityViolationError(NamlendError):
    """Attempt to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, operation: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.operation = operation
        super().__init__(f"{entity_type} {entity_id} is append-only; {operation} refused")


class AuditChainBrokenError(NamlendError):
    """Recomputed audit hash does not match the stored chain."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, audit_event_id: str, expected_hash: str, actual_hash: str):
        self.audit_event_id = audit_event_id
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken at {audit_event_id}: expected {expected_hash}, got {actual_hash}"
        )
