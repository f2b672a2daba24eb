"""
PaymentScheduleLedger -- client side of the repayment ledger.

Amounts cross the RPC boundary as decimal strings. The ledger rules
themselves (amortization, oldest-first allocation, overdue marking, late
fee formula and cap) run in the store through ``namlend_engines``; this
class only checks obviously bad input and shapes the results.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from decimal import Decimal
from typing import Any, TypeVar

from namlend_kernel.domain.disbursement import PaymentMethod
from namlend_kernel.domain.schedule import (
    LateFeeResult,
    OverdueMarkResult,
    PaymentApplicationResult,
    PaymentListResult,
    PaymentRecord,
    PaymentRecordResult,
    PaymentStatus,
    ScheduleEntry,
    ScheduleGenerationResult,
    ScheduleListResult,
)
from namlend_kernel.domain.values import ZERO, optional_decimal, to_decimal
from namlend_kernel.exceptions import (
    InvalidAmountError,
    InvalidPaymentMethodError,
    MissingReasonError,
    NamlendError,
    ValidationError,
)
from namlend_kernel.logging_config import get_logger
from namlend_services.observability import ErrorMonitor
from namlend_services.rpc_client import UNEXPECTED_ERROR, UNEXPECTED_ERROR_CODE, CallOutcome, GatewayClient
from namlend_services.rpc_gateway import RpcGateway

logger = get_logger("services.payment_schedule")

R = TypeVar("R")


def _amount_arg(value: Any) -> str:
    """Validate a positive amount and render it for the wire."""
    try:
        amount = to_decimal(value)
    except ValueError:
        raise InvalidAmountError(value, "not a number") from None
    if amount <= ZERO:
        raise InvalidAmountError(amount, "must be positive")
    return str(amount)


class PaymentScheduleLedger(GatewayClient):
    def __init__(self, gateway: RpcGateway, *, monitor: ErrorMonitor | None = None):
        super().__init__(gateway, monitor)

    def generate_schedule(self, loan_id: str) -> ScheduleGenerationResult:
        def parse(data: dict[str, Any]) -> ScheduleGenerationResult:
            return ScheduleGenerationResult(
                success=True,
                schedules_created=int(data["schedules_created"]),
                monthly_payment=optional_decimal(data.get("monthly_payment")),
            )

        return self._run(
            "generate_schedule",
            lambda: self._invoke("generate_payment_schedule", {"p_loan_id": str(loan_id)}),
            parse,
            lambda error, code: ScheduleGenerationResult(success=False, error=error, code=code),
        )

    def get_schedule(self, loan_id: str) -> ScheduleListResult:
        return self._run(
            "get_schedule",
            lambda: self._invoke("get_payment_schedule", {"p_loan_id": str(loan_id)}),
            lambda rows: ScheduleListResult(
                success=True, schedule=tuple(ScheduleEntry.from_row(r) for r in rows or ()),
            ),
            lambda error, code: ScheduleListResult(success=False, error=error),
        )

    def record_payment(
        self,
        loan_id: str,
        amount: Decimal | str,
        payment_method: str,
        reference: str | None = None,
    ) -> PaymentRecordResult:
        def call() -> CallOutcome:
            if not PaymentMethod.is_valid(payment_method):
                raise InvalidPaymentMethodError(payment_method)
            return self._invoke(
                "record_payment",
                {
                    "p_loan_id": str(loan_id),
                    "p_amount": _amount_arg(amount),
                    "p_payment_method": payment_method,
                    "p_reference": reference,
                },
            )

        return self._run(
            "record_payment",
            call,
            lambda data: PaymentRecordResult(success=True, payment_id=str(data["payment_id"])),
            lambda error, code: PaymentRecordResult(success=False, error=error, code=code),
        )

    def list_payments(self, loan_id: str, status: PaymentStatus | str | None = None) -> PaymentListResult:
        """Payments recorded for ``loan_id``, newest first, optionally by status."""

        def call() -> CallOutcome:
            args: dict[str, Any] = {"p_loan_id": str(loan_id)}
            if status is not None:
                try:
                    args["p_status"] = PaymentStatus(status).value
                except ValueError:
                    raise ValidationError(f"Invalid payment status: {status!r}") from None
            return self._invoke("get_payments", args)

        return self._run(
            "list_payments",
            call,
            lambda rows: PaymentListResult(
                success=True, payments=tuple(PaymentRecord.from_row(r) for r in rows or ()),
            ),
            lambda error, code: PaymentListResult(success=False, error=error, code=code),
        )

    def apply_payment(self, payment_id: str, amount: Decimal | str) -> PaymentApplicationResult:
        """Apply ``amount`` of a recorded payment, oldest installment first."""

        def parse(data: dict[str, Any]) -> PaymentApplicationResult:
            return PaymentApplicationResult(
                success=True,
                schedules_updated=int(data["schedules_updated"]),
                amount_applied=to_decimal(data["amount_applied"]),
                unapplied_amount=to_decimal(data["unapplied_amount"]),
            )

        return self._run(
            "apply_payment",
            lambda: self._invoke(
                "apply_payment_to_schedule",
                {"p_payment_id": str(payment_id), "p_amount": _amount_arg(amount)},
            ),
            parse,
            lambda error, code: PaymentApplicationResult(success=False, error=error, code=code),
        )

    def mark_overdue(self) -> OverdueMarkResult:
        def parse(data: dict[str, Any]) -> OverdueMarkResult:
            marked_at = data.get("marked_at")
            if isinstance(marked_at, str):
                marked_at = datetime.fromisoformat(marked_at)
            return OverdueMarkResult(
                success=True, schedules_marked=int(data["schedules_marked"]), marked_at=marked_at,
            )

        return self._run(
            "mark_overdue",
            lambda: self._invoke("mark_overdue_payments", {}),
            parse,
            lambda error, code: OverdueMarkResult(success=False, error=error, code=code),
        )

    def calculate_late_fee(self, schedule_id: str) -> LateFeeResult:
        """Quote the fee for an installment without persisting anything."""
        return self._late_fee(
            "calculate_late_fee",
            lambda: self._invoke("calculate_late_fee", {"p_schedule_id": str(schedule_id)}),
        )

    def assess_late_fee(self, schedule_id: str) -> LateFeeResult:
        return self._late_fee(
            "assess_late_fee",
            lambda: self._invoke("assess_late_fee", {"p_schedule_id": str(schedule_id)}),
        )

    def waive_late_fee(self, late_fee_id: str, reason: str | None) -> LateFeeResult:
        def call() -> CallOutcome:
            cleaned = (reason or "").strip()
            if not cleaned:
                raise MissingReasonError("Waiver reason")
            return self._invoke(
                "waive_late_fee", {"p_late_fee_id": str(late_fee_id), "p_reason": cleaned},
            )

        return self._late_fee("waive_late_fee", call)

    # -- internals -----------------------------------------------------------

    def _late_fee(self, operation: str, call: Callable[[], CallOutcome]) -> LateFeeResult:
        return self._run(
            operation,
            call,
            LateFeeResult.from_envelope,
            lambda error, code: LateFeeResult(success=False, error=error, code=code),
        )

    def _run(
        self,
        operation: str,
        call: Callable[[], CallOutcome],
        parse: Callable[[Any], R],
        failure: Callable[[str | None, str | None], R],
    ) -> R:
        try:
            outcome = call()
        except NamlendError as exc:
            logger.info(
                "schedule_precheck_failed",
                extra={"operation": operation, "reason": str(exc), "error_code": exc.code},
            )
            return failure(str(exc), exc.code)
        except Exception as exc:
            self._report_unexpected(f"schedule.{operation}", exc)
            return failure(UNEXPECTED_ERROR, UNEXPECTED_ERROR_CODE)

        if not outcome.ok:
            logger.info(
                "schedule_operation_failed",
                extra={"operation": operation, "reason": outcome.error, "error_code": outcome.code},
            )
            return failure(outcome.error, outcome.code)
        try:
            return parse(outcome.data)
        except Exception as exc:
            self._report_unexpected(f"schedule.{operation}", exc)
            return failure(UNEXPECTED_ERROR, UNEXPECTED_ERROR_CODE)
