"""
DisbursementService -- client side of the disbursement state machine.

Contract:
    Each method makes at most one gateway call and returns a
    ``DisbursementResult`` (or ``DisbursementListResult``). Business
    failures come back as ``success=False`` with the procedure's message;
    nothing is raised.

Local checks (no round-trip when they fail):
    - ``complete``: payment reference non-empty after trimming, payment
      method in the recognised set.
    - ``fail``: non-empty reason.

The store re-checks all of these plus authorization and the current
status; a passing local check is never treated as authoritative.
"""

from __future__ import annotations

from typing import Any

from namlend_kernel.domain.disbursement import (
    Disbursement,
    DisbursementListResult,
    DisbursementResult,
    PaymentMethod,
)
from namlend_kernel.exceptions import (
    InvalidPaymentMethodError,
    MissingPaymentReferenceError,
    MissingReasonError,
    NamlendError,
)
from namlend_kernel.logging_config import get_logger
from namlend_services.notifications import Notification, NotificationSink, notify_safely
from namlend_services.observability import ErrorMonitor
from namlend_services.rpc_client import UNEXPECTED_ERROR, UNEXPECTED_ERROR_CODE, GatewayClient
from namlend_services.rpc_gateway import RpcGateway

logger = get_logger("services.disbursement")


class DisbursementService(GatewayClient):
    def __init__(
        self,
        gateway: RpcGateway,
        *,
        monitor: ErrorMonitor | None = None,
        notifier: NotificationSink | None = None,
    ):
        super().__init__(gateway, monitor)
        self._notifier = notifier

    # -- transitions ---------------------------------------------------------

    def create_on_approval(self, loan_id: str) -> DisbursementResult:
        return self._transition(
            "create_on_approval", "create_disbursement_on_approval", {"p_loan_id": str(loan_id)},
        )

    def approve(self, disbursement_id: str, notes: str | None = None) -> DisbursementResult:
        return self._transition(
            "approve",
            "approve_disbursement",
            {"p_disbursement_id": str(disbursement_id), "p_notes": notes},
        )

    def mark_processing(self, disbursement_id: str, notes: str | None = None) -> DisbursementResult:
        return self._transition(
            "mark_processing",
            "mark_disbursement_processing",
            {"p_disbursement_id": str(disbursement_id), "p_notes": notes},
        )

    def complete(
        self,
        disbursement_id: str,
        payment_reference: str | None,
        payment_method: str | None,
        notes: str | None = None,
    ) -> DisbursementResult:
        """Record the payout. Moves the loan to ``disbursed`` on success."""
        reference = (payment_reference or "").strip()
        if not reference:
            return self._rejected_locally("complete", MissingPaymentReferenceError())
        if not PaymentMethod.is_valid(payment_method):
            return self._rejected_locally("complete", InvalidPaymentMethodError(payment_method))

        result = self._transition(
            "complete",
            "complete_disbursement",
            {
                "p_disbursement_id": str(disbursement_id),
                "p_payment_method": payment_method,
                "p_payment_reference": reference,
                "p_notes": notes,
            },
        )
        if result.success and result.borrower_id:
            notify_safely(
                self._notifier,
                Notification(
                    user_id=result.borrower_id,
                    type="disbursement_completed",
                    title="Funds sent",
                    message=f"Your loan funds were sent (reference {reference}).",
                    data={"disbursement_id": result.disbursement_id, "loan_id": result.loan_id},
                ),
                self._monitor,
            )
        return result

    def fail(self, disbursement_id: str, reason: str | None) -> DisbursementResult:
        cleaned = (reason or "").strip()
        if not cleaned:
            return self._rejected_locally("fail", MissingReasonError("Failure reason"))

        result = self._transition(
            "fail",
            "fail_disbursement",
            {"p_disbursement_id": str(disbursement_id), "p_reason": cleaned},
        )
        if result.success and result.borrower_id:
            notify_safely(
                self._notifier,
                Notification(
                    user_id=result.borrower_id,
                    type="disbursement_failed",
                    title="Payout failed",
                    message="We could not send your loan funds. Our team will contact you.",
                    data={"disbursement_id": result.disbursement_id, "reason": cleaned},
                ),
                self._monitor,
            )
        return result

    # -- reads ---------------------------------------------------------------

    def get_pending(self) -> DisbursementListResult:
        return self._list("get_pending", "get_pending_disbursements", {})

    def get_for_loan(self, loan_id: str) -> DisbursementListResult:
        return self._list("get_for_loan", "get_disbursements_for_loan", {"p_loan_id": str(loan_id)})

    def get_by_id(self, disbursement_id: str) -> Disbursement | None:
        """The disbursement, or None when it is missing or unreadable."""
        try:
            outcome = self._invoke("get_disbursement", {"p_disbursement_id": str(disbursement_id)})
            if not outcome.ok:
                logger.info(
                    "disbursement_lookup_failed",
                    extra={"disbursement_id": str(disbursement_id), "reason": outcome.error},
                )
                return None
            return Disbursement.from_row(outcome.data)
        except Exception as exc:
            self._report_unexpected("disbursement.get_by_id", exc)
            return None

    # -- internals -----------------------------------------------------------

    def _transition(self, operation: str, procedure: str, args: dict[str, Any]) -> DisbursementResult:
        try:
            outcome = self._invoke(procedure, args)
            if not outcome.ok:
                logger.info(
                    "disbursement_operation_failed",
                    extra={"operation": operation, "reason": outcome.error, "error_code": outcome.code},
                )
                return DisbursementResult.failure(outcome.error, outcome.code)
            return DisbursementResult.from_envelope(outcome.data)
        except Exception as exc:
            self._report_unexpected(f"disbursement.{operation}", exc)
            return DisbursementResult.failure(UNEXPECTED_ERROR, UNEXPECTED_ERROR_CODE)

    def _list(self, operation: str, procedure: str, args: dict[str, Any]) -> DisbursementListResult:
        try:
            outcome = self._invoke(procedure, args)
            if not outcome.ok:
                return DisbursementListResult(success=False, error=outcome.error)
            return DisbursementListResult(
                success=True,
                disbursements=tuple(Disbursement.from_row(r) for r in outcome.data or ()),
            )
        except Exception as exc:
            self._report_unexpected(f"disbursement.{operation}", exc)
            return DisbursementListResult(success=False, error=UNEXPECTED_ERROR)

    def _rejected_locally(self, operation: str, exc: NamlendError) -> DisbursementResult:
        logger.info(
            "disbursement_precheck_failed",
            extra={"operation": operation, "reason": str(exc), "error_code": exc.code},
        )
        return DisbursementResult.failure(str(exc), exc.code)
