"""Tests for the structured logging system (namlend_kernel/logging_config.py)."""

import json
import logging
from datetime import date
from decimal import Decimal
from io import StringIO
from uuid import uuid4

import pytest

from namlend_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    get_logger,
    reset_logging,
)


@pytest.fixture(autouse=True)
def _clean_logging():
    """Reset logging state between tests, restoring the suite's configuration after."""
    reset_logging()
    LogContext.clear()
    yield
    LogContext.clear()
    reset_logging()
    configure_logging(level=logging.DEBUG)


def _make_handler() -> tuple[logging.Handler, StringIO]:
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    return handler, stream


def _parse_log(stream: StringIO) -> dict:
    """Parse the first JSON log line from a stream."""
    line = stream.getvalue().strip().split("\n")[0]
    return json.loads(line)


def _parse_all_logs(stream: StringIO) -> list[dict]:
    lines = stream.getvalue().strip().split("\n")
    return [json.loads(line) for line in lines if line]


# ---------------------------------------------------------------------------
# StructuredFormatter tests
# ---------------------------------------------------------------------------


class TestStructuredFormatter:
    """Tests for JSON log output format."""

    def test_basic_json_output(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("hello")

        record = _parse_log(stream)
        assert record["level"] == "INFO"
        assert record["message"] == "hello"
        assert record["logger"] == "namlend.test"
        assert "ts" in record

    def test_extra_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        get_logger("test").info("disbursement_completed", extra={"attempts": 2, "status": "completed"})

        record = _parse_log(stream)
        assert record["attempts"] == 2
        assert record["status"] == "completed"

    def test_domain_values_serialized(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        loan_id = uuid4()
        get_logger("test").info(
            "payment_applied",
            extra={"loan_id": loan_id, "amount": Decimal("400.00"), "as_of": date(2025, 2, 15)},
        )

        record = _parse_log(stream)
        assert record["loan_id"] == str(loan_id)
        assert record["amount"] == "400.00"
        assert record["as_of"] == "2025-02-15"

    def test_context_fields_included(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        LogContext.set(correlation_id="abc-123", procedure="complete_disbursement")
        get_logger("test").info("test_msg")

        record = _parse_log(stream)
        assert record["correlation_id"] == "abc-123"
        assert record["procedure"] == "complete_disbursement"
        assert "actor_id" not in record

    def test_context_wins_over_extra(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        with LogContext.bind(procedure="from_context"):
            get_logger("test").info("msg", extra={"procedure": "from_extra"})

        assert _parse_log(stream)["procedure"] == "from_context"

    def test_exception_fields(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        try:
            raise ValueError("boom")
        except ValueError:
            get_logger("test").error("failed", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_type"] == "ValueError"
        assert record["exc_message"] == "boom"
        assert "traceback" in record

    def test_namlend_exception_code_extracted(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        from namlend_kernel.exceptions import AlreadyDisbursedError

        try:
            raise AlreadyDisbursedError("Disbursement", "d-1", state="completed")
        except AlreadyDisbursedError:
            get_logger("test").error("disbursement_error", exc_info=True)

        record = _parse_log(stream)
        assert record["exc_code"] == "ALREADY_DISBURSED"
        assert record["exc_message"] == "Disbursement already completed: d-1"


# ---------------------------------------------------------------------------
# LogContext tests
# ---------------------------------------------------------------------------


class TestLogContext:
    """Tests for context propagation."""

    def test_get_all_returns_only_set_fields(self):
        LogContext.set(actor_id="user-1")

        assert LogContext.get_all() == {"actor_id": "user-1"}

    def test_clear(self):
        LogContext.set(correlation_id="x", entity_id="y")
        LogContext.clear()

        assert LogContext.get_all() == {}

    def test_bind_restores_previous_values(self):
        LogContext.set(procedure="outer")
        with LogContext.bind(procedure="inner", actor_id=None):
            assert LogContext.get_all() == {"procedure": "inner"}

        assert LogContext.get_all() == {"procedure": "outer"}

    def test_bind_stringifies_values(self):
        user = uuid4()
        with LogContext.bind(actor_id=user):
            assert LogContext.get_all()["actor_id"] == str(user)


# ---------------------------------------------------------------------------
# configure_logging tests
# ---------------------------------------------------------------------------


class TestConfigureLogging:
    """Tests for logger setup."""

    def test_idempotent(self):
        handler, stream = _make_handler()
        configure_logging(handler=handler)
        configure_logging(handler=handler)

        assert len(logging.getLogger("namlend").handlers) == 1

    def test_level_by_name(self):
        handler, stream = _make_handler()
        configure_logging(level="warning", handler=handler)
        logger = get_logger("test")
        logger.info("dropped")
        logger.warning("kept")

        assert [r["message"] for r in _parse_all_logs(stream)] == ["kept"]

    def test_does_not_propagate_to_root(self):
        configure_logging(handler=_make_handler()[0])

        assert logging.getLogger("namlend").propagate is False

    def test_reset_clears_handlers(self):
        configure_logging(handler=_make_handler()[0])
        reset_logging()

        assert logging.getLogger("namlend").handlers == []
