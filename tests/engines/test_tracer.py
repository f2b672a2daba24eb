"""Tests for the engine trace decorator."""

from datetime import date
from decimal import Decimal

from namlend_engines.late_fee import LateFeePolicy, calculate_late_fee
from namlend_engines.tracer import compute_input_fingerprint, traced_engine


@traced_engine("double", "2.1", fingerprint_fields=("amount",))
def _double(amount, *, note=None):
    return amount * 2


class TestTracedEngine:
    def test_result_passes_through(self):
        assert _double(Decimal("2.50")) == Decimal("5.00")

    def test_trace_record(self, captured_logs):
        _double(Decimal("10"), note="x")

        (record,) = [r for r in captured_logs() if r["message"] == "engine_invoked"]
        assert record["engine_name"] == "double"
        assert record["engine_version"] == "2.1"
        assert len(record["input_fingerprint"]) == 16
        assert record["duration_ms"] >= 0

    def test_positional_and_keyword_calls_share_fingerprint(self, captured_logs):
        _double(Decimal("10"))
        _double(amount=Decimal("10"))

        fingerprints = {
            r["input_fingerprint"] for r in captured_logs() if r["message"] == "engine_invoked"
        }
        assert len(fingerprints) == 1

    def test_real_engine_is_traced(self, captured_logs):
        calculate_late_fee(balance=Decimal("400.00"), days_overdue=9, policy=LateFeePolicy())

        names = [r.get("engine_name") for r in captured_logs() if r["message"] == "engine_invoked"]
        assert "late_fee" in names


class TestFingerprint:
    def test_equal_decimals_match(self):
        fields = ("balance",)

        assert compute_input_fingerprint(fields, {"balance": Decimal("4.50")}) == (
            compute_input_fingerprint(fields, {"balance": Decimal("4.5")})
        )

    def test_dataclass_inputs(self):
        fields = ("policy",)

        default = compute_input_fingerprint(fields, {"policy": LateFeePolicy()})
        custom = compute_input_fingerprint(fields, {"policy": LateFeePolicy(grace_days=10)})

        assert default != custom

    def test_missing_fields_count_as_null(self):
        fields = ("as_of",)

        assert compute_input_fingerprint(fields, {}) == compute_input_fingerprint(fields, {"as_of": None})
        assert compute_input_fingerprint(fields, {}) != (
            compute_input_fingerprint(fields, {"as_of": date(2025, 3, 1)})
        )
