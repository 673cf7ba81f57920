"""Tests for the @traced_engine decorator."""

from decimal import Decimal

from workflow_engines.thresholds import calculate_cost_delta
from workflow_engines.tracer import TRACE_TYPE, compute_input_fingerprint, traced_engine


@traced_engine("test.sum", "2.1", ("a", "b"))
def _add(a, b, *, note=None):
    return a + b


class TestTracedEngine:

    def test_return_value_unchanged(self):
        assert _add(1, 2) == 3
        assert _add.__name__ == "_add"

    def test_trace_record(self, captured_logs):
        _add(Decimal("1.5"), b=Decimal("2"))

        traces = [r for r in captured_logs() if r["message"] == TRACE_TYPE]
        assert len(traces) == 1
        trace = traces[0]
        assert trace["engine_name"] == "test.sum"
        assert trace["engine_version"] == "2.1"
        assert trace["function"] == "_add"
        assert len(trace["input_fingerprint"]) == 16

    def test_fingerprint_ignores_decimal_exponent(self):
        a = compute_input_fingerprint(("x",), {"x": Decimal("1.50")})
        b = compute_input_fingerprint(("x",), {"x": Decimal("1.5")})
        assert a == b

    def test_fingerprint_sorted_dict_keys(self):
        a = compute_input_fingerprint(("m",), {"m": {"a": 1, "b": 2}})
        b = compute_input_fingerprint(("m",), {"m": {"b": 2, "a": 1}})
        assert a == b

    def test_unbound_fields_are_null(self):
        a = compute_input_fingerprint(("x", "y"), {"x": 1})
        b = compute_input_fingerprint(("x", "y"), {"x": 1, "y": None})
        assert a == b

    def test_engine_functions_traced(self, captured_logs):
        calculate_cost_delta(1000, 1060)
        names = [r.get("engine_name") for r in captured_logs() if r["message"] == TRACE_TYPE]
        assert names == ["thresholds.cost_delta"]
