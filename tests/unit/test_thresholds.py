"""
Unit tests for threshold evaluation
"""

import pytest
from pipeline.thresholds import UnsupportedOperator, compare, evaluate_thresholds


class TestEvaluateThresholds:

    def test_no_thresholds_is_valid(self):
        assert evaluate_thresholds({"rowCount": 3}, {}).valid is True
        assert evaluate_thresholds({"rowCount": 3}, None).valid is True

    def test_failing_threshold_reason(self):
        result = evaluate_thresholds(
            {"overall_completeness": 75.0},
            {"overall_completeness": {"operator": ">=", "value": 90}}
        )

        assert result.valid is False
        assert result.reason == "overall_completeness value 75 fails threshold (>= 90)"

    def test_passing_threshold(self):
        result = evaluate_thresholds(
            {"duplicate_count": 0},
            {"duplicate_count": {"operator": "=", "value": 0}}
        )
        assert result.valid is True
        assert result.reason is None

    def test_missing_metric_is_skipped(self):
        result = evaluate_thresholds(
            {"rowCount": 0},
            {"overall_completeness": {"operator": ">=", "value": 90}}
        )
        assert result.valid is True

    def test_null_metric_is_skipped(self):
        """Zero-row completeness never fails a threshold"""
        result = evaluate_thresholds(
            {"rowCount": 0, "overall_completeness": None},
            {"overall_completeness": {"operator": ">=", "value": 90}}
        )
        assert result.valid is True

    def test_operator_defaults_to_greater_or_equal(self):
        result = evaluate_thresholds({"rowCount": 5}, {"rowCount": {"value": 10}})
        assert result.valid is False
        assert "(>= 10)" in result.reason

    def test_bare_number_threshold(self):
        assert evaluate_thresholds({"rowCount": 10}, {"rowCount": 10}).valid is True
        assert evaluate_thresholds({"rowCount": 9}, {"rowCount": 10}).valid is False

    def test_first_failure_wins(self):
        result = evaluate_thresholds(
            {"a": 1, "b": 1},
            {"a": {"operator": ">", "value": 5}, "b": {"operator": ">", "value": 5}}
        )
        assert result.reason.startswith("a value 1")

    def test_unsupported_operator_fails(self):
        result = evaluate_thresholds({"a": 1}, {"a": {"operator": "~", "value": 1}})
        assert result.valid is False
        assert "unsupported operator" in result.reason

    def test_incomparable_values_fail(self):
        result = evaluate_thresholds({"a": [1, 2]}, {"a": {"operator": ">", "value": 1}})
        assert result.valid is False
        assert "not comparable" in result.reason


@pytest.mark.parametrize("left,operator,right,expected", [
    (5, ">", 3, True),
    (3, ">", 3, False),
    (3, ">=", 3, True),
    (2, "<", 3, True),
    (3, "<=", 3, True),
    (3, "=", 3, True),
    (3, "==", 3.0, True),
    (3, "!=", 4, True),
])
def test_compare(left, operator, right, expected):
    assert compare(left, operator, right) is expected


def test_compare_rejects_unknown_operator():
    with pytest.raises(UnsupportedOperator):
        compare(1, "<>", 2)
