"""
Threshold evaluation: decides between success and warning for a run whose
statement executed.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional
import operator as op

OPERATORS = {
    ">": op.gt,
    ">=": op.ge,
    "<": op.lt,
    "<=": op.le,
    "=": op.eq,
    "==": op.eq,
    "!=": op.ne,
}

DEFAULT_OPERATOR = ">="


class UnsupportedOperator(ValueError):
    pass


def compare(left: Any, operator: str, right: Any) -> bool:
    """
    Apply a comparison operator.

    Raises:
        UnsupportedOperator: operator is not one of OPERATORS
        TypeError: operands are not comparable
    """
    func = OPERATORS.get(operator)
    if func is None:
        raise UnsupportedOperator(f"Unsupported operator {operator!r}")
    return bool(func(left, right))


@dataclass(frozen=True)
class ThresholdResult:
    valid: bool
    reason: Optional[str] = None


def _normalize_rule(rule: Any) -> Dict[str, Any]:
    # A bare number means ">= number"
    if isinstance(rule, dict):
        return {"operator": rule.get("operator") or DEFAULT_OPERATOR, "value": rule.get("value")}
    return {"operator": DEFAULT_OPERATOR, "value": rule}


def _format(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def evaluate_thresholds(metrics: Dict[str, Any], thresholds: Optional[Dict[str, Any]]) -> ThresholdResult:
    """
    Check metrics against threshold rules, stopping at the first failure.

    Rules for metrics that are absent (or None) are skipped.

    Returns:
        ThresholdResult(valid=True) or ThresholdResult(valid=False, reason=...)
    """
    if not thresholds:
        return ThresholdResult(valid=True)

    for metric, raw_rule in thresholds.items():
        if metrics.get(metric) is None:
            continue

        rule = _normalize_rule(raw_rule)
        value = metrics[metric]
        reason = (
            f"{metric} value {_format(value)} fails threshold "
            f"({rule['operator']} {_format(rule['value'])})"
        )

        try:
            passed = compare(value, rule["operator"], rule["value"])
        except UnsupportedOperator:
            return ThresholdResult(valid=False, reason=f"{reason}: unsupported operator")
        except TypeError:
            return ThresholdResult(valid=False, reason=f"{reason}: values are not comparable")

        if not passed:
            return ThresholdResult(valid=False, reason=reason)

    return ThresholdResult(valid=True)
