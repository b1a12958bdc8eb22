"""
Metric calculation per quality check category.

Each category maps to a pure function rows -> metrics. Every result also
carries the baseline rowCount. The calculator never raises: empty result
sets, unknown categories and rows with differing column sets all produce a
defined metrics map.
"""

from typing import Any, Callable, Dict, List, Optional, Union
import logging

from models.base import QueryCategory
from pipeline.executor import QueryResultSet

logger = logging.getLogger(__name__)

Rows = List[Dict[str, Any]]
Metrics = Dict[str, Any]


def _percentage(part: int, whole: int) -> Optional[float]:
    if whole == 0:
        return None
    return round(part / whole * 100, 2)


def completeness_metrics(rows: Rows) -> Metrics:
    """
    Non-null percentage per column plus overall_completeness.

    Columns are taken from the first row. With no rows every percentage is
    None.
    """
    if not rows:
        return {"overall_completeness": None}

    columns = list(rows[0].keys())
    total_rows = len(rows)
    metrics: Metrics = {}
    non_null_total = 0

    for column in columns:
        non_null = sum(1 for row in rows if row.get(column) is not None)
        non_null_total += non_null
        metrics[f"{column}_completeness"] = _percentage(non_null, total_rows)

    metrics["overall_completeness"] = _percentage(non_null_total, len(columns) * total_rows)
    return metrics


def _passthrough(key: str) -> Callable[[Rows], Metrics]:
    def calculate(rows: Rows) -> Metrics:
        return {key: rows}
    return calculate


def _violations(count_key: str, details_key: str) -> Callable[[Rows], Metrics]:
    # Every returned row is one violation
    def calculate(rows: Rows) -> Metrics:
        return {count_key: len(rows), details_key: rows}
    return calculate


CATEGORY_CALCULATORS: Dict[QueryCategory, Callable[[Rows], Metrics]] = {
    QueryCategory.COMPLETENESS: completeness_metrics,
    QueryCategory.CONSISTENCY: _passthrough("consistency_results"),
    QueryCategory.ACCURACY: _passthrough("accuracy_results"),
    QueryCategory.TIMELINESS: _passthrough("timeliness_results"),
    QueryCategory.INTEGRITY: _violations("integrity_violation_count", "integrity_violation_details"),
    QueryCategory.UNIQUENESS: _violations("duplicate_count", "duplicate_details"),
    QueryCategory.RELATIONSHIP: _violations("relationship_violation_count", "relationship_violation_details"),
    QueryCategory.SENSITIVE_EXPOSURE: _violations("exposure_count", "exposure_details"),
}


def parse_category(category: Union[str, QueryCategory, None]) -> Optional[QueryCategory]:
    if isinstance(category, QueryCategory):
        return category
    try:
        return QueryCategory(category)
    except ValueError:
        return None


def calculate_metrics(category: Union[str, QueryCategory, None], result_set: QueryResultSet) -> Metrics:
    """
    Compute the metrics map for a category.

    Args:
        category: Query category (unknown values yield only rowCount)
        result_set: Normalized result of the check's statement

    Returns:
        {"rowCount": n, ...category specific keys}
    """
    rows = result_set.rows or []
    metrics: Metrics = {"rowCount": result_set.row_count}

    parsed = parse_category(category)
    if parsed is None:
        logger.warning(f"Unknown quality check category {category!r}; computing rowCount only")
        return metrics

    metrics.update(CATEGORY_CALCULATORS[parsed](rows))
    return metrics
