"""Metric derivation for per-property GA report results.

This module turns the raw rows of one property into typed values:
- Coercing provider metric strings to numbers (non-numeric input counts as zero).
- Normalizing engagement duration to seconds based on the metric type tag.
- Per-row percentages, averages and the TOS benchmark pass/fail outcome.
- Property-level ``AggregationTotals`` computed over the sum of all rows.

Every function here is pure: no I/O, no logging side effects that influence the
result, and no exceptions for numeric or non-numeric input.
"""

from __future__ import annotations

import logging
import math
from typing import Dict, Optional, Sequence, Tuple

from .models import (
    AggregationTotals,
    MetricHeader,
    PropertyResult,
    RawReport,
    Row,
    RowMetrics,
)

logger = logging.getLogger(__name__)

TOTAL_USERS = "totalUsers"
NEW_USERS = "newUsers"
ACTIVE_USERS = "activeUsers"
ENGAGEMENT_DURATION = "userEngagementDuration"
BENCHMARK_HEADER_NAMES = ("TOS Benchmark", "tosBenchmark")

MILLISECONDS_TYPE = "TYPE_MILLISECONDS"


def to_number(value: object) -> float:
    """Convert a provider metric value to ``float``.

    ``None``, blank strings, non-numeric strings and non-finite numbers all
    yield ``0.0`` so that downstream arithmetic never fails.
    """
    if value is None or isinstance(value, bool):
        return 0.0

    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        logger.debug("Coercing non-numeric metric value to zero", extra={"value": value})
        return 0.0

    if not math.isfinite(number):
        return 0.0
    return number


def normalize_duration_seconds(value: float, metric_type: str) -> float:
    """Convert a duration reported in ``metric_type`` units to seconds."""
    if metric_type == MILLISECONDS_TYPE:
        return value / 1000.0
    return value


def percent_of(part: float, whole: float) -> float:
    """Return ``part / whole * 100``, or ``0`` when ``whole`` is not positive."""
    if whole <= 0:
        return 0.0
    return part / whole * 100.0


def new_user_percent(active_users: float, property_active_users: float) -> float:
    """Share of the property's active users that fall in this row."""
    return percent_of(active_users, property_active_users)


def total_user_percent(total_users: float, property_total_users: float) -> float:
    """Share of the property's total users that fall in this row."""
    return percent_of(total_users, property_total_users)


def average_engagement_seconds(engagement_seconds: float, active_users: float) -> float:
    """Average engagement per active user; ``0`` when there are no active users."""
    if active_users <= 0:
        return 0.0
    return engagement_seconds / active_users


def passed_benchmark(average_seconds: float, threshold_seconds: float) -> bool:
    """Return whether the average engagement strictly exceeds the benchmark."""
    return average_seconds > threshold_seconds


class HeaderIndex:
    """Name to position lookup built once per provider result."""

    def __init__(self, metric_headers: Sequence[MetricHeader]) -> None:
        self._positions: Dict[str, int] = {}
        self._types: Dict[str, str] = {}
        for position, header in enumerate(metric_headers):
            self._positions.setdefault(header.name, position)
            self._types.setdefault(header.name, header.type)

    def __contains__(self, name: object) -> bool:
        return name in self._positions

    def position(self, name: str) -> Optional[int]:
        return self._positions.get(name)

    def metric_type(self, name: str) -> str:
        return self._types.get(name, "")

    def raw_value(self, row: Row, name: str) -> Optional[str]:
        position = self._positions.get(name)
        if position is None or position >= len(row.metric_values):
            return None
        return row.metric_values[position]

    def value(self, row: Row, name: str) -> float:
        return to_number(self.raw_value(row, name))


def resolve_benchmark(index: HeaderIndex, rows: Sequence[Row], default_seconds: float) -> float:
    """Return the benchmark for one property.

    A numeric ``TOS Benchmark`` metric on the first row overrides the
    configured default for that property only.
    """
    if not rows:
        return default_seconds

    for name in BENCHMARK_HEADER_NAMES:
        raw = index.raw_value(rows[0], name)
        if raw is None:
            continue
        try:
            override = float(raw)
        except ValueError:
            continue
        if math.isfinite(override):
            return override

    return default_seconds


def _engagement_seconds(index: HeaderIndex, row: Row) -> float:
    return normalize_duration_seconds(
        index.value(row, ENGAGEMENT_DURATION),
        index.metric_type(ENGAGEMENT_DURATION),
    )


def compute_totals(
    total_users: float,
    new_users: float,
    active_users: float,
    engagement_seconds: float,
    benchmark_seconds: float,
) -> AggregationTotals:
    """Build ``AggregationTotals`` from already summed counters."""
    average = average_engagement_seconds(engagement_seconds, active_users)
    return AggregationTotals(
        total_users=total_users,
        new_users=new_users,
        active_users=active_users,
        engagement_seconds=engagement_seconds,
        average_engagement_seconds=average,
        total_user_percent=total_user_percent(total_users, total_users),
        new_user_percent=new_user_percent(active_users, active_users),
        benchmark_seconds=benchmark_seconds,
        passed_benchmark=passed_benchmark(average, benchmark_seconds),
    )


def summarize_rows(
    metric_headers: Sequence[MetricHeader],
    rows: Sequence[Row],
    benchmark_seconds: float,
) -> Tuple[Tuple[RowMetrics, ...], AggregationTotals]:
    """Compute per-row metrics and the property totals in one pass over the rows.

    Row percentages are taken against the property-wide sums, so the sums are
    collected first and the derived row values second.

    Args:
        metric_headers: Metric headers of the property result.
        rows: Raw rows aligned with ``metric_headers``.
        benchmark_seconds: Configured TOS benchmark; may be overridden by data.

    Returns:
        ``(row_metrics, totals)`` where ``row_metrics`` is aligned with ``rows``.
    """
    index = HeaderIndex(metric_headers)
    threshold = resolve_benchmark(index, rows, benchmark_seconds)

    counters = [
        (
            index.value(row, TOTAL_USERS),
            index.value(row, NEW_USERS),
            index.value(row, ACTIVE_USERS),
            _engagement_seconds(index, row),
        )
        for row in rows
    ]

    property_total_users = sum(item[0] for item in counters)
    property_active_users = sum(item[2] for item in counters)

    row_metrics = []
    for row_total_users, row_new_users, row_active_users, row_engagement in counters:
        average = average_engagement_seconds(row_engagement, row_active_users)
        row_metrics.append(
            RowMetrics(
                total_users=row_total_users,
                new_users=row_new_users,
                active_users=row_active_users,
                engagement_seconds=row_engagement,
                average_engagement_seconds=average,
                total_user_percent=total_user_percent(row_total_users, property_total_users),
                new_user_percent=new_user_percent(row_active_users, property_active_users),
                passed_benchmark=passed_benchmark(average, threshold),
            )
        )

    totals = compute_totals(
        total_users=property_total_users,
        new_users=sum(item[1] for item in counters),
        active_users=property_active_users,
        engagement_seconds=sum(item[3] for item in counters),
        benchmark_seconds=threshold,
    )
    return tuple(row_metrics), totals


def build_property_result(property_id: str, report: RawReport, benchmark_seconds: float) -> PropertyResult:
    """Attach derived metrics to one property's raw provider report."""
    row_metrics, totals = summarize_rows(report.metric_headers, report.rows, benchmark_seconds)
    return PropertyResult(
        property_id=property_id,
        dimension_headers=report.dimension_headers,
        metric_headers=report.metric_headers,
        rows=report.rows,
        row_metrics=row_metrics,
        totals=totals,
    )

