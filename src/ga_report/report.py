"""Report assembly for consolidated GA property results.

This module provides utilities for:
- Defining the canonical report column order once per batch.
- Rendering one synthetic total row plus the region rows of every property.
- Formatting durations, percentages and booleans for display and export.
- Building a short human-readable summary of a batch.
"""

from __future__ import annotations

from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from .aggregation import (
    ACTIVE_USERS,
    BENCHMARK_HEADER_NAMES,
    ENGAGEMENT_DURATION,
    NEW_USERS,
    TOTAL_USERS,
    HeaderIndex,
    normalize_duration_seconds,
    to_number,
)
from .models import (
    AggregationTotals,
    BatchResult,
    ColumnKind,
    DimensionHeader,
    MetricHeader,
    PropertyResult,
    ReportColumn,
    ReportRow,
    ReportTable,
    RowMetrics,
    ValueFormat,
    strip_property_prefix,
)

REGION_DIMENSION = "region"
SOURCE_MEDIUM_DIMENSIONS = ("firstUserSourceMedium", "sessionSourceMedium", "sourceMedium")
DATE_RANGE_COLUMN = "Date Range"
TOTAL_ROW_LABEL = "Total"

AVERAGE_ENGAGEMENT = "averageEngagementSeconds"
TOTAL_USER_PERCENT = "Total User %"
TOS_BENCHMARK = "TOS Benchmark"
PASSED_BENCHMARK = "Passed Benchmark"

_COLUMN_TITLES = {
    TOTAL_USERS: "Total Users",
    NEW_USERS: "New Users",
    ACTIVE_USERS: "Active Users",
    ENGAGEMENT_DURATION: "Average Session Duration Per Active User",
    AVERAGE_ENGAGEMENT: "Average Session Duration Per Active User",
    REGION_DIMENSION: "Region",
    "sessionSourceMedium": "Source / Medium",
    "sourceMedium": "Source / Medium",
    "firstUserSourceMedium": "Source / Medium",
}

_NEW_USER_VARIANTS = {NEW_USERS, "New Users", "New User %", "newUserPercent"}

DEFAULT_DIMENSION_HEADERS = (DimensionHeader(REGION_DIMENSION), DimensionHeader("firstUserSourceMedium"))
DEFAULT_METRIC_HEADERS = (
    MetricHeader(TOTAL_USERS),
    MetricHeader(NEW_USERS),
    MetricHeader(ACTIVE_USERS),
    MetricHeader(ENGAGEMENT_DURATION, "TYPE_SECONDS"),
)

_FIXED_METRIC_COLUMNS = (
    ReportColumn("Total Users", ColumnKind.METRIC, TOTAL_USERS, ValueFormat.INTEGER),
    ReportColumn("New Users", ColumnKind.METRIC, NEW_USERS, ValueFormat.INTEGER),
    ReportColumn("Active Users", ColumnKind.METRIC, ACTIVE_USERS, ValueFormat.INTEGER),
    ReportColumn(
        "Average Session Duration Per Active User",
        ColumnKind.COMPUTED,
        AVERAGE_ENGAGEMENT,
        ValueFormat.DURATION,
    ),
    ReportColumn(TOTAL_USER_PERCENT, ColumnKind.COMPUTED, TOTAL_USER_PERCENT, ValueFormat.PERCENT),
    ReportColumn(TOS_BENCHMARK, ColumnKind.COMPUTED, TOS_BENCHMARK, ValueFormat.DURATION),
    ReportColumn(PASSED_BENCHMARK, ColumnKind.COMPUTED, PASSED_BENCHMARK, ValueFormat.BOOLEAN),
)

_PLACED_METRICS = {TOTAL_USERS, NEW_USERS, ACTIVE_USERS, ENGAGEMENT_DURATION, *BENCHMARK_HEADER_NAMES}
_MAX_COMPARED_PLACES = 6


def format_column_header(name: str) -> str:
    """Return the display title for a provider header name.

    Unknown camelCase names are split into words: ``screenPageViews`` becomes
    ``Screen Page Views``.
    """
    if name in _COLUMN_TITLES:
        return _COLUMN_TITLES[name]
    if not name:
        return name

    words = []
    for char in name:
        if char.isupper() and words:
            words.append(" ")
        words.append(char)
    text = "".join(words)
    return text[0].upper() + text[1:]


def _trim_number(value: float, places: int = 2) -> str:
    text = f"{value:.{places}f}".rstrip("0").rstrip(".")
    return "0" if text in ("", "-0") else text


def format_integer(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return _trim_number(value)


def format_duration(seconds: float) -> str:
    """Render seconds with a trailing ``s``, rounded to two decimals."""
    return f"{_trim_number(seconds)}s"


def format_compared_duration(seconds: float, benchmark_seconds: float) -> str:
    """Render an average that is compared against ``benchmark_seconds``.

    Two decimals are used unless that would make a different value read the
    same as the benchmark; then decimals are added until the two differ.
    """
    if seconds == benchmark_seconds:
        return format_duration(seconds)
    for places in range(2, _MAX_COMPARED_PLACES + 1):
        text = _trim_number(seconds, places)
        if text != _trim_number(benchmark_seconds, places):
            return f"{text}s"
    return f"{seconds!r}s"


def format_percent(value: float) -> str:
    """Render a percentage with a trailing ``%``, rounded to two decimals."""
    return f"{_trim_number(value)}%"


def format_boolean(value: bool) -> str:
    return "TRUE" if value else "FALSE"


def format_value(value: object, value_format: ValueFormat) -> str:
    """Format one cell value according to its column's ``ValueFormat``."""
    if value_format is ValueFormat.BOOLEAN:
        return format_boolean(bool(value))
    if value_format is ValueFormat.TEXT:
        return "" if value is None else str(value)

    number = to_number(value)
    if value_format is ValueFormat.DURATION:
        return format_duration(number)
    if value_format is ValueFormat.PERCENT:
        return format_percent(number)
    return format_integer(number)


def _metric_format(header: MetricHeader) -> ValueFormat:
    if header.type in ("TYPE_SECONDS", "TYPE_MILLISECONDS"):
        return ValueFormat.DURATION
    if header.type == "TYPE_INTEGER":
        return ValueFormat.INTEGER
    return ValueFormat.TEXT


def build_columns(
    dimension_headers: Sequence[DimensionHeader],
    metric_headers: Sequence[MetricHeader],
    date_range_label: str,
) -> Tuple[ReportColumn, ...]:
    """Define the canonical column sequence for a batch.

    Order: region, date range, source/medium, the seven fixed metric and
    derived columns, then any remaining raw dimensions and metrics. New-user
    variants are never repeated after the fixed block.
    """
    dimension_names = [header.name for header in dimension_headers]
    columns: List[ReportColumn] = []
    placed_dimensions = set()

    if REGION_DIMENSION in dimension_names:
        columns.append(
            ReportColumn(format_column_header(REGION_DIMENSION), ColumnKind.DIMENSION, REGION_DIMENSION)
        )
        placed_dimensions.add(REGION_DIMENSION)

    columns.append(ReportColumn(DATE_RANGE_COLUMN, ColumnKind.LITERAL, value=date_range_label))

    source_medium = next((name for name in SOURCE_MEDIUM_DIMENSIONS if name in dimension_names), None)
    if source_medium is not None:
        columns.append(ReportColumn(format_column_header(source_medium), ColumnKind.DIMENSION, source_medium))
        placed_dimensions.add(source_medium)

    columns.extend(_FIXED_METRIC_COLUMNS)

    for name in dimension_names:
        if name not in placed_dimensions:
            columns.append(ReportColumn(format_column_header(name), ColumnKind.DIMENSION, name))
            placed_dimensions.add(name)

    placed_titles = {column.name for column in columns}
    for header in metric_headers:
        title = format_column_header(header.name)
        if header.name in _PLACED_METRICS or header.name in _NEW_USER_VARIANTS:
            continue
        if title in placed_titles or title in _NEW_USER_VARIANTS:
            continue
        columns.append(ReportColumn(title, ColumnKind.METRIC, header.name, _metric_format(header)))
        placed_titles.add(title)

    return tuple(columns)


def resolve_display_name(property_id: str, names: Mapping[str, str]) -> str:
    """Look up a display name by raw id, then without and with the namespace prefix."""
    bare_id = strip_property_prefix(property_id)
    for key in (property_id, bare_id, f"properties/{bare_id}"):
        name = names.get(key)
        if name:
            return name
    return property_id


class _ResultCells:
    """Renders cells for one property result using lookups built once."""

    def __init__(self, result: PropertyResult) -> None:
        self._result = result
        self._dimensions: Dict[str, int] = {}
        for position, header in enumerate(result.dimension_headers):
            self._dimensions.setdefault(header.name, position)
        self._metrics = HeaderIndex(result.metric_headers)

    def total_cells(self, columns: Sequence[ReportColumn]) -> Tuple[str, ...]:
        totals = self._result.totals
        return tuple(self._total_cell(column, totals) for column in columns)

    def row_cells(self, columns: Sequence[ReportColumn], row_index: int) -> Tuple[str, ...]:
        metrics = self._result.row_metrics[row_index]
        return tuple(self._row_cell(column, row_index, metrics) for column in columns)

    def _total_cell(self, column: ReportColumn, totals: AggregationTotals) -> str:
        if column.kind is ColumnKind.LITERAL:
            return column.value or ""
        if column.kind is ColumnKind.DIMENSION:
            return TOTAL_ROW_LABEL if column.source == REGION_DIMENSION else ""

        fixed = _fixed_value(column.source, totals.total_users, totals.new_users, totals.active_users)
        if fixed is not None:
            return format_value(fixed, column.value_format)
        if column.source == AVERAGE_ENGAGEMENT:
            return format_compared_duration(totals.average_engagement_seconds, totals.benchmark_seconds)
        if column.source == TOTAL_USER_PERCENT:
            return format_percent(totals.total_user_percent)
        if column.source == TOS_BENCHMARK:
            return format_duration(totals.benchmark_seconds)
        if column.source == PASSED_BENCHMARK:
            return format_boolean(totals.passed_benchmark)

        if column.value_format is ValueFormat.INTEGER and column.source is not None:
            total = sum(self._metrics.value(row, column.source) for row in self._result.rows)
            return format_integer(total)
        return ""

    def _row_cell(self, column: ReportColumn, row_index: int, metrics: RowMetrics) -> str:
        row = self._result.rows[row_index]
        if column.kind is ColumnKind.LITERAL:
            return column.value or ""
        if column.kind is ColumnKind.DIMENSION:
            position = self._dimensions.get(column.source or "")
            if position is None or position >= len(row.dimension_values):
                return ""
            return row.dimension_values[position]

        fixed = _fixed_value(column.source, metrics.total_users, metrics.new_users, metrics.active_users)
        if fixed is not None:
            return format_value(fixed, column.value_format)
        if column.source == AVERAGE_ENGAGEMENT:
            return format_compared_duration(
                metrics.average_engagement_seconds, self._result.totals.benchmark_seconds
            )
        if column.source == TOTAL_USER_PERCENT:
            return format_percent(metrics.total_user_percent)
        if column.source == TOS_BENCHMARK:
            return format_duration(self._result.totals.benchmark_seconds)
        if column.source == PASSED_BENCHMARK:
            return format_boolean(metrics.passed_benchmark)

        if column.source is None:
            return ""
        raw = self._metrics.raw_value(row, column.source)
        if raw is None:
            return ""
        if column.value_format is ValueFormat.DURATION:
            seconds = normalize_duration_seconds(to_number(raw), self._metrics.metric_type(column.source))
            return format_duration(seconds)
        return format_value(raw, column.value_format)


def _fixed_value(source: Optional[str], total_users: float, new_users: float, active_users: float) -> Optional[float]:
    if source == TOTAL_USERS:
        return total_users
    if source == NEW_USERS:
        return new_users
    if source == ACTIVE_USERS:
        return active_users
    return None


def order_results(results: Sequence[PropertyResult], order: Optional[Sequence[str]] = None) -> List[PropertyResult]:
    """Return results in request order; unknown ids keep their relative order at the end."""
    if not order:
        return list(results)
    rank = {property_id: position for position, property_id in enumerate(order)}
    return sorted(results, key=lambda result: rank.get(result.property_id, len(rank)))


def assemble_report(
    batch: BatchResult,
    names: Mapping[str, str],
    date_range_label: str,
    order: Optional[Sequence[str]] = None,
) -> ReportTable:
    """Turn a batch into an ordered table of total and region rows.

    Columns come from the first successful result; every property contributes
    its total row followed by its data rows. Properties without rows still
    contribute their total row.

    Args:
        batch: Orchestrator output; only ``batch.results`` is rendered.
        names: Property id to display name mapping.
        date_range_label: Literal shown in the date range column.
        order: Optional request order used to sort properties deterministically.
    """
    results = order_results(batch.results, order)
    if not results:
        return ReportTable(
            columns=build_columns(DEFAULT_DIMENSION_HEADERS, DEFAULT_METRIC_HEADERS, date_range_label),
        )

    first = results[0]
    columns = build_columns(first.dimension_headers, first.metric_headers, date_range_label)
    table = ReportTable(columns=columns, property_count=len(results))

    for result in results:
        property_name = resolve_display_name(result.property_id, names)
        cells = _ResultCells(result)
        table.rows.append(
            ReportRow(
                property_id=result.property_id,
                property_name=property_name,
                cells=cells.total_cells(columns),
                is_total=True,
            )
        )
        for row_index in range(result.row_count):
            table.rows.append(
                ReportRow(
                    property_id=result.property_id,
                    property_name=property_name,
                    cells=cells.row_cells(columns, row_index),
                )
            )

    return table


def generate_summary(
    batch: BatchResult,
    names: Mapping[str, str],
    date_range_label: str,
    order: Optional[Sequence[str]] = None,
) -> str:
    """Generate a human-readable summary of a batch for terminal output."""
    lines = [
        "GA Region Report",
        f"Date range: {date_range_label}",
        f"Properties: {len(batch.results)} succeeded, {len(batch.errors)} failed",
    ]

    for result in order_results(batch.results, order):
        totals = result.totals
        average = format_compared_duration(totals.average_engagement_seconds, totals.benchmark_seconds)
        lines.extend(
            [
                "",
                f"{resolve_display_name(result.property_id, names)} ({result.property_id})",
                f"   Total users: {format_integer(totals.total_users)}",
                f"   New users: {format_integer(totals.new_users)}",
                f"   Active users: {format_integer(totals.active_users)}",
                f"   Avg engagement: {average}"
                f" (benchmark {format_duration(totals.benchmark_seconds)},"
                f" passed {format_boolean(totals.passed_benchmark)})",
                f"   Regions: {result.row_count}",
            ]
        )

    if batch.errors:
        lines.extend(["", "Failed properties:"])
        lines.extend(f"   {error.property_id}: {error.error_message}" for error in batch.errors)

    return "\n".join(lines)
