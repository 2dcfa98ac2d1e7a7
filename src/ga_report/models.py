"""Domain models for GA property report aggregation.

These dataclasses model only the subset of Google Analytics payload fields that
are required for the regional report. Every instance is created fresh per
request and discarded once the response has been produced.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import List, Optional, Tuple

PROPERTY_PREFIX = "properties/"


def strip_property_prefix(property_id: str) -> str:
    """Return a property identifier without its ``properties/`` namespace."""
    if property_id.startswith(PROPERTY_PREFIX):
        return property_id[len(PROPERTY_PREFIX):]
    return property_id


@dataclass(frozen=True, slots=True)
class DimensionHeader:
    """Name of one categorical column in a provider result."""

    name: str


@dataclass(frozen=True, slots=True)
class MetricHeader:
    """Name and provider type tag of one numeric column in a provider result."""

    name: str
    type: str = "TYPE_INTEGER"


@dataclass(frozen=True, slots=True)
class Row:
    """One result row, positionally aligned with its result's headers."""

    dimension_values: Tuple[str, ...]
    metric_values: Tuple[str, ...]


@dataclass(frozen=True, slots=True)
class RawReport:
    """Unprocessed ``runReport`` response for a single property."""

    dimension_headers: Tuple[DimensionHeader, ...]
    metric_headers: Tuple[MetricHeader, ...]
    rows: Tuple[Row, ...]
    row_count: int


@dataclass(frozen=True, slots=True)
class QuerySpec:
    """Validated, immutable description of one report request."""

    property_ids: Tuple[str, ...]
    source: str
    medium: str
    start_date: date
    end_date: date
    top_n: int

    @property
    def source_medium(self) -> str:
        return f"{self.source} / {self.medium}"

    @property
    def date_range_label(self) -> str:
        return f"{self.start_date.isoformat()} - {self.end_date.isoformat()}"


@dataclass(frozen=True, slots=True)
class RowMetrics:
    """Derived values for one region row."""

    total_users: float
    new_users: float
    active_users: float
    engagement_seconds: float
    average_engagement_seconds: float
    total_user_percent: float
    new_user_percent: float
    passed_benchmark: bool


@dataclass(frozen=True, slots=True)
class AggregationTotals:
    """Property-level summary computed once from all of a property's rows."""

    total_users: float
    new_users: float
    active_users: float
    engagement_seconds: float
    average_engagement_seconds: float
    total_user_percent: float
    new_user_percent: float
    benchmark_seconds: float
    passed_benchmark: bool


@dataclass(frozen=True, slots=True)
class PropertyResult:
    """Successful outcome for one property, immutable once constructed."""

    property_id: str
    dimension_headers: Tuple[DimensionHeader, ...]
    metric_headers: Tuple[MetricHeader, ...]
    rows: Tuple[Row, ...]
    row_metrics: Tuple[RowMetrics, ...]
    totals: AggregationTotals

    @property
    def row_count(self) -> int:
        return len(self.rows)


@dataclass(frozen=True, slots=True)
class PropertyError:
    """Failure outcome for one property."""

    property_id: str
    error_message: str


@dataclass(frozen=True, slots=True)
class PropertySummary:
    """One accessible property as listed by the Admin API account summaries."""

    property_id: str
    display_name: str
    account: str = ""
    account_display_name: str = ""


@dataclass(slots=True)
class BatchResult:
    """Combined successes and failures of one batch; order is not significant."""

    results: List[PropertyResult] = field(default_factory=list)
    errors: List[PropertyError] = field(default_factory=list)

    def extend(self, other: "BatchResult") -> None:
        self.results.extend(other.results)
        self.errors.extend(other.errors)

    @property
    def total(self) -> int:
        return len(self.results) + len(self.errors)


class ColumnKind(Enum):
    """Where a report column takes its value from."""

    DIMENSION = "dimension"
    METRIC = "metric"
    COMPUTED = "computed"
    LITERAL = "literal"


class ValueFormat(Enum):
    """How a report column's value is rendered."""

    TEXT = "text"
    INTEGER = "integer"
    DURATION = "duration"
    PERCENT = "percent"
    BOOLEAN = "boolean"


@dataclass(frozen=True, slots=True)
class ReportColumn:
    """Column definition used while assembling a report table."""

    name: str
    kind: ColumnKind
    source: Optional[str] = None
    value_format: ValueFormat = ValueFormat.TEXT
    value: Optional[str] = None


@dataclass(frozen=True, slots=True)
class ReportRow:
    """One rendered output row, either a property total or a region row."""

    property_id: str
    property_name: str
    cells: Tuple[str, ...]
    is_total: bool = False


@dataclass(slots=True)
class ReportTable:
    """Ordered columns plus rendered rows for every successful property."""

    columns: Tuple[ReportColumn, ...]
    rows: List[ReportRow] = field(default_factory=list)
    property_count: int = 0

    @property
    def header(self) -> List[str]:
        return ["Property ID", "Property Name"] + [column.name for column in self.columns]
