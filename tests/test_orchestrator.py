"""Tests for bounded-concurrency property fan-out."""

import asyncio
import sys
import threading
import time
from datetime import date
from pathlib import Path
from unittest.mock import Mock

import pytest

# Add src directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from ga_report.errors import ApiError
from ga_report.models import DimensionHeader, MetricHeader, QuerySpec, RawReport, Row
from ga_report.orchestrator import CANCELLED_MESSAGE, QueryOrchestrator


def _query(property_ids=("P1",), top_n: int = 2) -> QuerySpec:
    return QuerySpec(
        property_ids=tuple(property_ids),
        source="client-command",
        medium="email",
        start_date=date(2024, 1, 1),
        end_date=date(2024, 1, 31),
        top_n=top_n,
    )


def _report(*regions: str) -> RawReport:
    rows = tuple(
        Row(dimension_values=(region, "client-command / email"), metric_values=("10", "3", "8", "400"))
        for region in regions
    )
    return RawReport(
        dimension_headers=(DimensionHeader("region"), DimensionHeader("firstUserSourceMedium")),
        metric_headers=(
            MetricHeader("totalUsers"),
            MetricHeader("newUsers"),
            MetricHeader("activeUsers"),
            MetricHeader("userEngagementDuration", "TYPE_SECONDS"),
        ),
        rows=rows,
        row_count=len(rows),
    )


class _ConcurrencyTrackingProvider:
    def __init__(self, delay: float = 0.05) -> None:
        self._delay = delay
        self._lock = threading.Lock()
        self.in_flight = 0
        self.max_in_flight = 0

    def run_report(self, property_id, body):
        with self._lock:
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            time.sleep(self._delay)
            return _report("Ohio")
        finally:
            with self._lock:
                self.in_flight -= 1


def test_run_batch_returns_results_for_every_successful_property():
    """Verify each property produces one result built from its provider rows."""
    provider = Mock()
    provider.run_report.side_effect = lambda property_id, body: _report("Ohio", "Texas")
    orchestrator = QueryOrchestrator(provider, max_concurrency=2)

    batch = asyncio.run(orchestrator.run_batch(["P1", "P2"], _query(["P1", "P2"])))

    assert sorted(result.property_id for result in batch.results) == ["P1", "P2"]
    assert batch.errors == []
    assert all(result.row_count == 2 for result in batch.results)
    assert provider.run_report.call_count == 2


def test_run_batch_sends_fixed_report_body():
    """Verify the provider receives the fixed dimensions, metrics, filter, order and limit."""
    provider = Mock()
    provider.run_report.return_value = _report("Ohio")
    orchestrator = QueryOrchestrator(provider)

    asyncio.run(orchestrator.run_batch(["P1"], _query(top_n=7)))

    property_id, body = provider.run_report.call_args.args
    assert property_id == "P1"
    assert [item["name"] for item in body["dimensions"]] == ["region", "firstUserSourceMedium"]
    assert [item["name"] for item in body["metrics"]] == [
        "totalUsers",
        "newUsers",
        "activeUsers",
        "userEngagementDuration",
    ]
    assert body["orderBys"] == [{"metric": {"metricName": "totalUsers"}, "desc": True}]
    assert body["limit"] == "7"
    assert body["dateRanges"] == [{"startDate": "2024-01-01", "endDate": "2024-01-31"}]
    expressions = body["dimensionFilter"]["andGroup"]["expressions"]
    assert len(expressions) == 1
    assert expressions[0]["filter"]["fieldName"] == "firstUserSourceMedium"
    assert expressions[0]["filter"]["stringFilter"]["value"] == "client-command / email"
    assert "metricAggregations" not in body


def test_run_batch_isolates_per_property_failures():
    """Verify one failing property becomes an error without affecting its siblings."""

    def _run_report(property_id, body):
        if property_id == "P2":
            raise ApiError("connection reset by peer")
        return _report("Ohio")

    provider = Mock()
    provider.run_report.side_effect = _run_report
    orchestrator = QueryOrchestrator(provider, max_concurrency=3)

    batch = asyncio.run(orchestrator.run_batch(["P1", "P2", "P3"], _query(["P1", "P2", "P3"])))

    assert sorted(result.property_id for result in batch.results) == ["P1", "P3"]
    assert len(batch.errors) == 1
    assert batch.errors[0].property_id == "P2"
    assert "connection reset" in batch.errors[0].error_message


def test_run_batch_uses_exception_name_when_message_is_empty():
    """Verify failures without a message still carry a readable reason."""
    provider = Mock()
    provider.run_report.side_effect = TimeoutError()
    orchestrator = QueryOrchestrator(provider)

    batch = asyncio.run(orchestrator.run_batch(["P1"], _query()))

    assert batch.errors[0].error_message == "TimeoutError"


def test_run_batch_never_exceeds_concurrency_bound():
    """Verify no more provider calls are in flight than the permit count."""
    provider = _ConcurrencyTrackingProvider()
    orchestrator = QueryOrchestrator(provider, max_concurrency=2)
    property_ids = [f"P{i}" for i in range(6)]

    batch = asyncio.run(orchestrator.run_batch(property_ids, _query(property_ids)))

    assert len(batch.results) == 6
    assert provider.max_in_flight <= 2


def test_run_batch_rejects_empty_and_oversized_lists():
    """Verify batch preconditions are enforced before any provider call."""
    provider = Mock()
    orchestrator = QueryOrchestrator(provider, property_cap=2)

    with pytest.raises(ValueError):
        asyncio.run(orchestrator.run_batch([], _query()))
    with pytest.raises(ValueError):
        asyncio.run(orchestrator.run_batch(["P1", "P2", "P3"], _query(["P1", "P2", "P3"])))

    provider.run_report.assert_not_called()


def test_run_batch_cancellation_reports_outstanding_properties():
    """Verify setting the cancel signal finishes in-flight and queued units as cancelled."""
    release = threading.Event()

    def _blocking_report(property_id, body):
        release.wait(timeout=5)
        return _report("Ohio")

    provider = Mock()
    provider.run_report.side_effect = _blocking_report
    orchestrator = QueryOrchestrator(provider, max_concurrency=1)
    property_ids = ["P1", "P2", "P3"]

    async def _scenario():
        cancel_event = asyncio.Event()
        task = asyncio.create_task(orchestrator.run_batch(property_ids, _query(property_ids), cancel_event))
        await asyncio.sleep(0.05)
        cancel_event.set()
        try:
            return await asyncio.wait_for(task, timeout=2)
        finally:
            release.set()

    batch = asyncio.run(_scenario())

    assert batch.results == []
    assert sorted(error.property_id for error in batch.errors) == property_ids
    assert all(error.error_message == CANCELLED_MESSAGE for error in batch.errors)
    assert provider.run_report.call_count == 1


def test_run_batch_with_unset_cancel_event_completes_normally():
    """Verify passing a cancel signal that is never set does not change results."""
    provider = Mock()
    provider.run_report.return_value = _report("Ohio")
    orchestrator = QueryOrchestrator(provider)

    async def _scenario():
        return await orchestrator.run_batch(["P1", "P2"], _query(["P1", "P2"]), asyncio.Event())

    batch = asyncio.run(_scenario())

    assert len(batch.results) == 2
    assert batch.errors == []
