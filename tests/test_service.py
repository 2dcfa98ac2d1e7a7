"""End-to-end tests for the report pipeline with a mocked provider."""

import asyncio
import csv
import io
import sys
from pathlib import Path
from unittest.mock import Mock

import pytest
import requests

# Add src directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from ga_report.config import Config
from ga_report.errors import RequestValidationError
from ga_report.models import DimensionHeader, MetricHeader, RawReport, Row
from ga_report.orchestrator import CANCELLED_MESSAGE
from ga_report.service import ReportService

PAYLOAD = {
    "propertyIds": ["P1", "P2"],
    "sourceMediumFilter": "client-command / email",
    "startDate": "2024-01-01",
    "endDate": "2024-01-31",
    "topStatesCount": 2,
}


def _p1_report() -> RawReport:
    return RawReport(
        dimension_headers=(DimensionHeader("region"), DimensionHeader("firstUserSourceMedium")),
        metric_headers=(
            MetricHeader("totalUsers"),
            MetricHeader("newUsers"),
            MetricHeader("activeUsers"),
            MetricHeader("userEngagementDuration", "TYPE_SECONDS"),
        ),
        rows=(
            Row(("Ohio", "client-command / email"), ("60", "20", "50", "2000")),
            Row(("Texas", "client-command / email"), ("40", "10", "30", "600")),
        ),
        row_count=2,
    )


def _provider() -> Mock:
    def _run_report(property_id, body):
        if property_id == "P2":
            raise requests.ConnectionError("Connection reset by peer")
        return _p1_report()

    provider = Mock()
    provider.run_report.side_effect = _run_report
    return provider


def _service(provider, name_resolver=None, **config_overrides) -> ReportService:
    config = Config(access_token="token", **config_overrides)
    return ReportService(config, provider, name_resolver)


def test_generate_isolates_failed_property():
    """Verify one failing property is reported as an error while the other succeeds."""
    resolver = Mock(return_value={"P1": "Main Site"})
    outcome = asyncio.run(_service(_provider(), resolver).generate(PAYLOAD))

    response = outcome.response()
    assert [result["propertyId"] for result in response["results"]] == ["P1"]
    assert response["results"][0]["rowCount"] == 2
    assert response["results"][0]["rows"][0]["dimensionValues"] == [
        {"value": "Ohio"},
        {"value": "client-command / email"},
    ]
    assert response["errors"] == [{"propertyId": "P2", "errorMessage": "Connection reset by peer"}]
    resolver.assert_called_once_with(["P1"])


def test_generate_csv_contains_only_successful_property():
    """Verify the CSV holds the header, the P1 total row and its two region rows."""
    outcome = asyncio.run(_service(_provider(), Mock(return_value={"P1": "Main Site"})).generate(PAYLOAD))

    lines = list(csv.reader(io.StringIO(outcome.csv_text, newline="")))

    assert len(lines) == 4
    assert lines[0][:4] == ["Property ID", "Property Name", "Region", "Date Range"]
    assert lines[1][:3] == ["P1", "Main Site", "Total"]
    assert [line[2] for line in lines[2:]] == ["Ohio", "Texas"]
    assert all(line[0] != "P2" for line in lines[1:])
    assert lines[1][3] == "2024-01-01 - 2024-01-31"


def test_generate_rejects_invalid_request_before_any_provider_call():
    """Verify validation errors propagate and no provider call is made."""
    provider = _provider()

    with pytest.raises(RequestValidationError):
        asyncio.run(_service(provider).generate({**PAYLOAD, "startDate": "not-a-date"}))

    provider.run_report.assert_not_called()


def test_generate_falls_back_to_ids_when_name_resolution_fails():
    """Verify a failing name resolver does not fail the report."""
    resolver = Mock(side_effect=RuntimeError("admin api down"))

    outcome = asyncio.run(_service(_provider(), resolver).generate(PAYLOAD))

    assert outcome.names == {}
    assert outcome.table.rows[0].property_name == "P1"


def test_generate_splits_large_batches_into_chunks():
    """Verify property lists above the chunk size are processed in several chunks."""
    provider = Mock()
    provider.run_report.return_value = _p1_report()
    payload = {**PAYLOAD, "propertyIds": [f"P{i}" for i in range(1, 6)]}

    outcome = asyncio.run(_service(provider, properties_per_chunk=2).generate(payload))

    assert provider.run_report.call_count == 5
    assert len(outcome.batch.results) == 5
    assert [result["propertyId"] for result in outcome.response()["results"]] == [
        "P1",
        "P2",
        "P3",
        "P4",
        "P5",
    ]


def test_run_with_cancel_signal_already_set_reports_every_property_as_cancelled():
    """Verify a pre-set cancel signal yields one cancellation error per property."""
    provider = _provider()
    service = _service(provider)
    query = service.validate(PAYLOAD)

    async def _run():
        cancel_event = asyncio.Event()
        cancel_event.set()
        return await service.run(query, cancel_event=cancel_event)

    outcome = asyncio.run(_run())

    assert outcome.batch.results == []
    assert {error.error_message for error in outcome.batch.errors} == {CANCELLED_MESSAGE}
    assert outcome.csv_text.splitlines()[1].startswith('"No Data"')
    provider.run_report.assert_not_called()
