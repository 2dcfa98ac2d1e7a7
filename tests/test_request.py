"""Tests for inbound report request validation."""

import sys
from datetime import date
from pathlib import Path

import pytest

# Add src directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from ga_report.errors import RequestValidationError
from ga_report.request import DEFAULT_TOP_STATES_COUNT, parse_source_medium, validate_request


def _payload(**overrides) -> dict:
    payload = {
        "propertyIds": ["properties/111", "222"],
        "sourceMediumFilter": "client-command / email",
        "startDate": "2024-01-01",
        "endDate": "2024-01-31",
        "topStatesCount": 5,
    }
    payload.update(overrides)
    return payload


def test_validate_request_builds_query_spec():
    """Verify a well-formed request produces the expected immutable query."""
    query = validate_request(_payload())

    assert query.property_ids == ("properties/111", "222")
    assert query.source == "client-command"
    assert query.medium == "email"
    assert query.start_date == date(2024, 1, 1)
    assert query.end_date == date(2024, 1, 31)
    assert query.top_n == 5
    assert query.source_medium == "client-command / email"
    assert query.date_range_label == "2024-01-01 - 2024-01-31"


def test_validate_request_defaults_top_states_count():
    """Verify a missing topStatesCount falls back to the default."""
    payload = _payload()
    del payload["topStatesCount"]

    assert validate_request(payload).top_n == DEFAULT_TOP_STATES_COUNT


def test_validate_request_accepts_numeric_string_top_states_count():
    """Verify numeric strings are accepted for topStatesCount."""
    assert validate_request(_payload(topStatesCount="25")).top_n == 25


def test_validate_request_deduplicates_property_ids_in_order():
    """Verify duplicate ids, with or without prefix, are dropped keeping first occurrence."""
    query = validate_request(_payload(propertyIds=["111", "properties/111", "222", "111"]))

    assert query.property_ids == ("111", "222")


def test_validate_request_collects_every_error():
    """Verify all invalid fields are reported together."""
    with pytest.raises(RequestValidationError) as exc_info:
        validate_request(
            {
                "propertyIds": [],
                "sourceMediumFilter": "no-medium",
                "startDate": "2024/01/01",
                "endDate": "2024-02-30",
                "topStatesCount": 0,
            }
        )

    errors = exc_info.value.errors
    assert len(errors) == 5
    assert any("propertyIds" in error for error in errors)
    assert any("sourceMediumFilter" in error for error in errors)
    assert any("startDate" in error for error in errors)
    assert any("endDate" in error for error in errors)
    assert any("topStatesCount" in error for error in errors)


def test_validate_request_rejects_reversed_dates():
    """Verify a start date after the end date is rejected."""
    with pytest.raises(RequestValidationError, match="must not be after"):
        validate_request(_payload(startDate="2024-02-01", endDate="2024-01-01"))


def test_validate_request_rejects_too_many_properties():
    """Verify the per-request property limit is enforced after de-duplication."""
    with pytest.raises(RequestValidationError, match="more than 2 properties"):
        validate_request(_payload(propertyIds=["1", "2", "3"]), max_properties=2)


@pytest.mark.parametrize("value", [True, 101, "abc", 2.5])
def test_validate_request_rejects_invalid_top_states_count(value):
    """Verify non-integer or out-of-range topStatesCount values are rejected."""
    with pytest.raises(RequestValidationError, match="topStatesCount"):
        validate_request(_payload(topStatesCount=value))


def test_parse_source_medium_trims_parts():
    """Verify the filter is split on the slash and whitespace is trimmed."""
    assert parse_source_medium("  google /  cpc ") == ("google", "cpc")
    assert parse_source_medium("google") is None
    assert parse_source_medium("a / b / c") is None
    assert parse_source_medium(" / cpc") is None
    assert parse_source_medium("google / / cpc") is None


def test_validate_request_rejects_empty_filter_segment():
    """Verify a filter with an empty middle segment fails validation."""
    with pytest.raises(RequestValidationError, match="sourceMediumFilter"):
        validate_request(_payload(sourceMediumFilter="client-command / / email"))
