"""Inbound report request parsing and validation.

Every problem with a request is collected and raised as one
``RequestValidationError`` so that no provider call happens for a request
that is only partially valid.
"""

from __future__ import annotations

import logging
import re
from datetime import date
from typing import Any, List, Mapping, Optional, Tuple

from .config import DEFAULT_MAX_PROPERTIES_PER_REQUEST
from .errors import RequestValidationError
from .models import QuerySpec, strip_property_prefix

logger = logging.getLogger(__name__)

DEFAULT_TOP_STATES_COUNT = 10
MAX_TOP_STATES_COUNT = 100

_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def parse_source_medium(value: str) -> Optional[Tuple[str, str]]:
    """Split a ``"source / medium"`` filter into its two trimmed parts.

    Returns ``None`` unless the value has exactly two slash-separated parts,
    both non-empty. Empty segments count, so ``"a / / b"`` is rejected.
    """
    parts = [part.strip() for part in value.split("/")]
    if len(parts) != 2 or not all(parts):
        return None
    return parts[0], parts[1]


def _parse_date(field_name: str, value: Any, errors: List[str]) -> Optional[date]:
    if not isinstance(value, str) or not value.strip():
        errors.append(f"'{field_name}' is required (YYYY-MM-DD).")
        return None

    text = value.strip()
    if not _DATE_PATTERN.match(text):
        errors.append(f"'{field_name}' must use the YYYY-MM-DD format, got '{text}'.")
        return None

    try:
        return date.fromisoformat(text)
    except ValueError:
        errors.append(f"'{field_name}' is not a valid calendar date: '{text}'.")
        return None


def _parse_property_ids(value: Any, max_properties: int, errors: List[str]) -> Tuple[str, ...]:
    if not isinstance(value, (list, tuple)) or not value:
        errors.append("'propertyIds' must be a non-empty list of property identifiers.")
        return ()

    property_ids: List[str] = []
    seen = set()
    for item in value:
        if not isinstance(item, str) or not item.strip():
            errors.append("'propertyIds' entries must be non-empty strings.")
            continue

        property_id = item.strip()
        key = strip_property_prefix(property_id)
        if key in seen:
            logger.debug("Dropping duplicate property identifier", extra={"property_id": property_id})
            continue
        seen.add(key)
        property_ids.append(property_id)

    if len(property_ids) > max_properties:
        errors.append(
            f"Cannot query more than {max_properties} properties at once (got {len(property_ids)})."
        )

    return tuple(property_ids)


def _parse_top_n(value: Any, errors: List[str]) -> int:
    if value is None:
        return DEFAULT_TOP_STATES_COUNT

    if isinstance(value, bool):
        parsed = None
    elif isinstance(value, int):
        parsed = value
    elif isinstance(value, str) and value.strip().isdigit():
        parsed = int(value.strip())
    else:
        parsed = None

    if parsed is None or not 1 <= parsed <= MAX_TOP_STATES_COUNT:
        errors.append(
            f"'topStatesCount' must be an integer between 1 and {MAX_TOP_STATES_COUNT}, got {value!r}."
        )
        return DEFAULT_TOP_STATES_COUNT

    return parsed


def validate_request(
    payload: Mapping[str, Any],
    max_properties: int = DEFAULT_MAX_PROPERTIES_PER_REQUEST,
) -> QuerySpec:
    """Validate an inbound report request and build its ``QuerySpec``.

    Args:
        payload: Mapping with ``propertyIds``, ``sourceMediumFilter``,
            ``startDate``, ``endDate`` and optional ``topStatesCount``.
        max_properties: Largest accepted number of distinct property ids.

    Returns:
        The immutable ``QuerySpec`` for the request.

    Raises:
        RequestValidationError: With every problem found, when any field is invalid.
    """
    errors: List[str] = []

    property_ids = _parse_property_ids(payload.get("propertyIds"), max_properties, errors)

    source_medium = payload.get("sourceMediumFilter")
    parsed_filter: Optional[Tuple[str, str]] = None
    if not isinstance(source_medium, str) or not source_medium.strip():
        errors.append("'sourceMediumFilter' is required (\"source / medium\").")
    else:
        parsed_filter = parse_source_medium(source_medium)
        if parsed_filter is None:
            errors.append(
                f"'sourceMediumFilter' must look like \"source / medium\", got '{source_medium.strip()}'."
            )

    start_date = _parse_date("startDate", payload.get("startDate"), errors)
    end_date = _parse_date("endDate", payload.get("endDate"), errors)
    if start_date is not None and end_date is not None and start_date > end_date:
        errors.append(f"'startDate' ({start_date}) must not be after 'endDate' ({end_date}).")

    top_n = _parse_top_n(payload.get("topStatesCount"), errors)

    if errors or parsed_filter is None or start_date is None or end_date is None:
        logger.warning("Rejected report request", extra={"validation_errors": errors})
        raise RequestValidationError(errors)

    return QuerySpec(
        property_ids=property_ids,
        source=parsed_filter[0],
        medium=parsed_filter[1],
        start_date=start_date,
        end_date=end_date,
        top_n=top_n,
    )
