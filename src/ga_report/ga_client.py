"""Google Analytics REST API clients for report data retrieval."""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Dict, Iterable, List, Optional

import requests

from .config import Config
from .errors import ApiError, DataValidationError
from .models import (
    DimensionHeader,
    MetricHeader,
    PropertySummary,
    QuerySpec,
    RawReport,
    Row,
    strip_property_prefix,
)

logger = logging.getLogger(__name__)

DATA_API_BASE_URL = "https://analyticsdata.googleapis.com/v1beta"
ADMIN_API_BASE_URL = "https://analyticsadmin.googleapis.com/v1beta"

SOURCE_MEDIUM_DIMENSION = "firstUserSourceMedium"
REPORT_DIMENSIONS = ("region", SOURCE_MEDIUM_DIMENSION)
REPORT_METRICS = ("totalUsers", "newUsers", "activeUsers", "userEngagementDuration")
ORDER_BY_METRIC = "totalUsers"


def build_run_report_body(query: QuerySpec) -> Dict[str, Any]:
    """Build the fixed ``runReport`` body shared by every property of a query.

    The body requests region and first-user source/medium dimensions, the four
    user metrics, an exact match on ``"source / medium"``, descending order by
    total users and ``query.top_n`` as the row limit.
    """
    return {
        "dateRanges": [
            {
                "startDate": query.start_date.isoformat(),
                "endDate": query.end_date.isoformat(),
            }
        ],
        "dimensions": [{"name": name} for name in REPORT_DIMENSIONS],
        "metrics": [{"name": name} for name in REPORT_METRICS],
        "dimensionFilter": {
            "andGroup": {
                "expressions": [
                    _exact_filter(SOURCE_MEDIUM_DIMENSION, query.source_medium),
                ]
            }
        },
        "orderBys": [{"metric": {"metricName": ORDER_BY_METRIC}, "desc": True}],
        "limit": str(query.top_n),
    }


def _exact_filter(field_name: str, value: str) -> Dict[str, Any]:
    return {
        "filter": {
            "fieldName": field_name,
            "stringFilter": {"value": value, "matchType": "EXACT"},
        }
    }


def parse_run_report_response(property_id: str, payload: Dict[str, Any]) -> RawReport:
    """Convert a ``runReport`` JSON payload into a ``RawReport``.

    Raises:
        DataValidationError: If headers are missing names or a row is not
            aligned with the headers.
    """
    try:
        dimension_headers = tuple(
            DimensionHeader(name=str(item["name"])) for item in payload.get("dimensionHeaders") or []
        )
        metric_headers = tuple(
            MetricHeader(name=str(item["name"]), type=str(item.get("type") or "TYPE_INTEGER"))
            for item in payload.get("metricHeaders") or []
        )
    except (KeyError, TypeError) as exc:
        raise DataValidationError(
            f"Report headers are malformed for property {property_id}: {exc}"
        ) from exc

    rows: List[Row] = []
    for position, item in enumerate(payload.get("rows") or []):
        dimension_values = tuple(
            str((value or {}).get("value", "")) for value in item.get("dimensionValues") or []
        )
        metric_values = tuple(
            str((value or {}).get("value", "")) for value in item.get("metricValues") or []
        )
        if len(dimension_values) != len(dimension_headers) or len(metric_values) != len(metric_headers):
            raise DataValidationError(
                "Report row is not aligned with its headers: "
                f"property_id={property_id}, row={position}, "
                f"dimensions={len(dimension_values)}/{len(dimension_headers)}, "
                f"metrics={len(metric_values)}/{len(metric_headers)}"
            )
        rows.append(Row(dimension_values=dimension_values, metric_values=metric_values))

    try:
        row_count = int(payload.get("rowCount", len(rows)))
    except (TypeError, ValueError):
        row_count = len(rows)

    return RawReport(
        dimension_headers=dimension_headers,
        metric_headers=metric_headers,
        rows=tuple(rows),
        row_count=row_count,
    )


class _GoogleApiClient:
    """Shared request, authentication and retry handling for Google APIs."""

    _MAX_RETRIES = 5
    _MAX_BACKOFF_SECONDS = 30

    def __init__(
        self,
        token_provider: Callable[[], str],
        base_url: str,
        timeout_seconds: int = 30,
        session: Optional[requests.Session] = None,
        stop_event: Optional[threading.Event] = None,
    ) -> None:
        """Initialize an authenticated Google API client.

        Args:
            token_provider: Returns the caller's OAuth access token; called
                once per outbound request.
            base_url: API root without trailing slash.
            timeout_seconds: Per-request timeout in seconds.
            session: Optional pre-built session (mainly for tests).
            stop_event: Optional signal; once set, no further attempt is made
                and pending backoff waits end immediately.
        """
        self._token_provider = token_provider
        self._base_url = base_url.rstrip("/")
        self._timeout_seconds = timeout_seconds
        self._session = session or requests.Session()
        self._session.headers.update({"Accept": "application/json"})
        self._stop_event = stop_event

    def _build_url(self, path: str) -> str:
        """Build a fully qualified API URL from a path below the API root."""
        return f"{self._base_url}/{path.lstrip('/')}"

    def _auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self._token_provider()}"}

    def _extract_backoff_seconds(self, response: requests.Response, attempt: int) -> int:
        """Compute exponential backoff seconds, honoring Retry-After when available."""
        retry_after_header = response.headers.get("Retry-After")
        if retry_after_header:
            try:
                retry_after_seconds = int(retry_after_header)
                return min(self._MAX_BACKOFF_SECONDS, max(1, retry_after_seconds))
            except ValueError:
                pass

        return min(self._MAX_BACKOFF_SECONDS, 2 ** (attempt - 1))

    def _raise_if_stopped(self, method: str, url: str) -> None:
        if self._stop_event is not None and self._stop_event.is_set():
            raise ApiError(f"Google Analytics request cancelled: {method} {url}")

    def _backoff(self, seconds: int, method: str, url: str) -> None:
        """Sleep before the next attempt; a stop signal ends the wait early."""
        if self._stop_event is None:
            time.sleep(seconds)
            return
        if self._stop_event.wait(seconds):
            raise ApiError(f"Google Analytics request cancelled: {method} {url}")

    def _request_json(
        self,
        method: str,
        path: str,
        body: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Execute a request with retry logic for 429/5xx responses.

        Raises:
            ApiError: If the request repeatedly fails, returns HTTP >= 400,
                does not return a JSON object, or the stop signal is set.
        """
        url = self._build_url(path)
        last_error: Optional[Exception] = None

        for attempt in range(1, self._MAX_RETRIES + 1):
            self._raise_if_stopped(method, url)
            try:
                response = self._session.request(
                    method,
                    url,
                    params=params,
                    json=body,
                    headers=self._auth_headers(),
                    timeout=self._timeout_seconds,
                )
            except requests.RequestException as exc:
                last_error = exc
                if attempt == self._MAX_RETRIES:
                    raise ApiError(f"Google Analytics request failed after retries: {method} {url}") from exc
                backoff = min(self._MAX_BACKOFF_SECONDS, 2 ** (attempt - 1))
                logger.debug(
                    "Retrying after transport error",
                    extra={"url": url, "attempt": attempt, "backoff_seconds": backoff},
                )
                self._backoff(backoff, method, url)
                continue

            status_code = response.status_code
            is_retryable = status_code == 429 or 500 <= status_code <= 599

            if is_retryable and attempt < self._MAX_RETRIES:
                backoff = self._extract_backoff_seconds(response, attempt)
                logger.debug(
                    "Retrying after retryable status",
                    extra={"url": url, "status_code": status_code, "attempt": attempt, "backoff_seconds": backoff},
                )
                self._backoff(backoff, method, url)
                continue

            if status_code >= 400:
                raise ApiError(
                    "Google Analytics API request failed: "
                    f"{method} {url} returned {status_code} - {response.text}",
                    status_code=status_code,
                )

            try:
                payload = response.json()
            except ValueError as exc:
                raise ApiError(f"Google Analytics API returned invalid JSON: {method} {url}") from exc

            if not isinstance(payload, dict):
                raise ApiError(f"Google Analytics API returned unexpected payload shape: {method} {url}")

            return payload

        raise ApiError(f"Google Analytics request failed after retries: {method} {url}") from last_error


class AnalyticsDataClient(_GoogleApiClient):
    """Small, typed client for the GA4 Data API ``runReport`` method."""

    def __init__(
        self,
        config: Config,
        token_provider: Optional[Callable[[], str]] = None,
        session: Optional[requests.Session] = None,
        stop_event: Optional[threading.Event] = None,
    ) -> None:
        super().__init__(
            token_provider=token_provider or config.token_provider(),
            base_url=DATA_API_BASE_URL,
            timeout_seconds=config.timeout_seconds,
            session=session,
            stop_event=stop_event,
        )

    def run_report(self, property_id: str, body: Dict[str, Any]) -> RawReport:
        """Run a single-property report and return its headers and rows.

        Args:
            property_id: Property identifier, with or without ``properties/``.
            body: ``runReport`` request body, usually from :func:`build_run_report_body`.
        """
        numeric_id = strip_property_prefix(property_id)
        logger.debug("Sending runReport request", extra={"property_id": numeric_id, "body": body})

        payload = self._request_json("POST", f"properties/{numeric_id}:runReport", body=body)
        report = parse_run_report_response(property_id, payload)

        logger.info(
            "Received runReport response",
            extra={"property_id": numeric_id, "row_count": report.row_count, "rows_returned": len(report.rows)},
        )
        return report


class AnalyticsAdminClient(_GoogleApiClient):
    """Lists accessible GA4 properties and resolves their display names through the Admin API."""

    _NOT_FOUND_STATUSES = (403, 404)
    _ACCOUNT_SUMMARIES_PAGE_SIZE = 200

    def __init__(
        self,
        config: Config,
        token_provider: Optional[Callable[[], str]] = None,
        session: Optional[requests.Session] = None,
        stop_event: Optional[threading.Event] = None,
    ) -> None:
        super().__init__(
            token_provider=token_provider or config.token_provider(),
            base_url=ADMIN_API_BASE_URL,
            timeout_seconds=config.timeout_seconds,
            session=session,
            stop_event=stop_event,
        )

    def list_properties(self) -> List[PropertySummary]:
        """List every property the caller can access, across all accounts.

        Pages through ``accountSummaries`` until no ``nextPageToken`` is returned.

        Raises:
            ApiError: If a page cannot be fetched.
        """
        properties: List[PropertySummary] = []
        account_count = 0
        page_token: Optional[str] = None

        while True:
            params: Dict[str, Any] = {"pageSize": self._ACCOUNT_SUMMARIES_PAGE_SIZE}
            if page_token:
                params["pageToken"] = page_token

            payload = self._request_json("GET", "accountSummaries", params=params)

            for account in payload.get("accountSummaries") or []:
                account_count += 1
                for item in account.get("propertySummaries") or []:
                    property_name = item.get("property")
                    if not property_name:
                        continue
                    properties.append(
                        PropertySummary(
                            property_id=str(property_name),
                            display_name=str(item.get("displayName") or ""),
                            account=str(account.get("account") or ""),
                            account_display_name=str(account.get("displayName") or ""),
                        )
                    )

            page_token = payload.get("nextPageToken")
            if not page_token:
                break

        logger.info(
            "Listed accessible properties",
            extra={"property_count": len(properties), "account_count": account_count},
        )
        return properties

    def get_display_name(self, property_id: str) -> Optional[str]:
        """Return the display name of a property, or ``None`` when it is not visible."""
        numeric_id = strip_property_prefix(property_id)
        try:
            payload = self._request_json("GET", f"properties/{numeric_id}")
        except ApiError as exc:
            if exc.status_code in self._NOT_FOUND_STATUSES:
                return None
            raise

        display_name = payload.get("displayName")
        return str(display_name) if display_name else None

    def resolve_display_names(self, property_ids: Iterable[str]) -> Dict[str, str]:
        """Resolve display names for every property that can be looked up.

        Names come from one :meth:`list_properties` call; ids missing from the
        listing are looked up individually. Failures are logged and skipped;
        callers fall back to the raw id.
        """
        requested = list(property_ids)
        listed: Dict[str, str] = {}
        try:
            for summary in self.list_properties():
                if summary.display_name:
                    listed[strip_property_prefix(summary.property_id)] = summary.display_name
        except ApiError as exc:
            logger.warning("Could not list properties; resolving names one by one", extra={"error": str(exc)})

        names: Dict[str, str] = {}
        for property_id in requested:
            display_name = listed.get(strip_property_prefix(property_id))
            if display_name is None:
                try:
                    display_name = self.get_display_name(property_id)
                except ApiError as exc:
                    logger.warning(
                        "Could not resolve property display name",
                        extra={"property_id": property_id, "error": str(exc)},
                    )
                    continue

            if display_name:
                names[property_id] = display_name
            else:
                logger.warning("Property display name not found", extra={"property_id": property_id})

        return names
