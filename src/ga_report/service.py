"""End-to-end report pipeline: validate, fetch, aggregate, assemble, serialize."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from .batching import BatchSplitter
from .config import Config
from .csv_export import serialize_csv
from .models import BatchResult, PropertyResult, QuerySpec, ReportTable
from .orchestrator import MetricsProvider, QueryOrchestrator
from .report import assemble_report, order_results
from .request import validate_request

logger = logging.getLogger(__name__)

NameResolver = Callable[[Iterable[str]], Dict[str, str]]


@dataclass(slots=True)
class ReportOutcome:
    """Everything produced for one request."""

    query: QuerySpec
    batch: BatchResult
    names: Dict[str, str]
    table: ReportTable
    csv_text: str

    def response(self) -> Dict[str, Any]:
        return build_response(self.batch, order=self.query.property_ids)


def _result_payload(result: PropertyResult) -> Dict[str, Any]:
    return {
        "propertyId": result.property_id,
        "dimensionHeaders": [{"name": header.name} for header in result.dimension_headers],
        "metricHeaders": [{"name": header.name, "type": header.type} for header in result.metric_headers],
        "rows": [
            {
                "dimensionValues": [{"value": value} for value in row.dimension_values],
                "metricValues": [{"value": value} for value in row.metric_values],
            }
            for row in result.rows
        ],
        "rowCount": result.row_count,
    }


def build_response(batch: BatchResult, order: Optional[Iterable[str]] = None) -> Dict[str, Any]:
    """Render a batch as the outbound ``{"results": [...], "errors": [...]}`` payload."""
    order_list = list(order) if order is not None else None
    rank = {property_id: position for position, property_id in enumerate(order_list or [])}
    errors = sorted(batch.errors, key=lambda error: rank.get(error.property_id, len(rank)))
    return {
        "results": [_result_payload(result) for result in order_results(batch.results, order_list)],
        "errors": [
            {"propertyId": error.property_id, "errorMessage": error.error_message} for error in errors
        ],
    }


class ReportService:
    """Wires the batch splitter, name resolution and report rendering together."""

    def __init__(
        self,
        config: Config,
        provider: MetricsProvider,
        name_resolver: Optional[NameResolver] = None,
    ) -> None:
        self._config = config
        orchestrator = QueryOrchestrator(
            provider,
            max_concurrency=config.max_concurrent_requests,
            benchmark_seconds=config.benchmark_seconds,
            property_cap=config.properties_per_chunk,
        )
        self._splitter = BatchSplitter(orchestrator)
        self._name_resolver = name_resolver

    def validate(self, payload: Mapping[str, Any]) -> QuerySpec:
        return validate_request(payload, max_properties=self._config.max_properties_per_request)

    async def run(self, query: QuerySpec, cancel_event: Optional[asyncio.Event] = None) -> ReportOutcome:
        """Run an already validated query through the whole pipeline."""
        batch = await self._splitter.execute(query, cancel_event=cancel_event)
        names = await self._resolve_names(batch)
        table = assemble_report(batch, names, query.date_range_label, order=query.property_ids)
        csv_text = serialize_csv(table)

        logger.info(
            "Report generated",
            extra={
                "requested": len(query.property_ids),
                "success_count": len(batch.results),
                "failure_count": len(batch.errors),
                "csv_rows": len(table.rows),
            },
        )
        return ReportOutcome(query=query, batch=batch, names=names, table=table, csv_text=csv_text)

    async def generate(
        self,
        payload: Mapping[str, Any],
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ReportOutcome:
        """Validate ``payload`` and run it; validation errors propagate before any fetch."""
        query = self.validate(payload)
        return await self.run(query, cancel_event=cancel_event)

    async def _resolve_names(self, batch: BatchResult) -> Dict[str, str]:
        if self._name_resolver is None or not batch.results:
            return {}

        property_ids: List[str] = [result.property_id for result in batch.results]
        try:
            return await asyncio.to_thread(self._name_resolver, property_ids)
        except Exception as exc:
            logger.warning("Property name resolution failed; using raw ids", extra={"error": str(exc)})
            return {}
