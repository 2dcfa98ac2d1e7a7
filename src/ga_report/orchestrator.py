"""Bounded-concurrency fan-out of per-property report queries.

One unit of work is scheduled per property. Units share a fixed-size permit
pool, run the blocking provider call in a worker thread, derive metrics with
:mod:`ga_report.aggregation`, and record either a ``PropertyResult`` or a
``PropertyError``. A failing unit never affects its siblings.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Optional, Protocol, Sequence

from .aggregation import build_property_result
from .config import DEFAULT_BENCHMARK_SECONDS, DEFAULT_MAX_CONCURRENT_REQUESTS, PROVIDER_PROPERTY_CAP
from .ga_client import build_run_report_body
from .models import BatchResult, PropertyError, QuerySpec, RawReport

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Cancelled before completion"


class MetricsProvider(Protocol):
    """Anything that can run a single-property report."""

    def run_report(self, property_id: str, body: Dict[str, Any]) -> RawReport:
        ...


class _UnitCancelled(Exception):
    pass


def describe_error(exc: BaseException) -> str:
    """Human-readable failure reason for a ``PropertyError``."""
    message = str(exc).strip()
    return message or exc.__class__.__name__


class QueryOrchestrator:
    """Runs one batch of property queries under a shared concurrency bound."""

    def __init__(
        self,
        provider: MetricsProvider,
        max_concurrency: int = DEFAULT_MAX_CONCURRENT_REQUESTS,
        benchmark_seconds: float = DEFAULT_BENCHMARK_SECONDS,
        property_cap: int = PROVIDER_PROPERTY_CAP,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1.")
        if property_cap < 1:
            raise ValueError("property_cap must be at least 1.")

        self._provider = provider
        self._max_concurrency = max_concurrency
        self._benchmark_seconds = benchmark_seconds
        self._property_cap = property_cap

    @property
    def property_cap(self) -> int:
        return self._property_cap

    async def run_batch(
        self,
        property_ids: Sequence[str],
        query: QuerySpec,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> BatchResult:
        """Fetch and aggregate every property, returning successes and failures.

        Args:
            property_ids: Between 1 and ``property_cap`` identifiers.
            query: Filter, date range and top-N settings shared by all units.
            cancel_event: Optional signal; once set, units still waiting for a
                permit or for the provider finish as cancelled errors.

        Returns:
            ``BatchResult`` whose lists are in completion order.

        Raises:
            ValueError: If ``property_ids`` is empty or exceeds the cap.
        """
        if not property_ids:
            raise ValueError("At least one property identifier is required.")
        if len(property_ids) > self._property_cap:
            raise ValueError(
                f"A single batch accepts at most {self._property_cap} properties, got {len(property_ids)}."
            )

        body = build_run_report_body(query)
        semaphore = asyncio.Semaphore(self._max_concurrency)
        batch = BatchResult()

        logger.info(
            "Starting property batch",
            extra={"property_count": len(property_ids), "max_concurrency": self._max_concurrency},
        )

        # Threads are never joined here; in-flight calls may outlive a cancelled batch.
        executor = ThreadPoolExecutor(max_workers=self._max_concurrency, thread_name_prefix="ga-report")
        try:
            await asyncio.gather(
                *[
                    self._run_unit(property_id, body, semaphore, executor, batch, cancel_event)
                    for property_id in property_ids
                ]
            )
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        logger.info(
            "Completed property batch",
            extra={"success_count": len(batch.results), "failure_count": len(batch.errors)},
        )
        return batch

    async def _run_unit(
        self,
        property_id: str,
        body: Dict[str, Any],
        semaphore: asyncio.Semaphore,
        executor: ThreadPoolExecutor,
        batch: BatchResult,
        cancel_event: Optional[asyncio.Event],
    ) -> None:
        async with semaphore:
            if cancel_event is not None and cancel_event.is_set():
                self._record_cancelled(property_id, batch)
                return

            try:
                report = await self._fetch(property_id, body, executor, cancel_event)
                result = build_property_result(property_id, report, self._benchmark_seconds)
            except _UnitCancelled:
                self._record_cancelled(property_id, batch)
                return
            except Exception as exc:
                logger.warning(
                    "Property report failed",
                    extra={"property_id": property_id, "error": describe_error(exc)},
                    exc_info=logger.isEnabledFor(logging.DEBUG),
                )
                batch.errors.append(PropertyError(property_id=property_id, error_message=describe_error(exc)))
                return

            batch.results.append(result)

    async def _fetch(
        self,
        property_id: str,
        body: Dict[str, Any],
        executor: ThreadPoolExecutor,
        cancel_event: Optional[asyncio.Event],
    ) -> RawReport:
        loop = asyncio.get_running_loop()
        call = loop.run_in_executor(executor, functools.partial(self._provider.run_report, property_id, body))
        if cancel_event is None:
            return await call

        waiter = asyncio.ensure_future(cancel_event.wait())
        try:
            done, _ = await asyncio.wait({call, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not call.done():
                call.cancel()

        if call in done:
            return call.result()
        raise _UnitCancelled()

    @staticmethod
    def _record_cancelled(property_id: str, batch: BatchResult) -> None:
        logger.warning("Property report cancelled", extra={"property_id": property_id})
        batch.errors.append(PropertyError(property_id=property_id, error_message=CANCELLED_MESSAGE))
