"""Splits oversized property lists into capped chunks run one after another."""

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional, Sequence

from .models import BatchResult, PropertyError, QuerySpec
from .orchestrator import QueryOrchestrator, describe_error

logger = logging.getLogger(__name__)


def chunk_identifiers(property_ids: Sequence[str], chunk_size: int) -> List[List[str]]:
    """Partition identifiers into consecutive chunks of at most ``chunk_size``.

    Input order is preserved within and across chunks.

    Raises:
        ValueError: If ``chunk_size`` is not positive.
    """
    if chunk_size < 1:
        raise ValueError("chunk_size must be at least 1.")
    return [list(property_ids[start:start + chunk_size]) for start in range(0, len(property_ids), chunk_size)]


class BatchSplitter:
    """Drives the orchestrator once per chunk, strictly sequentially."""

    def __init__(self, orchestrator: QueryOrchestrator, chunk_size: Optional[int] = None) -> None:
        self._orchestrator = orchestrator
        self._chunk_size = min(chunk_size or orchestrator.property_cap, orchestrator.property_cap)

    @property
    def chunk_size(self) -> int:
        return self._chunk_size

    async def execute(
        self,
        query: QuerySpec,
        property_ids: Optional[Sequence[str]] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> BatchResult:
        """Run every chunk and concatenate their results into one batch.

        A chunk that fails as a whole contributes one ``PropertyError`` per
        identifier in it; later chunks still run.

        Args:
            query: Validated request; its ``property_ids`` are used unless
                ``property_ids`` is given.
            property_ids: Optional explicit identifier list of any length.
            cancel_event: Forwarded to every chunk.
        """
        identifiers = list(property_ids if property_ids is not None else query.property_ids)
        combined = BatchResult()
        chunks = chunk_identifiers(identifiers, self._chunk_size)

        for chunk_index, chunk in enumerate(chunks, start=1):
            logger.info(
                "Running property chunk",
                extra={"chunk_index": chunk_index, "chunk_count": len(chunks), "chunk_size": len(chunk)},
            )
            try:
                chunk_result = await self._orchestrator.run_batch(chunk, query, cancel_event=cancel_event)
            except Exception as exc:
                logger.warning(
                    "Property chunk failed",
                    extra={"chunk_index": chunk_index, "error": describe_error(exc)},
                )
                chunk_result = BatchResult(
                    errors=[
                        PropertyError(property_id=property_id, error_message=describe_error(exc))
                        for property_id in chunk
                    ]
                )
            combined.extend(chunk_result)

        logger.info(
            "Completed all property chunks",
            extra={
                "chunk_count": len(chunks),
                "success_count": len(combined.results),
                "failure_count": len(combined.errors),
            },
        )
        return combined
