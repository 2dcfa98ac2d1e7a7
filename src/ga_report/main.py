"""Entry point for the GA region report generator."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
import threading
from typing import List, Optional, Sequence

from .cli import parse_args, read_property_file
from .config import load_config
from .csv_export import write_csv
from .errors import (
    ApiError,
    AuthenticationError,
    ConfigurationError,
    ReportGeneratorError,
    RequestValidationError,
)
from .ga_client import AnalyticsAdminClient, AnalyticsDataClient
from .models import PropertySummary, QuerySpec
from .report import generate_summary
from .service import ReportOutcome, ReportService

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_UNEXPECTED = 1
EXIT_INVALID_INPUT = 2
EXIT_AUTHENTICATION = 3
EXIT_API = 4
EXIT_ALL_FAILED = 5


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


async def _generate(
    service: ReportService,
    query: QuerySpec,
    timeout: Optional[float],
    stop_event: Optional[threading.Event] = None,
) -> ReportOutcome:
    """Run the report, raising both cancellation signals once ``timeout`` expires.

    ``stop_event`` is shared with the HTTP clients so retries and backoff waits
    still running in worker threads end as well.
    """
    cancel_event = asyncio.Event()
    task = asyncio.create_task(service.run(query, cancel_event=cancel_event))
    if timeout is None:
        return await task

    done, _ = await asyncio.wait({task}, timeout=timeout)
    if not done:
        logger.warning("Report timed out; cancelling outstanding properties", extra={"timeout": timeout})
        cancel_event.set()
        if stop_event is not None:
            stop_event.set()
    return await task


def _print_properties(properties: Sequence[PropertySummary]) -> None:
    for summary in properties:
        print(f"{summary.property_id}\t{summary.display_name}\t{summary.account_display_name}")
    print(f"{len(properties)} accessible properties.", file=sys.stderr)


def orchestrate_report_generation(argv: Optional[Sequence[str]] = None) -> int:
    """Run the CLI workflow and map failures to process exit codes."""
    try:
        args = parse_args(argv)
        _configure_logging(args.verbose)

        property_ids: List[str] = list(args.property_ids)
        if args.property_file is not None:
            property_ids.extend(read_property_file(args.property_file))

        config = load_config()
        stop_event = threading.Event()
        admin_client = AnalyticsAdminClient(config=config, stop_event=stop_event)
        if args.list_properties:
            _print_properties(admin_client.list_properties())
            return EXIT_OK

        data_client = AnalyticsDataClient(config=config, stop_event=stop_event)
        service = ReportService(config, data_client, admin_client.resolve_display_names)

        query = service.validate(
            {
                "propertyIds": property_ids,
                "sourceMediumFilter": args.source_medium,
                "startDate": args.start_date,
                "endDate": args.end_date,
                "topStatesCount": args.top_states,
            }
        )

        print(
            f"Fetching top {query.top_n} regions for {len(query.property_ids)} properties "
            f"({query.source_medium}, {query.date_range_label})...",
            file=sys.stderr,
        )
        outcome = asyncio.run(_generate(service, query, args.timeout, stop_event))

        if args.output is not None:
            write_csv(outcome.table, args.output)
            print(generate_summary(outcome.batch, outcome.names, query.date_range_label, query.property_ids))
        else:
            sys.stdout.write(outcome.csv_text)

        if args.json_output is not None:
            args.json_output.write_text(json.dumps(outcome.response(), indent=2), encoding="utf-8")

        for error in outcome.batch.errors:
            print(f"WARNING: {error.property_id}: {error.error_message}", file=sys.stderr)

        if not outcome.batch.results:
            print("ERROR: No property report could be generated.", file=sys.stderr)
            return EXIT_ALL_FAILED
        return EXIT_OK
    except (RequestValidationError, ConfigurationError) as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return EXIT_INVALID_INPUT
    except AuthenticationError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return EXIT_AUTHENTICATION
    except ApiError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return EXIT_API
    except ReportGeneratorError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return EXIT_UNEXPECTED
    except Exception as exc:
        logger.exception("Unexpected failure while generating report")
        print(f"ERROR: Unexpected failure: {exc}", file=sys.stderr)
        return EXIT_UNEXPECTED


def main() -> int:
    return orchestrate_report_generation()


if __name__ == "__main__":
    raise SystemExit(main())
