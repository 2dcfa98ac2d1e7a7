"""Command-line argument parsing for the GA region report generator."""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import List, Optional, Sequence

from .request import DEFAULT_TOP_STATES_COUNT, MAX_TOP_STATES_COUNT


def _top_states(value: str) -> int:
    """Parse and validate the ``--top-states`` value.

    Raises:
        argparse.ArgumentTypeError: If value is not an integer in ``[1, 100]``.
    """
    try:
        parsed = int(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError("must be an integer") from exc

    if not 1 <= parsed <= MAX_TOP_STATES_COUNT:
        raise argparse.ArgumentTypeError(f"must be between 1 and {MAX_TOP_STATES_COUNT}")

    return parsed


def _positive_float(value: str) -> float:
    try:
        parsed = float(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError("must be a number") from exc

    if parsed <= 0:
        raise argparse.ArgumentTypeError("must be greater than 0")

    return parsed


def read_property_file(path: Path) -> List[str]:
    """Read one property identifier per line, skipping blanks and ``#`` comments."""
    identifiers = []
    for line in path.read_text(encoding="utf-8").splitlines():
        stripped = line.strip()
        if stripped and not stripped.startswith("#"):
            identifiers.append(stripped)
    return identifiers


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments for report generation.

    Returns:
        Parsed CLI arguments containing property ids, the source/medium filter,
        the date range, the top-N region count and output options. The report
        options are only required when ``--list-properties`` is not given.
    """
    parser = argparse.ArgumentParser(
        prog="ga-region-report",
        description=(
            "Generate a consolidated Google Analytics report (per-property totals, "
            "top regions and engagement benchmark) for a batch of properties."
        ),
    )

    parser.add_argument(
        "--property-id",
        dest="property_ids",
        action="append",
        default=[],
        help="GA4 property id, with or without the 'properties/' prefix (repeatable).",
    )
    parser.add_argument(
        "--property-file",
        type=Path,
        default=None,
        help="File with one property id per line.",
    )
    parser.add_argument(
        "--list-properties",
        action="store_true",
        help="List every accessible property (id, name, account) and exit.",
    )
    parser.add_argument(
        "--source-medium",
        help="Source / medium filter, e.g. 'client-command / email'.",
    )
    parser.add_argument("--start-date", help="Inclusive start date (YYYY-MM-DD).")
    parser.add_argument("--end-date", help="Inclusive end date (YYYY-MM-DD).")
    parser.add_argument(
        "--top-states",
        type=_top_states,
        default=DEFAULT_TOP_STATES_COUNT,
        help=f"Number of top regions per property (default: {DEFAULT_TOP_STATES_COUNT}).",
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Write the CSV report to this path instead of stdout.",
    )
    parser.add_argument(
        "--json",
        dest="json_output",
        type=Path,
        default=None,
        help="Also write the JSON response (results and errors) to this path.",
    )
    parser.add_argument(
        "--timeout",
        type=_positive_float,
        default=None,
        help="Cancel properties still outstanding after this many seconds.",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")

    args = parser.parse_args(argv)
    if not args.list_properties:
        missing = [
            option
            for option, value in (
                ("--source-medium", args.source_medium),
                ("--start-date", args.start_date),
                ("--end-date", args.end_date),
            )
            if value is None
        ]
        if missing:
            parser.error(f"the following arguments are required: {', '.join(missing)}")

    return args
