"""Flat-file rendering of assembled report tables."""

from __future__ import annotations

import csv
import io
import logging
from pathlib import Path
from typing import Union

from .models import ReportTable

logger = logging.getLogger(__name__)

NO_DATA = "No Data"
LINE_TERMINATOR = "\r\n"


def serialize_csv(table: ReportTable) -> str:
    """Render a report table as CSV text.

    Every field is double-quoted with interior quotes doubled, and every line
    ends with CRLF. A table without properties or columns still yields a
    header line plus one ``No Data`` line of the same width.
    """
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator=LINE_TERMINATOR)

    header = table.header
    writer.writerow(header)

    if table.property_count == 0 or not table.columns or not table.rows:
        logger.info("Writing placeholder CSV row", extra={"column_count": len(header)})
        writer.writerow([NO_DATA] * len(header))
        return buffer.getvalue()

    for row in table.rows:
        cells = [row.property_id, row.property_name, *row.cells]
        if len(cells) != len(header):
            logger.warning(
                "Padding CSV row to header width",
                extra={"property_id": row.property_id, "cells": len(cells), "columns": len(header)},
            )
            cells = (cells + [""] * len(header))[: len(header)]
        writer.writerow(cells)

    return buffer.getvalue()


def write_csv(table: ReportTable, path: Union[str, Path]) -> Path:
    """Serialize ``table`` and write it to ``path`` as UTF-8."""
    target = Path(path)
    with target.open("w", encoding="utf-8", newline="") as handle:
        handle.write(serialize_csv(table))
    logger.info("Wrote CSV report", extra={"path": str(target), "rows": len(table.rows)})
    return target
