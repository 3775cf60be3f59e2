from __future__ import annotations

import csv
import io
import logging

from metricbridge.packages.federation.connectors.base import ParseRequest, build_table
from metricbridge.packages.federation.errors import ParseError, ValidationError
from metricbridge.packages.federation.table.columnar import ColumnarTable, coerce_value

logger = logging.getLogger(__name__)


def parse_csv(payload: bytes, request: ParseRequest) -> ColumnarTable:
    """Parse a header-first CSV payload.

    Rows failing any predicate are dropped before the table is allocated. Blank
    cells and cells that do not parse as the field's type become null.
    """
    try:
        text = payload.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise ParseError(f"CSV payload is not valid UTF-8: {exc}", locator=request.locator) from exc

    reader = csv.reader(io.StringIO(text, newline=""))
    try:
        header = next(reader, None)
    except csv.Error as exc:
        raise ParseError(f"Malformed CSV header: {exc}", locator=request.locator, row=0) from exc
    if not header or not any(cell.strip() for cell in header):
        raise ParseError("CSV input is empty or missing headers", locator=request.locator)

    header_index: dict[str, int] = {}
    for position, name in enumerate(header):
        header_index.setdefault(name.strip(), position)

    field_positions = []
    for field in request.fields:
        position = header_index.get(field.source_column)
        if position is None:
            raise ValidationError(
                f"Required column '{field.source_column}' (mapped from field '{field.name}') not found in CSV. "
                f"Available columns: {', '.join(header_index)}"
            )
        field_positions.append(position)
    matcher_positions = [header_index[matcher.source_column] for matcher in request.matchers]

    rows = []
    scanned = 0
    try:
        for record in reader:
            if not record or (len(record) == 1 and not record[0].strip()):
                continue
            scanned += 1
            if not all(
                matcher.matches(_cell(record, position))
                for matcher, position in zip(request.matchers, matcher_positions)
            ):
                continue
            rows.append(
                [
                    coerce_value(field.data_type, _cell(record, position))
                    for field, position in zip(request.fields, field_positions)
                ]
            )
    except csv.Error as exc:
        raise ParseError(f"Malformed CSV record: {exc}", locator=request.locator, row=reader.line_num) from exc

    logger.debug("CSV source %s: kept %d of %d records", request.locator, len(rows), scanned)
    return build_table(request.fields, rows)


def _cell(record: list[str], position: int) -> str | None:
    if position >= len(record):
        return None
    value = record[position]
    return value if value.strip() else None
