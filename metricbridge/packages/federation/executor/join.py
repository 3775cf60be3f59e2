from __future__ import annotations

import logging
from typing import Any, Mapping, Sequence

from metricbridge.packages.federation.errors import ValidationError
from metricbridge.packages.federation.table.columnar import ColumnarTable, TypedColumn

logger = logging.getLogger(__name__)

NULL_KEY = "NULL"
KEY_SEPARATOR = "|"


def hash_join(
    tables: Sequence[ColumnarTable],
    key_columns: Sequence[str],
    field_to_physical: Mapping[str, str] | None = None,
) -> ColumnarTable:
    """Inner equi-join of ``tables`` on ``key_columns``.

    ``tables[0]`` drives the join: output rows follow its row order and a driver
    row is emitted only when every other table has a row with the same key. Side
    tables contribute the first row found for a key and only columns whose name
    is not already in the output schema. A single input is returned unchanged.
    """
    if not tables:
        raise ValidationError("Join requires at least one table.")
    if len(tables) == 1:
        return tables[0]
    if not key_columns:
        raise ValidationError("Join of multiple tables requires at least one key column.")

    mapping = field_to_physical or {}
    physical_keys = [mapping.get(key, key) for key in key_columns]
    key_vectors = [_key_columns(table, index, physical_keys) for index, table in enumerate(tables)]

    side_maps: list[dict[str, int]] = []
    for table, columns in zip(tables[1:], key_vectors[1:]):
        index: dict[str, int] = {}
        for row in range(table.row_count):
            index.setdefault(_composite_key(columns, row), row)
        side_maps.append(index)

    driver = tables[0]
    driver_rows: list[int] = []
    side_rows: list[list[int]] = [[] for _ in side_maps]
    for row in range(driver.row_count):
        key = _composite_key(key_vectors[0], row)
        matches = [index.get(key) for index in side_maps]
        if any(match is None for match in matches):
            continue
        driver_rows.append(row)
        for position, match in enumerate(matches):
            side_rows[position].append(match)

    output: list[TypedColumn] = [column.take(driver_rows) for column in driver.columns]
    seen = {column.name for column in output}
    for table, rows in zip(tables[1:], side_rows):
        for column in table.columns:
            if column.name in seen:
                continue
            seen.add(column.name)
            output.append(column.take(rows))

    logger.debug(
        "Joined %d tables on %s: %d driver rows, %d output rows",
        len(tables),
        physical_keys,
        driver.row_count,
        len(driver_rows),
    )
    return ColumnarTable.from_columns(output, len(driver_rows))


def _key_columns(table: ColumnarTable, table_index: int, keys: Sequence[str]) -> list[TypedColumn]:
    columns = []
    for key in keys:
        column = table.get_column(key)
        if column is None:
            raise ValidationError(
                f"Join key column '{key}' not found in table at index {table_index}. "
                f"Available columns: {', '.join(table.column_names)}."
            )
        columns.append(column)
    return columns


def _composite_key(columns: Sequence[TypedColumn], row: int) -> str:
    return KEY_SEPARATOR.join(_key_part(column.get(row)) for column in columns)


def _key_part(value: Any) -> str:
    if value is None:
        return NULL_KEY
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)
