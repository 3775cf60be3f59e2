from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, Iterator, Mapping, Sequence

import pyarrow as pa

from metricbridge.packages.federation.errors import ColumnTypeError, InternalError
from metricbridge.packages.federation.models.catalog import DataType

logger = logging.getLogger(__name__)

_TRUE_TOKENS = {"true", "t", "1", "yes", "y"}
_FALSE_TOKENS = {"false", "f", "0", "no", "n"}

INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1

_ARROW_TYPES: dict[DataType, pa.DataType] = {
    DataType.STRING: pa.string(),
    DataType.LONG: pa.int64(),
    DataType.DOUBLE: pa.float64(),
    DataType.BOOLEAN: pa.bool_(),
    DataType.TIMESTAMP: pa.timestamp("ms", tz="UTC"),
}


def fits_int64(value: int) -> bool:
    return INT64_MIN <= value <= INT64_MAX


def _int64_or_none(value: int) -> int | None:
    return value if fits_int64(value) else None


def _finite_or_none(value: float) -> float | None:
    return value if math.isfinite(value) else None


def arrow_type(data_type: DataType) -> pa.DataType:
    return _ARROW_TYPES[data_type]


def data_type_for_arrow(arrow: pa.DataType) -> DataType:
    if pa.types.is_string(arrow) or pa.types.is_large_string(arrow):
        return DataType.STRING
    if pa.types.is_integer(arrow):
        return DataType.LONG
    if pa.types.is_floating(arrow):
        return DataType.DOUBLE
    if pa.types.is_boolean(arrow):
        return DataType.BOOLEAN
    if pa.types.is_timestamp(arrow):
        return DataType.TIMESTAMP
    raise InternalError(f"Unsupported arrow type '{arrow}'.")


def parse_timestamp_ms(text: str) -> int | None:
    """Parse epoch milliseconds or an ISO-8601 timestamp. Naive values are treated as UTC."""
    token = text.strip()
    if not token:
        return None
    try:
        return _int64_or_none(int(token))
    except ValueError:
        pass
    if token.endswith(("Z", "z")):
        token = token[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(token)
    except ValueError:
        return None
    return _datetime_ms(parsed)


def parse_string(data_type: DataType, text: str) -> Any:
    """Lenient string conversion. Returns None when the text does not parse."""
    if data_type == DataType.STRING:
        return text
    token = text.strip()
    if not token:
        return None
    if data_type == DataType.LONG:
        try:
            return _int64_or_none(int(token))
        except ValueError:
            return None
    if data_type == DataType.DOUBLE:
        try:
            return _finite_or_none(float(token))
        except ValueError:
            return None
    if data_type == DataType.BOOLEAN:
        lowered = token.lower()
        if lowered in _TRUE_TOKENS:
            return True
        if lowered in _FALSE_TOKENS:
            return False
        return None
    return parse_timestamp_ms(token)


def coerce_value(data_type: DataType, raw: Any) -> Any:
    """Best-effort conversion of a decoded source value. Never raises."""
    if raw is None:
        return None
    if isinstance(raw, str):
        return parse_string(data_type, raw)
    if data_type == DataType.STRING:
        if isinstance(raw, (dict, list)):
            return None
        if isinstance(raw, bool):
            return "true" if raw else "false"
        return str(raw)
    if data_type == DataType.BOOLEAN:
        return raw if isinstance(raw, bool) else None
    if isinstance(raw, bool):
        return None
    if data_type == DataType.DOUBLE:
        if not isinstance(raw, (int, float)):
            return None
        try:
            return _finite_or_none(float(raw))
        except OverflowError:
            return None
    if data_type == DataType.TIMESTAMP and isinstance(raw, datetime):
        return _datetime_or_none(raw)
    if isinstance(raw, int):
        return _int64_or_none(raw)
    if isinstance(raw, float) and raw.is_integer():
        return _int64_or_none(int(raw))
    return None


def _datetime_ms(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp() * 1000)


def _datetime_or_none(value: datetime) -> int | None:
    try:
        return _int64_or_none(_datetime_ms(value))
    except (OverflowError, ValueError, OSError):
        return None


@dataclass(frozen=True, slots=True)
class ColumnSpec:
    name: str
    data_type: DataType
    nullable: bool = True

    def arrow_field(self) -> pa.Field:
        return pa.field(self.name, arrow_type(self.data_type), nullable=self.nullable)


class TypedColumn:
    """A typed value buffer with per-row null presence."""

    def __init__(self, spec: ColumnSpec, size: int = 0) -> None:
        self._spec = spec
        self._values: list[Any] = [None] * size

    @property
    def spec(self) -> ColumnSpec:
        return self._spec

    @property
    def name(self) -> str:
        return self._spec.name

    @property
    def data_type(self) -> DataType:
        return self._spec.data_type

    def __len__(self) -> int:
        return len(self._values)

    def get(self, row: int) -> Any:
        return self._values[row]

    def is_null(self, row: int) -> bool:
        return self._values[row] is None

    def set_null(self, row: int) -> None:
        self._store(row, None)

    def set(self, row: int, value: Any) -> None:
        if value is None:
            self._store(row, None)
            return
        if isinstance(value, str) and self.data_type != DataType.STRING:
            self._store(row, parse_string(self.data_type, value))
            return
        self._store(row, self._native(value))

    def set_string(self, row: int, value: str) -> None:
        self._expect(DataType.STRING)
        self._store(row, value)

    def set_long(self, row: int, value: int) -> None:
        self._expect(DataType.LONG)
        self._store(row, self._checked_int64(int(value)))

    def set_double(self, row: int, value: float) -> None:
        self._expect(DataType.DOUBLE)
        self._store(row, _finite_or_none(float(value)))

    def set_boolean(self, row: int, value: bool) -> None:
        self._expect(DataType.BOOLEAN)
        self._store(row, bool(value))

    def set_timestamp(self, row: int, epoch_ms: int) -> None:
        self._expect(DataType.TIMESTAMP)
        self._store(row, self._checked_int64(int(epoch_ms)))

    def resize(self, size: int) -> None:
        current = len(self._values)
        if size < current:
            del self._values[size:]
        elif size > current:
            self._values.extend([None] * (size - current))

    def take(self, indices: Sequence[int], *, name: str | None = None) -> "TypedColumn":
        spec = self._spec if name is None else ColumnSpec(name, self.data_type, self._spec.nullable)
        column = TypedColumn(spec)
        column._values = [self._values[index] for index in indices]
        return column

    def copy(self, *, name: str | None = None) -> "TypedColumn":
        return self.take(range(len(self._values)), name=name)

    def to_pylist(self) -> list[Any]:
        return list(self._values)

    def to_arrow(self, start: int = 0, stop: int | None = None) -> pa.Array:
        values = self._values if start == 0 and stop is None else self._values[start:stop]
        return pa.array(values, type=arrow_type(self.data_type))

    @classmethod
    def from_arrow(cls, spec: ColumnSpec, array: pa.Array | pa.ChunkedArray) -> "TypedColumn":
        if spec.data_type == DataType.TIMESTAMP:
            array = array.cast(pa.timestamp("ms", tz="UTC"), safe=False).cast(pa.int64())
        elif spec.data_type == DataType.LONG:
            array = array.cast(pa.int64())
        elif spec.data_type == DataType.DOUBLE:
            array = array.cast(pa.float64())
        column = cls(spec)
        values = array.to_pylist()
        if spec.data_type == DataType.DOUBLE:
            values = [None if value is None else _finite_or_none(value) for value in values]
        column._values = values
        return column

    def release(self) -> None:
        self._values = []

    def _store(self, row: int, value: Any) -> None:
        if row >= len(self._values):
            self.resize(row + 1)
        self._values[row] = value

    def _expect(self, data_type: DataType) -> None:
        if self.data_type != data_type:
            raise ColumnTypeError(
                f"Column '{self.name}' is {self.data_type.value}, cannot write a {data_type.value} value."
            )

    def _checked_int64(self, value: int) -> int:
        if not fits_int64(value):
            raise ColumnTypeError(f"Column '{self.name}' holds 64-bit integers, {value} is out of range.")
        return value

    def _native(self, value: Any) -> Any:
        data_type = self.data_type
        if data_type == DataType.STRING and isinstance(value, str):
            return value
        if data_type == DataType.BOOLEAN and isinstance(value, bool):
            return value
        if not isinstance(value, bool):
            if data_type == DataType.LONG and isinstance(value, int):
                return self._checked_int64(value)
            if data_type == DataType.DOUBLE and isinstance(value, (int, float)):
                return _finite_or_none(float(value))
            if data_type == DataType.TIMESTAMP:
                if isinstance(value, int):
                    return self._checked_int64(value)
                if isinstance(value, datetime):
                    return self._checked_int64(_datetime_ms(value))
        raise ColumnTypeError(
            f"Column '{self.name}' is {data_type.value}, cannot write {type(value).__name__} value {value!r}."
        )


class ColumnarTable:
    """Schema-carrying in-memory table that exclusively owns its column buffers.

    Derived tables (take, project, joins and filters) always get freshly
    allocated columns. ``release`` drops every buffer and may be called any
    number of times; reading a released table raises ``InternalError``.
    """

    def __init__(self, schema: Sequence[ColumnSpec], columns: Mapping[str, TypedColumn], row_count: int = 0) -> None:
        self._schema = tuple(schema)
        self._columns = dict(columns)
        self._row_count = row_count
        self._released = False

    @classmethod
    def create(cls, schema: Iterable[ColumnSpec]) -> "ColumnarTable":
        specs = list(schema)
        _require_unique(specs)
        return cls(specs, {spec.name: TypedColumn(spec) for spec in specs})

    @classmethod
    def from_columns(cls, columns: Sequence[TypedColumn], row_count: int) -> "ColumnarTable":
        _require_unique([column.spec for column in columns])
        for column in columns:
            if len(column) != row_count:
                raise InternalError(
                    f"Column '{column.name}' has {len(column)} values, expected {row_count}."
                )
        return cls([column.spec for column in columns], {column.name: column for column in columns}, row_count)

    @classmethod
    def from_arrow(cls, table: pa.Table) -> "ColumnarTable":
        columns = []
        for field in table.schema:
            spec = ColumnSpec(field.name, data_type_for_arrow(field.type), field.nullable)
            columns.append(TypedColumn.from_arrow(spec, table.column(field.name)))
        return cls.from_columns(columns, table.num_rows)

    @classmethod
    def from_pydict(cls, schema: Sequence[ColumnSpec], data: Mapping[str, Sequence[Any]]) -> "ColumnarTable":
        table = cls.create(schema)
        lengths = {len(values) for values in data.values()}
        if len(lengths) > 1:
            raise InternalError("Column value lists have different lengths.")
        table.set_row_count(lengths.pop() if lengths else 0)
        for spec in schema:
            column = table._columns[spec.name]
            for row, value in enumerate(data.get(spec.name, ())):
                column.set(row, value)
        return table

    @property
    def schema(self) -> tuple[ColumnSpec, ...]:
        return self._schema

    @property
    def column_names(self) -> list[str]:
        return [spec.name for spec in self._schema]

    @property
    def columns(self) -> list[TypedColumn]:
        self._require_live()
        return [self._columns[spec.name] for spec in self._schema]

    @property
    def row_count(self) -> int:
        return self._row_count

    @property
    def released(self) -> bool:
        return self._released

    def get_column(self, name: str) -> TypedColumn | None:
        self._require_live()
        return self._columns.get(name)

    def has_column(self, name: str) -> bool:
        return name in self._columns

    def set_row_count(self, row_count: int) -> None:
        if row_count < 0:
            raise InternalError("Row count cannot be negative.")
        for column in self._columns.values():
            column.resize(row_count)
        self._row_count = row_count

    def take(self, indices: Sequence[int]) -> "ColumnarTable":
        self._require_live()
        columns = [column.take(indices) for column in self.columns]
        return ColumnarTable.from_columns(columns, len(indices))

    def project(self, names: Sequence[str], aliases: Sequence[str] | None = None) -> "ColumnarTable":
        """Copy ``names`` into a new table, optionally renaming them positionally."""
        self._require_live()
        targets = list(aliases) if aliases is not None else list(names)
        if len(targets) != len(names):
            raise InternalError("Projection aliases must match the projected columns.")
        columns = []
        for name, target in zip(names, targets):
            column = self._columns.get(name)
            if column is None:
                raise InternalError(f"Column '{name}' is not present in table.")
            columns.append(column.copy(name=target))
        return ColumnarTable.from_columns(columns, self._row_count)

    def row(self, index: int) -> dict[str, Any]:
        self._require_live()
        return {spec.name: self._columns[spec.name].get(index) for spec in self._schema}

    def to_pylist(self) -> list[dict[str, Any]]:
        self._require_live()
        return [self.row(index) for index in range(self._row_count)]

    def arrow_schema(self) -> pa.Schema:
        return pa.schema([spec.arrow_field() for spec in self._schema])

    def to_arrow(self) -> pa.Table:
        self._require_live()
        arrays = [self._columns[spec.name].to_arrow() for spec in self._schema]
        return pa.Table.from_arrays(arrays, schema=self.arrow_schema())

    def iter_batches(self, batch_size: int) -> Iterator[pa.RecordBatch]:
        self._require_live()
        if batch_size <= 0:
            raise InternalError("Batch size must be positive.")
        schema = self.arrow_schema()
        for start in range(0, self._row_count, batch_size):
            stop = min(start + batch_size, self._row_count)
            arrays = [self._columns[spec.name].to_arrow(start, stop) for spec in self._schema]
            yield pa.RecordBatch.from_arrays(arrays, schema=schema)

    def release(self) -> None:
        if self._released:
            return
        for column in self._columns.values():
            column.release()
        self._columns = {}
        self._row_count = 0
        self._released = True
        logger.debug("Released table with columns %s", [spec.name for spec in self._schema])

    def _require_live(self) -> None:
        if self._released:
            raise InternalError("Columnar table has been released and can no longer be read.")

    def __enter__(self) -> "ColumnarTable":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    def __repr__(self) -> str:
        columns = ", ".join(f"{spec.name}:{spec.data_type.value}" for spec in self._schema)
        state = "released" if self._released else f"rows={self._row_count}"
        return f"ColumnarTable({columns}; {state})"


def _require_unique(specs: Sequence[ColumnSpec]) -> None:
    seen: set[str] = set()
    for spec in specs:
        if spec.name in seen:
            raise InternalError(f"Duplicate column '{spec.name}' in table schema.")
        seen.add(spec.name)
