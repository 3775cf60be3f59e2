from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Sequence

from metricbridge.packages.federation.connectors.fetcher import DataFetcher
from metricbridge.packages.federation.errors import ValidationError
from metricbridge.packages.federation.executor.predicates import BoundPredicate, bind_predicate
from metricbridge.packages.federation.models.catalog import DataType, MetricDescriptor
from metricbridge.packages.federation.models.plans import Operator, Predicate
from metricbridge.packages.federation.table.columnar import ColumnSpec, ColumnarTable, coerce_value

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SourceField:
    name: str
    data_type: DataType
    source_column: str


@dataclass(frozen=True, slots=True)
class RowMatcher:
    """A bound predicate evaluated against a raw source cell."""

    source_column: str
    predicate: BoundPredicate

    def matches(self, raw: Any) -> bool:
        return self.predicate.matches(coerce_value(self.predicate.data_type, raw))


@dataclass(frozen=True, slots=True)
class ParseRequest:
    locator: str
    fields: list[SourceField]
    matchers: list[RowMatcher]
    data_path: str = ""


PayloadParser = Callable[[bytes, ParseRequest], ColumnarTable]


@dataclass(frozen=True, slots=True)
class MetricLoader:
    """Fetch + parse for one payload format."""

    format: str
    fetcher: DataFetcher
    parser: PayloadParser

    def load(
        self,
        *,
        source_locator: str,
        field_types: Mapping[str, DataType],
        data_path: str = "",
        column_alias: Mapping[str, str] | None = None,
        predicates: Sequence[Predicate] = (),
    ) -> ColumnarTable:
        started = time.perf_counter()
        fields = source_fields(field_types, column_alias or {})
        matchers = row_matchers(fields, predicates)
        params = [
            (matcher.source_column, _param_value(predicate.value))
            for matcher, predicate in zip(matchers, predicates)
            if predicate.operator == Operator.EQ
        ]
        payload = self.fetcher.fetch(source_locator, params)
        request = ParseRequest(locator=source_locator, fields=fields, matchers=matchers, data_path=data_path)
        table = self.parser(payload, request)
        logger.info(
            "Loaded %d rows from %s source %s in %.1f ms",
            table.row_count,
            self.format,
            source_locator,
            (time.perf_counter() - started) * 1000,
        )
        return table

    def load_metric(self, metric: MetricDescriptor, predicates: Sequence[Predicate] = ()) -> ColumnarTable:
        return self.load(
            source_locator=metric.source_locator,
            field_types=metric.field_types,
            data_path=metric.data_path,
            column_alias=metric.column_alias,
            predicates=predicates,
        )


def source_fields(field_types: Mapping[str, DataType], column_alias: Mapping[str, str]) -> list[SourceField]:
    if not field_types:
        raise ValidationError("Field types cannot be empty.")
    return [
        SourceField(name=name, data_type=data_type, source_column=column_alias.get(name, name))
        for name, data_type in field_types.items()
    ]


def row_matchers(fields: Sequence[SourceField], predicates: Sequence[Predicate]) -> list[RowMatcher]:
    by_name = {field.name: field for field in fields}
    matchers = []
    for predicate in predicates:
        field = by_name.get(predicate.column)
        if field is None:
            raise ValidationError(
                f"Predicate column '{predicate.column}' is not a field of the metric. "
                f"Available fields: {', '.join(by_name)}."
            )
        matchers.append(RowMatcher(field.source_column, bind_predicate(predicate, field.data_type)))
    return matchers


def build_table(fields: Sequence[SourceField], rows: Sequence[Sequence[Any]]) -> ColumnarTable:
    """Allocate a table for ``fields`` and fill it with already coerced ``rows``."""
    table = ColumnarTable.create(ColumnSpec(field.name, field.data_type) for field in fields)
    table.set_row_count(len(rows))
    columns = table.columns
    for row_index, values in enumerate(rows):
        for column, value in zip(columns, values):
            if value is not None:
                column.set(row_index, value)
    return table


def _param_value(value: Any) -> str:
    return value if isinstance(value, str) else str(value)
