from metricbridge.packages.federation.table.columnar import (
    ColumnSpec,
    ColumnarTable,
    TypedColumn,
    arrow_type,
    coerce_value,
    parse_string,
    parse_timestamp_ms,
)

__all__ = [
    "ColumnSpec",
    "ColumnarTable",
    "TypedColumn",
    "arrow_type",
    "coerce_value",
    "parse_string",
    "parse_timestamp_ms",
]
