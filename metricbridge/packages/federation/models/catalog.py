from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field, model_validator


class DataType(str, Enum):
    STRING = "STRING"
    LONG = "LONG"
    DOUBLE = "DOUBLE"
    BOOLEAN = "BOOLEAN"
    TIMESTAMP = "TIMESTAMP"


class SourceKind(str, Enum):
    FILE_CSV = "file_csv"
    FILE_JSON = "file_json"
    HTTP_CSV = "http_csv"
    HTTP_JSON = "http_json"


class MetricDescriptor(BaseModel):
    """A named, independently fetchable dataset.

    ``field_types`` declares the metric's columns in order. ``column_alias`` maps a
    metric column to the column name used by the source payload when they differ.
    """

    name: str
    source_kind: SourceKind
    source_locator: str
    data_path: str = ""
    field_types: dict[str, DataType]
    column_alias: dict[str, str] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _validate_fields(self) -> "MetricDescriptor":
        if not self.field_types:
            raise ValueError(f"Metric '{self.name}' must declare at least one field.")
        unknown = [column for column in self.column_alias if column not in self.field_types]
        if unknown:
            raise ValueError(
                f"Metric '{self.name}' aliases undeclared fields: {', '.join(sorted(unknown))}."
            )
        return self

    def source_column(self, column: str) -> str:
        return self.column_alias.get(column, column)


class LogicalTableDefinition(BaseModel):
    name: str
    primary_keys: list[str] = Field(default_factory=list)
    field_to_metric: dict[str, str]
    field_to_physical: dict[str, str] = Field(default_factory=dict)
    field_types: dict[str, DataType] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _validate_keys(self) -> "LogicalTableDefinition":
        missing = [key for key in self.primary_keys if key not in self.field_to_metric]
        if missing:
            raise ValueError(
                f"Primary keys of table '{self.name}' are not mapped to a metric: {', '.join(missing)}."
            )
        return self

    @property
    def fields(self) -> list[str]:
        return list(self.field_to_metric.keys())

    def physical_name(self, field: str) -> str:
        return self.field_to_physical.get(field, field)

    def metric_for(self, field: str) -> str | None:
        return self.field_to_metric.get(field)


class Catalog(BaseModel):
    tables: list[LogicalTableDefinition] = Field(default_factory=list)
    metrics: list[MetricDescriptor] = Field(default_factory=list)
