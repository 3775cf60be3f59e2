from __future__ import annotations

import time
from enum import Enum
from typing import Union

from pydantic import BaseModel, ConfigDict, Field

from metricbridge.packages.federation.models.catalog import LogicalTableDefinition

Scalar = Union[str, int, float]


class Operator(str, Enum):
    EQ = "="
    NEQ = "!="
    GT = ">"
    GTE = ">="
    LT = "<"
    LTE = "<="
    IN = "IN"

    @property
    def is_ordering(self) -> bool:
        return self in (Operator.GT, Operator.GTE, Operator.LT, Operator.LTE)


class Predicate(BaseModel):
    model_config = ConfigDict(frozen=True)

    column: str
    operator: Operator
    value: Union[Scalar, tuple[Scalar, ...]]

    def with_column(self, column: str) -> "Predicate":
        return self.model_copy(update={"column": column})

    def cache_token(self) -> str:
        if isinstance(self.value, tuple):
            rendered = ",".join(str(item) for item in self.value)
            return f"{self.column}{self.operator.value}({rendered})"
        return f"{self.column}{self.operator.value}{self.value}"


class QueryPlan(BaseModel):
    sql: str
    table: LogicalTableDefinition
    select_fields: list[str]
    field_metric_map: dict[str, str]
    predicates: list[Predicate] = Field(default_factory=list)


class MetricLoad(BaseModel):
    metric_name: str
    pushed_predicates: list[Predicate] = Field(default_factory=list)


class ProjectedField(BaseModel):
    field: str
    column: str


class PushdownPlan(BaseModel):
    """Per-query execution layout derived from a QueryPlan.

    The first metric load is the join driver. Residual predicates and projected
    columns are expressed against metric column names of the joined table.
    """

    metric_loads: list[MetricLoad]
    join_keys: list[str] = Field(default_factory=list)
    residual_predicates: list[Predicate] = Field(default_factory=list)
    projection: list[ProjectedField]


class MetricLoadMetrics(BaseModel):
    metric_name: str
    rows: int
    runtime_ms: int
    cached: bool = False
    pushed_predicates: int = 0
    started_at: float = Field(default_factory=time.time)
    finished_at: float | None = None


class ExecutionSummary(BaseModel):
    sql: str
    table: str
    total_runtime_ms: int
    output_rows: int
    joined_rows: int
    metric_metrics: list[MetricLoadMetrics]


class FederatedExplainPlan(BaseModel):
    query_plan: QueryPlan
    pushdown_plan: PushdownPlan
