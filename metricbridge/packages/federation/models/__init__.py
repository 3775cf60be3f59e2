from metricbridge.packages.federation.models.catalog import (
    Catalog,
    DataType,
    LogicalTableDefinition,
    MetricDescriptor,
    SourceKind,
)
from metricbridge.packages.federation.models.plans import (
    ExecutionSummary,
    FederatedExplainPlan,
    MetricLoad,
    MetricLoadMetrics,
    Operator,
    Predicate,
    ProjectedField,
    PushdownPlan,
    QueryPlan,
    Scalar,
)

__all__ = [
    "Catalog",
    "DataType",
    "ExecutionSummary",
    "FederatedExplainPlan",
    "LogicalTableDefinition",
    "MetricDescriptor",
    "MetricLoad",
    "MetricLoadMetrics",
    "Operator",
    "Predicate",
    "ProjectedField",
    "PushdownPlan",
    "QueryPlan",
    "Scalar",
    "SourceKind",
]
