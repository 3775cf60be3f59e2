from __future__ import annotations

import logging

from metricbridge.packages.federation.errors import ResourceNotFound, ValidationError
from metricbridge.packages.federation.models.catalog import MetricDescriptor
from metricbridge.packages.federation.models.plans import (
    MetricLoad,
    Operator,
    Predicate,
    ProjectedField,
    PushdownPlan,
    QueryPlan,
)
from metricbridge.packages.federation.registry import CatalogRegistry

logger = logging.getLogger(__name__)


class PredicatePushdownAnalyzer:
    """Splits query predicates into per-metric pushed filters and residual filters.

    Equality predicates are pushed to the metric owning the field; equality on a
    primary key is pushed to every loaded metric that carries the key column.
    Every other operator is applied to the joined table.
    """

    def __init__(self, *, registry: CatalogRegistry) -> None:
        self._registry = registry

    def analyze(self, plan: QueryPlan) -> PushdownPlan:
        table = plan.table
        order: list[str] = []
        metrics: dict[str, MetricDescriptor] = {}
        for field in plan.select_fields:
            self._include(order, metrics, plan.field_metric_map[field])
        for predicate in plan.predicates:
            column = table.physical_name(predicate.column)
            if predicate.column in table.primary_keys and any(column in metrics[name].field_types for name in order):
                continue
            self._include(order, metrics, self._owner(plan, predicate.column))

        key_columns = [table.physical_name(key) for key in table.primary_keys]
        if len(order) > 1:
            if not key_columns:
                raise ValidationError(
                    f"Table '{table.name}' has no primary keys; cannot join metrics {', '.join(order)}."
                )
            for name in order:
                missing = [column for column in key_columns if column not in metrics[name].field_types]
                if missing:
                    raise ValidationError(
                        f"Metric '{name}' lacks join key column(s) {', '.join(missing)} required by table '{table.name}'."
                    )

        pushed: dict[str, list[Predicate]] = {name: [] for name in order}
        residual: list[Predicate] = []
        for predicate in plan.predicates:
            column = table.physical_name(predicate.column)
            is_key = predicate.column in table.primary_keys
            if is_key:
                targets = [name for name in order if column in metrics[name].field_types]
                if not targets:
                    owner = self._owner(plan, predicate.column)
                    _require_column(metrics[owner], column, predicate.column)
            else:
                owner = self._owner(plan, predicate.column)
                _require_column(metrics[owner], column, predicate.column)
                targets = [owner]
            translated = predicate.with_column(column)
            if predicate.operator != Operator.EQ:
                if not is_key:
                    _require_visible(order, metrics, targets[0], column, key_columns)
                residual.append(translated)
                continue
            for name in targets:
                pushed[name].append(translated)

        projection = []
        for field in plan.select_fields:
            owner = plan.field_metric_map[field]
            column = table.physical_name(field)
            _require_column(metrics[owner], column, field)
            _require_visible(order, metrics, owner, column, key_columns)
            projection.append(ProjectedField(field=field, column=column))

        result = PushdownPlan(
            metric_loads=[MetricLoad(metric_name=name, pushed_predicates=pushed[name]) for name in order],
            join_keys=list(table.primary_keys) if len(order) > 1 else [],
            residual_predicates=residual,
            projection=projection,
        )
        logger.debug(
            "Pushdown for %s: metrics=%s pushed=%s residual=%s",
            table.name,
            order,
            {name: [p.cache_token() for p in items] for name, items in pushed.items()},
            [p.cache_token() for p in residual],
        )
        return result

    def _include(self, order: list[str], metrics: dict[str, MetricDescriptor], name: str) -> None:
        if name in metrics:
            return
        metric = self._registry.get_metric(name)
        if metric is None:
            raise ResourceNotFound(f"Metric '{name}' not found.")
        metrics[name] = metric
        order.append(name)

    @staticmethod
    def _owner(plan: QueryPlan, field: str) -> str:
        owner = plan.table.metric_for(field)
        if owner is None:
            raise ValidationError(f"Field '{field}' does not map to a metric in table '{plan.table.name}'.")
        return owner


def _require_column(metric: MetricDescriptor, column: str, field: str) -> None:
    if column not in metric.field_types:
        raise ValidationError(
            f"Field '{field}' maps to column '{column}', which metric '{metric.name}' does not declare."
        )


def _require_visible(
    order: list[str],
    metrics: dict[str, MetricDescriptor],
    owner: str,
    column: str,
    key_columns: list[str],
) -> None:
    # the joined table keeps the first metric's copy of a shared column name
    if column in key_columns:
        return
    first = next(name for name in order if column in metrics[name].field_types)
    if first != owner:
        raise ValidationError(
            f"Column '{column}' of metric '{owner}' is shadowed by metric '{first}' in the joined table."
        )
