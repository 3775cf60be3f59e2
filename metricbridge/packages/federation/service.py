from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass
from functools import partial
from typing import Iterator, Mapping, Sequence

from metricbridge.packages.common.metricbridge_common.monitoring import observe_query_latency
from metricbridge.packages.federation.connectors import MetricLoader
from metricbridge.packages.federation.errors import InternalError, ResourceNotFound, ValidationError
from metricbridge.packages.federation.executor import (
    CacheLease,
    MetricCacheKey,
    MetricLoadScheduler,
    MetricLoadTask,
    TableCache,
    apply_predicates,
    evaluate,
    hash_join,
)
from metricbridge.packages.federation.models import (
    Catalog,
    ExecutionSummary,
    FederatedExplainPlan,
    MetricDescriptor,
    MetricLoad,
    Predicate,
    QueryPlan,
    SourceKind,
)
from metricbridge.packages.federation.planner import FederatedPlanner
from metricbridge.packages.federation.registry import CatalogRegistry
from metricbridge.packages.federation.table import ColumnarTable

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class QueryExecution:
    table: ColumnarTable
    summary: ExecutionSummary


class FederatedQueryService:
    def __init__(
        self,
        *,
        registry: CatalogRegistry,
        loaders: Mapping[SourceKind, MetricLoader],
        metric_cache: TableCache,
        query_cache: TableCache,
        scheduler: MetricLoadScheduler,
        dialect: str | None = None,
    ) -> None:
        self._registry = registry
        self._loaders = dict(loaders)
        self._metric_cache = metric_cache
        self._query_cache = query_cache
        self._scheduler = scheduler
        self._planner = FederatedPlanner(registry=registry, dialect=dialect)

    @property
    def registry(self) -> CatalogRegistry:
        return self._registry

    def compile(self, sql: str) -> QueryPlan:
        return self._planner.compile(sql)

    def explain(self, sql: str) -> FederatedExplainPlan:
        planning = self._planner.plan_sql(sql)
        return FederatedExplainPlan(query_plan=planning.query_plan, pushdown_plan=planning.pushdown_plan)

    @contextmanager
    def query(self, sql: str) -> Iterator[ColumnarTable]:
        """Yield the result table for ``sql`` from the query cache, pinned for the block."""
        with self._query_cache.get_or_compute(sql, partial(self._execute_table, sql)) as table:
            yield table

    def lease_query(self, sql: str) -> CacheLease:
        return self._query_cache.acquire(sql, partial(self._execute_table, sql))

    def execute(self, sql: str) -> QueryExecution:
        """Run ``sql`` without the query cache. The caller owns the returned table."""
        started = time.perf_counter()
        planning = self._planner.plan_sql(sql)
        plan, pushdown = planning.query_plan, planning.pushdown_plan

        tasks = [
            MetricLoadTask(
                metric_name=load.metric_name,
                run=partial(self._acquire_load, load),
                pushed_predicates=len(load.pushed_predicates),
            )
            for load in pushdown.metric_loads
        ]
        loaded = self._scheduler.run(tasks)
        intermediates: list[ColumnarTable] = []
        try:
            sources = [lease.table for lease in loaded.leases]
            joined = hash_join(sources, pushdown.join_keys, plan.table.field_to_physical)
            intermediates.append(joined)
            filtered = apply_predicates(joined, pushdown.residual_predicates)
            intermediates.append(filtered)
            output = filtered.project(
                [item.column for item in pushdown.projection],
                [item.field for item in pushdown.projection],
            )
            joined_rows = joined.row_count
        finally:
            _release_intermediates(intermediates, sources=[lease.table for lease in loaded.leases])
            loaded.close()

        elapsed = time.perf_counter() - started
        summary = ExecutionSummary(
            sql=sql,
            table=plan.table.name,
            total_runtime_ms=int(elapsed * 1000),
            output_rows=output.row_count,
            joined_rows=joined_rows,
            metric_metrics=loaded.metrics,
        )
        observe_query_latency(plan.table.name, elapsed)
        logger.info(
            "Query on %s returned %d rows in %d ms (metrics: %s)",
            summary.table,
            summary.output_rows,
            summary.total_runtime_ms,
            ", ".join(
                f"{item.metric_name}={item.rows} rows/{item.runtime_ms} ms{' cached' if item.cached else ''}"
                for item in summary.metric_metrics
            ),
        )
        return QueryExecution(table=output, summary=summary)

    @contextmanager
    def metric_data(self, metric_name: str, filter_expression: str | None = None) -> Iterator[ColumnarTable]:
        """Yield a metric's table, filtered by ``filter_expression`` when given.

        An expression that cannot be applied is logged and the unfiltered table is
        yielded instead.
        """
        metric = self._require_metric(metric_name)
        with self._acquire_metric(metric, ()) as lease:
            table = lease.table
            try:
                result = evaluate(table, filter_expression)
            except ValidationError as exc:
                logger.warning(
                    "Filter %r on metric %s could not be applied, returning unfiltered data: %s",
                    filter_expression,
                    metric_name,
                    exc,
                )
                result = table
            try:
                yield result
            finally:
                if result is not table:
                    result.release()

    def refresh_catalog(self, catalog: Catalog) -> None:
        self._registry.refresh(catalog)
        self._metric_cache.clear()
        self._query_cache.clear()

    def close(self) -> None:
        self._scheduler.shutdown()
        self._query_cache.clear()
        self._metric_cache.clear()

    def _execute_table(self, sql: str) -> ColumnarTable:
        return self.execute(sql).table

    def _acquire_load(self, load: MetricLoad) -> CacheLease:
        return self._acquire_metric(self._require_metric(load.metric_name), load.pushed_predicates)

    def _acquire_metric(self, metric: MetricDescriptor, predicates: Sequence[Predicate]) -> CacheLease:
        loader = self._loaders.get(metric.source_kind)
        if loader is None:
            raise InternalError(f"No loader registered for source kind '{metric.source_kind.value}'.")
        key = MetricCacheKey.build(metric.name, predicates)
        return self._metric_cache.acquire(key, partial(loader.load_metric, metric, list(predicates)))

    def _require_metric(self, metric_name: str) -> MetricDescriptor:
        metric = self._registry.get_metric(metric_name)
        if metric is None:
            raise ResourceNotFound(f"Metric '{metric_name}' not found.")
        return metric


def _release_intermediates(tables: list[ColumnarTable], *, sources: list[ColumnarTable]) -> None:
    # join and filter return their input unchanged in the trivial cases
    released: list[ColumnarTable] = []
    for table in tables:
        if any(table is other for other in sources) or any(table is other for other in released):
            continue
        table.release()
        released.append(table)
