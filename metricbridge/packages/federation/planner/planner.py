from __future__ import annotations

from dataclasses import dataclass

from metricbridge.packages.federation.models.plans import PushdownPlan, QueryPlan
from metricbridge.packages.federation.planner.parser import compile_sql
from metricbridge.packages.federation.planner.pushdown import PredicatePushdownAnalyzer
from metricbridge.packages.federation.registry import CatalogRegistry


@dataclass(slots=True)
class PlanningOutput:
    query_plan: QueryPlan
    pushdown_plan: PushdownPlan


class FederatedPlanner:
    def __init__(self, *, registry: CatalogRegistry, dialect: str | None = None) -> None:
        self._registry = registry
        self._dialect = dialect
        self._pushdown = PredicatePushdownAnalyzer(registry=registry)

    def compile(self, sql: str) -> QueryPlan:
        return compile_sql(sql, registry=self._registry, dialect=self._dialect)

    def plan_sql(self, sql: str) -> PlanningOutput:
        query_plan = self.compile(sql)
        return PlanningOutput(query_plan=query_plan, pushdown_plan=self._pushdown.analyze(query_plan))
