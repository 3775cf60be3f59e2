from metricbridge.packages.federation.planner.parser import compile_sql, parse_sql, split_conjunctive_predicates
from metricbridge.packages.federation.planner.planner import FederatedPlanner, PlanningOutput
from metricbridge.packages.federation.planner.pushdown import PredicatePushdownAnalyzer

__all__ = [
    "FederatedPlanner",
    "PlanningOutput",
    "PredicatePushdownAnalyzer",
    "compile_sql",
    "parse_sql",
    "split_conjunctive_predicates",
]
