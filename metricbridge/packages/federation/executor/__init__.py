from metricbridge.packages.federation.executor.cache import CacheLease, CacheStats, MetricCacheKey, TableCache
from metricbridge.packages.federation.executor.filter import apply_predicates, evaluate, parse_filter_expression
from metricbridge.packages.federation.executor.join import hash_join
from metricbridge.packages.federation.executor.predicates import BoundPredicate, bind_predicate, compare
from metricbridge.packages.federation.executor.scheduler import (
    MetricLoadScheduler,
    MetricLoadTask,
    SchedulerResult,
)

__all__ = [
    "BoundPredicate",
    "CacheLease",
    "CacheStats",
    "MetricCacheKey",
    "MetricLoadScheduler",
    "MetricLoadTask",
    "SchedulerResult",
    "TableCache",
    "apply_predicates",
    "bind_predicate",
    "compare",
    "evaluate",
    "hash_join",
    "parse_filter_expression",
]
