from .prometheus import (
    PrometheusMiddleware,
    metrics_response,
    observe_query_latency,
    record_cache_event,
    record_fetch,
)

__all__ = [
    "PrometheusMiddleware",
    "metrics_response",
    "observe_query_latency",
    "record_cache_event",
    "record_fetch",
]
