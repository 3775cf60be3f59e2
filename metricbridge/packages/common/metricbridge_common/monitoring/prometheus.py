from __future__ import annotations

import threading
import time
from typing import Any

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from starlette.routing import Match

TABLE_CACHE_EVENTS = Counter(
    "metricbridge_table_cache_events_total",
    "Table cache events (hit, wait, miss, load, load_error, release)",
    ["cache", "event"],
)

SOURCE_FETCHES = Counter(
    "metricbridge_source_fetches_total",
    "Metric source reads by transport and outcome",
    ["transport", "outcome"],
)

QUERY_LATENCY = Histogram(
    "metricbridge_query_latency_seconds",
    "Federated query execution latency in seconds",
    ["table"],
)


def record_cache_event(cache_name: str, event: str) -> None:
    TABLE_CACHE_EVENTS.labels(cache_name, event).inc()


def record_fetch(transport: str, outcome: str) -> None:
    SOURCE_FETCHES.labels(transport, outcome).inc()


def observe_query_latency(table_name: str, seconds: float) -> None:
    QUERY_LATENCY.labels(table_name).observe(seconds)


class _RequestMetrics:
    """Request counter and latency histogram for one service, registered once per process."""

    _by_service: dict[str, "_RequestMetrics"] = {}
    _lock = threading.Lock()

    def __init__(self, service_name: str) -> None:
        self.requests = Counter(
            f"{service_name}_http_requests_total",
            "Total HTTP requests",
            ["method", "path", "status"],
        )
        self.latency = Histogram(
            f"{service_name}_http_request_latency_seconds",
            "HTTP request latency in seconds",
            ["method", "path"],
        )

    @classmethod
    def for_service(cls, service_name: str) -> "_RequestMetrics":
        with cls._lock:
            metrics = cls._by_service.get(service_name)
            if metrics is None:
                metrics = cls._by_service[service_name] = cls(service_name)
            return metrics

    def observe(self, method: str, path: str, status: int, seconds: float) -> None:
        self.requests.labels(method, path, str(status)).inc()
        self.latency.labels(method, path).observe(seconds)


_UNMATCHED_PATH = "<unmatched>"


def _route_template(request: Request) -> str:
    # label by the mounted route template so path parameters do not explode cardinality
    for route in request.app.routes:
        match, _ = route.matches(request.scope)
        if match == Match.FULL:
            return getattr(route, "path", _UNMATCHED_PATH)
    return _UNMATCHED_PATH


class PrometheusMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: Any, *, service_name: str) -> None:
        super().__init__(app)
        self._metrics = _RequestMetrics.for_service(service_name)

    async def dispatch(self, request: Request, call_next) -> Response:
        started = time.perf_counter()
        status = 500
        try:
            response = await call_next(request)
            status = response.status_code
            return response
        finally:
            self._metrics.observe(request.method, _route_template(request), status, time.perf_counter() - started)


def metrics_response() -> Response:
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
