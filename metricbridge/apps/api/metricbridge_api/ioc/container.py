from __future__ import annotations

from typing import Any

from dependency_injector import containers, providers

from metricbridge.packages.common.metricbridge_common.config import Settings, settings
from metricbridge.packages.federation.connectors import DataFetcher, build_loaders
from metricbridge.packages.federation.executor import MetricLoadScheduler, TableCache
from metricbridge.packages.federation.registry import CatalogRegistry
from metricbridge.packages.federation.service import FederatedQueryService


class Container(containers.DeclarativeContainer):
    """Application dependency injection container."""

    wiring_config = containers.WiringConfiguration()

    config = providers.Configuration()

    registry = providers.Singleton(CatalogRegistry)

    fetcher = providers.Singleton(
        DataFetcher,
        timeout_seconds=config.fetch.timeout_seconds,
    )

    loaders = providers.Singleton(build_loaders, fetcher=fetcher)

    metric_cache = providers.Singleton(
        TableCache,
        name="metric",
        max_entries=config.cache.metric_max_entries,
        ttl_seconds=config.cache.metric_ttl_seconds,
    )

    query_cache = providers.Singleton(
        TableCache,
        name="query",
        max_entries=config.cache.query_max_entries,
        ttl_seconds=config.cache.query_ttl_seconds,
    )

    scheduler = providers.Singleton(
        MetricLoadScheduler,
        max_workers=config.scheduler.max_workers,
    )

    query_service = providers.Singleton(
        FederatedQueryService,
        registry=registry,
        loaders=loaders,
        metric_cache=metric_cache,
        query_cache=query_cache,
        scheduler=scheduler,
        dialect=config.sql.dialect,
    )


def _build_config(settings_obj: Settings) -> dict[str, Any]:
    return {
        "catalog": {
            "path": settings_obj.CATALOG_PATH,
        },
        "sql": {
            "dialect": settings_obj.SQL_DIALECT,
        },
        "fetch": {
            "timeout_seconds": settings_obj.FETCH_TIMEOUT_SECONDS,
        },
        "cache": {
            "metric_max_entries": settings_obj.METRIC_CACHE_MAX_ENTRIES,
            "metric_ttl_seconds": settings_obj.METRIC_CACHE_TTL_SECONDS,
            "query_max_entries": settings_obj.QUERY_CACHE_MAX_ENTRIES,
            "query_ttl_seconds": settings_obj.QUERY_CACHE_TTL_SECONDS,
        },
        "scheduler": {
            "max_workers": settings_obj.METRIC_LOAD_WORKERS,
        },
        "result": {
            "batch_size": settings_obj.RESULT_BATCH_SIZE,
        },
    }


def build_container(settings_obj: Settings = settings) -> Container:
    """Build a Container with settings bound to configuration providers."""
    container = Container()
    container.config.from_dict(_build_config(settings_obj))
    return container
