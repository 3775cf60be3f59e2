"""
Read-mostly registry of logical tables and metric descriptors, plus YAML catalog loading.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path

import yaml
from pydantic import ValidationError as PydanticValidationError
from yaml import YAMLError

from metricbridge.packages.federation.errors import ValidationError
from metricbridge.packages.federation.models.catalog import Catalog, LogicalTableDefinition, MetricDescriptor

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class _Snapshot:
    tables: dict[str, LogicalTableDefinition] = field(default_factory=dict)
    metrics: dict[str, MetricDescriptor] = field(default_factory=dict)


class CatalogRegistry:
    """Holds the current catalog. Refresh builds new maps and swaps them in whole; reads never lock."""

    def __init__(self, catalog: Catalog | None = None) -> None:
        self._write_lock = threading.Lock()
        self._snapshot = _Snapshot()
        if catalog is not None:
            self.refresh(catalog)

    def get_table(self, name: str) -> LogicalTableDefinition | None:
        return self._snapshot.tables.get(name.lower())

    def get_metric(self, name: str) -> MetricDescriptor | None:
        return self._snapshot.metrics.get(name)

    def table_names(self) -> list[str]:
        return [table.name for table in self._snapshot.tables.values()]

    def metric_names(self) -> list[str]:
        return list(self._snapshot.metrics.keys())

    def refresh(self, catalog: Catalog) -> None:
        tables: dict[str, LogicalTableDefinition] = {}
        for table in catalog.tables:
            key = table.name.lower()
            if key in tables:
                raise ValidationError(f"Duplicate table name '{table.name}' in catalog.")
            tables[key] = table
        metrics: dict[str, MetricDescriptor] = {}
        for metric in catalog.metrics:
            if metric.name in metrics:
                raise ValidationError(f"Duplicate metric name '{metric.name}' in catalog.")
            metrics[metric.name] = metric

        for table in tables.values():
            dangling = sorted({name for name in table.field_to_metric.values() if name not in metrics})
            if dangling:
                logger.warning("Table '%s' references unknown metrics: %s", table.name, ", ".join(dangling))

        with self._write_lock:
            self._snapshot = _Snapshot(tables=tables, metrics=metrics)
        logger.info("Catalog refreshed: %d tables, %d metrics", len(tables), len(metrics))


def load_catalog_yaml(yaml_text: str) -> Catalog:
    try:
        data = yaml.safe_load(yaml_text)
    except YAMLError as exc:
        raise ValidationError(f"Failed to parse catalog YAML: {exc}") from exc

    if data is None:
        return Catalog()
    if not isinstance(data, dict):
        raise ValidationError("Catalog YAML must parse to a mapping.")

    try:
        return Catalog.model_validate(data)
    except PydanticValidationError as exc:
        raise ValidationError(f"Catalog YAML failed validation: {exc}") from exc


def load_catalog_file(path: str | Path) -> Catalog:
    catalog_path = Path(path)
    try:
        text = catalog_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ValidationError(f"Cannot read catalog file '{catalog_path}': {exc}") from exc
    return load_catalog_yaml(text)


__all__ = ["CatalogRegistry", "load_catalog_file", "load_catalog_yaml"]
