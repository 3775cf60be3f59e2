from __future__ import annotations

from pathlib import Path

import pytest

from metricbridge.packages.federation.errors import ValidationError
from metricbridge.packages.federation.models import Catalog, DataType, SourceKind
from metricbridge.packages.federation.registry import CatalogRegistry, load_catalog_file, load_catalog_yaml

CATALOG_YAML = """
tables:
  - name: Stocks
    primary_keys: [ticker]
    field_to_metric:
      ticker: stock_price
      price: stock_price
    field_to_physical:
      price: close
metrics:
  - name: stock_price
    source_kind: http_json
    source_locator: https://example.test/prices
    data_path: /data
    field_types:
      ticker: STRING
      close: DOUBLE
    column_alias:
      ticker: symbol
"""


def test_load_catalog_yaml() -> None:
    catalog = load_catalog_yaml(CATALOG_YAML)

    metric = catalog.metrics[0]
    assert metric.source_kind == SourceKind.HTTP_JSON
    assert list(metric.field_types) == ["ticker", "close"]
    assert metric.field_types["close"] == DataType.DOUBLE
    assert metric.source_column("ticker") == "symbol"
    assert catalog.tables[0].physical_name("price") == "close"


def test_registry_lookups() -> None:
    registry = CatalogRegistry(load_catalog_yaml(CATALOG_YAML))

    assert registry.get_table("stocks").name == "Stocks"
    assert registry.get_table("STOCKS") is registry.get_table("Stocks")
    assert registry.get_table("bonds") is None
    assert registry.get_metric("stock_price").data_path == "/data"
    assert registry.get_metric("STOCK_PRICE") is None
    assert registry.table_names() == ["Stocks"]
    assert registry.metric_names() == ["stock_price"]


def test_refresh_replaces_the_whole_catalog() -> None:
    registry = CatalogRegistry(load_catalog_yaml(CATALOG_YAML))

    registry.refresh(Catalog())

    assert registry.get_table("stocks") is None
    assert registry.get_metric("stock_price") is None
    assert registry.table_names() == []
    assert registry.metric_names() == []


def test_refresh_rejects_duplicates_and_keeps_previous_state() -> None:
    catalog = load_catalog_yaml(CATALOG_YAML)
    registry = CatalogRegistry(catalog)
    duplicated = Catalog(tables=catalog.tables * 2, metrics=catalog.metrics)

    with pytest.raises(ValidationError):
        registry.refresh(duplicated)

    assert registry.get_table("stocks") is not None


@pytest.mark.parametrize(
    "text",
    [
        "tables: [unclosed",
        "- just\n- a list\n",
        "tables:\n  - name: t\n    primary_keys: [id]\n    field_to_metric: {other: m}\n",
        "metrics:\n  - name: m\n    source_kind: ftp\n    source_locator: x\n    field_types: {a: STRING}\n",
        "metrics:\n  - name: m\n    source_kind: file_csv\n    source_locator: x\n    field_types: {}\n",
    ],
)
def test_invalid_catalogs_are_validation_errors(text: str) -> None:
    with pytest.raises(ValidationError):
        load_catalog_yaml(text)


def test_empty_document_is_empty_catalog() -> None:
    assert load_catalog_yaml("") == Catalog()


def test_load_catalog_file(tmp_path: Path) -> None:
    path = tmp_path / "catalog.yaml"
    path.write_text(CATALOG_YAML, encoding="utf-8")

    assert load_catalog_file(path).metrics[0].name == "stock_price"
    with pytest.raises(ValidationError):
        load_catalog_file(tmp_path / "missing.yaml")
