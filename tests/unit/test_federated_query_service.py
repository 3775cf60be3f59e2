from __future__ import annotations

from pathlib import Path

import httpx
import pytest

from metricbridge.packages.federation.connectors import DataFetcher, build_loaders
from metricbridge.packages.federation.errors import FetchError, ResourceNotFound, ValidationError
from metricbridge.packages.federation.executor import MetricLoadScheduler, TableCache
from metricbridge.packages.federation.models import (
    Catalog,
    DataType,
    LogicalTableDefinition,
    MetricDescriptor,
    SourceKind,
)
from metricbridge.packages.federation.registry import CatalogRegistry
from metricbridge.packages.federation.service import FederatedQueryService


def _service(catalog: Catalog, fetcher: DataFetcher | None = None) -> FederatedQueryService:
    return FederatedQueryService(
        registry=CatalogRegistry(catalog),
        loaders=build_loaders(fetcher or DataFetcher()),
        metric_cache=TableCache(name="metric"),
        query_cache=TableCache(name="query"),
        scheduler=MetricLoadScheduler(max_workers=4),
    )


def _stock_catalog(tmp_path: Path) -> Catalog:
    prices = tmp_path / "prices.csv"
    prices.write_text(
        "ticker,timestamp,close\n"
        "AAPL,2024-01-02T00:00:00Z,189.5\n"
        "MSFT,2024-01-02T00:00:00Z,411.0\n"
        "AAPL,2024-01-03T00:00:00Z,191.0\n",
        encoding="utf-8",
    )
    volumes = tmp_path / "volumes.json"
    volumes.write_text(
        '{"rows": ['
        '{"sym": "AAPL", "timestamp": "2024-01-02T00:00:00Z", "volume": 5000},'
        '{"sym": "GOOG", "timestamp": "2024-01-02T00:00:00Z", "volume": 7000},'
        '{"sym": "AAPL", "timestamp": "2024-01-03T00:00:00Z", "volume": 6500}'
        "]}",
        encoding="utf-8",
    )
    return Catalog(
        tables=[
            LogicalTableDefinition(
                name="stocks",
                primary_keys=["ticker", "timestamp"],
                field_to_metric={
                    "ticker": "stock_price",
                    "timestamp": "stock_price",
                    "price": "stock_price",
                    "volume": "stock_volume",
                },
                field_to_physical={"price": "close"},
            )
        ],
        metrics=[
            MetricDescriptor(
                name="stock_price",
                source_kind=SourceKind.FILE_CSV,
                source_locator=str(prices),
                field_types={"ticker": DataType.STRING, "timestamp": DataType.TIMESTAMP, "close": DataType.DOUBLE},
            ),
            MetricDescriptor(
                name="stock_volume",
                source_kind=SourceKind.FILE_JSON,
                source_locator=str(volumes),
                data_path="/rows",
                field_types={"ticker": DataType.STRING, "timestamp": DataType.TIMESTAMP, "volume": DataType.LONG},
                column_alias={"ticker": "sym"},
            ),
        ],
    )


def test_query_joins_metrics_and_renames_to_logical_fields(tmp_path: Path) -> None:
    service = _service(_stock_catalog(tmp_path))

    execution = service.execute("SELECT ticker, price, volume FROM stocks")

    assert execution.table.column_names == ["ticker", "price", "volume"]
    assert execution.table.to_pylist() == [
        {"ticker": "AAPL", "price": 189.5, "volume": 5000},
        {"ticker": "AAPL", "price": 191.0, "volume": 6500},
    ]
    assert execution.summary.output_rows == 2
    assert [item.metric_name for item in execution.summary.metric_metrics] == ["stock_price", "stock_volume"]


def test_pushed_and_residual_filters(tmp_path: Path) -> None:
    service = _service(_stock_catalog(tmp_path))

    with service.query("SELECT price FROM stocks WHERE ticker = 'AAPL' AND volume > 6000") as table:
        assert table.to_pylist() == [{"price": 191.0}]


def test_query_results_are_cached_by_sql(tmp_path: Path) -> None:
    service = _service(_stock_catalog(tmp_path))
    sql = "SELECT price FROM stocks WHERE ticker = 'MSFT'"

    with service.query(sql) as first, service.query(sql) as second:
        assert first is second
        assert first.to_pylist() == [{"price": 411.0}]


def test_cached_metric_tables_survive_query_execution(tmp_path: Path) -> None:
    service = _service(_stock_catalog(tmp_path))

    with service.query("SELECT price FROM stocks"):
        pass
    with service.metric_data("stock_price") as table:
        assert table.row_count == 3
        assert not table.released


def test_http_metric_receives_pushed_predicate_in_url() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=[{"ticker": "AAPL", "price": 189.5}])

    catalog = Catalog(
        tables=[
            LogicalTableDefinition(
                name="t",
                primary_keys=["ticker"],
                field_to_metric={"ticker": "stock_price", "price": "stock_price"},
            )
        ],
        metrics=[
            MetricDescriptor(
                name="stock_price",
                source_kind=SourceKind.HTTP_JSON,
                source_locator="http://example.test/prices",
                field_types={"ticker": DataType.STRING, "price": DataType.DOUBLE},
            )
        ],
    )
    fetcher = DataFetcher(client=httpx.Client(transport=httpx.MockTransport(handler)))
    service = _service(catalog, fetcher)

    with service.query("SELECT price FROM t WHERE ticker='AAPL'") as table:
        assert table.to_pylist() == [{"price": 189.5}]
    assert len(seen) == 1
    assert "ticker=AAPL" in str(seen[0].url)


def test_failed_fetch_fails_the_whole_query() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if "volume" in request.url.path:
            return httpx.Response(500, text="broken")
        return httpx.Response(200, json=[{"ticker": "AAPL", "close": 1.0}])

    catalog = Catalog(
        tables=[
            LogicalTableDefinition(
                name="t",
                primary_keys=["ticker"],
                field_to_metric={"ticker": "price", "close": "price", "volume": "volume"},
            )
        ],
        metrics=[
            MetricDescriptor(
                name="price",
                source_kind=SourceKind.HTTP_JSON,
                source_locator="http://example.test/price",
                field_types={"ticker": DataType.STRING, "close": DataType.DOUBLE},
            ),
            MetricDescriptor(
                name="volume",
                source_kind=SourceKind.HTTP_JSON,
                source_locator="http://example.test/volume",
                field_types={"ticker": DataType.STRING, "volume": DataType.LONG},
            ),
        ],
    )
    fetcher = DataFetcher(client=httpx.Client(transport=httpx.MockTransport(handler)))
    service = _service(catalog, fetcher)

    with pytest.raises(FetchError) as excinfo:
        with service.query("SELECT close, volume FROM t"):
            pass

    assert excinfo.value.status == 500


def test_metric_data_filters_and_falls_back_on_bad_filter(tmp_path: Path) -> None:
    service = _service(_stock_catalog(tmp_path))

    with service.metric_data("stock_price", "ticker == AAPL") as table:
        assert table.get_column("close").to_pylist() == [189.5, 191.0]
    with service.metric_data("stock_price", "missing > 1") as table:
        assert table.row_count == 3
    with service.metric_data("stock_price", None) as table:
        assert table.row_count == 3


def test_metric_data_unknown_metric() -> None:
    service = _service(Catalog())

    with pytest.raises(ResourceNotFound):
        with service.metric_data("nope"):
            pass


def test_explain_does_not_load_data(tmp_path: Path) -> None:
    service = _service(_stock_catalog(tmp_path))

    explain = service.explain("SELECT price, volume FROM stocks WHERE ticker = 'AAPL'")

    assert explain.query_plan.select_fields == ["price", "volume"]
    assert [load.metric_name for load in explain.pushdown_plan.metric_loads] == ["stock_price", "stock_volume"]


def test_refresh_catalog_clears_cached_results(tmp_path: Path) -> None:
    service = _service(_stock_catalog(tmp_path))
    with service.query("SELECT price FROM stocks") as table:
        pass

    service.refresh_catalog(Catalog())

    assert table.released
    with pytest.raises(ResourceNotFound):
        with service.query("SELECT price FROM stocks"):
            pass


def test_validation_errors_propagate(tmp_path: Path) -> None:
    service = _service(_stock_catalog(tmp_path))

    with pytest.raises(ValidationError):
        with service.query("SELECT price FROM stocks WHERE ticker > 'A'"):
            pass


def test_query_result_stays_readable_until_the_block_exits(tmp_path: Path) -> None:
    service = _service(_stock_catalog(tmp_path))

    with service.query("SELECT price FROM stocks WHERE ticker = 'MSFT'") as table:
        service.refresh_catalog(_stock_catalog(tmp_path))
        assert table.to_pylist() == [{"price": 411.0}]

    assert table.released
