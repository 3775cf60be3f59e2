from __future__ import annotations

import asyncio
from pathlib import Path

import pyarrow as pa
import pytest
from fastapi.responses import StreamingResponse
from fastapi.testclient import TestClient
from prometheus_client import REGISTRY

from metricbridge.apps.api.metricbridge_api.ioc import build_container
from metricbridge.apps.api.metricbridge_api.main import create_app
from metricbridge.apps.api.metricbridge_api.routers.v1.query import ResultFormat, _query_response
from metricbridge.packages.common.metricbridge_common.config import Settings

ARROW = "application/vnd.apache.arrow.stream"


def _catalog(tmp_path: Path) -> Path:
    prices = tmp_path / "prices.csv"
    prices.write_text(
        "ticker,close\nAAPL,189.5\nMSFT,411.0\nGOOG,140.25\nAMZN,\n",
        encoding="utf-8",
    )
    path = tmp_path / "catalog.yaml"
    path.write_text(
        f"""
tables:
  - name: stocks
    primary_keys: [ticker]
    field_to_metric:
      ticker: stock_price
      price: stock_price
      rating: ratings
    field_to_physical:
      price: close
  - name: broken
    field_to_metric:
      value: missing_file
metrics:
  - name: stock_price
    source_kind: file_csv
    source_locator: {prices}
    field_types:
      ticker: STRING
      close: DOUBLE
  - name: missing_file
    source_kind: file_csv
    source_locator: {tmp_path / "absent.csv"}
    field_types:
      value: LONG
""",
        encoding="utf-8",
    )
    return path


@pytest.fixture
def client(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("OTEL_SDK_DISABLED", "true")
    settings = Settings(
        CATALOG_PATH=str(_catalog(tmp_path)),
        LOG_DIR=str(tmp_path),
        RESULT_BATCH_SIZE=2,
        METRIC_LOAD_WORKERS=2,
    )
    app = create_app(build_container(settings), settings)
    with TestClient(app) as test_client:
        yield test_client


def test_health_reports_catalog(client: TestClient) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "tables": 2, "metrics": 2}


def test_query_json(client: TestClient) -> None:
    response = client.get("/api/v1/query", params={"sql": "SELECT price FROM stocks WHERE ticker = 'AAPL'", "format": "json"})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("application/json")
    assert response.json() == {"data": [{"price": 189.5}], "rowCount": 1}


def test_query_arrow_is_default(client: TestClient) -> None:
    response = client.get("/api/v1/query", params={"sql": "SELECT ticker FROM stocks WHERE ticker = 'MSFT'"})

    assert response.status_code == 200
    assert response.headers["content-type"] == ARROW
    table = pa.ipc.open_stream(response.content).read_all()
    assert table.column("ticker").to_pylist() == ["MSFT"]


def test_large_results_are_streamed_in_batches(client: TestClient) -> None:
    response = client.get("/api/v1/query", params={"sql": "SELECT ticker, price FROM stocks"})

    assert response.status_code == 200
    batches = list(pa.ipc.open_stream(response.content))
    assert [batch.num_rows for batch in batches] == [2, 2]
    assert pa.Table.from_batches(batches).column("price").to_pylist() == [189.5, 411.0, 140.25, None]

    streamed = client.get("/api/v1/query", params={"sql": "SELECT ticker, price FROM stocks", "format": "json"})
    assert streamed.json()["rowCount"] == 4


def test_unread_stream_still_unpins_the_cached_result(client: TestClient) -> None:
    container = client.app.state.container
    service = container.query_service()
    sql = "SELECT ticker, price FROM stocks"
    with service.query(sql) as table:
        pass

    response = _query_response(service, sql, ResultFormat.ARROW, 2)
    assert isinstance(response, StreamingResponse)
    asyncio.run(response.background())
    container.query_cache().invalidate(sql)

    assert table.released


def test_post_query(client: TestClient) -> None:
    response = client.post(
        "/api/v1/query",
        json={"sql": "SELECT price FROM stocks WHERE price > 200", "format": "json"},
    )

    assert response.status_code == 200
    assert response.json()["data"] == [{"price": 411.0}]


def test_explain(client: TestClient) -> None:
    response = client.get("/api/v1/query/explain", params={"sql": "SELECT price FROM stocks WHERE ticker = 'AAPL'"})

    assert response.status_code == 200
    body = response.json()
    assert body["query_plan"]["select_fields"] == ["price"]
    assert body["pushdown_plan"]["metric_loads"][0]["metric_name"] == "stock_price"


@pytest.mark.parametrize(
    ("sql", "status", "kind"),
    [
        ("SELECT price FROM bonds", 404, "not_found"),
        ("SELECT rating FROM stocks", 404, "not_found"),
        ("DELETE FROM stocks", 400, "syntax"),
        ("SELECT price FROM stocks ORDER BY price", 400, "validation"),
        ("SELECT value FROM broken", 500, "fetch"),
    ],
)
def test_query_errors_map_to_status(client: TestClient, sql: str, status: int, kind: str) -> None:
    response = client.get("/api/v1/query", params={"sql": sql})

    assert response.status_code == status
    assert response.json()["error"] == kind
    assert response.json()["message"]


def test_missing_sql_parameter_is_bad_request(client: TestClient) -> None:
    response = client.get("/api/v1/query")

    assert response.status_code == 400
    assert response.json()["error"] == "validation"


def test_metric_data_as_csv(client: TestClient) -> None:
    response = client.get("/api/v1/metrics/stock_price", params={"filter": "close > 150"})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert response.text == "ticker,close\nAAPL,189.5\nMSFT,411.0\n"


def test_metric_data_bad_filter_returns_everything(client: TestClient) -> None:
    response = client.get("/api/v1/metrics/stock_price", params={"filter": "volume > 1"})

    assert response.status_code == 200
    assert response.text.count("\n") == 5


def test_metric_data_empty_and_unknown(client: TestClient) -> None:
    assert client.get("/api/v1/metrics/stock_price", params={"filter": "ticker == NFLX"}).status_code == 204
    assert client.get("/api/v1/metrics/nope").status_code == 404


def test_prometheus_metrics(client: TestClient) -> None:
    client.get("/api/v1/query", params={"sql": "SELECT price FROM stocks", "format": "json"})

    response = client.get("/metrics")

    assert response.status_code == 200
    assert "metricbridge_table_cache_events_total" in response.text
    assert "metricbridge_api_http_requests_total" in response.text
    assert REGISTRY.get_sample_value("metricbridge_source_fetches_total", {"transport": "file", "outcome": "ok"}) >= 1
    labels = {"method": "GET", "path": "/api/v1/query", "status": "200"}
    assert REGISTRY.get_sample_value("metricbridge_api_http_requests_total", labels) >= 1
    item_labels = {"method": "GET", "path": "/api/v1/metrics/{metric_name}", "status": "404"}
    client.get("/api/v1/metrics/nope")
    assert REGISTRY.get_sample_value("metricbridge_api_http_requests_total", item_labels) >= 1
