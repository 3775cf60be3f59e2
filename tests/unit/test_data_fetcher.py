from __future__ import annotations

from pathlib import Path

import httpx
import pytest
from prometheus_client import REGISTRY

from metricbridge.packages.federation.connectors import DataFetcher, build_loaders, build_request_url
from metricbridge.packages.federation.errors import FetchError, ValidationError
from metricbridge.packages.federation.models import DataType, Operator, Predicate, SourceKind


def _client(handler) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


def test_build_request_url_picks_separator() -> None:
    params = [("ticker", "AAPL")]

    assert build_request_url("http://h/q", params) == "http://h/q?ticker=AAPL"
    assert build_request_url("http://h/q?x=1", params) == "http://h/q?x=1&ticker=AAPL"
    assert build_request_url("http://h/q?", params) == "http://h/q?ticker=AAPL"
    assert build_request_url("http://h/q", []) == "http://h/q"


def test_build_request_url_percent_encodes_values() -> None:
    url = build_request_url("http://h/q", [("name", "a&b c"), ("sym", "BRK/A")])

    assert url == "http://h/q?name=a%26b+c&sym=BRK%2FA"


def test_http_fetch_sends_accept_header() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, content=b"[]")

    payload = DataFetcher(client=_client(handler)).fetch("https://example.test/rows", [("id", "7")])

    assert payload == b"[]"
    assert seen[0].headers["accept"] == "application/json"
    assert seen[0].url.params["id"] == "7"


def test_http_error_status_carries_status_and_body() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="upstream down")

    with pytest.raises(FetchError) as excinfo:
        DataFetcher(client=_client(handler)).fetch("http://example.test/rows")

    assert excinfo.value.status == 503
    assert excinfo.value.body == "upstream down"
    assert excinfo.value.url == "http://example.test/rows"


def test_http_transport_failure_is_fetch_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(FetchError):
        DataFetcher(client=_client(handler)).fetch("http://example.test/rows")


def test_http_timeout_is_fetch_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(FetchError) as excinfo:
        DataFetcher(timeout_seconds=1.5, client=_client(handler)).fetch("http://example.test/rows")

    assert "timed out" in str(excinfo.value)


def test_local_paths_and_file_urls(tmp_path: Path) -> None:
    path = tmp_path / "data.csv"
    path.write_bytes(b"a\n1\n")
    fetcher = DataFetcher()

    assert fetcher.fetch(str(path)) == b"a\n1\n"
    assert fetcher.fetch(path.as_uri()) == b"a\n1\n"


def _fetch_count(transport: str, outcome: str) -> float:
    labels = {"transport": transport, "outcome": outcome}
    return REGISTRY.get_sample_value("metricbridge_source_fetches_total", labels) or 0.0


def test_missing_file_is_fetch_error(tmp_path: Path) -> None:
    before = _fetch_count("file", "error")
    with pytest.raises(FetchError):
        DataFetcher().fetch(str(tmp_path / "absent.csv"))

    assert _fetch_count("file", "error") == before + 1


@pytest.mark.parametrize("locator", ["", "   ", "ftp://example.test/data.csv"])
def test_invalid_locators_are_rejected(locator: str) -> None:
    with pytest.raises(ValidationError):
        DataFetcher().fetch(locator)


def test_http_loader_pushes_equality_predicates_as_params() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"data": [{"Symbol": "AAPL", "close": 1.0}]})

    loaders = build_loaders(DataFetcher(client=_client(handler)))
    table = loaders[SourceKind.HTTP_JSON].load(
        source_locator="http://example.test/prices",
        field_types={"ticker": DataType.STRING, "close": DataType.DOUBLE},
        data_path="/data",
        column_alias={"ticker": "Symbol"},
        predicates=[
            Predicate(column="ticker", operator=Operator.EQ, value="AAPL"),
            Predicate(column="close", operator=Operator.GT, value=0.5),
        ],
    )

    assert table.row_count == 1
    assert str(seen[0].url) == "http://example.test/prices?Symbol=AAPL"
