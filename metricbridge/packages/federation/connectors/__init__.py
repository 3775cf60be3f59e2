from metricbridge.packages.federation.connectors.base import (
    MetricLoader,
    ParseRequest,
    RowMatcher,
    SourceField,
    build_table,
)
from metricbridge.packages.federation.connectors.csv_parser import parse_csv
from metricbridge.packages.federation.connectors.fetcher import DataFetcher, build_request_url
from metricbridge.packages.federation.connectors.json_parser import parse_json, resolve_pointer
from metricbridge.packages.federation.connectors.loaders import build_loaders

__all__ = [
    "DataFetcher",
    "MetricLoader",
    "ParseRequest",
    "RowMatcher",
    "SourceField",
    "build_loaders",
    "build_request_url",
    "build_table",
    "parse_csv",
    "parse_json",
    "resolve_pointer",
]
