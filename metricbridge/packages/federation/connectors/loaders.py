from __future__ import annotations

from metricbridge.packages.federation.connectors.base import MetricLoader
from metricbridge.packages.federation.connectors.csv_parser import parse_csv
from metricbridge.packages.federation.connectors.fetcher import DataFetcher
from metricbridge.packages.federation.connectors.json_parser import parse_json
from metricbridge.packages.federation.models.catalog import SourceKind


def build_loaders(fetcher: DataFetcher) -> dict[SourceKind, MetricLoader]:
    """Loader lookup table keyed by source kind. File and HTTP sources share a parser."""
    csv_loader = MetricLoader(format="csv", fetcher=fetcher, parser=parse_csv)
    json_loader = MetricLoader(format="json", fetcher=fetcher, parser=parse_json)
    return {
        SourceKind.FILE_CSV: csv_loader,
        SourceKind.HTTP_CSV: csv_loader,
        SourceKind.FILE_JSON: json_loader,
        SourceKind.HTTP_JSON: json_loader,
    }
