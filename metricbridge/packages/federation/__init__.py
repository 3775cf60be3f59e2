from metricbridge.packages.federation.errors import (
    ErrorKind,
    FederationError,
    FetchError,
    InternalError,
    ParseError,
    QuerySyntaxError,
    ResourceNotFound,
    ValidationError,
)
from metricbridge.packages.federation.registry import CatalogRegistry, load_catalog_file, load_catalog_yaml
from metricbridge.packages.federation.service import FederatedQueryService, QueryExecution

__all__ = [
    "CatalogRegistry",
    "ErrorKind",
    "FederatedQueryService",
    "FederationError",
    "FetchError",
    "InternalError",
    "ParseError",
    "QueryExecution",
    "QuerySyntaxError",
    "ResourceNotFound",
    "ValidationError",
    "load_catalog_file",
    "load_catalog_yaml",
]
