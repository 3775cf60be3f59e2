from __future__ import annotations

import json
import logging
from typing import Any

from metricbridge.packages.federation.connectors.base import ParseRequest, build_table
from metricbridge.packages.federation.errors import ParseError, ValidationError
from metricbridge.packages.federation.table.columnar import ColumnarTable, coerce_value

logger = logging.getLogger(__name__)


def resolve_pointer(document: Any, pointer: str) -> Any:
    """Resolve an RFC 6901 JSON pointer. An empty pointer is the document itself."""
    if pointer == "":
        return document
    if not pointer.startswith("/"):
        raise ValidationError(f"Invalid data path '{pointer}': a JSON pointer must start with '/'.")
    node = document
    for raw_token in pointer[1:].split("/"):
        token = raw_token.replace("~1", "/").replace("~0", "~")
        if isinstance(node, dict):
            if token not in node:
                raise ValidationError(f"Data path '{pointer}' does not resolve: missing key '{token}'.")
            node = node[token]
        elif isinstance(node, list):
            if not token.isdigit() or int(token) >= len(node):
                raise ValidationError(f"Data path '{pointer}' does not resolve: bad array index '{token}'.")
            node = node[int(token)]
        else:
            raise ValidationError(f"Data path '{pointer}' does not resolve: '{token}' is below a scalar value.")
    return node


def parse_json(payload: bytes, request: ParseRequest) -> ColumnarTable:
    """Parse the array of row objects found at ``request.data_path``.

    A path that points at something other than an array yields a zero-row table.
    """
    if not payload or not payload.strip():
        raise ParseError("JSON payload is empty", locator=request.locator)
    try:
        document = json.loads(payload)
    except ValueError as exc:
        raise ParseError(f"Malformed JSON payload: {exc}", locator=request.locator) from exc

    node = resolve_pointer(document, request.data_path or "")
    if not isinstance(node, list):
        logger.warning(
            "Data at path '%s' of %s is a %s, not an array; returning an empty table",
            request.data_path,
            request.locator,
            type(node).__name__,
        )
        return build_table(request.fields, [])

    rows = []
    for position, item in enumerate(node):
        if not isinstance(item, dict):
            logger.debug("Skipping non-object row %d of %s", position, request.locator)
            continue
        if not all(matcher.matches(item.get(matcher.source_column)) for matcher in request.matchers):
            continue
        rows.append([coerce_value(field.data_type, item.get(field.source_column)) for field in request.fields])

    logger.debug("JSON source %s: kept %d of %d rows", request.locator, len(rows), len(node))
    return build_table(request.fields, rows)
