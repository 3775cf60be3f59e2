from __future__ import annotations

import logging
from pathlib import Path
from typing import Sequence
from urllib.parse import unquote, urlencode, urlparse

import httpx

from metricbridge.packages.common.metricbridge_common.monitoring import record_fetch
from metricbridge.packages.federation.errors import FetchError, ValidationError

logger = logging.getLogger(__name__)

_HTTP_SCHEMES = ("http://", "https://")
_FILE_SCHEME = "file://"
_ERROR_BODY_LIMIT = 2000


def is_http_locator(locator: str) -> bool:
    return locator.lower().startswith(_HTTP_SCHEMES)


def build_request_url(locator: str, params: Sequence[tuple[str, str]]) -> str:
    """Append percent-encoded ``params`` to ``locator``, respecting an existing query string."""
    if not params:
        return locator
    query = urlencode(list(params))
    if locator.endswith(("?", "&")):
        return f"{locator}{query}"
    separator = "&" if "?" in locator else "?"
    return f"{locator}{separator}{query}"


class DataFetcher:
    """Reads raw metric payloads from local files or HTTP(S) endpoints.

    When no ``client`` is given, each HTTP fetch uses a short-lived
    ``httpx.Client`` carrying ``timeout_seconds``.
    """

    def __init__(self, *, timeout_seconds: float = 30.0, client: httpx.Client | None = None) -> None:
        self._timeout_seconds = timeout_seconds
        self._client = client

    def fetch(self, locator: str, params: Sequence[tuple[str, str]] = ()) -> bytes:
        if not locator or not locator.strip():
            raise ValidationError("Source locator cannot be empty.")
        locator = locator.strip()
        if is_http_locator(locator):
            return self._fetch_http(build_request_url(locator, params))
        if locator.lower().startswith(_FILE_SCHEME):
            return self._read_file(_file_url_path(locator))
        if "://" in locator:
            raise ValidationError(f"Unsupported source locator scheme in '{locator}'.")
        return self._read_file(Path(locator))

    def _read_file(self, path: Path) -> bytes:
        logger.info("Reading local source %s", path)
        try:
            payload = path.read_bytes()
        except OSError as exc:
            record_fetch("file", "error")
            raise FetchError(f"Failed to read local file '{path}': {exc}", url=str(path)) from exc
        record_fetch("file", "ok")
        return payload

    def _fetch_http(self, url: str) -> bytes:
        logger.info("Fetching source %s", url)
        try:
            if self._client is not None:
                response = self._get(self._client, url)
            else:
                with httpx.Client(timeout=self._timeout_seconds) as client:
                    response = self._get(client, url)
        except httpx.TimeoutException as exc:
            record_fetch("http", "timeout")
            raise FetchError(f"Request to {url} timed out after {self._timeout_seconds}s.", url=url) from exc
        except httpx.HTTPError as exc:
            record_fetch("http", "error")
            raise FetchError(f"I/O error while fetching {url}: {exc}", url=url) from exc

        if not response.is_success:
            record_fetch("http", f"status_{response.status_code}")
            body = response.text[:_ERROR_BODY_LIMIT]
            raise FetchError(
                f"HTTP request failed with status {response.status_code} for URL {url}. Response: {body}",
                url=url,
                status=response.status_code,
                body=body,
            )
        record_fetch("http", "ok")
        content = response.content
        if not content:
            logger.warning("Received empty response body from %s", url)
        logger.debug("Received %d bytes from %s", len(content), url)
        return content

    def _get(self, client: httpx.Client, url: str) -> httpx.Response:
        return client.get(
            url,
            headers={"Accept": "application/json"},
            timeout=self._timeout_seconds,
            follow_redirects=True,
        )


def _file_url_path(locator: str) -> Path:
    parsed = urlparse(locator)
    # file://relative/path keeps the host segment as the first path component
    return Path(unquote(f"{parsed.netloc}{parsed.path}"))
