from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    SYNTAX = "syntax"
    NOT_FOUND = "not_found"
    FETCH = "fetch"
    PARSE = "parse"
    INTERNAL = "internal"


class FederationError(RuntimeError):
    """Base error for the federation engine. Carries an error kind and an HTTP-equivalent status."""

    kind: ErrorKind = ErrorKind.INTERNAL
    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_payload(self) -> dict[str, Any]:
        return {"error": self.kind.value, "message": self.message}


class ValidationError(FederationError, ValueError):
    """Raised for bad query shapes, unknown fields/columns or malformed filter expressions."""

    kind = ErrorKind.VALIDATION
    status_code = 400


class QuerySyntaxError(ValidationError):
    """Raised when the SQL text cannot be parsed or is not a single SELECT."""

    kind = ErrorKind.SYNTAX
    status_code = 400


class ResourceNotFound(ValidationError):
    """Raised when a logical table or metric is not registered."""

    kind = ErrorKind.NOT_FOUND
    status_code = 404


class FetchError(FederationError):
    """Raised when a metric source cannot be read (non-2xx, I/O failure, timeout)."""

    kind = ErrorKind.FETCH
    status_code = 500

    def __init__(
        self,
        message: str,
        *,
        url: str | None = None,
        status: int | None = None,
        body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.url = url
        self.status = status
        self.body = body


class ParseError(FederationError):
    """Raised when a source payload is malformed."""

    kind = ErrorKind.PARSE
    status_code = 500

    def __init__(
        self,
        message: str,
        *,
        locator: str | None = None,
        row: int | None = None,
        field: str | None = None,
    ) -> None:
        context = [
            f"{label}={value}"
            for label, value in (("locator", locator), ("row", row), ("field", field))
            if value is not None
        ]
        super().__init__(f"{message} ({', '.join(context)})" if context else message)
        self.locator = locator
        self.row = row
        self.field = field


class InternalError(FederationError):
    """Raised when an upstream component violates its contract."""

    kind = ErrorKind.INTERNAL
    status_code = 500


class ColumnTypeError(InternalError):
    """Raised when a native value is written into a column of a different type."""


__all__ = [
    "ColumnTypeError",
    "ErrorKind",
    "FederationError",
    "FetchError",
    "InternalError",
    "ParseError",
    "QuerySyntaxError",
    "ResourceNotFound",
    "ValidationError",
]
