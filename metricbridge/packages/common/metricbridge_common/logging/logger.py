"""
Process logging for metricbridge services.

Records always reach the console. They are also shipped through OpenTelemetry
(OTLP log and trace exporters) unless ``OTEL_SDK_DISABLED`` is set, in which
case a size-rotated log file is written instead.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Callable, Optional

from opentelemetry import _logs, trace
from opentelemetry.exporter.otlp.proto.grpc._log_exporter import OTLPLogExporter as GrpcLogExporter
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter as GrpcSpanExporter
from opentelemetry.exporter.otlp.proto.http._log_exporter import OTLPLogExporter as HttpLogExporter
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter as HttpSpanExporter
from opentelemetry.instrumentation.logging import LoggingInstrumentor
from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
from opentelemetry.sdk._logs.export import BatchLogRecordProcessor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

DEFAULT_LOG_DIR = "./"
DEFAULT_LOG_FILE = "metricbridge.log"
DEFAULT_LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
DEFAULT_SERVICE_NAME = os.getenv("OTEL_SERVICE_NAME", "metricbridge")
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

ROTATE_MAX_BYTES = 10 * 1024 * 1024
ROTATE_BACKUPS = 5

_TRUTHY = {"1", "true", "yes", "on"}
_HTTP_PROTOCOLS = {"http", "http/protobuf"}

_initialized = False


@dataclass(frozen=True)
class _Signal:
    """One OTLP signal: which env vars select it and which exporter classes serve it."""

    exporter_env: str
    protocol_env: str
    grpc_exporter: Callable[[], object]
    http_exporter: Callable[[], object]

    def exporter(self) -> Optional[object]:
        if os.getenv(self.exporter_env, "otlp").strip().lower() in {"none", "disabled"}:
            return None
        protocol = os.getenv(self.protocol_env) or os.getenv("OTEL_EXPORTER_OTLP_PROTOCOL", "grpc")
        if protocol.strip().lower() in _HTTP_PROTOCOLS:
            return self.http_exporter()
        return self.grpc_exporter()


_LOGS = _Signal("OTEL_LOGS_EXPORTER", "OTEL_EXPORTER_OTLP_LOGS_PROTOCOL", GrpcLogExporter, HttpLogExporter)
_TRACES = _Signal("OTEL_TRACES_EXPORTER", "OTEL_EXPORTER_OTLP_TRACES_PROTOCOL", GrpcSpanExporter, HttpSpanExporter)


def get_root_logger() -> logging.Logger:
    """Return the process-wide root logger."""
    return logging.getLogger("")


def otel_disabled() -> bool:
    return os.getenv("OTEL_SDK_DISABLED", "").strip().lower() in _TRUTHY


def _file_handler(log_dir: str, log_file: str, *, truncate: bool) -> logging.Handler:
    directory = Path(log_dir)
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / log_file
    if truncate and path.exists():
        path.write_text("", encoding="utf-8")
    return RotatingFileHandler(path, maxBytes=ROTATE_MAX_BYTES, backupCount=ROTATE_BACKUPS, encoding="utf-8")


def _otel_handler(service_name: str, level: str | int) -> Optional[logging.Handler]:
    """Install tracer and logger providers; return a handler when a log exporter is configured."""
    resource = Resource.create({"service.name": service_name})

    tracer_provider = TracerProvider(resource=resource)
    span_exporter = _TRACES.exporter()
    if span_exporter is not None:
        tracer_provider.add_span_processor(BatchSpanProcessor(span_exporter))
    trace.set_tracer_provider(tracer_provider)

    logger_provider = LoggerProvider(resource=resource)
    _logs.set_logger_provider(logger_provider)
    LoggingInstrumentor().instrument(set_logging_format=False)

    log_exporter = _LOGS.exporter()
    if log_exporter is None:
        return None
    logger_provider.add_log_record_processor(BatchLogRecordProcessor(log_exporter))
    return LoggingHandler(level=level, logger_provider=logger_provider)


def setup_logging(
    *,
    service_name: Optional[str] = None,
    level: str | int = DEFAULT_LOG_LEVEL,
    log_dir: str = DEFAULT_LOG_DIR,
    log_file: str = DEFAULT_LOG_FILE,
    truncate: bool = False,
    with_console: bool = True,
) -> logging.Logger:
    """
    Configure root logging once per process. Later calls only change the level.
    """
    global _initialized

    root = get_root_logger()
    root.setLevel(level)
    if _initialized:
        return root
    _initialized = True

    handlers: list[logging.Handler] = []
    sink = "otlp"
    if otel_disabled():
        handlers.append(_file_handler(log_dir, log_file, truncate=truncate))
        sink = f"file {Path(log_dir) / log_file}"
    else:
        otel = _otel_handler(service_name or DEFAULT_SERVICE_NAME, level)
        if otel is not None:
            handlers.append(otel)
    if with_console:
        handlers.append(logging.StreamHandler())

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)
    for handler in handlers:
        handler.setFormatter(formatter)
        if handler not in root.handlers:
            root.addHandler(handler)

    root.info("Logging initialized (level=%s, sink=%s)", logging.getLevelName(root.level), sink)
    return root
