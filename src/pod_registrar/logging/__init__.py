"""
Logging setup for the pod registrar.

Modules log through ``logging.getLogger(__name__)``; this package installs a
single stdout handler on the root logger that adds the service name and the
current trace context to every record and renders either JSON or text.
"""

import json
import logging
import sys
from datetime import datetime
from typing import Any

from opentelemetry import trace

from ..config import LoggingConfig

DEFAULT_LOG_FORMAT = (
    "%(asctime)s - %(levelname)s - [%(service_name)s] - [%(name)s] - %(message)s"
)

TRACE_LOG_FORMAT = (
    "%(asctime)s - %(levelname)s - [%(service_name)s] - [%(trace_id)s:%(span_id)s] - "
    "[%(name)s] - %(message)s"
)

LOG_OFF_LEVEL = "OFF"

# LogRecord attributes that are not user-supplied extras
_RESERVED_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "taskName",
        "exc_info",
        "exc_text",
        "stack_info",
        "message",
        "asctime",
        "service_name",
        "trace_id",
        "span_id",
    }
)


class ServiceNameFilter(logging.Filter):
    """Filter to inject service name into log records."""

    def __init__(self, service_name: str) -> None:
        super().__init__()
        self.service_name = service_name

    def filter(self, record: logging.LogRecord) -> bool:
        record.service_name = self.service_name  # type: ignore[attr-defined]
        return True


class TraceContextFilter(logging.Filter):
    """Filter to inject trace context into log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        current_span = trace.get_current_span()
        span_context = current_span.get_span_context()
        if span_context.is_valid:
            record.trace_id = format(span_context.trace_id, "032x")  # type: ignore[attr-defined]
            record.span_id = format(span_context.span_id, "016x")  # type: ignore[attr-defined]
        else:
            record.trace_id = "0" * 32  # type: ignore[attr-defined]
            record.span_id = "0" * 16  # type: ignore[attr-defined]
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per record, extras included."""

    def __init__(self, include_trace: bool = True):
        super().__init__()
        self.include_trace = include_trace

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "service": getattr(record, "service_name", "unknown"),
            "logger": record.name,
            "message": record.getMessage(),
        }

        if self.include_trace:
            trace_id = getattr(record, "trace_id", None)
            if trace_id and trace_id != "0" * 32:
                log_entry["trace_id"] = trace_id
                log_entry["span_id"] = getattr(record, "span_id", None)

        if record.exc_info:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": self.formatException(record.exc_info),
            }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_entry[key] = value

        return json.dumps(log_entry, default=str, ensure_ascii=False)


def build_handler(config: LoggingConfig, stream=None) -> logging.Handler:
    """Create the configured stdout handler."""
    handler = logging.StreamHandler(stream or sys.stdout)

    if config.format == "json":
        formatter: logging.Formatter = JSONFormatter(include_trace=config.enable_trace)
    else:
        formatter = logging.Formatter(
            TRACE_LOG_FORMAT if config.enable_trace else DEFAULT_LOG_FORMAT
        )
    handler.setFormatter(formatter)

    handler.addFilter(ServiceNameFilter(config.service_name))
    if config.enable_trace:
        handler.addFilter(TraceContextFilter())
    return handler


def setup_logging(config: LoggingConfig, stream=None) -> logging.Logger:
    """Install the handler on the root logger and return the service logger.

    This should be called once, early in process start-up.
    """
    root = logging.getLogger()
    root.handlers.clear()

    if config.level == LOG_OFF_LEVEL:
        root.setLevel(logging.CRITICAL + 1)
    else:
        root.setLevel(getattr(logging, config.level, logging.INFO))

    root.addHandler(build_handler(config, stream))

    # The kubernetes client logs every request at DEBUG.
    logging.getLogger("kubernetes").setLevel(max(root.level, logging.INFO))

    return logging.getLogger("pod_registrar")
