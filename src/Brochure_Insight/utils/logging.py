"""Logging and tracing setup for the brochure gateway.

Module loggers are structlog loggers that render one JSON object per event.
Records from third-party libraries (uvicorn, botocore, httpx) go through the
standard library and are rendered by :class:`JsonFormatter` so both streams
share a shape. While a job runs, its identifier is bound as the correlation
id and attached to every event from either stream.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterable
from contextvars import ContextVar, Token
from typing import Any

import orjson
import structlog
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter, SpanExporter
from opentelemetry.sdk.trace.sampling import TraceIdRatioBased

from Brochure_Insight.config.settings import LoggingSettings, TelemetrySettings

_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)

# Attributes every LogRecord carries; anything else was passed via ``extra``.
_RECORD_ATTRIBUTES = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}

REDACTED = "***"


class JsonFormatter(logging.Formatter):
    """Render standard library records as JSON, redacting ``scrub_fields``."""

    def __init__(self, *, scrub_fields: Iterable[str] = ()) -> None:
        super().__init__(datefmt="%Y-%m-%dT%H:%M:%S%z")
        self._scrub_fields = frozenset(name.lower() for name in scrub_fields)

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "event": record.getMessage(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "timestamp": self.formatTime(record, self.datefmt),
        }
        correlation_id = _correlation_id.get()
        if correlation_id:
            payload["correlation_id"] = correlation_id
        for key, value in vars(record).items():
            if key not in _RECORD_ATTRIBUTES:
                payload[key] = REDACTED if key.lower() in self._scrub_fields else value
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return orjson.dumps(payload, default=str, option=orjson.OPT_SORT_KEYS).decode()


class _JsonStreamHandler(logging.StreamHandler):
    """Root handler installed by :func:`configure_logging`; replaced on reconfiguration."""


def _job_context(scrub_fields: Iterable[str]) -> structlog.types.Processor:
    lowered = frozenset(name.lower() for name in scrub_fields)

    def processor(_: Any, __: str, event_dict: dict[str, Any]) -> dict[str, Any]:
        correlation_id = _correlation_id.get()
        if correlation_id:
            event_dict.setdefault("correlation_id", correlation_id)
        for key in [key for key in event_dict if key.lower() in lowered]:
            event_dict[key] = REDACTED
        return event_dict

    return processor


def configure_logging(settings: LoggingSettings) -> None:
    """Install JSON output for structlog and the standard library root logger.

    Safe to call more than once: the handler from an earlier call is swapped
    out, other root handlers are left in place.
    """
    level = getattr(logging, settings.level.upper(), logging.INFO)

    root = logging.getLogger()
    for handler in [handler for handler in root.handlers if isinstance(handler, _JsonStreamHandler)]:
        root.removeHandler(handler)
    handler = _JsonStreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter(scrub_fields=settings.scrub_fields))
    root.addHandler(handler)
    root.setLevel(level)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            _job_context(settings.scrub_fields),
            structlog.processors.JSONRenderer(sort_keys=True),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )


def configure_tracing(service_name: str, telemetry: TelemetrySettings) -> None:
    """Install a tracer provider exporting stage spans via OTLP or to the console."""
    provider = TracerProvider(
        resource=Resource(attributes={"service.name": service_name}),
        sampler=TraceIdRatioBased(telemetry.sample_ratio),
    )
    exporter: SpanExporter
    if telemetry.exporter.lower() == "otlp":
        exporter = OTLPSpanExporter(endpoint=telemetry.endpoint) if telemetry.endpoint else OTLPSpanExporter()
    else:
        exporter = ConsoleSpanExporter()
    provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)


def bind_correlation_id(job_id: str) -> Token[str | None]:
    """Tag every log event in the current context with ``job_id``."""
    token = _correlation_id.set(job_id)
    structlog.contextvars.bind_contextvars(correlation_id=job_id)
    return token


def reset_correlation_id(token: Token[str | None]) -> None:
    _correlation_id.reset(token)
    structlog.contextvars.unbind_contextvars("correlation_id")


__all__ = [
    "JsonFormatter",
    "bind_correlation_id",
    "configure_logging",
    "configure_tracing",
    "reset_correlation_id",
]
