from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar
from dataclasses import dataclass
from threading import Lock

from opentelemetry import trace

PACKAGE_LOGGER = 'proposal_screener'

_proposal_id_var: ContextVar[str | None] = ContextVar('proposal_id', default=None)
_source_var: ContextVar[str | None] = ContextVar('source', default=None)

_CORRELATION_FIELDS = (
    ('proposal_id', _proposal_id_var),
    ('source', _source_var),
)


def set_proposal_context(proposal_id: str | None = None, source: str | None = None) -> None:
    """Bind the proposal being handled on this thread so every log line carries it."""
    _proposal_id_var.set(proposal_id)
    _source_var.set(source)


def get_proposal_id() -> str | None:
    return _proposal_id_var.get()


def get_source() -> str | None:
    return _source_var.get()


class _JsonFormatter(logging.Formatter):
    """One JSON object per line; correlation fields come from ``extra`` or the bound context."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict = {
            'ts': self.formatTime(record, self.datefmt),
            'level': record.levelname,
            'logger': record.name,
            'msg': record.getMessage(),
        }
        for name, var in _CORRELATION_FIELDS:
            value = getattr(record, name, None) or var.get()
            if value:
                payload[name] = value
        if record.exc_info and record.exc_info[1] is not None:
            payload['exc'] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


@dataclass
class _ObservabilityState:
    logging_ready: bool = False
    otlp_endpoint: str | None = None


_state = _ObservabilityState()
_state_lock = Lock()


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def _has_json_handler(logger: logging.Logger) -> bool:
    return any(isinstance(getattr(h, 'formatter', None), _JsonFormatter) for h in logger.handlers)


def _install_tracing(service_name: str, endpoint: str) -> bool:
    try:
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor
    except ImportError:
        get_logger(f'{PACKAGE_LOGGER}.observability').warning('otlp_unavailable tracing disabled', exc_info=True)
        return False
    provider = TracerProvider(resource=Resource.create({'service.name': service_name}))
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
    trace.set_tracer_provider(provider)
    return True


def configure_observability(*, service_name: str, otlp_endpoint: str | None, level: int = logging.INFO) -> None:
    """Attach the JSON handler once and, when an endpoint is given, export spans over OTLP/HTTP."""
    with _state_lock:
        if not _state.logging_ready:
            logger = logging.getLogger(PACKAGE_LOGGER)
            if not _has_json_handler(logger):
                handler = logging.StreamHandler(sys.stderr)
                handler.setFormatter(_JsonFormatter())
                logger.addHandler(handler)
            logger.setLevel(level)
            _state.logging_ready = True

        endpoint = str(otlp_endpoint or '').strip()
        if not endpoint or _state.otlp_endpoint == endpoint:
            return
        if _install_tracing(service_name, endpoint):
            _state.otlp_endpoint = endpoint


def start_span(name: str, **attributes: object):
    """Open a span on the package tracer. No-op until a tracer provider is installed."""
    span_attributes = {key: str(value) for key, value in attributes.items() if value is not None}
    return trace.get_tracer(PACKAGE_LOGGER).start_as_current_span(name, attributes=span_attributes)
