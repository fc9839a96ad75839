from __future__ import annotations

import json
import logging
import sys

import pytest

import proposal_screener.observability as observability
from proposal_screener.observability import (
    PACKAGE_LOGGER,
    _JsonFormatter,
    configure_observability,
    get_logger,
    get_proposal_id,
    get_source,
    set_proposal_context,
    start_span,
)


@pytest.fixture
def fresh_logging(monkeypatch):
    logger = logging.getLogger(PACKAGE_LOGGER)
    saved_handlers = list(logger.handlers)
    saved_level = logger.level
    for handler in saved_handlers:
        logger.removeHandler(handler)
    monkeypatch.setattr(observability, '_state', observability._ObservabilityState())
    yield logger
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    for handler in saved_handlers:
        logger.addHandler(handler)
    logger.setLevel(saved_level)


def _json_handlers(logger: logging.Logger) -> list[logging.Handler]:
    return [h for h in logger.handlers if isinstance(h.formatter, _JsonFormatter)]


def test_configure_installs_one_json_handler(fresh_logging):
    configure_observability(service_name='proposal-screener', otlp_endpoint=None)
    configure_observability(service_name='proposal-screener', otlp_endpoint='  ')

    assert len(_json_handlers(fresh_logging)) == 1
    assert fresh_logging.level == logging.INFO


def test_configure_installs_tracing_once_per_endpoint(fresh_logging, monkeypatch):
    calls: list[tuple[str, str]] = []
    monkeypatch.setattr(observability, '_install_tracing', lambda name, endpoint: calls.append((name, endpoint)) or True)

    configure_observability(service_name='svc', otlp_endpoint=' http://collector:4318/v1/traces ')
    configure_observability(service_name='svc', otlp_endpoint='http://collector:4318/v1/traces')

    assert calls == [('svc', 'http://collector:4318/v1/traces')]


def test_failed_tracing_install_is_retried(fresh_logging, monkeypatch):
    calls: list[str] = []
    monkeypatch.setattr(observability, '_install_tracing', lambda name, endpoint: calls.append(endpoint) and False)

    configure_observability(service_name='svc', otlp_endpoint='http://collector')
    configure_observability(service_name='svc', otlp_endpoint='http://collector')

    assert calls == ['http://collector', 'http://collector']


def test_set_and_get_proposal_context():
    set_proposal_context(proposal_id='17', source='stream')
    assert get_proposal_id() == '17'
    assert get_source() == 'stream'
    set_proposal_context()
    assert get_proposal_id() is None
    assert get_source() is None


def test_json_formatter_includes_correlation_fields():
    set_proposal_context(proposal_id='42', source='api')
    try:
        record = get_logger('proposal_screener.fmt').makeRecord(
            'proposal_screener.fmt', logging.INFO, 'x.py', 1, 'proposal_screened approved=%s', (True,), None,
        )
        parsed = json.loads(_JsonFormatter().format(record))
    finally:
        set_proposal_context()

    assert parsed['msg'] == 'proposal_screened approved=True'
    assert parsed['proposal_id'] == '42'
    assert parsed['source'] == 'api'
    assert parsed['level'] == 'INFO'


def test_json_formatter_prefers_record_extra_and_keeps_exception():
    set_proposal_context()
    try:
        raise ValueError('boom')
    except ValueError:
        exc_info = sys.exc_info()
    record = get_logger('proposal_screener.exc').makeRecord(
        'proposal_screener.exc', logging.ERROR, 'x.py', 1, 'failed', (), exc_info, extra={'proposal_id': '9'},
    )
    parsed = json.loads(_JsonFormatter().format(record))

    assert parsed['proposal_id'] == '9'
    assert 'source' not in parsed
    assert 'boom' in parsed['exc']


def test_start_span_is_usable_without_tracer_provider():
    with start_span('screen_proposal', proposal_id='1', source=None) as span:
        assert span is not None
