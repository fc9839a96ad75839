from __future__ import annotations

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI

from proposal_screener.adapters import AdapterFactory
from proposal_screener.api import create_app
from proposal_screener.config import Settings, load_settings
from proposal_screener.decision import DecisionEngine, ScreeningCriteria
from proposal_screener.observability import configure_observability
from proposal_screener.service import ScreeningService
from proposal_screener.stream import EventStreamListener, KeyedSerialExecutor, ReconnectPolicy, WebsocketTransport

_log = logging.getLogger(__name__)


def build_listener(settings: Settings, service: ScreeningService) -> EventStreamListener | None:
    if not settings.stream_enabled:
        _log.info('stream_disabled reason=configuration')
        return None
    if not settings.voting_contract_id:
        _log.info('stream_disabled reason=missing_voting_contract')
        return None
    return EventStreamListener(
        service=service,
        contract_id=settings.voting_contract_id,
        url=settings.event_stream_url,
        event_standard=settings.event_standard,
        transport=WebsocketTransport(open_timeout_seconds=settings.http_timeout_seconds),
        fetcher=AdapterFactory.proposal_fetcher(settings),
        policy=ReconnectPolicy(
            base_seconds=settings.reconnect_base_seconds,
            cap_seconds=settings.reconnect_cap_seconds,
            max_attempts=settings.reconnect_max_attempts,
        ),
        dispatcher=KeyedSerialExecutor(max_workers=settings.dispatch_workers),
    )


def build_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or load_settings()
    configure_observability(
        service_name=settings.service_name,
        otlp_endpoint=settings.otel_endpoint,
    )

    engine = DecisionEngine(
        provider=AdapterFactory.judgment_provider(settings),
        criteria=ScreeningCriteria.from_lists(
            trusted=settings.trusted_proposers,
            blocked=settings.blocked_proposers,
        ),
    )
    service = ScreeningService(
        decision_engine=engine,
        execution_client=AdapterFactory.execution_client(settings),
        voting_contract_id=settings.voting_contract_id,
        agent_account_id=settings.agent_account_id,
        agent_contract_id=settings.agent_contract_id,
        agent_api=AdapterFactory.agent_api(settings),
    )
    listener = build_listener(settings, service)
    _log.info(
        'screener_configured autonomous=%s mode=%s contract=%s stream=%s',
        service.autonomous_mode,
        service.execution_mode,
        settings.voting_contract_id,
        listener is not None,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):  # noqa: ARG001
        if listener is not None:
            listener.start()
        try:
            yield
        finally:
            if listener is not None:
                listener.shutdown()

    return create_app(service=service, listener=listener, lifespan=lifespan)


app = build_app()
