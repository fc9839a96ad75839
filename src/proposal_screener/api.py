from __future__ import annotations

import logging

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from proposal_screener.decision import DecisionEngine
from proposal_screener.domain.errors import AgentApiError, AlreadyExecutedError, InputValidationError
from proposal_screener.domain.models import ExecutionStatus, ScreeningResult, utc_now_iso
from proposal_screener.service import ScreeningService
from proposal_screener.stream import EventStreamListener

_log = logging.getLogger(__name__)

DEFAULT_TEST_PROPOSAL = {
    'title': 'Test NEAR DeFi Protocol Development',
    'description': (
        'Building a new automated market maker (AMM) protocol for the NEAR ecosystem. '
        'Budget: $10,000 for 3 months of development. Our team has previous DeFi experience.'
    ),
    'proposer_id': 'developer.testnet',
}


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ScreenRequest(ApiModel):
    proposal_id: str | int | None = Field(default=None)
    proposal: dict


class ExecuteRequest(ApiModel):
    force: bool = Field(default=False)


class CriteriaRequest(ApiModel):
    trusted_proposers: list[str] | None = Field(default=None)
    blocked_proposers: list[str] | None = Field(default=None)


class JudgmentProbeRequest(ApiModel):
    proposal_id: str | None = Field(default=None, max_length=128)
    proposal: dict | None = Field(default=None)


class ScreenResponse(ApiModel):
    proposal_id: str
    approved: bool
    reasons: list[str]
    executed: bool
    transaction_hash: str | None = None
    timestamp: str


class ExecutionStatusResponse(ApiModel):
    proposal_id: str
    executed: bool
    success: bool
    transaction_hash: str | None
    error: str | None
    attempted_at: str | None
    executed_at: str | None
    attempts: int
    forced: bool


class ProposalStatusResponse(ApiModel):
    proposal_id: str
    screened: bool
    message: str | None = None
    approved: bool | None = None
    reasons: list[str] = Field(default_factory=list)
    timestamp: str | None = None
    executed: bool = False
    execution_result: ExecutionStatusResponse | None = None


class ExecutionSummaryResponse(ApiModel):
    transaction_hash: str | None
    error: str | None
    timestamp: str


class ExecuteResponse(ApiModel):
    success: bool
    proposal_id: str
    forced: bool
    execution: ExecutionSummaryResponse
    status: ExecutionStatusResponse


class ScreeningBreakdownResponse(ApiModel):
    approved: int
    not_approved: int


class ScreeningTotalsResponse(ApiModel):
    total_screened: int
    breakdown: ScreeningBreakdownResponse
    last_screened: str | None


class ExecutionTotalsResponse(ApiModel):
    total_executions: int
    successful: int
    failed: int
    pending: int
    last_execution: str | None


class StreamStatusResponse(ApiModel):
    enabled: bool
    connected: bool = False
    connecting: bool = False
    state: str = 'disabled'
    reconnect_attempts: int = 0
    max_reconnect_attempts: int = 0
    exhausted: bool = False
    last_error: str | None = None
    voting_contract: str | None = None
    events_received: int = 0
    last_event_at: str | None = None


class SystemStatusResponse(ApiModel):
    autonomous_mode: bool
    configured: bool
    mode: str
    voting_contract: str | None
    agent_account: str | None
    agent_contract: str | None
    screening: ScreeningTotalsResponse
    execution: ExecutionTotalsResponse
    stream: StreamStatusResponse


class ResultSummaryResponse(ApiModel):
    proposal_id: str
    approved: bool
    reasons: list[str]
    executed: bool
    timestamp: str


class ResultsResponse(ApiModel):
    results: list[ResultSummaryResponse]


class ExecutionHistoryResponse(ApiModel):
    history: list[ExecutionStatusResponse]
    total_executions: int
    successful_executions: int
    failed_executions: int


class ClearHistoryResponse(ApiModel):
    message: str
    cleared_results: int
    cleared_executions: int
    timestamp: str


class CriteriaResponse(ApiModel):
    trusted_proposers: list[str]
    blocked_proposers: list[str]


class AgentInfoResponse(ApiModel):
    agent_account_id: str
    configured_account_id: str | None
    voting_contract: str | None
    agent_contract: str | None
    mode: str


class AgentBalanceResponse(ApiModel):
    agent_account: str
    balance: dict
    balance_in_near: str
    timestamp: str


class JudgmentProbeResponse(ApiModel):
    proposal_id: str
    proposal: dict
    approved: bool
    reasons: list[str]
    timestamp: str


class ValidationErrorResponse(BaseModel):
    code: str
    message: str
    field: str | None = None


class AppState:
    def __init__(self, service: ScreeningService, listener: EventStreamListener | None = None):
        self.service = service
        self.listener = listener


def _to_execution_status_response(status: ExecutionStatus) -> ExecutionStatusResponse:
    return ExecutionStatusResponse(
        proposal_id=status.proposal_id,
        executed=status.executed,
        success=status.success,
        transaction_hash=status.transaction_hash,
        error=status.error,
        attempted_at=status.attempted_at,
        executed_at=status.executed_at,
        attempts=status.attempts,
        forced=status.forced,
    )


def _to_screen_response(result: ScreeningResult) -> ScreenResponse:
    outcome = result.execution_result
    return ScreenResponse(
        proposal_id=result.proposal_id,
        approved=result.approved,
        reasons=list(result.reasons),
        executed=result.executed,
        transaction_hash=outcome.transaction_hash if outcome else None,
        timestamp=result.timestamp,
    )


def _to_stream_status_response(listener: EventStreamListener | None) -> StreamStatusResponse:
    if listener is None:
        return StreamStatusResponse(enabled=False)
    snapshot = listener.status()
    return StreamStatusResponse(
        enabled=True,
        connected=snapshot.connected,
        connecting=snapshot.connecting,
        state=snapshot.state.value,
        reconnect_attempts=snapshot.attempt_count,
        max_reconnect_attempts=snapshot.max_attempts,
        exhausted=snapshot.exhausted,
        last_error=snapshot.last_error,
        voting_contract=listener.contract_id,
        events_received=listener.events_received,
        last_event_at=listener.last_event_at,
    )


def create_app(
    *,
    service: ScreeningService | None = None,
    decision_engine: DecisionEngine | None = None,
    listener: EventStreamListener | None = None,
    lifespan=None,
) -> FastAPI:
    if service is None:
        if decision_engine is None:
            raise ValueError('create_app needs a service or a decision_engine')
        service = ScreeningService(decision_engine=decision_engine)

    app = FastAPI(title='proposal-screener api', version='0.1.0', lifespan=lifespan)
    app.state.container = AppState(service=service, listener=listener)

    def _field_from_loc(loc: tuple | list | None) -> str | None:
        if not loc:
            return None
        source_prefixes = {'body', 'query', 'path', 'header', 'cookie'}
        parts = list(loc)
        if parts and str(parts[0]) in source_prefixes:
            parts = parts[1:]
        if not parts:
            return None

        field = ''
        for part in parts:
            if isinstance(part, int):
                field += f'[{part}]'
                continue

            text = str(part)
            if field:
                field += f'.{text}'
            else:
                field = text

        return field or None

    def _validation_error_payload(*, message: str, field: str | None = None, code: str = 'validation_error') -> dict:
        payload: dict[str, str] = {
            'code': code,
            'message': message,
        }
        if field:
            payload['field'] = field
        return payload

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation_error(request: Request, exc: RequestValidationError):  # noqa: ARG001
        details = exc.errors()
        if details:
            first = details[0]
            message = str(first.get('msg') or 'invalid request body')
            field = _field_from_loc(first.get('loc'))
        else:
            message = 'invalid request body'
            field = None
        return JSONResponse(
            status_code=400,
            content=_validation_error_payload(message=message, field=field),
        )

    @app.exception_handler(InputValidationError)
    async def handle_input_validation_error(request: Request, exc: InputValidationError):  # noqa: ARG001
        return JSONResponse(
            status_code=400,
            content=_validation_error_payload(
                message=str(exc),
                field=exc.field,
                code=exc.code,
            ),
        )

    @app.exception_handler(AlreadyExecutedError)
    async def handle_already_executed(request: Request, exc: AlreadyExecutedError):  # noqa: ARG001
        _log.info('execution_rejected proposal_id=%s reason=already_executed', exc.proposal_id)
        return JSONResponse(
            status_code=400,
            content=_validation_error_payload(message=str(exc), field='proposal_id', code=exc.code),
        )

    @app.exception_handler(AgentApiError)
    async def handle_agent_api_error(request: Request, exc: AgentApiError):  # noqa: ARG001
        _log.warning('agent_api_failed error=%s', exc)
        return JSONResponse(
            status_code=502,
            content=_validation_error_payload(message=str(exc), code=exc.code),
        )

    def get_service() -> ScreeningService:
        return app.state.container.service

    def get_listener() -> EventStreamListener | None:
        return app.state.container.listener

    @app.get('/healthz')
    def healthz() -> dict[str, str]:
        return {'status': 'ok'}

    @app.post('/api/screener/screen', response_model=ScreenResponse, responses={400: {'model': ValidationErrorResponse}})
    def screen_proposal(
        payload: ScreenRequest,
        service: ScreeningService = Depends(get_service),
    ) -> ScreenResponse:
        result = service.screen_and_maybe_execute(payload.proposal_id, payload.proposal, source='api')
        return _to_screen_response(result)

    @app.get('/api/screener/status', response_model=SystemStatusResponse)
    def get_system_status(
        service: ScreeningService = Depends(get_service),
        listener: EventStreamListener | None = Depends(get_listener),
    ) -> SystemStatusResponse:
        screening = service.screening_stats()
        execution = service.execution_stats()
        return SystemStatusResponse(
            autonomous_mode=service.autonomous_mode,
            configured=service.configured,
            mode=service.execution_mode,
            voting_contract=service.voting_contract_id,
            agent_account=service.agent_account_id,
            agent_contract=service.agent_contract_id,
            screening=ScreeningTotalsResponse(
                total_screened=int(screening['total']),
                breakdown=ScreeningBreakdownResponse(
                    approved=int(screening['approved']),
                    not_approved=int(screening['not_approved']),
                ),
                last_screened=screening['last_screened'],
            ),
            execution=ExecutionTotalsResponse(
                total_executions=int(execution['total']),
                successful=int(execution['successful']),
                failed=int(execution['failed']),
                pending=int(execution['pending']),
                last_execution=execution['last_execution'],
            ),
            stream=_to_stream_status_response(listener),
        )

    @app.get('/api/screener/status/{proposal_id}', response_model=ProposalStatusResponse)
    def get_proposal_status(
        proposal_id: str,
        service: ScreeningService = Depends(get_service),
    ) -> ProposalStatusResponse:
        result = service.get_result(proposal_id)
        status = service.get_execution_status(proposal_id)
        if result is None:
            return ProposalStatusResponse(
                proposal_id=proposal_id,
                screened=False,
                message='proposal not yet screened',
            )
        return ProposalStatusResponse(
            proposal_id=result.proposal_id,
            screened=True,
            approved=result.approved,
            reasons=list(result.reasons),
            timestamp=result.timestamp,
            executed=bool(status and status.executed),
            execution_result=_to_execution_status_response(status) if status else None,
        )

    @app.post(
        '/api/screener/execute/{proposal_id}',
        response_model=ExecuteResponse,
        responses={400: {'model': ValidationErrorResponse}},
    )
    def execute_proposal(
        proposal_id: str,
        payload: ExecuteRequest | None = None,
        service: ScreeningService = Depends(get_service),
    ) -> ExecuteResponse:
        force = bool(payload.force) if payload is not None else False
        view = service.execute_proposal(proposal_id, force=force)
        return ExecuteResponse(
            success=view.outcome.success,
            proposal_id=view.proposal_id,
            forced=view.forced,
            execution=ExecutionSummaryResponse(
                transaction_hash=view.outcome.transaction_hash,
                error=view.outcome.error,
                timestamp=view.outcome.timestamp,
            ),
            status=_to_execution_status_response(view.status),
        )

    @app.get('/api/screener/results', response_model=ResultsResponse)
    def list_results(service: ScreeningService = Depends(get_service)) -> ResultsResponse:
        rows = service.list_results()
        return ResultsResponse(
            results=[
                ResultSummaryResponse(
                    proposal_id=row.proposal_id,
                    approved=row.approved,
                    reasons=list(row.reasons),
                    executed=service.is_executed(row.proposal_id),
                    timestamp=row.timestamp,
                )
                for row in rows
            ]
        )

    @app.get('/api/screener/executions', response_model=ExecutionHistoryResponse)
    def list_executions(
        service: ScreeningService = Depends(get_service),
        limit: int = Query(default=10, ge=1, le=500),
    ) -> ExecutionHistoryResponse:
        stats = service.execution_stats()
        return ExecutionHistoryResponse(
            history=[_to_execution_status_response(s) for s in service.list_executions(limit=limit)],
            total_executions=int(stats['total']),
            successful_executions=int(stats['successful']),
            failed_executions=int(stats['failed']),
        )

    @app.delete('/api/screener/history', response_model=ClearHistoryResponse)
    def clear_history(service: ScreeningService = Depends(get_service)) -> ClearHistoryResponse:
        cleared = service.clear_history()
        return ClearHistoryResponse(
            message='history cleared',
            cleared_results=int(cleared['cleared_results']),
            cleared_executions=int(cleared['cleared_executions']),
            timestamp=utc_now_iso(),
        )

    @app.get('/api/screener/criteria', response_model=CriteriaResponse)
    def get_criteria(service: ScreeningService = Depends(get_service)) -> CriteriaResponse:
        return CriteriaResponse(**service.decision_engine.criteria.to_dict())

    @app.put('/api/screener/criteria', response_model=CriteriaResponse)
    def update_criteria(
        payload: CriteriaRequest,
        service: ScreeningService = Depends(get_service),
    ) -> CriteriaResponse:
        updated = service.decision_engine.update_criteria(
            trusted_proposers=payload.trusted_proposers,
            blocked_proposers=payload.blocked_proposers,
        )
        return CriteriaResponse(**updated.to_dict())

    @app.get('/api/screener/agent-info', response_model=AgentInfoResponse)
    def get_agent_info(service: ScreeningService = Depends(get_service)) -> AgentInfoResponse:
        return AgentInfoResponse(**service.agent_info())

    @app.get('/api/screener/balance', response_model=AgentBalanceResponse)
    def get_agent_balance(service: ScreeningService = Depends(get_service)) -> AgentBalanceResponse:
        return AgentBalanceResponse(**service.agent_balance())

    @app.post('/api/screener/test-judgment', response_model=JudgmentProbeResponse)
    def test_judgment(
        payload: JudgmentProbeRequest | None = None,
        service: ScreeningService = Depends(get_service),
    ) -> JudgmentProbeResponse:
        proposal = dict(DEFAULT_TEST_PROPOSAL)
        probe_id = f'judgment-test-{utc_now_iso()}'
        if payload is not None:
            if payload.proposal is not None:
                proposal = dict(payload.proposal)
            if payload.proposal_id:
                probe_id = payload.proposal_id
        decision = service.judge_only(proposal)
        return JudgmentProbeResponse(
            proposal_id=probe_id,
            proposal=proposal,
            approved=decision.approved,
            reasons=list(decision.reasons),
            timestamp=utc_now_iso(),
        )

    @app.get('/api/debug/stream-status', response_model=StreamStatusResponse)
    def get_stream_status(listener: EventStreamListener | None = Depends(get_listener)) -> StreamStatusResponse:
        return _to_stream_status_response(listener)

    return app
