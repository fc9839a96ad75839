from __future__ import annotations

from fastapi.testclient import TestClient
import pytest

from proposal_screener.adapters.base import ExecutionReceipt
from proposal_screener.api import create_app
from proposal_screener.decision import DecisionEngine, ScreeningCriteria
from proposal_screener.domain.errors import AgentApiError, ExecutionError
from proposal_screener.domain.models import Proposal
from proposal_screener.service import ScreeningService
from proposal_screener.stream import EventStreamListener, ReconnectPolicy


class ScriptedProvider:
    def __init__(self, decision: str = 'approve'):
        self.decision = decision
        self.calls = 0

    def judge(self, proposal: Proposal):
        self.calls += 1
        return {'decision': self.decision, 'reasons': [f'judged {self.decision}']}


class CountingExecutionClient:
    mode = 'agent_contract'

    def __init__(self, *, fail_first: bool = False):
        self.calls: list[str] = []
        self.fail_first = fail_first

    def execute(self, proposal_id: str) -> ExecutionReceipt:
        self.calls.append(proposal_id)
        if self.fail_first and len(self.calls) == 1:
            raise ExecutionError('agent api unavailable')
        return ExecutionReceipt(transaction_hash=f'hash-{proposal_id}', raw={})


def build_client(
    *,
    decision: str = 'approve',
    autonomous: bool = True,
    fail_first: bool = False,
    listener_factory=None,
    agent_api=None,
) -> tuple[TestClient, ScreeningService, CountingExecutionClient]:
    execution = CountingExecutionClient(fail_first=fail_first)
    service = ScreeningService(
        decision_engine=DecisionEngine(
            provider=ScriptedProvider(decision),
            criteria=ScreeningCriteria.from_lists(blocked=['scammer.test']),
        ),
        execution_client=execution if autonomous else None,
        voting_contract_id='vote.testnet',
        agent_contract_id='agent.vote.testnet' if autonomous else None,
        agent_api=agent_api,
    )
    listener = listener_factory(service) if listener_factory else None
    return TestClient(create_app(service=service, listener=listener)), service, execution


def test_healthz():
    client, _, _ = build_client()
    resp = client.get('/healthz')
    assert resp.status_code == 200
    assert resp.json() == {'status': 'ok'}


def test_screen_returns_camel_case_result_and_executes():
    client, _, execution = build_client()

    resp = client.post('/api/screener/screen', json={'proposalId': 1, 'proposal': {'title': 'Grant', 'proposer_id': 'dev.testnet'}})

    assert resp.status_code == 200
    body = resp.json()
    assert body['proposalId'] == '1'
    assert body['approved'] is True
    assert body['executed'] is True
    assert body['transactionHash'] == 'hash-1'
    assert body['reasons'] == ['judged approve', 'executed: transaction hash-1']
    assert 'timestamp' in body
    assert execution.calls == ['1']


def test_screen_twice_does_not_execute_twice():
    client, _, execution = build_client()
    payload = {'proposalId': '2', 'proposal': {'title': 'Grant'}}

    client.post('/api/screener/screen', json=payload)
    second = client.post('/api/screener/screen', json=payload).json()

    assert execution.calls == ['2']
    assert second['executed'] is True
    assert second['reasons'][-1] == 'already executed'


def test_screen_missing_proposal_id_is_400():
    client, service, _ = build_client()

    resp = client.post('/api/screener/screen', json={'proposal': {'title': 'x'}})

    assert resp.status_code == 400
    assert resp.json() == {'code': 'validation_error', 'message': 'proposal_id is required', 'field': 'proposal_id'}
    assert service.list_results() == []


def test_screen_missing_proposal_is_400():
    client, _, _ = build_client()

    resp = client.post('/api/screener/screen', json={'proposalId': '3'})

    assert resp.status_code == 400
    body = resp.json()
    assert body['code'] == 'validation_error'
    assert body['field'] == 'proposal'


def test_proposal_status_before_and_after_screening():
    client, _, _ = build_client(autonomous=False)

    before = client.get('/api/screener/status/9').json()
    assert before['screened'] is False
    assert before['proposalId'] == '9'

    client.post('/api/screener/screen', json={'proposalId': '9', 'proposal': {'proposer_id': 'scammer.test'}})
    after = client.get('/api/screener/status/9').json()

    assert after['screened'] is True
    assert after['approved'] is False
    assert after['reasons'] == ['blocked proposer: scammer.test']
    assert after['executed'] is False
    assert after['executionResult'] is None


def test_execute_rejects_unscreened_and_unapproved_unless_forced():
    client, _, execution = build_client(decision='reject')

    unscreened = client.post('/api/screener/execute/5', json={})
    assert unscreened.status_code == 400
    assert unscreened.json()['code'] == 'not_screened'

    client.post('/api/screener/screen', json={'proposalId': '5', 'proposal': {'title': 'Meh'}})
    unapproved = client.post('/api/screener/execute/5')
    assert unapproved.status_code == 400
    assert unapproved.json()['code'] == 'not_approved'
    assert execution.calls == []

    forced = client.post('/api/screener/execute/5', json={'force': True})
    assert forced.status_code == 200
    body = forced.json()
    assert body['success'] is True
    assert body['forced'] is True
    assert body['execution']['transactionHash'] == 'hash-5'
    assert body['status']['executed'] is True

    again = client.post('/api/screener/execute/5', json={'force': True})
    assert again.status_code == 400
    assert again.json()['code'] == 'already_executed'
    assert execution.calls == ['5']


def test_execute_retries_after_failed_autonomous_attempt():
    client, _, execution = build_client(fail_first=True)

    screened = client.post('/api/screener/screen', json={'proposalId': '6', 'proposal': {'title': 'Retry'}}).json()
    assert screened['executed'] is False
    assert screened['reasons'][-1] == 'execution failed: agent api unavailable'

    resp = client.post('/api/screener/execute/6')
    assert resp.status_code == 200
    assert resp.json()['status']['attempts'] == 2
    assert execution.calls == ['6', '6']


def test_execute_without_execution_client_is_400():
    client, _, _ = build_client(autonomous=False)
    resp = client.post('/api/screener/execute/1', json={'force': True})
    assert resp.status_code == 400
    assert resp.json()['code'] == 'execution_not_configured'


def test_system_status_reports_totals():
    client, _, _ = build_client()
    client.post('/api/screener/screen', json={'proposalId': '1', 'proposal': {'title': 'ok'}})
    client.post('/api/screener/screen', json={'proposalId': '2', 'proposal': {'proposer_id': 'scammer.test'}})

    body = client.get('/api/screener/status').json()

    assert body['autonomousMode'] is True
    assert body['configured'] is True
    assert body['mode'] == 'agent_contract'
    assert body['votingContract'] == 'vote.testnet'
    assert body['screening']['totalScreened'] == 2
    assert body['screening']['breakdown'] == {'approved': 1, 'notApproved': 1}
    assert body['execution']['totalExecutions'] == 1
    assert body['execution']['successful'] == 1
    assert body['execution']['pending'] == 0
    assert body['stream'] == {
        'enabled': False,
        'connected': False,
        'connecting': False,
        'state': 'disabled',
        'reconnectAttempts': 0,
        'maxReconnectAttempts': 0,
        'exhausted': False,
        'lastError': None,
        'votingContract': None,
        'eventsReceived': 0,
        'lastEventAt': None,
    }


def test_results_executions_and_clear_history():
    client, _, _ = build_client()
    client.post('/api/screener/screen', json={'proposalId': '1', 'proposal': {'title': 'ok'}})

    results = client.get('/api/screener/results').json()['results']
    assert results[0]['proposalId'] == '1'
    assert results[0]['executed'] is True

    executions = client.get('/api/screener/executions', params={'limit': 5}).json()
    assert executions['totalExecutions'] == 1
    assert executions['history'][0]['transactionHash'] == 'hash-1'

    cleared = client.delete('/api/screener/history').json()
    assert cleared['clearedResults'] == 1
    assert cleared['clearedExecutions'] == 1
    assert client.get('/api/screener/results').json() == {'results': []}


def test_criteria_round_trip_affects_decisions():
    client, _, _ = build_client(decision='reject')

    assert client.get('/api/screener/criteria').json() == {'trustedProposers': [], 'blockedProposers': ['scammer.test']}

    resp = client.put('/api/screener/criteria', json={'trustedProposers': ['foundation.test']})
    assert resp.json() == {'trustedProposers': ['foundation.test'], 'blockedProposers': ['scammer.test']}

    screened = client.post(
        '/api/screener/screen',
        json={'proposalId': '1', 'proposal': {'proposer_id': 'foundation.test'}},
    ).json()
    assert screened['approved'] is True
    assert screened['reasons'][0] == 'trusted proposer: foundation.test'


def test_judgment_probe_does_not_record():
    client, service, _ = build_client(decision='reject')

    resp = client.post('/api/screener/test-judgment', json={'proposal': {'title': 'Probe', 'proposer_id': 'scammer.test'}})

    assert resp.status_code == 200
    body = resp.json()
    assert body['approved'] is False
    assert body['reasons'] == ['judged reject']
    assert body['proposal']['title'] == 'Probe'
    assert service.list_results() == []

    default = client.post('/api/screener/test-judgment').json()
    assert default['proposal']['proposer_id'] == 'developer.testnet'


def test_stream_status_reports_listener_state():
    def make_listener(service: ScreeningService) -> EventStreamListener:
        return EventStreamListener(
            service=service,
            contract_id='vote.testnet',
            url='wss://events.example',
            policy=ReconnectPolicy(max_attempts=7),
            spawn=lambda target: None,
            scheduler=lambda delay, callback: None,
        )

    client, _, _ = build_client(listener_factory=make_listener)
    listener = client.app.state.container.listener
    listener.start()

    body = client.get('/api/debug/stream-status').json()

    assert body['enabled'] is True
    assert body['connecting'] is True
    assert body['state'] == 'connecting'
    assert body['maxReconnectAttempts'] == 7
    assert body['votingContract'] == 'vote.testnet'
    listener.shutdown()


@pytest.mark.parametrize('path', ['/api/screener/screen', '/api/screener/execute/1'])
def test_malformed_json_body_uses_error_envelope(path):
    client, _, _ = build_client()
    resp = client.post(path, content='{not json', headers={'content-type': 'application/json'})
    assert resp.status_code == 400
    assert resp.json()['code'] == 'validation_error'


class StubAgentApi:
    def __init__(self, *, available: str = '2500000000000000000000000', error: Exception | None = None):
        self.available = available
        self.error = error

    def account_id(self) -> str:
        if self.error is not None:
            raise self.error
        return 'agent.vote.testnet'

    def balance(self) -> dict:
        if self.error is not None:
            raise self.error
        return {'available': self.available, 'staked': '0'}


def test_agent_info_reports_accounts_and_mode():
    client, _, _ = build_client(agent_api=StubAgentApi())

    body = client.get('/api/screener/agent-info').json()

    assert body == {
        'agentAccountId': 'agent.vote.testnet',
        'configuredAccountId': None,
        'votingContract': 'vote.testnet',
        'agentContract': 'agent.vote.testnet',
        'mode': 'agent_contract',
    }


def test_balance_converts_available_to_whole_near():
    client, _, _ = build_client(agent_api=StubAgentApi())

    body = client.get('/api/screener/balance').json()

    assert body['agentAccount'] == 'agent.vote.testnet'
    assert body['balance'] == {'available': '2500000000000000000000000', 'staked': '0'}
    assert body['balanceInNear'] == '2'
    assert body['timestamp']


def test_agent_routes_require_configured_agent():
    client, _, _ = build_client(autonomous=False)

    for path in ('/api/screener/agent-info', '/api/screener/balance'):
        resp = client.get(path)
        assert resp.status_code == 400
        assert resp.json()['code'] == 'agent_not_configured'


def test_agent_api_failure_maps_to_bad_gateway():
    client, _, _ = build_client(agent_api=StubAgentApi(error=AgentApiError('agent API getBalance timed out after 10s')))

    resp = client.get('/api/screener/balance')

    assert resp.status_code == 502
    assert resp.json() == {
        'code': 'agent_api_unavailable',
        'message': 'agent API getBalance timed out after 10s',
    }
