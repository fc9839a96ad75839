from __future__ import annotations

import time

import httpx

from proposal_screener.adapters.base import ExecutionReceipt
from proposal_screener.domain.errors import ExecutionError, InsufficientDepositError
from proposal_screener.observability import get_logger

_log = get_logger('proposal_screener.adapters.execution')

APPROVE_METHOD = 'approve_proposal'

_INSUFFICIENT_PATTERNS = (
    'notenoughbalance',
    'not enough balance',
    'insufficient',
    'lackbalanceforstate',
    'attached deposit',
)


def extract_transaction_hash(payload: object) -> str | None:
    if not isinstance(payload, dict):
        return None
    transaction = payload.get('transaction')
    outcome = payload.get('transaction_outcome')
    candidates = (
        payload.get('transactionHash'),
        transaction.get('hash') if isinstance(transaction, dict) else None,
        outcome.get('id') if isinstance(outcome, dict) else None,
        payload.get('hash'),
        payload.get('txHash'),
    )
    for item in candidates:
        text = str(item or '').strip()
        if text:
            return text
    return None


def _approve_args(proposal_id: str) -> dict:
    try:
        numeric_id: int | str = int(proposal_id)
    except ValueError:
        numeric_id = proposal_id
    return {'proposal_id': numeric_id, 'voting_start_time_sec': None}


def _raise_for_failure(*, text: str, status_code: int | None, context: str) -> None:
    lowered = text.lower()
    message = f'{context}: {text}'.strip() if text else context
    if any(pattern in lowered for pattern in _INSUFFICIENT_PATTERNS):
        raise InsufficientDepositError(message, status_code=status_code)
    raise ExecutionError(message, status_code=status_code)


class _HttpExecutionClient:
    mode = 'http'

    def __init__(self, *, timeout_seconds: float = 10.0, client: httpx.Client | None = None):
        self.timeout_seconds = float(timeout_seconds)
        self._client = client

    def _post(self, url: str, body: dict) -> httpx.Response:
        try:
            if self._client is not None:
                return self._client.post(url, json=body, timeout=self.timeout_seconds)
            with httpx.Client(timeout=self.timeout_seconds) as client:
                return client.post(url, json=body)
        except httpx.TimeoutException as exc:
            raise ExecutionError(f'{self.mode} request timed out after {self.timeout_seconds:g}s') from exc
        except httpx.HTTPError as exc:
            raise ExecutionError(f'{self.mode} request failed: {exc}') from exc

    def _receipt(self, response: httpx.Response) -> ExecutionReceipt:
        if response.status_code >= 400:
            _raise_for_failure(
                text=response.text.strip(),
                status_code=response.status_code,
                context=f'{self.mode} execution failed with status {response.status_code}',
            )
        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if not isinstance(payload, dict):
            payload = {'result': payload}
        error = payload.get('error')
        if error:
            _raise_for_failure(
                text=str(error.get('message') if isinstance(error, dict) else error),
                status_code=response.status_code,
                context=f'{self.mode} execution rejected',
            )
        return ExecutionReceipt(transaction_hash=extract_transaction_hash(payload), raw=payload)


class AgentContractExecutionClient(_HttpExecutionClient):
    """Calls ``approve_proposal`` on the agent contract through the local agent API.

    The agent contract forwards the approval to the voting contract and pays
    the deposit from its own balance.
    """

    mode = 'agent_contract'

    def __init__(
        self,
        *,
        agent_api_url: str,
        agent_contract_id: str,
        gas: str = '50000000000000',
        timeout_seconds: float = 10.0,
        client: httpx.Client | None = None,
    ):
        super().__init__(timeout_seconds=timeout_seconds, client=client)
        self.agent_api_url = agent_api_url.rstrip('/')
        self.agent_contract_id = agent_contract_id
        self.gas = gas

    def execute(self, proposal_id: str) -> ExecutionReceipt:
        body = {
            'contractId': self.agent_contract_id,
            'methodName': APPROVE_METHOD,
            'args': _approve_args(proposal_id),
            'gas': self.gas,
        }
        _log.info('execution_submit mode=%s proposal_id=%s contract=%s', self.mode, proposal_id, self.agent_contract_id)
        return self._receipt(self._post(f'{self.agent_api_url}/api/agent/call', body))


class DelegatedExecutionClient(_HttpExecutionClient):
    """Submits a ``FunctionCall`` action to an external execution service that signs and broadcasts it."""

    mode = 'delegated'

    def __init__(
        self,
        *,
        service_url: str,
        voting_contract_id: str,
        gas: str = '50000000000000',
        deposit: str = '1',
        timeout_seconds: float = 10.0,
        client: httpx.Client | None = None,
    ):
        super().__init__(timeout_seconds=timeout_seconds, client=client)
        self.service_url = service_url.rstrip('/')
        self.voting_contract_id = voting_contract_id
        self.gas = gas
        self.deposit = deposit

    def execute(self, proposal_id: str) -> ExecutionReceipt:
        body = {
            'receiverId': self.voting_contract_id,
            'actions': [
                {
                    'type': 'FunctionCall',
                    'params': {
                        'methodName': APPROVE_METHOD,
                        'args': _approve_args(proposal_id),
                        'gas': self.gas,
                        'deposit': self.deposit,
                    },
                }
            ],
        }
        _log.info('execution_submit mode=%s proposal_id=%s receiver=%s', self.mode, proposal_id, self.voting_contract_id)
        return self._receipt(self._post(f'{self.service_url}/api/screener/execute-transaction', body))


class SimulatedExecutionClient:
    mode = 'simulated'

    def execute(self, proposal_id: str) -> ExecutionReceipt:
        tx_hash = f'simulated_approve_{proposal_id}_{int(time.time() * 1000)}'
        _log.info('execution_simulated proposal_id=%s tx=%s', proposal_id, tx_hash)
        return ExecutionReceipt(transaction_hash=tx_hash, raw={'simulated': True})
