from __future__ import annotations

import base64
import json

import httpx

from proposal_screener.domain.errors import ProposalNotFoundError, ProviderError
from proposal_screener.domain.models import Proposal
from proposal_screener.observability import get_logger

_log = get_logger('proposal_screener.adapters.ledger')


def _rpc_proposal_id(proposal_id: str) -> int | str:
    try:
        return int(proposal_id)
    except ValueError:
        return proposal_id


class RpcProposalFetcher:
    """Reads ``get_proposal`` from the voting contract over NEAR JSON-RPC."""

    def __init__(
        self,
        *,
        rpc_url: str,
        contract_id: str,
        timeout_seconds: float = 10.0,
        client: httpx.Client | None = None,
    ):
        self.rpc_url = rpc_url
        self.contract_id = contract_id
        self.timeout_seconds = float(timeout_seconds)
        self._client = client

    def _build_request(self, proposal_id: str) -> dict:
        args = json.dumps({'proposal_id': _rpc_proposal_id(proposal_id)}).encode('utf-8')
        return {
            'jsonrpc': '2.0',
            'id': '1',
            'method': 'query',
            'params': {
                'request_type': 'call_function',
                'finality': 'final',
                'account_id': self.contract_id,
                'method_name': 'get_proposal',
                'args_base64': base64.b64encode(args).decode('ascii'),
            },
        }

    def _post(self, body: dict) -> httpx.Response:
        if self._client is not None:
            return self._client.post(self.rpc_url, json=body, timeout=self.timeout_seconds)
        with httpx.Client(timeout=self.timeout_seconds) as client:
            return client.post(self.rpc_url, json=body)

    def fetch(self, proposal_id: str) -> Proposal:
        _log.info('proposal_fetch proposal_id=%s contract=%s', proposal_id, self.contract_id)
        try:
            response = self._post(self._build_request(proposal_id))
        except httpx.TimeoutException as exc:
            raise ProviderError(f'ledger RPC timed out after {self.timeout_seconds:g}s') from exc
        except httpx.HTTPError as exc:
            raise ProviderError(f'ledger RPC request failed: {exc}') from exc
        if response.status_code >= 400:
            raise ProviderError(f'ledger RPC request failed: {response.status_code}')

        try:
            payload = response.json()
        except ValueError as exc:
            raise ProviderError('ledger RPC returned invalid JSON') from exc
        if not isinstance(payload, dict):
            raise ProviderError(f'ledger RPC returned unexpected payload: {type(payload).__name__}')
        error = payload.get('error')
        if error:
            message = error.get('message') if isinstance(error, dict) else str(error)
            raise ProviderError(f'ledger RPC error: {message}')

        outer = payload.get('result') or {}
        if not isinstance(outer, dict):
            raise ProviderError('ledger RPC returned unexpected result')
        raw = outer.get('result') or []
        if not raw:
            raise ProposalNotFoundError(proposal_id)
        try:
            decoded = json.loads(bytes(raw).decode('utf-8'))
        except (ValueError, TypeError) as exc:
            raise ProviderError(f'could not decode proposal {proposal_id}') from exc
        if not isinstance(decoded, dict):
            raise ProposalNotFoundError(proposal_id)
        return Proposal.from_payload(proposal_id, decoded)
