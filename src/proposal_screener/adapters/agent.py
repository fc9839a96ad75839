from __future__ import annotations

import httpx

from proposal_screener.domain.errors import AgentApiError
from proposal_screener.observability import get_logger

_log = get_logger('proposal_screener.adapters.agent')

YOCTO_PER_NEAR = 10**24


def yocto_to_near(value: object) -> str:
    """Whole-NEAR rendering of a yoctoNEAR amount; ``unknown`` when it cannot be read."""
    try:
        amount = int(str(value).strip())
    except (TypeError, ValueError):
        return 'unknown'
    return str(amount // YOCTO_PER_NEAR)


class AgentApiClient:
    """Read-only calls against the local agent API that signs on the agent's behalf."""

    def __init__(self, *, base_url: str, timeout_seconds: float = 10.0, client: httpx.Client | None = None):
        self.base_url = base_url.rstrip('/')
        self.timeout_seconds = float(timeout_seconds)
        self._client = client

    def _call(self, method: str) -> object:
        url = f'{self.base_url}/api/agent/{method}'
        try:
            if self._client is not None:
                response = self._client.post(url, json={}, timeout=self.timeout_seconds)
            else:
                with httpx.Client(timeout=self.timeout_seconds) as client:
                    response = client.post(url, json={})
        except httpx.TimeoutException as exc:
            raise AgentApiError(f'agent API {method} timed out after {self.timeout_seconds:g}s') from exc
        except httpx.HTTPError as exc:
            raise AgentApiError(f'agent API {method} failed: {exc}') from exc
        if response.status_code >= 400:
            raise AgentApiError(
                f'agent API {method} failed with status {response.status_code}',
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise AgentApiError(f'agent API {method} returned invalid JSON') from exc

    def account_id(self) -> str:
        payload = self._call('getAccountId')
        account = payload.get('accountId') if isinstance(payload, dict) else payload
        text = str(account or '').strip()
        if not text:
            raise AgentApiError('agent API getAccountId returned no account')
        return text

    def balance(self) -> dict:
        payload = self._call('getBalance')
        if not isinstance(payload, dict):
            raise AgentApiError('agent API getBalance returned unexpected payload')
        _log.info('agent_balance available=%s', payload.get('available'))
        return payload
