from __future__ import annotations

import httpx

from proposal_screener.adapters.base import build_judgment_prompt
from proposal_screener.domain.errors import ProviderError
from proposal_screener.domain.models import Proposal
from proposal_screener.observability import get_logger

_log = get_logger('proposal_screener.adapters.anthropic')

ANTHROPIC_MESSAGES_URL = 'https://api.anthropic.com/v1/messages'
ANTHROPIC_VERSION = '2023-06-01'


class AnthropicJudgmentProvider:
    """Judgment provider backed by the Anthropic Messages API.

    Returns the raw text of the first content block; structure extraction is
    left to the decision engine.
    """

    def __init__(
        self,
        *,
        api_key: str | None,
        model: str = 'claude-3-5-sonnet-20241022',
        timeout_seconds: float = 10.0,
        max_tokens: int = 200,
        url: str = ANTHROPIC_MESSAGES_URL,
        client: httpx.Client | None = None,
    ):
        self.api_key = str(api_key or '').strip() or None
        self.model = model
        self.timeout_seconds = float(timeout_seconds)
        self.max_tokens = int(max_tokens)
        self.url = url
        self._client = client

    @property
    def configured(self) -> bool:
        return self.api_key is not None

    def judge(self, proposal: Proposal) -> str:
        if not self.api_key:
            raise ProviderError('no Anthropic API key configured')
        body = {
            'model': self.model,
            'max_tokens': self.max_tokens,
            'messages': [{'role': 'user', 'content': build_judgment_prompt(proposal)}],
        }
        headers = {
            'content-type': 'application/json',
            'x-api-key': self.api_key,
            'anthropic-version': ANTHROPIC_VERSION,
        }
        _log.info('judgment_request proposal_id=%s model=%s', proposal.proposal_id, self.model)
        try:
            if self._client is not None:
                response = self._client.post(self.url, json=body, headers=headers, timeout=self.timeout_seconds)
            else:
                with httpx.Client(timeout=self.timeout_seconds) as client:
                    response = client.post(self.url, json=body, headers=headers)
        except httpx.TimeoutException as exc:
            raise ProviderError(f'judgment request timed out after {self.timeout_seconds:g}s') from exc
        except httpx.HTTPError as exc:
            raise ProviderError(f'judgment request failed: {exc}') from exc

        if response.status_code >= 400:
            raise ProviderError(f'Anthropic API error: {response.status_code} {response.reason_phrase}'.strip())
        try:
            data = response.json()
            text = data['content'][0]['text']
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise ProviderError('malformed Anthropic API response') from exc
        return str(text or '')
