from __future__ import annotations

from proposal_screener.adapters.agent import AgentApiClient
from proposal_screener.adapters.anthropic import AnthropicJudgmentProvider
from proposal_screener.adapters.base import ExecutionClient, JudgmentProvider
from proposal_screener.adapters.command import CommandJudgmentProvider
from proposal_screener.adapters.execution import (
    AgentContractExecutionClient,
    DelegatedExecutionClient,
    SimulatedExecutionClient,
)
from proposal_screener.adapters.ledger import RpcProposalFetcher
from proposal_screener.config import Settings
from proposal_screener.observability import get_logger

_log = get_logger('proposal_screener.adapters.factory')


class AdapterFactory:
    @staticmethod
    def judgment_provider(settings: Settings) -> JudgmentProvider:
        if settings.judgment_provider == 'command':
            return CommandJudgmentProvider(
                command=settings.judgment_command,
                timeout_seconds=settings.http_timeout_seconds,
            )
        return AnthropicJudgmentProvider(
            api_key=settings.anthropic_api_key,
            model=settings.anthropic_model,
            timeout_seconds=settings.http_timeout_seconds,
        )

    @staticmethod
    def proposal_fetcher(settings: Settings) -> RpcProposalFetcher | None:
        if not settings.voting_contract_id:
            return None
        return RpcProposalFetcher(
            rpc_url=settings.ledger_rpc_url,
            contract_id=settings.voting_contract_id,
            timeout_seconds=settings.http_timeout_seconds,
        )

    @staticmethod
    def agent_api(settings: Settings) -> AgentApiClient | None:
        if not (settings.agent_account_id or settings.agent_contract_id):
            return None
        return AgentApiClient(base_url=settings.agent_api_url, timeout_seconds=settings.http_timeout_seconds)

    @staticmethod
    def execution_client(settings: Settings) -> ExecutionClient | None:
        """Pick the execution backend; ``None`` leaves the service in screening-only mode."""
        if not settings.autonomous_mode:
            return None
        mode = settings.execution_mode
        if mode == 'simulated':
            return SimulatedExecutionClient()
        if mode == 'agent_contract':
            return AgentContractExecutionClient(
                agent_api_url=settings.agent_api_url,
                agent_contract_id=str(settings.agent_contract_id),
                gas=settings.approve_gas,
                timeout_seconds=settings.http_timeout_seconds,
            )
        if not settings.execution_service_url:
            _log.warning('execution_disabled reason=missing_execution_service_url mode=%s', mode)
            return None
        return DelegatedExecutionClient(
            service_url=settings.execution_service_url,
            voting_contract_id=str(settings.voting_contract_id),
            gas=settings.approve_gas,
            deposit=settings.approve_deposit,
            timeout_seconds=settings.http_timeout_seconds,
        )


__all__ = ['AdapterFactory']
