from __future__ import annotations

from proposal_screener.adapters.agent import AgentApiClient, yocto_to_near
from proposal_screener.adapters.anthropic import AnthropicJudgmentProvider
from proposal_screener.adapters.base import (
    PARSE_FAILURE_REASON,
    ExecutionClient,
    ExecutionReceipt,
    Judgment,
    JudgmentProvider,
    ProposalFetcher,
    build_judgment_prompt,
    parse_judgment,
)
from proposal_screener.adapters.command import CommandJudgmentProvider
from proposal_screener.adapters.execution import (
    AgentContractExecutionClient,
    DelegatedExecutionClient,
    SimulatedExecutionClient,
    extract_transaction_hash,
)
from proposal_screener.adapters.factory import AdapterFactory
from proposal_screener.adapters.ledger import RpcProposalFetcher

__all__ = [
    'AdapterFactory',
    'AgentApiClient',
    'AgentContractExecutionClient',
    'AnthropicJudgmentProvider',
    'CommandJudgmentProvider',
    'DelegatedExecutionClient',
    'ExecutionClient',
    'ExecutionReceipt',
    'Judgment',
    'JudgmentProvider',
    'PARSE_FAILURE_REASON',
    'ProposalFetcher',
    'RpcProposalFetcher',
    'SimulatedExecutionClient',
    'build_judgment_prompt',
    'extract_transaction_hash',
    'parse_judgment',
    'yocto_to_near',
]
