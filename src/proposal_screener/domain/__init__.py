from proposal_screener.domain.errors import (
    AgentApiError,
    AlreadyExecutedError,
    ExecutionError,
    InputValidationError,
    InsufficientDepositError,
    ProposalNotFoundError,
    ProviderError,
    StreamConnectionError,
)
from proposal_screener.domain.events import EventKind, LedgerEvent, classify_event_type, extract_event
from proposal_screener.domain.models import (
    Decision,
    ExecutionOutcome,
    ExecutionStatus,
    Proposal,
    ScreeningResult,
)

__all__ = [
    'AgentApiError',
    'AlreadyExecutedError',
    'Decision',
    'EventKind',
    'ExecutionError',
    'ExecutionOutcome',
    'ExecutionStatus',
    'InputValidationError',
    'InsufficientDepositError',
    'LedgerEvent',
    'Proposal',
    'ProposalNotFoundError',
    'ProviderError',
    'ScreeningResult',
    'StreamConnectionError',
    'classify_event_type',
    'extract_event',
]
