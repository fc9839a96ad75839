from __future__ import annotations


class InputValidationError(ValueError):
    def __init__(self, message: str, *, field: str | None = None, code: str = 'validation_error'):
        super().__init__(message)
        self.message = message
        self.field = field
        self.code = code


class AlreadyExecutedError(RuntimeError):
    """Raised when an execution attempt targets a proposal that already succeeded."""

    def __init__(self, proposal_id: str, *, transaction_hash: str | None = None):
        super().__init__(f'proposal {proposal_id} already executed')
        self.proposal_id = proposal_id
        self.transaction_hash = transaction_hash
        self.code = 'already_executed'


class ProviderError(RuntimeError):
    pass


class ProposalNotFoundError(LookupError):
    def __init__(self, proposal_id: str):
        super().__init__(f'proposal {proposal_id} does not exist')
        self.proposal_id = proposal_id


class ExecutionError(RuntimeError):
    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class InsufficientDepositError(ExecutionError):
    """The signer could not cover the attached deposit or gas."""


class StreamConnectionError(ConnectionError):
    pass


class AgentApiError(RuntimeError):
    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.code = 'agent_api_unavailable'
