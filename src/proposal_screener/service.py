from __future__ import annotations

from dataclasses import dataclass, replace

from proposal_screener.adapters.agent import AgentApiClient, yocto_to_near
from proposal_screener.adapters.base import ExecutionClient
from proposal_screener.decision import DecisionEngine
from proposal_screener.domain.errors import AlreadyExecutedError, ExecutionError, InputValidationError, InsufficientDepositError
from proposal_screener.domain.models import (
    Decision,
    ExecutionOutcome,
    ExecutionStatus,
    Proposal,
    ScreeningResult,
    normalize_proposal_id,
    utc_now_iso,
)
from proposal_screener.observability import get_logger, set_proposal_context, start_span
from proposal_screener.repository import InMemoryScreeningStore, ScreeningStore
from proposal_screener.tracker import ExecutionTracker

_log = get_logger('proposal_screener.service')

ALREADY_EXECUTED_REASON = 'already executed'


@dataclass(frozen=True)
class ManualExecutionView:
    proposal_id: str
    forced: bool
    outcome: ExecutionOutcome
    status: ExecutionStatus


def _execution_reason(outcome: ExecutionOutcome, *, insufficient_deposit: bool = False) -> str:
    if outcome.success:
        if outcome.transaction_hash:
            return f'executed: transaction {outcome.transaction_hash}'
        return 'executed: transaction submitted'
    if insufficient_deposit:
        return f'execution failed (insufficient deposit): {outcome.error}'
    return f'execution failed: {outcome.error}'


class ScreeningService:
    """Single code path for screening, shared by the event listener and the HTTP API."""

    def __init__(
        self,
        *,
        decision_engine: DecisionEngine,
        store: ScreeningStore | None = None,
        tracker: ExecutionTracker | None = None,
        execution_client: ExecutionClient | None = None,
        voting_contract_id: str | None = None,
        agent_account_id: str | None = None,
        agent_contract_id: str | None = None,
        agent_api: AgentApiClient | None = None,
    ):
        self.decision_engine = decision_engine
        self.store = store or InMemoryScreeningStore()
        self.tracker = tracker or ExecutionTracker()
        self.execution_client = execution_client
        self.voting_contract_id = voting_contract_id
        self.agent_account_id = agent_account_id
        self.agent_contract_id = agent_contract_id
        self.agent_api = agent_api

    @property
    def autonomous_mode(self) -> bool:
        return self.execution_client is not None and bool(self.voting_contract_id)

    @property
    def configured(self) -> bool:
        return bool(self.voting_contract_id and (self.agent_contract_id or self.agent_account_id))

    @property
    def execution_mode(self) -> str:
        if self.execution_client is None:
            return 'disabled'
        return str(getattr(self.execution_client, 'mode', 'custom'))

    @staticmethod
    def _require_proposal_id(value: object) -> str:
        proposal_id = normalize_proposal_id(value)
        if not proposal_id:
            raise InputValidationError('proposal_id is required', field='proposal_id')
        return proposal_id

    @staticmethod
    def _coerce_proposal(proposal_id: str, proposal: Proposal | dict | None) -> Proposal:
        if isinstance(proposal, Proposal):
            if proposal.proposal_id == proposal_id:
                return proposal
            return replace(proposal, proposal_id=proposal_id)
        if proposal is not None and not isinstance(proposal, dict):
            raise InputValidationError('proposal must be an object', field='proposal')
        return Proposal.from_payload(proposal_id, proposal)

    def screen_and_maybe_execute(
        self,
        proposal_id: object,
        proposal: Proposal | dict | None,
        *,
        source: str = 'api',
    ) -> ScreeningResult:
        pid = self._require_proposal_id(proposal_id)
        candidate = self._coerce_proposal(pid, proposal)
        set_proposal_context(proposal_id=pid, source=source)
        with start_span('screen_proposal', proposal_id=pid, source=source):
            decision = self.decision_engine.decide(candidate)
            # Saving, executing and attaching the outcome form one unit per id.
            with self.tracker.hold(pid):
                result = self.store.save_result(
                    ScreeningResult(
                        proposal_id=pid,
                        approved=decision.approved,
                        reasons=list(decision.reasons),
                        timestamp=utc_now_iso(),
                    )
                )
                _log.info(
                    'proposal_screened proposal_id=%s approved=%s source=%s reasons=%s',
                    pid,
                    decision.approved,
                    source,
                    ' | '.join(decision.reasons),
                )
                # Rejections never produce an on-chain action.
                if not decision.approved or not self.autonomous_mode:
                    return result
                return self._execute_autonomously(pid, result)

    def _execute_autonomously(self, proposal_id: str, result: ScreeningResult) -> ScreeningResult:
        try:
            outcome, _, insufficient = self._run_execution(proposal_id, forced=False)
        except AlreadyExecutedError:
            prior = self.tracker.get_status(proposal_id)
            _log.info('execution_skipped proposal_id=%s reason=already_executed', proposal_id)
            previous = ExecutionOutcome(
                success=True,
                transaction_hash=prior.transaction_hash if prior else None,
                error=None,
                timestamp=(prior.executed_at if prior and prior.executed_at else utc_now_iso()),
            )
            updated = self.store.attach_execution(
                proposal_id, reason=ALREADY_EXECUTED_REASON, execution_result=previous,
            )
            if updated is None:
                result.reasons.append(ALREADY_EXECUTED_REASON)
                result.execution_result = previous
                return result
            return updated

        reason = _execution_reason(outcome, insufficient_deposit=insufficient)
        updated = self.store.attach_execution(proposal_id, reason=reason, execution_result=outcome)
        if updated is None:
            result.reasons.append(reason)
            result.execution_result = outcome
            return result
        return updated

    def _run_execution(self, proposal_id: str, *, forced: bool) -> tuple[ExecutionOutcome, ExecutionStatus, bool]:
        """Run one guarded execution attempt; raises AlreadyExecutedError when a prior attempt succeeded."""
        if self.execution_client is None:
            raise InputValidationError(
                'autonomous execution is not configured',
                field='proposal_id',
                code='execution_not_configured',
            )
        if self.tracker.is_executed(proposal_id):
            prior = self.tracker.get_status(proposal_id)
            raise AlreadyExecutedError(proposal_id, transaction_hash=prior.transaction_hash if prior else None)

        insufficient = False
        with self.tracker.attempt(proposal_id, forced=forced):
            with start_span('execute_proposal', proposal_id=proposal_id, mode=self.execution_mode):
                try:
                    receipt = self.execution_client.execute(proposal_id)
                except ExecutionError as exc:
                    insufficient = isinstance(exc, InsufficientDepositError)
                    _log.warning(
                        'execution_failed proposal_id=%s insufficient_deposit=%s error=%s',
                        proposal_id,
                        insufficient,
                        exc,
                    )
                    outcome = ExecutionOutcome(
                        success=False, transaction_hash=None, error=str(exc), timestamp=utc_now_iso(), forced=forced,
                    )
                except Exception as exc:
                    _log.exception('execution_crashed proposal_id=%s', proposal_id)
                    message = str(exc).strip() or exc.__class__.__name__
                    outcome = ExecutionOutcome(
                        success=False, transaction_hash=None, error=message, timestamp=utc_now_iso(), forced=forced,
                    )
                else:
                    outcome = ExecutionOutcome(
                        success=True,
                        transaction_hash=receipt.transaction_hash,
                        error=None,
                        timestamp=utc_now_iso(),
                        forced=forced,
                    )
                    _log.info('execution_succeeded proposal_id=%s tx=%s', proposal_id, receipt.transaction_hash)
            status = self.tracker.record_result(proposal_id, outcome)
        return outcome, status, insufficient

    def execute_proposal(self, proposal_id: object, *, force: bool = False) -> ManualExecutionView:
        pid = self._require_proposal_id(proposal_id)
        set_proposal_context(proposal_id=pid, source='manual')
        if self.execution_client is None:
            raise InputValidationError(
                'autonomous execution is not configured',
                field='proposal_id',
                code='execution_not_configured',
            )
        result = self.store.get_result(pid)
        if result is None and not force:
            raise InputValidationError('proposal not screened', field='proposal_id', code='not_screened')
        if result is not None and not result.approved and not force:
            raise InputValidationError(
                'proposal was not approved; use force=true to override',
                field='proposal_id',
                code='not_approved',
            )

        with self.tracker.hold(pid):
            outcome, status, insufficient = self._run_execution(pid, forced=force)
            self.store.attach_execution(
                pid,
                reason=_execution_reason(outcome, insufficient_deposit=insufficient),
                execution_result=outcome,
            )
        _log.info('manual_execution proposal_id=%s forced=%s success=%s', pid, force, outcome.success)
        return ManualExecutionView(proposal_id=pid, forced=force, outcome=outcome, status=status)

    def judge_only(self, proposal: Proposal | dict | None) -> Decision:
        candidate = self._coerce_proposal('judgment-probe', proposal)
        return self.decision_engine.judge(candidate)

    def get_result(self, proposal_id: object) -> ScreeningResult | None:
        pid = normalize_proposal_id(proposal_id)
        return self.store.get_result(pid) if pid else None

    def get_execution_status(self, proposal_id: object) -> ExecutionStatus | None:
        pid = normalize_proposal_id(proposal_id)
        return self.tracker.get_status(pid) if pid else None

    def is_executed(self, proposal_id: object) -> bool:
        pid = normalize_proposal_id(proposal_id)
        return bool(pid) and self.tracker.is_executed(pid)

    def list_results(self) -> list[ScreeningResult]:
        return self.store.list_results()

    def list_executions(self, *, limit: int = 20) -> list[ExecutionStatus]:
        return self.tracker.list_statuses()[: max(1, int(limit))]

    def screening_stats(self) -> dict:
        results = self.store.list_results()
        approved = sum(1 for r in results if r.approved)
        return {
            'total': len(results),
            'approved': approved,
            'not_approved': len(results) - approved,
            'last_screened': results[-1].timestamp if results else None,
        }

    def execution_stats(self) -> dict:
        stats = self.tracker.stats()
        approved_ids = [r.proposal_id for r in self.store.list_results() if r.approved]
        stats['pending'] = sum(1 for pid in approved_ids if not self.tracker.is_executed(pid))
        return stats

    def system_status(self) -> dict:
        return {
            'autonomous_mode': self.autonomous_mode,
            'configured': self.configured,
            'mode': self.execution_mode,
            'voting_contract': self.voting_contract_id,
            'agent_account': self.agent_account_id,
            'agent_contract': self.agent_contract_id,
            'screening': self.screening_stats(),
            'execution': self.execution_stats(),
        }

    def _require_agent_api(self) -> AgentApiClient:
        if self.agent_api is None:
            raise InputValidationError(
                'agent account is not configured',
                field='agent_account',
                code='agent_not_configured',
            )
        return self.agent_api

    def agent_info(self) -> dict:
        api = self._require_agent_api()
        return {
            'agent_account_id': api.account_id(),
            'configured_account_id': self.agent_account_id,
            'voting_contract': self.voting_contract_id,
            'agent_contract': self.agent_contract_id,
            'mode': self.execution_mode,
        }

    def agent_balance(self) -> dict:
        """Available balance of the signing account, used to diagnose insufficient-deposit failures."""
        api = self._require_agent_api()
        balance = api.balance()
        return {
            'agent_account': api.account_id(),
            'balance': balance,
            'balance_in_near': yocto_to_near(balance.get('available')),
            'timestamp': utc_now_iso(),
        }

    def clear_history(self) -> dict:
        results = self.store.clear()
        executions = self.tracker.clear()
        _log.info('history_cleared results=%d executions=%d', results, executions)
        return {'cleared_results': results, 'cleared_executions': executions}
