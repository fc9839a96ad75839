from __future__ import annotations

from dataclasses import dataclass, field
import threading

from proposal_screener.adapters.base import JudgmentProvider, parse_judgment
from proposal_screener.domain.errors import ProviderError
from proposal_screener.domain.models import Decision, Proposal
from proposal_screener.observability import get_logger

_log = get_logger('proposal_screener.decision')


@dataclass(frozen=True)
class ScreeningCriteria:
    trusted_proposers: frozenset[str] = field(default_factory=frozenset)
    blocked_proposers: frozenset[str] = field(default_factory=frozenset)

    @classmethod
    def from_lists(cls, *, trusted: object = (), blocked: object = ()) -> ScreeningCriteria:
        return cls(
            trusted_proposers=frozenset(_clean_accounts(trusted)),
            blocked_proposers=frozenset(_clean_accounts(blocked)),
        )

    def to_dict(self) -> dict:
        return {
            'trusted_proposers': sorted(self.trusted_proposers),
            'blocked_proposers': sorted(self.blocked_proposers),
        }


def _clean_accounts(values: object) -> list[str]:
    if isinstance(values, str):
        values = [values]
    out: list[str] = []
    for item in values or ():
        text = str(item or '').strip()
        if text:
            out.append(text)
    return out


class DecisionEngine:
    """Three-tier judgment: deny-list, then allow-list, then the judgment provider.

    ``decide`` never raises; provider failures become a reject decision.
    """

    def __init__(self, *, provider: JudgmentProvider, criteria: ScreeningCriteria | None = None):
        self.provider = provider
        self._criteria = criteria or ScreeningCriteria()
        self._lock = threading.Lock()

    @property
    def criteria(self) -> ScreeningCriteria:
        with self._lock:
            return self._criteria

    def update_criteria(
        self,
        *,
        trusted_proposers: object | None = None,
        blocked_proposers: object | None = None,
    ) -> ScreeningCriteria:
        with self._lock:
            current = self._criteria
            self._criteria = ScreeningCriteria(
                trusted_proposers=(
                    frozenset(_clean_accounts(trusted_proposers))
                    if trusted_proposers is not None
                    else current.trusted_proposers
                ),
                blocked_proposers=(
                    frozenset(_clean_accounts(blocked_proposers))
                    if blocked_proposers is not None
                    else current.blocked_proposers
                ),
            )
            updated = self._criteria
        _log.info(
            'criteria_updated trusted=%d blocked=%d',
            len(updated.trusted_proposers),
            len(updated.blocked_proposers),
        )
        return updated

    def decide(self, proposal: Proposal) -> Decision:
        criteria = self.criteria
        proposer = proposal.proposer_id
        if proposer and proposer in criteria.blocked_proposers:
            return Decision(approved=False, reasons=[f'blocked proposer: {proposer}'])
        if proposer and proposer in criteria.trusted_proposers:
            return Decision(approved=True, reasons=[f'trusted proposer: {proposer}'])
        return self.judge(proposal)

    def judge(self, proposal: Proposal) -> Decision:
        """Consult the judgment provider only, skipping the proposer lists."""
        try:
            judgment = parse_judgment(self.provider.judge(proposal))
        except ProviderError as exc:
            _log.warning('judgment_failed proposal_id=%s error=%s', proposal.proposal_id, exc)
            return Decision(approved=False, reasons=[f'judgment provider error: {exc}'])
        except Exception as exc:
            _log.exception('judgment_crashed proposal_id=%s', proposal.proposal_id)
            message = str(exc).strip() or exc.__class__.__name__
            return Decision(approved=False, reasons=[f'judgment provider error: {message}'])
        return Decision(approved=judgment.approved, reasons=list(judgment.reasons))
