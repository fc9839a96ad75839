from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def normalize_proposal_id(value: object) -> str:
    if value is None or isinstance(value, bool):
        return ''
    return str(value).strip()


def _text(value: object) -> str:
    if value is None:
        return ''
    return str(value).strip()


_KNOWN_FIELDS = {'proposal_id', 'id', 'title', 'description', 'proposer_id', 'proposer', 'budget', 'link'}


@dataclass(frozen=True)
class Proposal:
    proposal_id: str
    title: str = ''
    description: str = ''
    proposer_id: str | None = None
    budget: float | str | None = None
    link: str | None = None
    extra: dict[str, object] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, proposal_id: object, payload: dict | None) -> Proposal:
        data = dict(payload or {})
        proposer = _text(data.get('proposer_id') or data.get('proposer')) or None
        link = _text(data.get('link')) or None
        budget = data.get('budget')
        if isinstance(budget, bool) or not isinstance(budget, (int, float, str)):
            budget = None
        return cls(
            proposal_id=normalize_proposal_id(proposal_id),
            title=_text(data.get('title')),
            description=_text(data.get('description')),
            proposer_id=proposer,
            budget=budget,
            link=link,
            extra={str(k): v for k, v in data.items() if str(k) not in _KNOWN_FIELDS},
        )

    @property
    def is_incomplete(self) -> bool:
        return not self.title or not self.description

    def filled_from(self, other: Proposal) -> Proposal:
        """Return a copy with empty fields taken from *other*; own values win."""
        extra = dict(other.extra)
        extra.update(self.extra)
        return replace(
            self,
            title=self.title or other.title,
            description=self.description or other.description,
            proposer_id=self.proposer_id or other.proposer_id,
            budget=self.budget if self.budget is not None else other.budget,
            link=self.link or other.link,
            extra=extra,
        )


@dataclass(frozen=True)
class Decision:
    approved: bool
    reasons: list[str]


@dataclass(frozen=True)
class ExecutionOutcome:
    success: bool
    transaction_hash: str | None
    error: str | None
    timestamp: str
    forced: bool = False

    def to_dict(self) -> dict:
        return {
            'success': self.success,
            'transaction_hash': self.transaction_hash,
            'error': self.error,
            'timestamp': self.timestamp,
            'forced': self.forced,
        }


@dataclass
class ScreeningResult:
    proposal_id: str
    approved: bool
    reasons: list[str]
    timestamp: str
    execution_result: ExecutionOutcome | None = None

    @property
    def executed(self) -> bool:
        return self.execution_result is not None and self.execution_result.success

    def to_dict(self) -> dict:
        return {
            'proposal_id': self.proposal_id,
            'approved': self.approved,
            'reasons': list(self.reasons),
            'timestamp': self.timestamp,
            'execution_result': self.execution_result.to_dict() if self.execution_result else None,
        }


@dataclass
class ExecutionStatus:
    proposal_id: str
    executed: bool = False
    success: bool = False
    transaction_hash: str | None = None
    error: str | None = None
    attempted_at: str | None = None
    executed_at: str | None = None
    attempts: int = 0
    forced: bool = False

    @property
    def is_terminal(self) -> bool:
        return self.executed and self.success

    def to_dict(self) -> dict:
        return {
            'proposal_id': self.proposal_id,
            'executed': self.executed,
            'success': self.success,
            'transaction_hash': self.transaction_hash,
            'error': self.error,
            'attempted_at': self.attempted_at,
            'executed_at': self.executed_at,
            'attempts': self.attempts,
            'forced': self.forced,
        }
