from __future__ import annotations

from dataclasses import dataclass
import json
import re
from typing import Protocol

from proposal_screener.domain.models import Proposal

PARSE_FAILURE_REASON = 'could not parse judgment response'

JUDGMENT_PROMPT = """You are screening DAO governance proposals. APPROVE legitimate proposals for voting, REJECT clear spam or scams.

APPROVE if:
- Legitimate ecosystem project (development, education, events, tools)
- Clear purpose and reasonable scope
- Shows genuine effort in proposal writing
- Budget mentioned (in the description is fine)

REJECT only if:
- Obviously spam, gibberish, or joke content
- Malicious requests (private keys, obvious scams)
- Completely unrelated to the ecosystem or blockchain governance
- Extremely vague with zero actionable content

PROPOSAL:
Title: {title}
Description: {description}
Proposer: {proposer}

Note: testnet accounts are acceptable for testing. Budget discrepancies between description and fields are common.

Respond ONLY with JSON:
{{
  "decision": "approve" | "reject",
  "reasons": ["reason 1", "reason 2"]
}}"""


@dataclass(frozen=True)
class Judgment:
    decision: str
    reasons: list[str]

    @property
    def approved(self) -> bool:
        return self.decision == 'approve'


class ProposalFetcher(Protocol):
    def fetch(self, proposal_id: str) -> Proposal:
        ...


class JudgmentProvider(Protocol):
    def judge(self, proposal: Proposal) -> Judgment | dict | str:
        """Return a structured verdict, a JSON-like dict or the raw model text."""
        ...


@dataclass(frozen=True)
class ExecutionReceipt:
    transaction_hash: str | None
    raw: dict


class ExecutionClient(Protocol):
    mode: str

    def execute(self, proposal_id: str) -> ExecutionReceipt:
        ...


def build_judgment_prompt(proposal: Proposal) -> str:
    return JUDGMENT_PROMPT.format(
        title=proposal.title or 'No title',
        description=proposal.description or 'No description',
        proposer=proposal.proposer_id or 'Unknown',
    )


def _normalize_decision(value: object) -> str | None:
    text = str(value or '').strip().lower()
    aliases = {
        'approve': 'approve',
        'approved': 'approve',
        'accept': 'approve',
        'reject': 'reject',
        'rejected': 'reject',
        'deny': 'reject',
    }
    return aliases.get(text)


def _normalize_reasons(value: object, *, decision: str) -> list[str]:
    if isinstance(value, str) and value.strip():
        return [value.strip()]
    if isinstance(value, (list, tuple)):
        reasons = [str(item).strip() for item in value if str(item or '').strip()]
        if reasons:
            return reasons
    return [f'judgment: {decision}']


def _iter_json_candidates(output: str) -> list[str]:
    text = str(output or '').strip()
    if not text:
        return []
    candidates: list[str] = [text]
    fence_re = re.compile(r'```(?:json)?\s*(\{.*?\})\s*```', re.IGNORECASE | re.DOTALL)
    for match in fence_re.finditer(text):
        payload = str(match.group(1) or '').strip()
        if payload:
            candidates.append(payload)
    start = text.find('{')
    end = text.rfind('}')
    if 0 <= start < end:
        candidates.append(text[start:end + 1])
    for line in text.splitlines():
        line_text = str(line or '').strip()
        if line_text.startswith('{') and line_text.endswith('}'):
            candidates.append(line_text)
    out: list[str] = []
    seen: set[str] = set()
    for item in candidates:
        if item in seen:
            continue
        seen.add(item)
        out.append(item)
    return out


def _judgment_from_mapping(payload: dict) -> Judgment | None:
    if 'decision' not in payload:
        return None
    decision = _normalize_decision(payload.get('decision')) or 'reject'
    return Judgment(decision=decision, reasons=_normalize_reasons(payload.get('reasons'), decision=decision))


def parse_judgment(response: Judgment | dict | str | None) -> Judgment:
    """Turn whatever the provider returned into a :class:`Judgment`.

    Structured payloads win. Free text falls back to a keyword check for
    ``approve``; anything else is a reject.
    """
    if isinstance(response, Judgment):
        return response
    if isinstance(response, dict):
        parsed = _judgment_from_mapping(response)
        if parsed is not None:
            return parsed
        return Judgment(decision='reject', reasons=[PARSE_FAILURE_REASON])

    text = str(response or '')
    for candidate in _iter_json_candidates(text):
        try:
            parsed = json.loads(candidate)
        except ValueError:
            continue
        if isinstance(parsed, dict):
            judgment = _judgment_from_mapping(parsed)
            if judgment is not None:
                return judgment

    lowered = text.lower()
    if 'approve' in lowered:
        return Judgment(decision='approve', reasons=['judgment: approve'])
    if 'reject' in lowered:
        return Judgment(decision='reject', reasons=['judgment: reject'])
    return Judgment(decision='reject', reasons=[PARSE_FAILURE_REASON])
