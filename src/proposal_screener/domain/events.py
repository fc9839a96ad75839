from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import json

from proposal_screener.domain.models import normalize_proposal_id


class EventKind(str, Enum):
    CREATED = 'created'
    APPROVED = 'approved'
    OTHER = 'other'


CREATE_EVENT = 'create_proposal'
APPROVE_EVENT = 'approve_proposal'


def normalize_event_type(value: object) -> str:
    return str(value or '').strip().lower()


def classify_event_type(value: object) -> EventKind:
    text = normalize_event_type(value)
    if text == CREATE_EVENT or 'create' in text:
        return EventKind.CREATED
    if text == APPROVE_EVENT or 'approve' in text:
        return EventKind.APPROVED
    return EventKind.OTHER


@dataclass(frozen=True)
class LedgerEvent:
    proposal_id: str
    event_type: str
    account_id: str | None
    details: dict[str, object]

    @property
    def kind(self) -> EventKind:
        return classify_event_type(self.event_type)


def _first_event_data(event: dict) -> dict:
    data = event.get('event_data')
    if isinstance(data, list) and data and isinstance(data[0], dict):
        return data[0]
    if isinstance(data, dict):
        return data
    return {}


def extract_event(event: object) -> LedgerEvent | None:
    """Pull the proposal id, event type and account out of one NEP-297 log event.

    Returns ``None`` when the event lacks a proposal id or an event type.
    """
    if not isinstance(event, dict):
        return None
    data = _first_event_data(event)
    proposal_id = normalize_proposal_id(data.get('proposal_id'))
    event_type = normalize_event_type(event.get('event_event'))
    if not proposal_id or not event_type:
        return None
    account_id = str(event.get('account_id') or '').strip() or None
    details = {
        key: data.get(key)
        for key in ('title', 'description', 'link', 'proposer_id', 'voting_options')
        if data.get(key) is not None
    }
    return LedgerEvent(
        proposal_id=proposal_id,
        event_type=event_type,
        account_id=account_id,
        details=details,
    )


def parse_event_batch(text: str | bytes) -> list[dict]:
    """Decode one stream frame into raw event dicts.

    Frames that are not JSON objects or arrays yield an empty list.
    """
    if isinstance(text, (bytes, bytearray)):
        text = bytes(text).decode('utf-8', errors='replace')
    body = str(text or '').strip()
    if not body.startswith('{') and not body.startswith('['):
        return []
    try:
        parsed = json.loads(body)
    except ValueError:
        return []
    items = parsed if isinstance(parsed, list) else [parsed]
    return [item for item in items if isinstance(item, dict)]
