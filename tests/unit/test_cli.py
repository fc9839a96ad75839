from __future__ import annotations

import json

import httpx
import pytest

import proposal_screener.cli as cli_module
from proposal_screener.cli import _proposal_from_args, build_parser


class RecordingClient:
    """Stand-in for httpx.Client that answers every request with one canned response."""

    instances: list['RecordingClient'] = []

    def __init__(self, *args, status_code: int = 200, payload=None, **kwargs):
        self.requests: list[tuple[str, str, dict]] = []
        self.status_code = status_code
        self.payload = payload if payload is not None else {'ok': True}
        RecordingClient.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def _respond(self, method: str, url: str, **kwargs) -> httpx.Response:
        self.requests.append((method, url, kwargs))
        return httpx.Response(self.status_code, json=self.payload, request=httpx.Request(method, url))

    def get(self, url, **kwargs):
        return self._respond('GET', url, **kwargs)

    def post(self, url, **kwargs):
        return self._respond('POST', url, **kwargs)

    def put(self, url, **kwargs):
        return self._respond('PUT', url, **kwargs)

    def delete(self, url, **kwargs):
        return self._respond('DELETE', url, **kwargs)


@pytest.fixture
def recorder(monkeypatch):
    RecordingClient.instances = []
    monkeypatch.setattr(cli_module.httpx, 'Client', RecordingClient)
    return RecordingClient


def test_parser_screen_collects_proposal_fields():
    args = build_parser().parse_args(
        ['screen', '12', '--title', 'Grant', '--description', 'Tools', '--proposer', 'dev.testnet', '--budget', '500']
    )
    assert args.command == 'screen'
    assert _proposal_from_args(args) == {
        'title': 'Grant',
        'description': 'Tools',
        'proposer_id': 'dev.testnet',
        'budget': '500',
    }


def test_proposal_json_overrides_flags():
    args = build_parser().parse_args(['screen', '1', '--title', 'ignored', '--proposal-json', '{"title": "json"}'])
    assert _proposal_from_args(args) == {'title': 'json'}


def test_proposal_json_must_be_object():
    args = build_parser().parse_args(['screen', '1', '--proposal-json', '[1, 2]'])
    with pytest.raises(ValueError, match='JSON object'):
        _proposal_from_args(args)


def test_main_screen_posts_camel_case_body(recorder, capsys):
    code = cli_module.main(['--api-base', 'http://screener:9000/', 'screen', '7', '--title', 'Grant'])

    assert code == 0
    method, url, kwargs = recorder.instances[0].requests[0]
    assert method == 'POST'
    assert url == 'http://screener:9000/api/screener/screen'
    assert kwargs['json'] == {'proposalId': '7', 'proposal': {'title': 'Grant'}}
    assert json.loads(capsys.readouterr().out) == {'ok': True}


def test_main_status_routes_by_argument(recorder):
    cli_module.main(['status'])
    cli_module.main(['status', '3'])

    urls = [client.requests[0][1] for client in recorder.instances]
    assert urls == [
        'http://127.0.0.1:8000/api/screener/status',
        'http://127.0.0.1:8000/api/screener/status/3',
    ]


def test_main_execute_forwards_force(recorder):
    cli_module.main(['execute', '4', '--force'])
    method, url, kwargs = recorder.instances[0].requests[0]
    assert (method, url) == ('POST', 'http://127.0.0.1:8000/api/screener/execute/4')
    assert kwargs['json'] == {'force': True}


def test_main_criteria_reads_or_replaces(recorder):
    cli_module.main(['criteria'])
    cli_module.main(['criteria', '--trusted', 'a.near', '--trusted', 'b.near'])

    read, write = (client.requests[0] for client in recorder.instances)
    assert read[0] == 'GET'
    assert write[0] == 'PUT'
    assert write[2]['json'] == {'trustedProposers': ['a.near', 'b.near']}


def test_main_clear_and_stream_status(recorder):
    cli_module.main(['clear'])
    cli_module.main(['stream-status'])
    cli_module.main(['executions', '--limit', '3'])

    calls = [client.requests[0] for client in recorder.instances]
    assert calls[0][:2] == ('DELETE', 'http://127.0.0.1:8000/api/screener/history')
    assert calls[1][:2] == ('GET', 'http://127.0.0.1:8000/api/debug/stream-status')
    assert calls[2][2]['params'] == {'limit': 3}


def test_main_returns_1_on_http_error(monkeypatch, capsys):
    monkeypatch.setattr(
        cli_module.httpx,
        'Client',
        lambda *a, **k: RecordingClient(status_code=400, payload={'code': 'not_screened'}),
    )
    assert cli_module.main(['execute', '9']) == 1
    assert 'HTTP 400' in capsys.readouterr().err


def test_main_agent_commands(recorder):
    cli_module.main(['agent-info'])
    cli_module.main(['balance'])

    urls = [client.requests[0][1] for client in recorder.instances]
    assert urls == [
        'http://127.0.0.1:8000/api/screener/agent-info',
        'http://127.0.0.1:8000/api/screener/balance',
    ]
