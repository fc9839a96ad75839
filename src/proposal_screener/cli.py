from __future__ import annotations

import argparse
import json
import sys

import httpx


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='proposal-screener', description='Screen governance proposals through the screener API')
    parser.add_argument('--api-base', default='http://127.0.0.1:8000', help='Screener API base URL')

    sub = parser.add_subparsers(dest='command', required=True)

    screen = sub.add_parser('screen', help='Screen a proposal (and execute it when autonomous mode is on)')
    screen.add_argument('proposal_id', help='Proposal id')
    screen.add_argument('--title', default='', help='Proposal title')
    screen.add_argument('--description', default='', help='Proposal description')
    screen.add_argument('--proposer', default='', help='Proposer account id')
    screen.add_argument('--budget', default='', help='Optional requested budget')
    screen.add_argument('--link', default='', help='Optional discussion link')
    screen.add_argument('--proposal-json', default='', help='Full proposal object as JSON; overrides the field flags')

    status = sub.add_parser('status', help='Show system status, or one proposal when an id is given')
    status.add_argument('proposal_id', nargs='?', default='', help='Optional proposal id')

    execute = sub.add_parser('execute', help='Manually execute an approved proposal')
    execute.add_argument('proposal_id', help='Proposal id')
    execute.add_argument('--force', action='store_true', help='Execute even when not screened or not approved')

    sub.add_parser('results', help='List screening results')

    executions = sub.add_parser('executions', help='List recent execution attempts')
    executions.add_argument('--limit', type=int, default=10)

    sub.add_parser('clear', help='Clear screening and execution history')

    criteria = sub.add_parser('criteria', help='Show or replace proposer allow/deny lists')
    criteria.add_argument('--trusted', action='append', default=None, help='Trusted proposer (repeatable)')
    criteria.add_argument('--blocked', action='append', default=None, help='Blocked proposer (repeatable)')

    judge = sub.add_parser('judge', help='Ask the judgment provider only, without recording a result')
    judge.add_argument('--title', default='', help='Proposal title')
    judge.add_argument('--description', default='', help='Proposal description')
    judge.add_argument('--proposer', default='', help='Proposer account id')

    sub.add_parser('stream-status', help='Show event stream connection state')
    sub.add_parser('agent-info', help='Show the signing agent account and execution mode')
    sub.add_parser('balance', help='Show the signing agent account balance')

    return parser


def _print_json(payload) -> None:
    print(json.dumps(payload, ensure_ascii=True, indent=2))


def _proposal_from_args(args: argparse.Namespace) -> dict:
    raw = str(getattr(args, 'proposal_json', '') or '').strip()
    if raw:
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ValueError(f'--proposal-json is not valid JSON: {exc.msg}') from exc
        if not isinstance(payload, dict):
            raise ValueError('--proposal-json must be a JSON object')
        return payload

    proposal: dict[str, str] = {}
    for key, attr in (
        ('title', 'title'),
        ('description', 'description'),
        ('proposer_id', 'proposer'),
        ('budget', 'budget'),
        ('link', 'link'),
    ):
        value = str(getattr(args, attr, '') or '').strip()
        if value:
            proposal[key] = value
    return proposal


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    base = args.api_base.rstrip('/')

    with httpx.Client(timeout=60) as client:
        if args.command == 'screen':
            try:
                proposal = _proposal_from_args(args)
            except ValueError as exc:
                parser.error(str(exc))
                return 2
            response = client.post(
                f'{base}/api/screener/screen',
                json={'proposalId': args.proposal_id, 'proposal': proposal},
            )
        elif args.command == 'status':
            if args.proposal_id:
                response = client.get(f'{base}/api/screener/status/{args.proposal_id}')
            else:
                response = client.get(f'{base}/api/screener/status')
        elif args.command == 'execute':
            response = client.post(
                f'{base}/api/screener/execute/{args.proposal_id}',
                json={'force': bool(args.force)},
            )
        elif args.command == 'results':
            response = client.get(f'{base}/api/screener/results')
        elif args.command == 'executions':
            response = client.get(f'{base}/api/screener/executions', params={'limit': int(args.limit)})
        elif args.command == 'clear':
            response = client.delete(f'{base}/api/screener/history')
        elif args.command == 'criteria':
            if args.trusted is None and args.blocked is None:
                response = client.get(f'{base}/api/screener/criteria')
            else:
                body: dict[str, list[str]] = {}
                if args.trusted is not None:
                    body['trustedProposers'] = args.trusted
                if args.blocked is not None:
                    body['blockedProposers'] = args.blocked
                response = client.put(f'{base}/api/screener/criteria', json=body)
        elif args.command == 'judge':
            proposal = _proposal_from_args(args)
            response = client.post(
                f'{base}/api/screener/test-judgment',
                json={'proposal': proposal} if proposal else {},
            )
        elif args.command == 'stream-status':
            response = client.get(f'{base}/api/debug/stream-status')
        elif args.command == 'agent-info':
            response = client.get(f'{base}/api/screener/agent-info')
        elif args.command == 'balance':
            response = client.get(f'{base}/api/screener/balance')
        else:
            parser.error(f'unsupported command: {args.command}')
            return 2

    if response.status_code >= 400:
        print(f'HTTP {response.status_code}: {response.text}', file=sys.stderr)
        return 1

    _print_json(response.json())
    return 0


if __name__ == '__main__':
    raise SystemExit(main())
