from __future__ import annotations

from dataclasses import dataclass
import os


@dataclass(frozen=True)
class Settings:
    service_name: str
    otel_endpoint: str | None
    dry_run: bool
    voting_contract_id: str | None
    agent_account_id: str | None
    agent_contract_id: str | None
    agent_api_url: str
    execution_service_url: str | None
    ledger_rpc_url: str
    event_stream_url: str
    event_standard: str
    stream_enabled: bool
    reconnect_base_seconds: float
    reconnect_cap_seconds: float
    reconnect_max_attempts: int
    judgment_provider: str
    anthropic_api_key: str | None
    anthropic_model: str
    judgment_command: str
    http_timeout_seconds: float
    trusted_proposers: tuple[str, ...]
    blocked_proposers: tuple[str, ...]
    dispatch_workers: int
    approve_gas: str
    approve_deposit: str

    @property
    def autonomous_mode(self) -> bool:
        return bool(self.voting_contract_id and (self.agent_contract_id or self.agent_account_id))

    @property
    def execution_mode(self) -> str:
        if self.dry_run:
            return 'simulated'
        if self.agent_contract_id:
            return 'agent_contract'
        return 'delegated'


def _env_text(name: str, default: str | None = None) -> str | None:
    raw = (os.getenv(name, '') or '').strip()
    return raw or default


def _env_int(name: str, default: int, *, minimum: int = 1) -> int:
    raw = (os.getenv(name, '') or '').strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return max(minimum, value)


def _env_float(name: str, default: float, *, minimum: float = 0.0) -> float:
    raw = (os.getenv(name, '') or '').strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return max(minimum, value)


def _env_bool(name: str, default: bool) -> bool:
    raw = (os.getenv(name, '') or '').strip().lower()
    if raw in {'1', 'true', 'yes', 'on'}:
        return True
    if raw in {'0', 'false', 'no', 'off'}:
        return False
    return default


def _env_list(name: str) -> tuple[str, ...]:
    raw = os.getenv(name, '') or ''
    seen: list[str] = []
    for item in raw.replace(';', ',').split(','):
        text = item.strip()
        if text and text not in seen:
            seen.append(text)
    return tuple(seen)


def load_settings() -> Settings:
    judgment_provider = str(os.getenv('SCREENER_JUDGMENT_PROVIDER', 'anthropic') or 'anthropic').strip().lower()
    if judgment_provider not in {'anthropic', 'command'}:
        judgment_provider = 'anthropic'
    return Settings(
        service_name=_env_text('SCREENER_SERVICE_NAME', 'proposal-screener'),
        otel_endpoint=_env_text('SCREENER_OTEL_EXPORTER_OTLP_ENDPOINT'),
        dry_run=_env_bool('SCREENER_DRY_RUN', False),
        voting_contract_id=_env_text('SCREENER_VOTING_CONTRACT_ID'),
        agent_account_id=_env_text('SCREENER_AGENT_ACCOUNT_ID'),
        agent_contract_id=_env_text('SCREENER_AGENT_CONTRACT_ID'),
        agent_api_url=_env_text('SCREENER_AGENT_API_URL', 'http://localhost:3140'),
        execution_service_url=_env_text('SCREENER_EXECUTION_SERVICE_URL'),
        ledger_rpc_url=_env_text('SCREENER_LEDGER_RPC_URL', 'https://rpc.testnet.near.org'),
        event_stream_url=_env_text(
            'SCREENER_EVENT_STREAM_URL',
            'wss://ws-events-v3-testnet.intear.tech/events/log_nep297',
        ),
        event_standard=_env_text('SCREENER_EVENT_STANDARD', 'venear'),
        stream_enabled=_env_bool('SCREENER_STREAM_ENABLED', True),
        reconnect_base_seconds=_env_float('SCREENER_RECONNECT_BASE_SECONDS', 1.0, minimum=0.01),
        reconnect_cap_seconds=_env_float('SCREENER_RECONNECT_CAP_SECONDS', 30.0, minimum=0.01),
        reconnect_max_attempts=_env_int('SCREENER_RECONNECT_MAX_ATTEMPTS', 5, minimum=0),
        judgment_provider=judgment_provider,
        anthropic_api_key=_env_text('SCREENER_ANTHROPIC_API_KEY') or _env_text('ANTHROPIC_API_KEY'),
        anthropic_model=_env_text('SCREENER_ANTHROPIC_MODEL', 'claude-3-5-sonnet-20241022'),
        judgment_command=_env_text('SCREENER_JUDGMENT_COMMAND', 'claude -p'),
        http_timeout_seconds=_env_float('SCREENER_HTTP_TIMEOUT_SECONDS', 10.0, minimum=0.1),
        trusted_proposers=_env_list('SCREENER_TRUSTED_PROPOSERS'),
        blocked_proposers=_env_list('SCREENER_BLOCKED_PROPOSERS'),
        dispatch_workers=_env_int('SCREENER_DISPATCH_WORKERS', 4, minimum=1),
        approve_gas=_env_text('SCREENER_APPROVE_GAS', '50000000000000'),
        approve_deposit=_env_text('SCREENER_APPROVE_DEPOSIT', '1'),
    )
