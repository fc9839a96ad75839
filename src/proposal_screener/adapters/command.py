from __future__ import annotations

import shlex
import shutil
import subprocess
import time

from proposal_screener.adapters.base import build_judgment_prompt
from proposal_screener.domain.errors import ProviderError
from proposal_screener.domain.models import Proposal
from proposal_screener.observability import get_logger

_log = get_logger('proposal_screener.adapters.command')

_LIMIT_PATTERNS = (
    'hit your limit',
    'usage limit',
    'rate limit',
    'quota exceeded',
    'insufficient_quota',
)


def split_command(value: str | None) -> list[str]:
    text = str(value or '').strip()
    if not text:
        return []
    try:
        return [str(v) for v in shlex.split(text) if str(v).strip()]
    except ValueError:
        return [v for v in text.split() if v]


class CommandJudgmentProvider:
    """Judgment provider that pipes the prompt into a local model CLI on stdin."""

    def __init__(self, *, command: str, timeout_seconds: float = 10.0):
        self.command = str(command or '').strip()
        self.timeout_seconds = max(0.05, float(timeout_seconds))

    def _resolve_argv(self) -> list[str]:
        argv = split_command(self.command)
        if not argv:
            raise ProviderError('judgment command not configured')
        resolved = shutil.which(argv[0])
        if resolved:
            argv[0] = resolved
        return argv

    def judge(self, proposal: Proposal) -> str:
        argv = self._resolve_argv()
        started = time.monotonic()
        try:
            completed = subprocess.run(
                argv,
                input=build_judgment_prompt(proposal),
                capture_output=True,
                text=True,
                encoding='utf-8',
                errors='replace',
                timeout=self.timeout_seconds,
            )
        except FileNotFoundError as exc:
            raise ProviderError(f'command_not_found command={self.command}') from exc
        except subprocess.TimeoutExpired as exc:
            raise ProviderError(
                f'command_timeout command={self.command} timeout_seconds={self.timeout_seconds:g}'
            ) from exc

        elapsed = time.monotonic() - started
        output = (completed.stdout or '').strip()
        if completed.returncode != 0:
            stderr = (completed.stderr or '').strip()
            output = '\n'.join([part for part in [output, stderr] if part]).strip()
        lowered = output.lower()
        if any(pattern in lowered for pattern in _LIMIT_PATTERNS):
            raise ProviderError(f'provider_limit command={self.command}')
        if completed.returncode != 0:
            raise ProviderError(f'command_failed command={self.command} returncode={completed.returncode}')
        _log.info(
            'judgment_command_finished proposal_id=%s duration=%.2fs',
            proposal.proposal_id,
            elapsed,
        )
        return output
