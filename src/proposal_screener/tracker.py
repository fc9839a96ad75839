from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field, replace
import threading
from typing import Iterator

from proposal_screener.domain.errors import AlreadyExecutedError
from proposal_screener.domain.models import ExecutionOutcome, ExecutionStatus, utc_now_iso
from proposal_screener.observability import get_logger

_log = get_logger('proposal_screener.tracker')


@dataclass
class _KeyLock:
    lock: threading.RLock = field(default_factory=threading.RLock)
    users: int = 0


class ExecutionTracker:
    """Per-proposal execution ledger enforcing at most one successful execution.

    ``attempt`` holds a per-id lock for the whole check -> execute -> record
    sequence, so concurrent attempts for one proposal serialize while other
    proposals proceed in parallel.
    """

    def __init__(self):
        self._statuses: dict[str, ExecutionStatus] = {}
        self._locks: dict[str, _KeyLock] = {}
        self._guard = threading.Lock()

    @contextmanager
    def hold(self, proposal_id: str) -> Iterator[None]:
        """Enter the per-id critical section. Re-entrant within one thread.

        The lock entry is dropped once no thread holds or waits on it.
        """
        with self._guard:
            entry = self._locks.get(proposal_id)
            if entry is None:
                entry = self._locks[proposal_id] = _KeyLock()
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._guard:
                entry.users -= 1
                if entry.users == 0 and self._locks.get(proposal_id) is entry:
                    del self._locks[proposal_id]

    def is_executed(self, proposal_id: str) -> bool:
        with self._guard:
            status = self._statuses.get(proposal_id)
            return bool(status and status.is_terminal)

    def get_status(self, proposal_id: str) -> ExecutionStatus | None:
        with self._guard:
            status = self._statuses.get(proposal_id)
            return replace(status) if status else None

    def list_statuses(self) -> list[ExecutionStatus]:
        with self._guard:
            rows = [replace(s) for s in self._statuses.values()]
        rows.sort(key=lambda s: str(s.attempted_at or ''), reverse=True)
        return rows

    @contextmanager
    def attempt(self, proposal_id: str, *, forced: bool = False) -> Iterator[ExecutionStatus]:
        """Guard one execution attempt.

        Raises :class:`AlreadyExecutedError` before yielding when a prior
        attempt already succeeded.
        """
        with self.hold(proposal_id):
            with self._guard:
                status = self._statuses.get(proposal_id)
                if status is not None and status.is_terminal:
                    raise AlreadyExecutedError(proposal_id, transaction_hash=status.transaction_hash)
                if status is None:
                    status = ExecutionStatus(proposal_id=proposal_id)
                    self._statuses[proposal_id] = status
                status.attempted_at = utc_now_iso()
                status.attempts += 1
                status.forced = bool(forced)
                snapshot = replace(status)
            _log.info('execution_attempt proposal_id=%s attempt=%d forced=%s', proposal_id, snapshot.attempts, forced)
            yield snapshot

    def record_result(self, proposal_id: str, outcome: ExecutionOutcome) -> ExecutionStatus:
        with self._guard:
            status = self._statuses.get(proposal_id)
            if status is None:
                status = ExecutionStatus(proposal_id=proposal_id, attempted_at=outcome.timestamp, attempts=1)
                self._statuses[proposal_id] = status
            if status.is_terminal:
                raise AlreadyExecutedError(proposal_id, transaction_hash=status.transaction_hash)
            if outcome.success:
                status.executed = True
                status.success = True
                status.transaction_hash = outcome.transaction_hash
                status.error = None
                status.executed_at = outcome.timestamp
            else:
                status.executed = False
                status.success = False
                status.error = outcome.error
            return replace(status)

    def stats(self) -> dict:
        with self._guard:
            rows = list(self._statuses.values())
        successful = [s for s in rows if s.is_terminal]
        failed = [s for s in rows if not s.is_terminal and s.error]
        last = max((str(s.attempted_at or '') for s in rows), default='') or None
        return {
            'total': len(rows),
            'successful': len(successful),
            'failed': len(failed),
            'last_execution': last,
        }

    def clear(self) -> int:
        with self._guard:
            count = len(self._statuses)
            self._statuses.clear()
            return count
