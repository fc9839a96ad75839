from __future__ import annotations

from dataclasses import replace
import threading
from typing import Protocol

from proposal_screener.domain.models import ExecutionOutcome, ScreeningResult


def _copy(result: ScreeningResult) -> ScreeningResult:
    return replace(result, reasons=list(result.reasons))


class ScreeningStore(Protocol):
    def save_result(self, result: ScreeningResult) -> ScreeningResult:
        ...

    def get_result(self, proposal_id: str) -> ScreeningResult | None:
        ...

    def list_results(self) -> list[ScreeningResult]:
        ...

    def attach_execution(
        self,
        proposal_id: str,
        *,
        reason: str,
        execution_result: ExecutionOutcome | None = None,
    ) -> ScreeningResult | None:
        ...

    def clear(self) -> int:
        ...


class InMemoryScreeningStore:
    """Latest screening result per proposal id, held for the process lifetime."""

    def __init__(self):
        self.items: dict[str, ScreeningResult] = {}
        self._lock = threading.Lock()

    def save_result(self, result: ScreeningResult) -> ScreeningResult:
        with self._lock:
            self.items[result.proposal_id] = _copy(result)
            return _copy(result)

    def get_result(self, proposal_id: str) -> ScreeningResult | None:
        with self._lock:
            row = self.items.get(proposal_id)
            return _copy(row) if row else None

    def list_results(self) -> list[ScreeningResult]:
        with self._lock:
            rows = [_copy(r) for r in self.items.values()]
        rows.sort(key=lambda r: r.timestamp)
        return rows

    def attach_execution(
        self,
        proposal_id: str,
        *,
        reason: str,
        execution_result: ExecutionOutcome | None = None,
    ) -> ScreeningResult | None:
        with self._lock:
            row = self.items.get(proposal_id)
            if row is None:
                return None
            row.reasons.append(reason)
            if execution_result is not None:
                row.execution_result = execution_result
            return _copy(row)

    def clear(self) -> int:
        with self._lock:
            count = len(self.items)
            self.items.clear()
            return count
