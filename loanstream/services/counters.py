"""
Aggregate counters for the live dashboard (total / success / failed).

One CounterStore is created at app lifespan start and injected into the
ingestion path and the reconciliation loop; nothing else writes to it.
"""
from __future__ import annotations

import threading
from dataclasses import dataclass

SUCCESS = "success"
FAILED = "failed"
OUTCOMES = (SUCCESS, FAILED)


@dataclass(frozen=True)
class Counters:
    total: int = 0
    success: int = 0
    failed: int = 0

    def as_dict(self) -> dict[str, int]:
        return {"total": self.total, "success": self.success, "failed": self.failed}


class CounterStore:
    """Process-wide counters with atomic increment/replace and immutable snapshots."""

    def __init__(self, initial: Counters | None = None):
        self._lock = threading.Lock()
        self._counters = initial or Counters()

    def increment(self, outcome: str) -> Counters:
        """Count one terminal record. Returns the counters as of this increment."""
        if outcome not in OUTCOMES:
            raise ValueError(f"Unknown outcome: {outcome!r}")
        with self._lock:
            c = self._counters
            self._counters = Counters(
                total=c.total + 1,
                success=c.success + (outcome == SUCCESS),
                failed=c.failed + (outcome == FAILED),
            )
            return self._counters

    def replace(self, counters: Counters) -> None:
        with self._lock:
            self._counters = counters

    def snapshot(self) -> Counters:
        with self._lock:
            return self._counters
