"""Operational statistics for the ledger.

Lightweight in-memory counters with a snapshot for the /v1/stats endpoint.

Notes
-----
- Counters reset on process restart.
- Not evidence of anything; the audit log is.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict


@dataclass
class _Counters:
    transitions_total: int = 0
    transitions_by_op: Dict[str, int] = field(default_factory=dict)
    transitions_by_outcome: Dict[str, int] = field(default_factory=dict)
    weight_total: int = 0


class OpsStats:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._start_monotonic = time.monotonic()
        self._c = _Counters()

    def _inc_map(self, m: Dict[str, int], key: str) -> None:
        m[key] = int(m.get(key, 0)) + 1

    def record_transition(self, op: str, outcome: str, weight: int = 0) -> None:
        with self._lock:
            self._c.transitions_total += 1
            self._inc_map(self._c.transitions_by_op, op or "unknown")
            self._inc_map(self._c.transitions_by_outcome, outcome or "unknown")
            self._c.weight_total += int(weight)

    def snapshot(self, extra: Dict[str, Any] | None = None) -> Dict[str, Any]:
        with self._lock:
            c = self._c
            snap: Dict[str, Any] = {
                "uptime_seconds": int(time.monotonic() - self._start_monotonic),
                "transitions_total": c.transitions_total,
                "transitions_by_op": dict(c.transitions_by_op),
                "transitions_by_outcome": dict(c.transitions_by_outcome),
                "weight_total": c.weight_total,
            }
        if extra:
            snap.update(extra)
        return snap
