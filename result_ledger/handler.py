"""
Transition handler: the publish/amend state machine.

Each key is either absent or present, and only moves absent -> present.

    publish: absent  -> present   (AlreadyPublished if present)
    amend:   present -> present   (NotFound if absent; full replacement)

A transition derives the key, checks existence, writes the store and emits
exactly one event, all under one lock and inside one store transaction. A
failed transition writes nothing and emits nothing: a rejected one raises its
typed error, and a failing sink rolls the write back and raises its own error.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .config import LedgerConfig
from .crypto import key_hex
from .errors import (
    LEDGER_E_BAD_REQUEST,
    AlreadyPublished,
    LedgerError,
    NotFound,
    TesterLabelEmpty,
    ledger_error,
)
from .events import EventSink, LedgerEvent, ResultPublished, ResultUpdated
from .keys import FIXED_SEQUENCE, derive_key
from .metrics import record_transition
from .ops_stats import OpsStats
from .records import RecordStore, ResultRecord

logger = logging.getLogger("result_ledger")

# Fixed cost reported for every transition, accepted or not.
DISPATCH_WEIGHT = 10_000

OP_PUBLISH = "publish"
OP_AMEND = "amend"

OUTCOME_OK = "ok"
OUTCOME_ERROR = "error"


@dataclass(frozen=True)
class TransitionOutcome:
    """What a successful transition did."""

    event: LedgerEvent
    key: bytes
    weight: int = DISPATCH_WEIGHT

    def to_dict(self) -> Dict[str, Any]:
        d = self.event.to_dict()
        d["weight"] = self.weight
        return d


class TransitionHandler:
    """Applies publish/amend transitions to an injected store and sink."""

    def __init__(
        self,
        store: RecordStore,
        sink: EventSink,
        *,
        config: Optional[LedgerConfig] = None,
        stats: Optional[OpsStats] = None,
    ):
        self.store = store
        self.sink = sink
        self.config = config or LedgerConfig()
        self.stats = stats or OpsStats()
        self._lock = threading.Lock()

    def publish(self, caller: str, subject: bytes, tester: bytes, positive: bool) -> TransitionOutcome:
        """Store a first result for (subject, caller)."""
        return self._apply(OP_PUBLISH, caller, subject, tester, positive)

    def amend(self, caller: str, subject: bytes, tester: bytes, positive: bool) -> TransitionOutcome:
        """Replace the existing result for (subject, caller)."""
        return self._apply(OP_AMEND, caller, subject, tester, positive)

    def lookup(self, caller: str, subject: bytes) -> Optional[ResultRecord]:
        """Point lookup of the result (subject, caller) would address."""
        return self.store.get(derive_key(subject, caller, FIXED_SEQUENCE))

    def get(self, key: bytes) -> Optional[ResultRecord]:
        return self.store.get(key)

    def _apply(self, op: str, caller: str, subject: bytes, tester: bytes, positive: bool) -> TransitionOutcome:
        outcome = OUTCOME_ERROR
        with self._lock:
            try:
                key = self._derive(caller, subject, tester)
                record = ResultRecord(positive=bool(positive), tester=bytes(tester))
                # The store write and the emit commit together or not at all.
                with self.store.transaction():
                    if op == OP_PUBLISH:
                        if self.store.exists(key):
                            raise AlreadyPublished(key_hex(key))
                        self.store.insert(key, record)
                        event: LedgerEvent = ResultPublished(tester=record.tester, key=key, positive=record.positive)
                    else:
                        if not self.store.exists(key):
                            raise NotFound(key_hex(key))
                        self.store.overwrite(key, record)
                        event = ResultUpdated(tester=record.tester, key=key, positive=record.positive)
                    self.sink.emit(event)
                outcome = OUTCOME_OK
            except LedgerError as e:
                outcome = e.code
                logger.info("%s rejected: %s", op, e)
                raise
            except Exception as e:
                logger.warning("%s failed, rolled back: %s", op, e)
                raise
            finally:
                self._record(op, outcome)

        logger.info("%s ok key=%s positive=%s", op, key_hex(key), record.positive)
        return TransitionOutcome(event=event, key=key)

    def _derive(self, caller: str, subject: bytes, tester: bytes) -> bytes:
        key = derive_key(subject, caller, FIXED_SEQUENCE)
        if not isinstance(tester, (bytes, bytearray)):
            raise ledger_error(LEDGER_E_BAD_REQUEST, "tester must be bytes", got=type(tester).__name__)
        # Off by default: empty labels are accepted unless explicitly required.
        if self.config.require_tester_label and not tester:
            raise TesterLabelEmpty()
        return key

    def _record(self, op: str, outcome: str) -> None:
        self.stats.record_transition(op, outcome, DISPATCH_WEIGHT)
        record_transition(op, outcome)
