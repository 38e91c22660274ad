"""Ledger events and the sinks that receive them.

Two event kinds exist, both carrying (tester, key, positive):

- `ResultPublished`: a result was stored for the first time.
- `ResultUpdated`: an existing result was replaced.

Delivery beyond the sink is the host's business.
"""

from __future__ import annotations

import abc
import threading
from dataclasses import dataclass
from typing import Any, ClassVar, Dict, List

from .crypto import key_hex


@dataclass(frozen=True)
class LedgerEvent:
    kind: ClassVar[str] = "LedgerEvent"

    tester: bytes
    key: bytes
    positive: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event": self.kind,
            "tester": self.tester.decode("utf-8", errors="replace"),
            "key": key_hex(self.key),
            "positive": bool(self.positive),
        }


@dataclass(frozen=True)
class ResultPublished(LedgerEvent):
    kind: ClassVar[str] = "ResultPublished"


@dataclass(frozen=True)
class ResultUpdated(LedgerEvent):
    kind: ClassVar[str] = "ResultUpdated"


class EventSink(abc.ABC):
    """Receives events emitted by successful transitions."""

    @abc.abstractmethod
    def emit(self, event: LedgerEvent) -> None:
        raise NotImplementedError


class NullEventSink(EventSink):
    """No-op sink."""

    def emit(self, event: LedgerEvent) -> None:
        return


class MemoryEventSink(EventSink):
    """Collects events in order."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._events: List[LedgerEvent] = []

    @property
    def events(self) -> List[LedgerEvent]:
        with self._lock:
            return list(self._events)

    def emit(self, event: LedgerEvent) -> None:
        with self._lock:
            self._events.append(event)


class FanOutEventSink(EventSink):
    """Forwards each event to every wrapped sink, in order."""

    def __init__(self, *sinks: EventSink):
        self.sinks = list(sinks)

    def emit(self, event: LedgerEvent) -> None:
        for sink in self.sinks:
            sink.emit(event)
