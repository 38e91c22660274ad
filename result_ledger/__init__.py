"""Result Ledger package.

A keyed store of test results with two authenticated transitions:

- publish: store the first result for (subject, caller)
- amend: replace that result

Each successful transition emits one event (ResultPublished / ResultUpdated).

Convenience imports
------------------
The package avoids heavy import-time side effects (the HTTP host pulls in
FastAPI). These are available as top-level imports and are loaded lazily:

    from result_ledger import TransitionHandler, MemoryRecordStore, create_app
"""

from __future__ import annotations

import re
from importlib import import_module
from pathlib import Path
from typing import Any


def _read_version_from_pyproject() -> str | None:
    """Best-effort version discovery for dev/test environments."""

    try:
        pyproject = Path(__file__).resolve().parents[1] / "pyproject.toml"
        txt = pyproject.read_text(encoding="utf-8")
    except OSError:
        return None
    m = re.search(r"^version\s*=\s*\"([^\"]+)\"\s*$", txt, flags=re.MULTILINE)
    return m.group(1) if m else None


__version__ = _read_version_from_pyproject() or "0.1.0"

__all__ = [
    "__version__",
    "TransitionHandler",
    "TransitionOutcome",
    "ResultRecord",
    "RecordStore",
    "MemoryRecordStore",
    "SQLiteRecordStore",
    "ResultPublished",
    "ResultUpdated",
    "MemoryEventSink",
    "LedgerError",
    "AlreadyPublished",
    "NotFound",
    "TesterLabelEmpty",
    "derive_key",
    "create_app",
]

# Lazy export map: name -> (module, attribute)
_LAZY_EXPORTS: dict[str, tuple[str, str]] = {
    "TransitionHandler": ("result_ledger.handler", "TransitionHandler"),
    "TransitionOutcome": ("result_ledger.handler", "TransitionOutcome"),
    "ResultRecord": ("result_ledger.records", "ResultRecord"),
    "RecordStore": ("result_ledger.records", "RecordStore"),
    "MemoryRecordStore": ("result_ledger.records", "MemoryRecordStore"),
    "SQLiteRecordStore": ("result_ledger.records", "SQLiteRecordStore"),
    "ResultPublished": ("result_ledger.events", "ResultPublished"),
    "ResultUpdated": ("result_ledger.events", "ResultUpdated"),
    "MemoryEventSink": ("result_ledger.events", "MemoryEventSink"),
    "LedgerError": ("result_ledger.errors", "LedgerError"),
    "AlreadyPublished": ("result_ledger.errors", "AlreadyPublished"),
    "NotFound": ("result_ledger.errors", "NotFound"),
    "TesterLabelEmpty": ("result_ledger.errors", "TesterLabelEmpty"),
    "derive_key": ("result_ledger.keys", "derive_key"),
    "create_app": ("result_ledger.server", "create_app"),
}


def __getattr__(name: str) -> Any:
    if name in _LAZY_EXPORTS:
        module_name, attr = _LAZY_EXPORTS[name]
        value = getattr(import_module(module_name), attr)
        globals()[name] = value
        return value
    raise AttributeError(f"module 'result_ledger' has no attribute {name!r}")


def __dir__() -> list[str]:
    return sorted(set(list(globals().keys()) + list(_LAZY_EXPORTS.keys())))
