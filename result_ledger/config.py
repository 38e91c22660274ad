"""Runtime configuration, read from environment variables.

Environment variables:
- LEDGER_STORE: `memory` (default) or `sqlite`.
- LEDGER_DB_PATH: SQLite file for the `sqlite` store (default: result_ledger.db).
- LEDGER_AUDIT_LOG_PATH: if set, events are also written to a signed audit log.
- LEDGER_SIGNING_KEY: 64 hex chars (32-byte Ed25519 seed) for the audit log.
- LEDGER_ALLOW_EPHEMERAL_SIGNING_KEYS: if '1', generate a throwaway audit key
  when LEDGER_SIGNING_KEY is unset (demos/tests only).
- LEDGER_REQUIRE_TESTER_LABEL: if '1', reject empty tester labels.
- LEDGER_MAX_REQUEST_BYTES: HTTP request body limit (default: 65536).
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional


def _env_bool(name: str, default: bool = False) -> bool:
    v = (os.getenv(name, "") or "").strip().lower()
    if not v:
        return default
    return v in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    try:
        return int((os.getenv(name, "") or str(default)).strip())
    except ValueError:
        return default


@dataclass(frozen=True)
class LedgerConfig:
    store: str = "memory"
    db_path: str = "result_ledger.db"
    audit_log_path: Optional[str] = None
    signing_key_hex: Optional[str] = None
    allow_ephemeral_signing_keys: bool = False
    require_tester_label: bool = False
    max_request_bytes: int = 65536

    @classmethod
    def from_env(cls) -> "LedgerConfig":
        max_bytes = _env_int("LEDGER_MAX_REQUEST_BYTES", cls.max_request_bytes)
        if max_bytes < 1024:
            max_bytes = 1024
        return cls(
            store=(os.getenv("LEDGER_STORE", cls.store) or cls.store).strip().lower(),
            db_path=(os.getenv("LEDGER_DB_PATH", "") or cls.db_path).strip(),
            audit_log_path=(os.getenv("LEDGER_AUDIT_LOG_PATH", "") or "").strip() or None,
            signing_key_hex=(os.getenv("LEDGER_SIGNING_KEY", "") or "").strip() or None,
            allow_ephemeral_signing_keys=_env_bool("LEDGER_ALLOW_EPHEMERAL_SIGNING_KEYS"),
            require_tester_label=_env_bool("LEDGER_REQUIRE_TESTER_LABEL"),
            max_request_bytes=max_bytes,
        )
