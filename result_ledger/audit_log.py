"""Signed, hash-chained journal of ledger events.

Each line of the JSONL file is one `AuditEntry` for one ResultPublished or
ResultUpdated event. An entry carries the event kind and the record key at top
level next to the full event body, a running sequence number, and the hash of
the entry before it. The entry hash commits to all of those, and the Ed25519
signature covers the entry hash together with the signing key id.

What verification catches:
    reordered, dropped or inserted lines    SEQ_GAP / CHAIN_BROKEN
    an edited event body, kind or key       EVENT_MISMATCH / ENTRY_HASH_MISMATCH / BAD_EVENT
    entries signed by an unknown key        UNTRUSTED_KEY / INVALID_SIGNATURE

It cannot catch an attacker who holds both the file and the signing key.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, Iterator, Mapping, NamedTuple, Optional

from .crypto import Ed25519KeyPair, _now_utc, blake2_256, canonical_json_dumps, key_hex, safe_hash_encode
from .errors import LedgerError
from .events import EventSink, LedgerEvent

AUDIT_VERSION = "LEDGER_AUDIT_V1"
GENESIS_HASH = "00" * 32

logger = logging.getLogger("result_ledger.audit_log")


def _entry_hash(seq: int, ts_utc: str, kind: str, key: str, prev_hash: str, event: Dict[str, Any]) -> str:
    body = canonical_json_dumps(event)
    return blake2_256(safe_hash_encode([AUDIT_VERSION, str(seq), ts_utc, kind, key, prev_hash, body])).hex()


def _signed_bytes(key_id: str, entry_hash: str) -> bytes:
    return safe_hash_encode([AUDIT_VERSION, key_id, bytes.fromhex(entry_hash)])


@dataclass(frozen=True)
class AuditEntry:
    seq: int
    ts_utc: str
    kind: str
    key: str
    event: Dict[str, Any]
    prev_hash: str
    entry_hash: str
    key_id: str
    signature_b64: str

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["version"] = AUDIT_VERSION
        return d


class AuditVerification(NamedTuple):
    ok: bool
    reason: str
    count: int


class TamperEvidentAuditLog:
    """Append-only journal of ledger events, one signed entry per event."""

    def __init__(self, path: str, signer: Ed25519KeyPair):
        if not signer.can_sign():
            raise ValueError(f"Audit signer {signer.key_id} has no private key")
        self.path = str(path)
        self.signer = signer
        self._seq = 0
        self._last_hash = GENESIS_HASH

        p = Path(self.path)
        p.parent.mkdir(parents=True, exist_ok=True)
        tail = None
        for tail in _iter_lines(p):
            pass
        if tail is not None:
            try:
                rec = json.loads(tail)
                self._seq = int(rec["seq"])
                self._last_hash = str(rec["entry_hash"])
            except (json.JSONDecodeError, KeyError, TypeError, ValueError):
                # Appends continue from genesis; verify_file reports the break.
                logger.warning("Audit log %s ends in an unreadable entry", self.path)

    @property
    def last_hash(self) -> str:
        return self._last_hash

    @property
    def seq(self) -> int:
        """Sequence number of the last entry written (0 for an empty log)."""
        return self._seq

    def append(self, event: LedgerEvent, ts_utc: Optional[str] = None) -> AuditEntry:
        """Sign and append one ledger event."""
        seq = self._seq + 1
        ts = ts_utc or _now_utc().isoformat()
        body = event.to_dict()
        k = key_hex(event.key)
        entry_hash = _entry_hash(seq, ts, event.kind, k, self._last_hash, body)
        sig = self.signer.sign(_signed_bytes(self.signer.key_id, entry_hash))
        entry = AuditEntry(
            seq=seq,
            ts_utc=ts,
            kind=event.kind,
            key=k,
            event=body,
            prev_hash=self._last_hash,
            entry_hash=entry_hash,
            key_id=self.signer.key_id,
            signature_b64=base64.b64encode(sig).decode("ascii"),
        )
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(json.dumps(entry.to_dict(), sort_keys=True) + "\n")

        self._seq = seq
        self._last_hash = entry_hash
        return entry

    @staticmethod
    def verify_file(path: str, trusted_keys: Mapping[str, Ed25519KeyPair]) -> AuditVerification:
        """Replay the chain and check every signature.

        `count` is the number of entries read, including the failing one.
        """
        p = Path(path)
        if not p.exists():
            return AuditVerification(True, "NO_FILE", 0)

        prev = GENESIS_HASH
        count = 0
        for line in _iter_lines(p):
            count += 1
            try:
                rec = json.loads(line)
            except json.JSONDecodeError:
                return AuditVerification(False, "PARSE_ERROR", count)
            reason = _check_entry(rec, count, prev, trusted_keys)
            if reason is not None:
                return AuditVerification(False, reason, count)
            prev = rec["entry_hash"]
        return AuditVerification(True, "OK", count)


def _iter_lines(path: Path) -> Iterator[str]:
    if not path.exists():
        return
    with path.open("r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if line:
                yield line


def _check_entry(rec: Any, seq: int, prev: str, trusted_keys: Mapping[str, Ed25519KeyPair]) -> Optional[str]:
    """Return the failure reason for one decoded entry, or None if it holds."""
    if not isinstance(rec, dict):
        return "PARSE_ERROR"
    if rec.get("version") != AUDIT_VERSION:
        return f"BAD_VERSION:{rec.get('version')}"
    if rec.get("seq") != seq:
        return "SEQ_GAP"
    if rec.get("prev_hash") != prev:
        return "CHAIN_BROKEN"

    event = rec.get("event")
    kind, k = str(rec.get("kind")), str(rec.get("key"))
    if not isinstance(event, dict) or event.get("event") != kind or event.get("key") != k:
        return "EVENT_MISMATCH"
    try:
        expected = _entry_hash(seq, str(rec.get("ts_utc")), kind, k, prev, event)
    except LedgerError:
        return "BAD_EVENT"
    if rec.get("entry_hash") != expected:
        return "ENTRY_HASH_MISMATCH"

    key_id = str(rec.get("key_id"))
    signer = trusted_keys.get(key_id)
    if signer is None:
        return "UNTRUSTED_KEY"
    try:
        sig = base64.b64decode(str(rec.get("signature_b64")), validate=True)
    except (binascii.Error, ValueError):
        return "BAD_SIGNATURE_ENCODING"
    if not signer.verify(_signed_bytes(key_id, expected), sig):
        return "INVALID_SIGNATURE"
    return None


class AuditLogEventSink(EventSink):
    """Event sink that journals every event to a TamperEvidentAuditLog."""

    def __init__(self, audit_log: TamperEvidentAuditLog):
        self.audit_log = audit_log

    def emit(self, event: LedgerEvent) -> None:
        self.audit_log.append(event)
