"""Result records and the stores that hold them.

A store is a plain key -> record mapping. It enforces nothing: `insert` and
`overwrite` are both unconditional writes, and the transition handler is the
only component that decides which of them is legal.
"""

from __future__ import annotations

import abc
import os
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import ContextManager, Dict, Iterator, Optional


@dataclass(frozen=True)
class ResultRecord:
    """Outcome of one test plus the label of whoever performed it."""

    positive: bool
    tester: bytes

    def to_dict(self) -> Dict[str, object]:
        return {
            "positive": bool(self.positive),
            "tester": self.tester.decode("utf-8", errors="replace"),
        }


class RecordStore(abc.ABC):
    """Key -> ResultRecord mapping."""

    @abc.abstractmethod
    def exists(self, key: bytes) -> bool:
        raise NotImplementedError

    @abc.abstractmethod
    def get(self, key: bytes) -> Optional[ResultRecord]:
        raise NotImplementedError

    @abc.abstractmethod
    def insert(self, key: bytes, record: ResultRecord) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def overwrite(self, key: bytes, record: ResultRecord) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    def __len__(self) -> int:
        raise NotImplementedError

    @abc.abstractmethod
    def transaction(self) -> ContextManager["RecordStore"]:
        """Scope whose writes are kept only if the block exits normally.

        Writes made inside the block are rolled back if it raises.
        Transactions do not nest.
        """
        raise NotImplementedError


class MemoryRecordStore(RecordStore):
    """Dict-backed store. Lives as long as the process."""

    def __init__(self) -> None:
        self._records: Dict[bytes, ResultRecord] = {}
        # key -> value before the open transaction first touched it (None: absent)
        self._undo: Optional[Dict[bytes, Optional[ResultRecord]]] = None

    @contextmanager
    def transaction(self) -> Iterator["MemoryRecordStore"]:
        if self._undo is not None:
            raise RuntimeError("transaction already open")
        self._undo = {}
        try:
            yield self
        except BaseException:
            for key, previous in self._undo.items():
                if previous is None:
                    self._records.pop(key, None)
                else:
                    self._records[key] = previous
            raise
        finally:
            self._undo = None

    def exists(self, key: bytes) -> bool:
        return bytes(key) in self._records

    def get(self, key: bytes) -> Optional[ResultRecord]:
        return self._records.get(bytes(key))

    def _write(self, key: bytes, record: ResultRecord) -> None:
        k = bytes(key)
        if self._undo is not None and k not in self._undo:
            self._undo[k] = self._records.get(k)
        self._records[k] = record

    def insert(self, key: bytes, record: ResultRecord) -> None:
        self._write(key, record)

    def overwrite(self, key: bytes, record: ResultRecord) -> None:
        self._write(key, record)

    def __len__(self) -> int:
        return len(self._records)


class SQLiteRecordStore(RecordStore):
    """
    Durable store backed by a single SQLite table.

    One connection per operation, except inside `transaction()`, where the
    calling thread reuses a single connection until commit or rollback.
    WAL mode so readers don't block the writer. Storage errors surface as
    sqlite3 exceptions.
    """

    def __init__(self, db_path: str = "result_ledger.db"):
        self.db_path = str(db_path)
        parent = Path(self.db_path).parent
        if str(parent) not in ("", "."):
            parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._local = threading.local()
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path, timeout=5.0)

    @contextmanager
    def _db(self) -> Iterator[sqlite3.Connection]:
        txn = getattr(self._local, "conn", None)
        if txn is not None:
            yield txn
            return
        conn = self._connect()
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator["SQLiteRecordStore"]:
        if getattr(self._local, "conn", None) is not None:
            raise RuntimeError("transaction already open")
        conn = self._connect()
        self._local.conn = conn
        try:
            with conn:
                yield self
        finally:
            self._local.conn = None
            conn.close()

    def _init_db(self) -> None:
        with self._db() as conn:
            conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = FULL")
            conn.execute("""
            CREATE TABLE IF NOT EXISTS results (
                key BLOB PRIMARY KEY,
                positive INTEGER NOT NULL,
                tester BLOB NOT NULL,
                updated_at_utc TEXT NOT NULL
            )
            """)

    def exists(self, key: bytes) -> bool:
        with self._db() as conn:
            row = conn.execute("SELECT 1 FROM results WHERE key = ?", (bytes(key),)).fetchone()
        return row is not None

    def get(self, key: bytes) -> Optional[ResultRecord]:
        with self._db() as conn:
            row = conn.execute(
                "SELECT positive, tester FROM results WHERE key = ?", (bytes(key),)
            ).fetchone()
        if row is None:
            return None
        return ResultRecord(positive=bool(row[0]), tester=bytes(row[1]))

    def _write(self, key: bytes, record: ResultRecord) -> None:
        with self._lock, self._db() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO results (key, positive, tester, updated_at_utc) VALUES (?, ?, ?, ?)",
                (
                    bytes(key),
                    1 if record.positive else 0,
                    bytes(record.tester),
                    datetime.now(timezone.utc).isoformat(),
                ),
            )

    def insert(self, key: bytes, record: ResultRecord) -> None:
        self._write(key, record)

    def overwrite(self, key: bytes, record: ResultRecord) -> None:
        self._write(key, record)

    def __len__(self) -> int:
        with self._db() as conn:
            row = conn.execute("SELECT COUNT(*) FROM results").fetchone()
        return int(row[0])


def build_store(kind: str, db_path: str) -> RecordStore:
    """Build the store selected by configuration (`memory` or `sqlite`)."""
    k = (kind or "memory").strip().lower()
    if k == "memory":
        return MemoryRecordStore()
    if k == "sqlite":
        return SQLiteRecordStore(os.fspath(db_path))
    raise ValueError(f"Unknown store kind: {kind!r} (expected 'memory' or 'sqlite')")
