import sqlite3

import pytest

from result_ledger.keys import derive_key
from result_ledger.records import (
    MemoryRecordStore,
    ResultRecord,
    SQLiteRecordStore,
    build_store,
)


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    if request.param == "memory":
        return MemoryRecordStore()
    return SQLiteRecordStore(str(tmp_path / "ledger.db"))


def test_store_insert_get_overwrite(store):
    key = derive_key(b"patient-42", "C1")
    assert not store.exists(key)
    assert store.get(key) is None
    assert len(store) == 0

    store.insert(key, ResultRecord(positive=True, tester=b"lab-A"))
    assert store.exists(key)
    assert store.get(key) == ResultRecord(positive=True, tester=b"lab-A")

    store.overwrite(key, ResultRecord(positive=False, tester=b"lab-B"))
    assert store.get(key) == ResultRecord(positive=False, tester=b"lab-B")
    assert len(store) == 1


def test_store_does_not_enforce_uniqueness(store):
    # Uniqueness is the handler's job; insert is an unconditional write.
    key = derive_key(b"s", "C1")
    store.insert(key, ResultRecord(positive=True, tester=b"a"))
    store.insert(key, ResultRecord(positive=False, tester=b"b"))
    assert store.get(key) == ResultRecord(positive=False, tester=b"b")


def test_sqlite_store_survives_restart(tmp_path):
    db_path = str(tmp_path / "ledger.db")
    key = derive_key(b"patient-7", "C9")

    s1 = SQLiteRecordStore(db_path)
    s1.insert(key, ResultRecord(positive=True, tester=b""))

    s2 = SQLiteRecordStore(db_path)
    assert s2.exists(key)
    assert s2.get(key) == ResultRecord(positive=True, tester=b"")


def test_sqlite_store_propagates_storage_errors(tmp_path, monkeypatch):
    store = SQLiteRecordStore(str(tmp_path / "ledger.db"))

    import result_ledger.records as records_mod

    def _boom(*args, **kwargs):
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(records_mod.sqlite3, "connect", _boom)

    with pytest.raises(sqlite3.OperationalError):
        store.exists(derive_key(b"s", "C1"))


def test_record_is_immutable():
    rec = ResultRecord(positive=True, tester=b"lab")
    with pytest.raises(AttributeError):
        rec.positive = False  # type: ignore[misc]


def test_build_store(tmp_path):
    assert isinstance(build_store("memory", "unused.db"), MemoryRecordStore)
    assert isinstance(build_store("SQLite", str(tmp_path / "x.db")), SQLiteRecordStore)
    with pytest.raises(ValueError):
        build_store("redis", "x")


def test_transaction_rolls_back_on_error(store):
    kept = derive_key(b"kept", "C1")
    new = derive_key(b"new", "C1")
    store.insert(kept, ResultRecord(positive=True, tester=b"a"))

    with pytest.raises(OSError):
        with store.transaction():
            store.overwrite(kept, ResultRecord(positive=False, tester=b"b"))
            store.insert(new, ResultRecord(positive=True, tester=b"c"))
            assert store.get(kept) == ResultRecord(positive=False, tester=b"b")
            raise OSError("disk full")

    assert store.get(kept) == ResultRecord(positive=True, tester=b"a")
    assert not store.exists(new)
    assert len(store) == 1


def test_transaction_commits_on_success(store):
    key = derive_key(b"s", "C1")
    with store.transaction():
        store.insert(key, ResultRecord(positive=True, tester=b"a"))
        store.overwrite(key, ResultRecord(positive=False, tester=b"b"))

    assert store.get(key) == ResultRecord(positive=False, tester=b"b")

    # A later transaction starts clean.
    with store.transaction():
        pass
    assert len(store) == 1


def test_transactions_do_not_nest(store):
    with store.transaction():
        with pytest.raises(RuntimeError):
            with store.transaction():
                pass
