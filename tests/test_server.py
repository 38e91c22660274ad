import json

import pytest
from fastapi.testclient import TestClient

from result_ledger.audit_log import TamperEvidentAuditLog
from result_ledger.auth import ENV_API_KEYS_FILE, ENV_API_KEYS_JSON
from result_ledger.config import LedgerConfig
from result_ledger.crypto import Ed25519KeyPair
from result_ledger.events import MemoryEventSink
from result_ledger.handler import TransitionHandler
from result_ledger.keys import derive_key
from result_ledger.records import MemoryRecordStore, SQLiteRecordStore
from result_ledger.server import build_handler, create_app


@pytest.fixture
def handler():
    return TransitionHandler(MemoryRecordStore(), MemoryEventSink())


@pytest.fixture
def client(handler, monkeypatch):
    monkeypatch.delenv(ENV_API_KEYS_JSON, raising=False)
    monkeypatch.delenv(ENV_API_KEYS_FILE, raising=False)
    return TestClient(create_app(handler))


def _body(subject="patient-42", tester="lab-A", positive=True):
    return {"subject": subject, "tester": tester, "positive": positive}


def test_publish_then_amend_over_http(client, handler):
    key = "0x" + derive_key(b"patient-42", "C1").hex()

    r = client.post("/v1/results/publish", json=_body(), headers={"X-Caller-Id": "C1"})
    assert r.status_code == 200, r.text
    assert r.json() == {
        "event": "ResultPublished",
        "key": key,
        "tester": "lab-A",
        "positive": True,
        "weight": 10_000,
    }

    r = client.post("/v1/results/amend", json=_body(tester="lab-B", positive=False), headers={"X-Caller-Id": "C1"})
    assert r.status_code == 200, r.text
    assert r.json()["event"] == "ResultUpdated"

    r = client.get(f"/v1/results/{key}")
    assert r.status_code == 200
    assert r.json() == {"key": key, "positive": False, "tester": "lab-B"}

    assert [e.kind for e in handler.sink.events] == ["ResultPublished", "ResultUpdated"]


def test_duplicate_publish_is_conflict(client):
    headers = {"X-Caller-Id": "C1"}
    assert client.post("/v1/results/publish", json=_body(), headers=headers).status_code == 200

    r = client.post("/v1/results/publish", json=_body(tester="lab-Z"), headers=headers)
    assert r.status_code == 409
    body = r.json()
    assert body["code"] == "LEDGER_E_ALREADY_PUBLISHED"
    assert body["retryable"] is False


def test_amend_unknown_is_not_found(client):
    r = client.post("/v1/results/amend", json=_body(), headers={"X-Caller-Id": "C1"})
    assert r.status_code == 404
    assert r.json()["code"] == "LEDGER_E_NOT_FOUND"


def test_lookup_missing_and_malformed_keys(client):
    missing = "0x" + derive_key(b"nobody", "C1").hex()
    r = client.get(f"/v1/results/{missing}")
    assert r.status_code == 404

    r = client.get("/v1/results/0x1234")
    assert r.status_code == 400
    assert r.json()["code"] == "LEDGER_E_BAD_REQUEST"


def test_caller_identity_required(client):
    r = client.post("/v1/results/publish", json=_body())
    assert r.status_code == 401
    assert r.json()["code"] == "LEDGER_E_AUTH_REQUIRED"


def test_api_key_determines_caller(handler, monkeypatch):
    monkeypatch.setenv(ENV_API_KEYS_JSON, json.dumps({"k1": "C1"}))
    client = TestClient(create_app(handler))

    r = client.post("/v1/results/publish", json=_body(), headers={"X-Api-Key": "k1"})
    assert r.status_code == 200
    assert r.json()["key"] == "0x" + derive_key(b"patient-42", "C1").hex()

    # Claimed identity alone is not enough once keys are configured.
    r = client.post("/v1/results/amend", json=_body(), headers={"X-Caller-Id": "C1"})
    assert r.status_code == 401

    r = client.post("/v1/results/amend", json=_body(), headers={"X-Api-Key": "bad"})
    assert r.status_code == 401


def test_request_size_limit(handler, monkeypatch):
    monkeypatch.delenv(ENV_API_KEYS_JSON, raising=False)
    monkeypatch.delenv(ENV_API_KEYS_FILE, raising=False)
    handler.config = LedgerConfig(max_request_bytes=1024)
    client = TestClient(create_app(handler))

    r = client.post("/v1/results/publish", json=_body(subject="x" * 4096), headers={"X-Caller-Id": "C1"})
    assert r.status_code == 413
    assert len(handler.store) == 0


def test_stats_health_and_metrics(client):
    client.post("/v1/results/publish", json=_body(), headers={"X-Caller-Id": "C1"})
    client.post("/v1/results/publish", json=_body(), headers={"X-Caller-Id": "C1"})

    stats = client.get("/v1/stats").json()
    assert stats["transitions_total"] == 2
    assert stats["records"] == 1

    assert client.get("/v1/health").json()["status"] == "healthy"

    r = client.get("/metrics")
    assert r.status_code == 200
    assert "ledger_transitions_total" in r.text


def test_build_handler_from_env(tmp_path, monkeypatch):
    monkeypatch.setenv("LEDGER_STORE", "sqlite")
    monkeypatch.setenv("LEDGER_DB_PATH", str(tmp_path / "ledger.db"))
    monkeypatch.setenv("LEDGER_AUDIT_LOG_PATH", str(tmp_path / "audit.jsonl"))
    monkeypatch.setenv("LEDGER_SIGNING_KEY", "33" * 32)
    monkeypatch.setenv("LEDGER_REQUIRE_TESTER_LABEL", "1")

    handler = build_handler()
    assert isinstance(handler.store, SQLiteRecordStore)
    assert handler.config.require_tester_label is True

    handler.publish("C1", b"patient-42", b"lab-A", True)

    kp = Ed25519KeyPair.from_seed(bytes.fromhex("33" * 32), "ledger")
    ok, reason, count = TamperEvidentAuditLog.verify_file(str(tmp_path / "audit.jsonl"), {"ledger": kp})
    assert ok, reason
    assert count == 1


def test_build_handler_requires_signing_key_for_audit_log(tmp_path, monkeypatch):
    monkeypatch.setenv("LEDGER_AUDIT_LOG_PATH", str(tmp_path / "audit.jsonl"))
    monkeypatch.delenv("LEDGER_SIGNING_KEY", raising=False)
    monkeypatch.delenv("LEDGER_ALLOW_EPHEMERAL_SIGNING_KEYS", raising=False)

    with pytest.raises(RuntimeError):
        build_handler()
