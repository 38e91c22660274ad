import hashlib

import pytest

from result_ledger.crypto import blake2_256, key_hex, parse_key_hex, safe_hash_encode
from result_ledger.errors import LEDGER_E_BAD_REQUEST, LedgerError
from result_ledger.keys import FIXED_SEQUENCE, derive_key


def _b2(data: bytes) -> bytes:
    return hashlib.blake2b(data, digest_size=32).digest()


def _lp(data: bytes) -> bytes:
    return len(data).to_bytes(8, "big") + data


def test_key_matches_documented_construction():
    # key = H(encode(H("patient-42"), "C1", 0))
    seed = _b2(b"patient-42")
    expected = _b2(_lp(seed) + _lp(b"C1") + _lp((0).to_bytes(8, "big", signed=True)))

    assert derive_key(b"patient-42", "C1") == expected
    assert derive_key(b"patient-42", "C1", FIXED_SEQUENCE) == expected
    assert len(expected) == 32


def test_derivation_is_deterministic():
    assert derive_key(b"s", "alice") == derive_key(b"s", "alice")


def test_distinct_subjects_callers_and_sequences_give_distinct_keys():
    base = derive_key(b"patient-1", "C1")
    assert derive_key(b"patient-2", "C1") != base
    assert derive_key(b"patient-1", "C2") != base
    assert derive_key(b"patient-1", "C1", 1) != base


def test_empty_subject_is_a_valid_subject():
    assert len(derive_key(b"", "C1")) == 32


def test_length_prefix_prevents_boundary_shifts():
    assert safe_hash_encode(["ab", "c"]) != safe_hash_encode(["a", "bc"])
    assert safe_hash_encode([b"x"]) == safe_hash_encode(["x"])


@pytest.mark.parametrize(
    "subject,caller,sequence",
    [
        ("patient-42", "C1", 0),
        (b"patient-42", "", 0),
        (b"patient-42", None, 0),
        (b"patient-42", "C1", "0"),
        (b"patient-42", "C1", True),
    ],
)
def test_bad_inputs_rejected(subject, caller, sequence):
    with pytest.raises(LedgerError) as ei:
        derive_key(subject, caller, sequence)
    assert ei.value.code == LEDGER_E_BAD_REQUEST


def test_key_hex_roundtrip_and_validation():
    key = blake2_256(b"x")
    rendered = key_hex(key)
    assert rendered.startswith("0x") and len(rendered) == 66
    assert parse_key_hex(rendered) == key
    assert parse_key_hex(rendered[2:]) == key

    with pytest.raises(LedgerError):
        parse_key_hex("0xzz")
    with pytest.raises(LedgerError):
        parse_key_hex("0xabcd")
