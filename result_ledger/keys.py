"""Storage key derivation.

A result is addressed by

    key = H( encode( H(subject), caller, sequence ) )

where H is BLAKE2b-256 and `encode` is the length-prefixed encoding from
`crypto.safe_hash_encode`. The subject is hashed on its own first, so the same
subject always starts from the same seed regardless of who submits it; the
second hash binds that seed to the caller and the sequence value.

The sequence is fixed at 0: a caller holds at most one result per subject.
"""

from __future__ import annotations

from .crypto import blake2_256, safe_hash_encode
from .errors import LEDGER_E_BAD_REQUEST, ledger_error

FIXED_SEQUENCE = 0


def encode_sequence(sequence: int) -> bytes:
    return int(sequence).to_bytes(8, byteorder="big", signed=True)


def subject_seed(subject: bytes) -> bytes:
    return blake2_256(subject)


def derive_key(subject: bytes, caller: str, sequence: int = FIXED_SEQUENCE) -> bytes:
    """Compute the 32-byte storage key for (subject, caller, sequence)."""
    if not isinstance(subject, (bytes, bytearray)):
        raise ledger_error(LEDGER_E_BAD_REQUEST, "subject must be bytes", got=type(subject).__name__)
    if not isinstance(caller, str) or not caller:
        raise ledger_error(LEDGER_E_BAD_REQUEST, "caller identity required")
    if isinstance(sequence, bool) or not isinstance(sequence, int):
        raise ledger_error(LEDGER_E_BAD_REQUEST, "sequence must be an integer", got=type(sequence).__name__)

    seed = subject_seed(bytes(subject))
    return blake2_256(safe_hash_encode([seed, caller, encode_sequence(sequence)]))
