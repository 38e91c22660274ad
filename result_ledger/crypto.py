"""
Result Ledger Cryptography Module

Hash primitive and canonical encodings used for key derivation and for the
tamper-evident audit log, plus the Ed25519 key pair that signs audit entries.

- `blake2_256`: BLAKE2b with a 32-byte digest. This is the ledger's hash
  primitive; storage keys are built from it.
- `safe_hash_encode`: length-prefixed encoding that combines several values
  into one unambiguous byte string before hashing.
- `canonical_json_dumps`: strict, deterministic JSON for hashing/signing
  event payloads.
"""

import hashlib
import json
import math
import unicodedata
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional, Union

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey

from .errors import LEDGER_E_BAD_REQUEST, ledger_error


DIGEST_SIZE = 32

_CANON_JSON_MAX_DEPTH = 64


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def blake2_256(data: bytes) -> bytes:
    """BLAKE2b-256 digest of `data`."""
    return hashlib.blake2b(bytes(data), digest_size=DIGEST_SIZE).digest()


def safe_hash_encode(components: Iterable[Union[bytes, str]]) -> bytes:
    """
    Length-prefixed encoding for hash inputs.
    Prevents delimiter collision attacks: ("ab", "c") and ("a", "bc") never
    encode to the same bytes. `str` components are UTF-8 encoded.
    """
    result = b""
    for component in components:
        encoded = component.encode("utf-8") if isinstance(component, str) else bytes(component)
        length_bytes = len(encoded).to_bytes(8, byteorder="big")
        result += length_bytes + encoded
    return result


def key_hex(key: bytes) -> str:
    """Render a storage key as 0x-prefixed lowercase hex."""
    return "0x" + bytes(key).hex()


def parse_key_hex(value: str) -> bytes:
    """Inverse of `key_hex`. Accepts an optional 0x prefix."""
    s = (value or "").strip()
    if s[:2].lower() == "0x":
        s = s[2:]
    try:
        raw = bytes.fromhex(s)
    except ValueError as e:
        raise ledger_error(LEDGER_E_BAD_REQUEST, "key must be hex", got=value) from e
    if len(raw) != DIGEST_SIZE:
        raise ledger_error(LEDGER_E_BAD_REQUEST, "key must be 32 bytes", got_len=len(raw))
    return raw


def _canonicalize_json(obj: Any, *, _path: str = "$", _depth: int = 0) -> Any:
    if _depth > _CANON_JSON_MAX_DEPTH:
        raise ledger_error(LEDGER_E_BAD_REQUEST, "max nesting depth exceeded", path=_path)

    if obj is None or isinstance(obj, bool):
        return obj
    if isinstance(obj, str):
        return unicodedata.normalize("NFC", obj)
    if isinstance(obj, int):
        return obj
    if isinstance(obj, float):
        if not math.isfinite(obj):
            raise ledger_error(LEDGER_E_BAD_REQUEST, "non-finite float", path=_path)
        return obj

    if isinstance(obj, dict):
        out: Dict[str, Any] = {}
        for k, v in obj.items():
            if not isinstance(k, str):
                raise ledger_error(LEDGER_E_BAD_REQUEST, "dict key must be str", path=_path, got=type(k).__name__)
            nk = unicodedata.normalize("NFC", k)
            if nk in out:
                raise ledger_error(LEDGER_E_BAD_REQUEST, "duplicate dict key after unicode normalization", path=_path)
            out[nk] = _canonicalize_json(v, _path=f"{_path}['{nk}']", _depth=_depth + 1)
        return out

    if isinstance(obj, (list, tuple)):
        return [
            _canonicalize_json(v, _path=f"{_path}[{i}]", _depth=_depth + 1)
            for i, v in enumerate(obj)
        ]

    raise ledger_error(LEDGER_E_BAD_REQUEST, "non-JSON-serializable type", path=_path, got=type(obj).__name__)


def canonical_json_dumps(obj: Any) -> str:
    """Canonical JSON (strict).

    - sort_keys / compact separators: one byte encoding per value
    - NFC-normalized strings and keys
    - NaN/Infinity rejected
    """
    normalized = _canonicalize_json(obj)
    return json.dumps(
        normalized,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    )


@dataclass
class Ed25519KeyPair:
    """
    Ed25519 key pair used to sign audit log entries.

    Verification-only instances carry no private key.
    """
    key_id: str
    public_key_bytes: bytes
    private_key_bytes: Optional[bytes] = None

    @classmethod
    def generate(cls, key_id: str) -> "Ed25519KeyPair":
        """Generate a new Ed25519 key pair."""
        private_key = Ed25519PrivateKey.generate()
        return cls._from_private_key(private_key, key_id)

    @classmethod
    def from_seed(cls, seed: bytes, key_id: str) -> "Ed25519KeyPair":
        """Create key pair from a 32-byte seed."""
        if len(seed) != 32:
            raise ValueError(f"Seed must be 32 bytes, got {len(seed)}")
        return cls._from_private_key(Ed25519PrivateKey.from_private_bytes(seed), key_id)

    @classmethod
    def from_public_key(cls, key_id: str, public_key_hex: str) -> "Ed25519KeyPair":
        """Create key pair with public key only (for verification)."""
        return cls(key_id=key_id, public_key_bytes=bytes.fromhex(public_key_hex))

    @classmethod
    def _from_private_key(cls, private_key: Ed25519PrivateKey, key_id: str) -> "Ed25519KeyPair":
        private_bytes = private_key.private_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PrivateFormat.Raw,
            encryption_algorithm=serialization.NoEncryption(),
        )
        public_bytes = private_key.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )
        return cls(key_id=key_id, public_key_bytes=public_bytes, private_key_bytes=private_bytes)

    @property
    def public_key_hex(self) -> str:
        return self.public_key_bytes.hex()

    def can_sign(self) -> bool:
        return self.private_key_bytes is not None

    def sign(self, message: bytes) -> bytes:
        """Sign a message with the private key."""
        if not self.can_sign():
            raise ValueError(f"Key {self.key_id} has no private key - cannot sign")
        private_key = Ed25519PrivateKey.from_private_bytes(self.private_key_bytes)
        return private_key.sign(message)

    def verify(self, message: bytes, signature: bytes) -> bool:
        """Verify a signature with the public key."""
        try:
            public_key = Ed25519PublicKey.from_public_bytes(self.public_key_bytes)
            public_key.verify(signature, message)
            return True
        except InvalidSignature:
            return False
        except ValueError:
            # Malformed key or signature bytes.
            return False


def load_signing_key(
    seed_hex: Optional[str],
    *,
    key_id: str = "ledger",
    allow_ephemeral: bool = False,
) -> Optional[Ed25519KeyPair]:
    """Load the audit signing key from a 64-hex-char seed.

    Returns an ephemeral key if no seed is configured and `allow_ephemeral`
    is set, otherwise None.
    """
    if seed_hex:
        s = seed_hex.strip()
        if len(s) != 64:
            raise ValueError(f"Signing key must be 64 hex chars (32 bytes), got {len(s)}")
        return Ed25519KeyPair.from_seed(bytes.fromhex(s), key_id)
    if allow_ephemeral:
        return Ed25519KeyPair.generate(key_id)
    return None
