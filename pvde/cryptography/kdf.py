# pvde/cryptography/kdf.py
"""
PVDE Symmetric Key Derivation

Maps the puzzle secret k (a group element) to the two-component key used
by the delay cipher:

    key0 = HKDF(h0^k mod n, "pvde-delay-cipher-key")   32-byte stream key
    key1 = h1^k mod n                                 tag key (group element)

h0, h1 are hash-to-group bases independent of the commitment base, so
neither component is computable from the published kHashValue. Both are
deterministic: equal k gives an equal key.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from .common import (
    DEFAULT_HASH,
    HKDF,
    KEY_BYTES,
    N_RSA2048,
    SerializationError,
    _byte_len,
    _int_to_bytes,
    _sha256,
    check_fields,
    check_hash_name,
    int_field,
)
from .group import group_for
from .hash import KEY0_DOMAIN, KEY1_DOMAIN, hash_to_group
from .puzzle import solve_time_lock_puzzle

_KDF_SALT = _sha256(b"pvde-v1-hkdf-salt")
_KEY0_INFO = b"pvde-delay-cipher-key"


@dataclass(frozen=True)
class SymmetricKey:
    """Delay cipher key: (key0 stream key, key1 tag key) for modulus n."""
    key0: bytes = field(repr=False)
    key1: int = field(repr=False)
    n: int = field(repr=False)
    hash_name: str = DEFAULT_HASH

    def __post_init__(self):
        if len(self.key0) != KEY_BYTES:
            raise ValueError(f"key0 must be {KEY_BYTES} bytes")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key0": self.key0.hex(),
            "key1": str(self.key1),
            "n": str(self.n),
            "hash_name": self.hash_name,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SymmetricKey":
        record = "SymmetricKey"
        check_fields(data, ("key0", "key1", "n", "hash_name"), record)
        try:
            key0 = bytes.fromhex(data["key0"])
        except (TypeError, ValueError) as e:
            raise SerializationError(f"{record}.key0: not hex") from e
        try:
            return cls(
                key0=key0,
                key1=int_field(data, "key1", record),
                n=int_field(data, "n", record),
                hash_name=check_hash_name(data["hash_name"]),
            )
        except ValueError as e:
            raise SerializationError(f"{record}: {e}") from e


def derive_key(k: int, n: int = N_RSA2048, hash_name: str = DEFAULT_HASH) -> SymmetricKey:
    """
    Derive the symmetric key from the puzzle secret k.

    Pure function of (k, n, hash_name); no I/O.
    """
    check_hash_name(hash_name)
    group = group_for(int(n))
    group.element(k, "k")

    h0 = hash_to_group(group.n, KEY0_DOMAIN, hash_name)
    h1 = hash_to_group(group.n, KEY1_DOMAIN, hash_name)

    ikm = _int_to_bytes(group.exp(h0, k), _byte_len(group.n))
    key0 = HKDF(salt=_KDF_SALT, hash_name=hash_name).derive(ikm, _KEY0_INFO, KEY_BYTES)
    key1 = group.exp(h1, k)

    return SymmetricKey(key0=key0, key1=key1, n=group.n, hash_name=hash_name)


def get_decryption_key(
    o: int,
    t: int,
    n: int,
    hash_name: str = DEFAULT_HASH,
    cancel: Optional[threading.Event] = None,
) -> SymmetricKey:
    """Solve the puzzle and derive the key in one call."""
    k = solve_time_lock_puzzle(o, t, n, cancel=cancel)
    return derive_key(k, n, hash_name)
