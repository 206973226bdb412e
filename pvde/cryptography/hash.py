# pvde/cryptography/hash.py
"""
PVDE Hashing into the RSA group

  - hash_to_group: deterministic, domain-separated bases of Z_n^*
  - CommitmentHash: kHashValue = Hash(k) = h^k mod n

Exponentiation in a group of unknown order is collision resistant under
the factoring assumption: h^a = h^b with a != b exposes a multiple of
ord(h). The byte hash driving hash_to_group is pluggable per epoch.
"""

from __future__ import annotations

from functools import lru_cache

import gmpy2

from .common import (
    DEFAULT_HASH,
    _byte_len,
    _hash,
    _int_from_bytes,
    _int_to_bytes,
    check_hash_name,
    expand,
)
from .group import group_for

# Domain labels for the independent bases.
COMMITMENT_DOMAIN = b"pvde/commitment-base"
KEY0_DOMAIN = b"pvde/key-base-0"
KEY1_DOMAIN = b"pvde/key-base-1"


@lru_cache(maxsize=128)
def hash_to_group(n: int, domain: bytes, hash_name: str = DEFAULT_HASH) -> int:
    """
    Map (n, domain) to a quadratic residue of Z_n^*.

    Squaring keeps the base inside QR_n so that nobody can pick it with
    a known small order.
    """
    check_hash_name(hash_name)
    seed = _int_to_bytes(n)
    ctr = 0
    while True:
        raw = expand(hash_name, seed + ctr.to_bytes(4, "big"), _byte_len(n) + 16, domain)
        x = _int_from_bytes(raw) % n
        if x > 1 and gmpy2.gcd(x, n) == 1:
            return int(gmpy2.powmod(x, 2, n))
        ctr += 1


def tag_exponent(hash_name: str, *chunks: bytes) -> int:
    """Odd exponent derived from chunks (never 0, never even)."""
    digest = _hash(hash_name, b"pvde/tag-exponent", *chunks)
    return _int_from_bytes(digest) | 1


class CommitmentHash:
    """
    Commitment to a group element: Hash(k) = h^k mod n.

    Deterministic, so a solver holding k can recompute and compare it
    against the published kHashValue.
    """

    def __init__(self, n: int, hash_name: str = DEFAULT_HASH):
        self.group = group_for(n)
        self.hash_name = check_hash_name(hash_name)
        self.base = hash_to_group(n, COMMITMENT_DOMAIN, hash_name)

    def __call__(self, k: int) -> int:
        return self.group.exp(self.base, k)

    def matches(self, k: int, k_hash_value: int) -> bool:
        return self(k) == int(k_hash_value)
