# pvde/cryptography/sigma.py
"""
PVDE Sigma Protocols

Fiat-Shamir transcript and the equality-of-discrete-logs (DLEQ) sigma
protocol over a group of unknown order.

DLEQ proves knowledge of w with x1 = g1^w and x2 = g2^w:

    prover:   r  <- [0, 2^(|n| + C + S))
              a1 = g1^r, a2 = g2^r
              c  = H(transcript || g1, x1, g2, x2, a1, a2)   (C bits)
              z  = r + w*c                                  (over Z, no reduction)
    verifier: g1^z == a1 * x1^c  and  g2^z == a2 * x2^c

The group order is unknown, so responses are integers; the S slack bits
make z statistically independent of w.
"""

from __future__ import annotations

import hashlib
import secrets
from dataclasses import dataclass
from typing import Iterable

from .common import (
    CHALLENGE_BITS,
    DEFAULT_HASH,
    STATISTICAL_SECURITY,
    _int_from_bytes,
    check_hash_name,
    elements_to_bytes,
    expand,
    pack_bytes,
    pack_int,
)
from .group import RSAGroup


# =============================================================================
# Transcript
# =============================================================================

class Transcript:
    """
    Running Fiat-Shamir transcript.

    Every absorbed item is labelled and length-prefixed, so distinct
    sequences of items never collide.
    """

    def __init__(self, domain: bytes, hash_name: str = DEFAULT_HASH):
        self.hash_name = check_hash_name(hash_name)
        self._h = hashlib.new(hash_name)
        self._h.update(pack_bytes(domain))

    def append_bytes(self, label: bytes, data: bytes) -> None:
        self._h.update(pack_bytes(label))
        self._h.update(pack_bytes(data))

    def append_int(self, label: bytes, x: int) -> None:
        self._h.update(pack_bytes(label))
        self._h.update(pack_int(x))

    def append_elements(self, label: bytes, values: Iterable[int], n: int) -> None:
        """Absorb group elements as a fixed-width uint64 instance vector."""
        self.append_bytes(label, elements_to_bytes(values, n))

    def challenge(self, bits: int = CHALLENGE_BITS) -> int:
        """Derive a bits-long challenge; the transcript stays usable."""
        digest = self._h.copy().digest()
        out = expand(self.hash_name, digest, (bits + 7) // 8, b"pvde/challenge")
        return _int_from_bytes(out) >> ((8 - bits % 8) % 8)


# =============================================================================
# DLEQ
# =============================================================================

@dataclass(frozen=True)
class DLEQProof:
    """Commitments (a1, a2) and integer response z."""
    a1: int
    a2: int
    z: int


def response_bound(group: RSAGroup) -> int:
    """Exclusive upper bound on an honest response."""
    return 1 << (group.bits + CHALLENGE_BITS + STATISTICAL_SECURITY + 1)


def _nonce(group: RSAGroup) -> int:
    return secrets.randbits(group.bits + CHALLENGE_BITS + STATISTICAL_SECURITY)


def _dleq_challenge(
    transcript: Transcript,
    group: RSAGroup,
    g1: int, x1: int, g2: int, x2: int,
    a1: int, a2: int,
) -> int:
    transcript.append_elements(b"dleq/statement", (g1, x1, g2, x2), group.n)
    transcript.append_elements(b"dleq/commitment", (a1, a2), group.n)
    return transcript.challenge()


def prove_dleq(
    group: RSAGroup,
    transcript: Transcript,
    g1: int, x1: int, g2: int, x2: int,
    w: int,
) -> DLEQProof:
    """Prove log_g1(x1) == log_g2(x2) == w."""
    r = _nonce(group)
    a1 = group.exp(g1, r)
    a2 = group.exp(g2, r)
    c = _dleq_challenge(transcript, group, g1, x1, g2, x2, a1, a2)
    return DLEQProof(a1=a1, a2=a2, z=r + w * c)


def verify_dleq(
    group: RSAGroup,
    transcript: Transcript,
    g1: int, x1: int, g2: int, x2: int,
    proof: DLEQProof,
) -> bool:
    """Check a DLEQ proof. Returns False on any malformed component."""
    for v in (g1, x1, g2, x2, proof.a1, proof.a2):
        if not group.contains(v):
            return False
    if not 0 <= proof.z < response_bound(group):
        return False

    c = _dleq_challenge(transcript, group, g1, x1, g2, x2, proof.a1, proof.a2)

    # 1. g1^z = a1 * x1^c
    if group.exp(g1, proof.z) != group.mul(proof.a1, group.exp(x1, c)):
        return False

    # 2. g2^z = a2 * x2^c
    if group.exp(g2, proof.z) != group.mul(proof.a2, group.exp(x2, c)):
        return False

    return True
