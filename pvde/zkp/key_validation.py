# pvde/zkp/key_validation.py
"""
PVDE Puzzle-Correctness Proof (key validation)

Non-interactive proof that a published puzzle instance commits to one k:

    exists (k, m):  h^k                  == kHashValue          (A)
                    A^k * Hn^m           == h^kTwo              (Hn = h^-n)

The second equation gives h^(k^2 - m*n) = h^kTwo, i.e. k^2 = kTwo + m*n
over the integers (factoring assumption), so kTwo = k^2 mod n and
kHashValue = Hash(k) open to the same k. Together with the DLEQ
transcript (r1, r2, z) already carried in the public input, which ties o
to kTwo, this pins the puzzle instance to the committed secret up to
sign: the committed value is o^(2^t) or n - o^(2^t), the only square
roots of kTwo anybody can know without factoring n. solve_and_check
tries both, so either choice stays recoverable after the delay.

Protocol (Fiat-Shamir, integer responses):
    rk, rm <- [0, 2^(|n| + C + S))
    T1 = h^rk,  T2 = A^rk * Hn^rm
    c  = H(epoch, public input, T1, T2)
    zk = rk + c*k,  zm = rm + c*m

Proof body:
    elements(T1, T2): len(4, BE) || 2 x limbs x uint64 LE
    zk: len(4, BE) || big-endian
    zm: len(4, BE) || big-endian
"""

from __future__ import annotations

import logging
import secrets
from typing import Union

from ..cryptography.common import (
    CHALLENGE_BITS,
    STATISTICAL_SECURITY,
    PvdeError,
    ProofGenerationError,
    SerializationError,
    elements_from_bytes,
    elements_to_bytes,
    pack_bytes,
    pack_int,
    unpack_bytes,
    unpack_int,
)
from ..cryptography.hash import CommitmentHash
from ..cryptography.puzzle import (
    TimeLockPuzzleParam,
    TimeLockPuzzlePublicInput,
    TimeLockPuzzleSecretInput,
    verify_sigma,
)
from ..cryptography.sigma import Transcript, response_bound
from .keys import (
    Blob,
    KeyKind,
    ProvingKey,
    Relation,
    TimeLockPuzzleProof,
    VerifyingKey,
    check_key,
    unwrap_proof,
    wrap_proof,
)

logger = logging.getLogger("pvde.zkp.key_validation")

RELATION = Relation.KEY_VALIDATION


def _transcript(param: TimeLockPuzzleParam, public_input: TimeLockPuzzlePublicInput) -> Transcript:
    tr = Transcript(b"pvde/key-validation", param.hash_name)
    tr.append_bytes(b"epoch", param.digest())
    tr.append_elements(
        b"instance",
        (public_input.o, public_input.k_hash_value, public_input.k_two,
         public_input.r1, public_input.r2),
        param.n,
    )
    tr.append_int(b"z", public_input.z)
    return tr


def _bases(param: TimeLockPuzzleParam):
    """(h, Hn) with Hn = (h^n)^-1 mod n."""
    group = param.group
    h = CommitmentHash(param.n, param.hash_name).base
    return h, group.inv(group.exp(h, param.n))


def _encode(n: int, t1: int, t2: int, zk: int, zm: int) -> bytes:
    return (
        pack_bytes(elements_to_bytes((t1, t2), n)) +
        pack_int(zk) +
        pack_int(zm)
    )


def _decode(n: int, body: bytes):
    raw, offset = unpack_bytes(body, 0)
    t1, t2 = elements_from_bytes(raw, 2, n)
    zk, offset = unpack_int(body, offset)
    zm, offset = unpack_int(body, offset)
    if offset != len(body):
        raise SerializationError("TimeLockPuzzleProof: trailing bytes")
    return t1, t2, zk, zm


def prove(
    param: TimeLockPuzzleParam,
    proving_key: ProvingKey,
    public_input: TimeLockPuzzlePublicInput,
    secret_input: TimeLockPuzzleSecretInput,
) -> TimeLockPuzzleProof:
    """
    Prove that public_input commits to secret_input.k.

    Raises:
        ProofGenerationError: wrong key, or the witness does not satisfy
            the relation. Nothing is returned in that case.
    """
    if not check_key(proving_key, param, RELATION, KeyKind.PROVING):
        raise ProofGenerationError("Proving key does not match relation/epoch")

    group = param.group
    k = secret_input.k
    if not group.contains(k):
        raise ProofGenerationError("k is not a group element")

    h, hn = _bases(param)
    a = public_input.k_hash_value
    if group.exp(h, k) != a:
        raise ProofGenerationError("Hash(k) != kHashValue")
    m, rem = divmod(k * k - public_input.k_two, param.n)
    if rem != 0 or m < 0:
        raise ProofGenerationError("k^2 mod n != kTwo")

    nonce_bits = group.bits + CHALLENGE_BITS + STATISTICAL_SECURITY
    rk = secrets.randbits(nonce_bits)
    rm = secrets.randbits(nonce_bits)
    t1 = group.exp(h, rk)
    t2 = group.multi_exp(((a, rk), (hn, rm)))

    tr = _transcript(param, public_input)
    tr.append_elements(b"commitment", (t1, t2), param.n)
    c = tr.challenge()

    zk = rk + c * k
    zm = rm + c * m
    logger.debug("key validation proof generated")
    return TimeLockPuzzleProof(wrap_proof(RELATION, _encode(param.n, t1, t2, zk, zm)))


def verify(
    param: TimeLockPuzzleParam,
    verifying_key: VerifyingKey,
    public_input: TimeLockPuzzlePublicInput,
    proof: Union[Blob, bytes],
) -> bool:
    """Check a key validation proof. Never raises."""
    try:
        return _verify(param, verifying_key, public_input, proof)
    except (PvdeError, ValueError, TypeError, AttributeError) as e:
        logger.warning("key validation proof rejected: %s", e)
        return False


def _verify(param, verifying_key, public_input, proof) -> bool:
    if not check_key(verifying_key, param, RELATION, KeyKind.VERIFYING):
        return False

    group = param.group
    for v in (public_input.o, public_input.k_hash_value, public_input.k_two):
        if not group.contains(v):
            return False

    t1, t2, zk, zm = _decode(param.n, unwrap_proof(RELATION, bytes(proof)))
    if not (group.contains(t1) and group.contains(t2)):
        return False
    bound = response_bound(group)
    if not (0 <= zk < bound and 0 <= zm < bound):
        return False

    if not verify_sigma(param, public_input):
        logger.warning("puzzle sigma transcript rejected")
        return False

    tr = _transcript(param, public_input)
    tr.append_elements(b"commitment", (t1, t2), param.n)
    c = tr.challenge()

    h, hn = _bases(param)
    a = public_input.k_hash_value

    # 1. h^zk = T1 * A^c
    if group.exp(h, zk) != group.mul(t1, group.exp(a, c)):
        return False

    # 2. A^zk * Hn^zm = T2 * (h^kTwo)^c
    lhs = group.multi_exp(((a, zk), (hn, zm)))
    rhs = group.mul(t2, group.exp(group.exp(h, public_input.k_two), c))
    if lhs != rhs:
        return False

    return True
