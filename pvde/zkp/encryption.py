# pvde/zkp/encryption.py
"""
PVDE Encryption-Correctness Proof

Binds a delay ciphertext to the k committed in the time-lock puzzle:

    exists k:  h^k = kHashValue   and   (h1^e)^k = tag

with e = tag exponent of (nonce, body) and h1 the key1 base. Since
key1 = h1^k, the second equation says the tag was produced under
deriveKey(k); the keystream cipher maps each body to exactly one
message under that key. Proven with one DLEQ whose transcript absorbs
the epoch digest, nonce and body.

Proof body:
    elements(a1, a2): len(4, BE) || 2 x limbs x uint64 LE
    z:                len(4, BE) || big-endian
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Union

from ..cryptography.cipher import DelayCipher, DelayCiphertext
from ..cryptography.common import (
    PvdeError,
    ProofGenerationError,
    SerializationError,
    _ct_eq,
    check_fields,
    elements_from_bytes,
    elements_to_bytes,
    int_field,
    pack_bytes,
    pack_int,
    unpack_bytes,
    unpack_int,
)
from ..cryptography.hash import KEY1_DOMAIN, CommitmentHash, hash_to_group, tag_exponent
from ..cryptography.kdf import derive_key
from ..cryptography.puzzle import TimeLockPuzzleParam
from ..cryptography.sigma import DLEQProof, Transcript, prove_dleq, verify_dleq
from .keys import (
    Blob,
    EncryptionProof,
    KeyKind,
    ProvingKey,
    Relation,
    VerifyingKey,
    check_key,
    unwrap_proof,
    wrap_proof,
)

logger = logging.getLogger("pvde.zkp.encryption")

RELATION = Relation.ENCRYPTION

_PUBLIC_MAGIC = b"PVDE"
_WIRE_VERSION = 1


# =============================================================================
# Data Structures
# =============================================================================

@dataclass(frozen=True)
class EncryptionPublicInput:
    encrypted_data: DelayCiphertext
    k_hash_value: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "encrypted_data": self.encrypted_data.to_dict(),
            "k_hash_value": str(self.k_hash_value),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EncryptionPublicInput":
        record = "EncryptionPublicInput"
        check_fields(data, ("encrypted_data", "k_hash_value"), record)
        if not isinstance(data["encrypted_data"], dict):
            raise SerializationError(f"{record}.encrypted_data: expected object")
        return cls(
            encrypted_data=DelayCiphertext.from_dict(data["encrypted_data"]),
            k_hash_value=int_field(data, "k_hash_value", record),
        )

    def to_bytes(self) -> bytes:
        return (
            _PUBLIC_MAGIC + bytes([_WIRE_VERSION]) +
            pack_bytes(self.encrypted_data.to_bytes()) +
            pack_int(self.k_hash_value)
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> "EncryptionPublicInput":
        if len(data) < 5 or data[:4] != _PUBLIC_MAGIC:
            raise SerializationError("EncryptionPublicInput: bad magic")
        if data[4] != _WIRE_VERSION:
            raise SerializationError(f"EncryptionPublicInput: unsupported version {data[4]}")
        ct, offset = unpack_bytes(data, 5)
        k_hash_value, offset = unpack_int(data, offset)
        if offset != len(data):
            raise SerializationError("EncryptionPublicInput: trailing bytes")
        return cls(encrypted_data=DelayCiphertext.from_bytes(ct), k_hash_value=k_hash_value)


@dataclass(frozen=True)
class EncryptionSecretInput:
    """Plaintext and puzzle secret. Never published."""
    data: bytes = field(repr=False)
    k: int = field(repr=False)

    def to_dict(self) -> Dict[str, Any]:
        return {"data": self.data.hex(), "k": str(self.k)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EncryptionSecretInput":
        record = "EncryptionSecretInput"
        check_fields(data, ("data", "k"), record)
        try:
            raw = bytes.fromhex(data["data"])
        except (TypeError, ValueError) as e:
            raise SerializationError(f"{record}.data: not hex") from e
        return cls(data=raw, k=int_field(data, "k", record))


# =============================================================================
# Prove / Verify
# =============================================================================

def _statement(param: TimeLockPuzzleParam, public_input: EncryptionPublicInput):
    """(h, A, B, tag) with B = h1^e."""
    ct = public_input.encrypted_data
    h = CommitmentHash(param.n, param.hash_name).base
    h1 = hash_to_group(param.n, KEY1_DOMAIN, param.hash_name)
    e = tag_exponent(param.hash_name, pack_bytes(ct.nonce), pack_bytes(ct.body))
    return h, public_input.k_hash_value, param.group.exp(h1, e), ct.tag


def _transcript(param: TimeLockPuzzleParam, public_input: EncryptionPublicInput) -> Transcript:
    ct = public_input.encrypted_data
    tr = Transcript(b"pvde/encryption", param.hash_name)
    tr.append_bytes(b"epoch", param.digest())
    tr.append_bytes(b"nonce", ct.nonce)
    tr.append_bytes(b"body", ct.body)
    return tr


def prove(
    param: TimeLockPuzzleParam,
    proving_key: ProvingKey,
    public_input: EncryptionPublicInput,
    secret_input: EncryptionSecretInput,
) -> EncryptionProof:
    """
    Prove that public_input.encrypted_data encrypts secret_input.data
    under deriveKey(k), with Hash(k) = public_input.k_hash_value.

    Raises:
        ProofGenerationError: wrong key, or (data, k) is not a witness.
    """
    if not check_key(proving_key, param, RELATION, KeyKind.PROVING):
        raise ProofGenerationError("Proving key does not match relation/epoch")

    group = param.group
    k = secret_input.k
    if not group.contains(k):
        raise ProofGenerationError("k is not a group element")
    if not CommitmentHash(param.n, param.hash_name).matches(k, public_input.k_hash_value):
        raise ProofGenerationError("Hash(k) != kHashValue")

    ct = public_input.encrypted_data
    expected = DelayCipher(derive_key(k, param.n, param.hash_name)).encrypt(
        secret_input.data, nonce=ct.nonce
    )
    if not _ct_eq(expected.body, ct.body) or expected.tag != ct.tag:
        raise ProofGenerationError("Ciphertext is not encrypt(data, deriveKey(k))")

    h, a, b, tag = _statement(param, public_input)
    sigma = prove_dleq(group, _transcript(param, public_input), h, a, b, tag, k)

    body = (
        pack_bytes(elements_to_bytes((sigma.a1, sigma.a2), param.n)) +
        pack_int(sigma.z)
    )
    logger.debug("encryption proof generated: %d byte body", len(ct))
    return EncryptionProof(wrap_proof(RELATION, body))


def verify(
    param: TimeLockPuzzleParam,
    verifying_key: VerifyingKey,
    public_input: EncryptionPublicInput,
    proof: Union[Blob, bytes],
) -> bool:
    """Check an encryption proof. Never raises."""
    try:
        if not check_key(verifying_key, param, RELATION, KeyKind.VERIFYING):
            return False
        body = unwrap_proof(RELATION, bytes(proof))
        raw, offset = unpack_bytes(body, 0)
        a1, a2 = elements_from_bytes(raw, 2, param.n)
        z, offset = unpack_int(body, offset)
        if offset != len(body):
            raise SerializationError("EncryptionProof: trailing bytes")

        h, a, b, tag = _statement(param, public_input)
        return verify_dleq(
            param.group,
            _transcript(param, public_input),
            h, a, b, tag,
            DLEQProof(a1=a1, a2=a2, z=z),
        )
    except (PvdeError, ValueError, TypeError, AttributeError) as e:
        logger.warning("encryption proof rejected: %s", e)
        return False
