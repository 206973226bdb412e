# pvde/zkp/keys.py
"""
PVDE Proof Key Material

Proving / verifying keys and proofs are opaque, immutable byte blobs with
an explicit length. A key blob describes one relation and is bound to one
parameter epoch through the epoch digest:

    magic(4) "PVDK" || version(1) || kind(1) || relation(1)
    || challenge_bits(2, BE) || statistical_bits(2, BE)
    || hash_name: len(4, BE) || ascii
    || epoch_digest(32)

Keys are produced by setup() from the epoch parameter alone: the
relations are sigma protocols and need no trusted setup. Provisioning
and transport of the blobs belong to the caller.
"""

from __future__ import annotations

import logging
import struct
import threading
from dataclasses import dataclass
from enum import IntEnum
from typing import Dict, List, Tuple

from ..cryptography.common import (
    CHALLENGE_BITS,
    STATISTICAL_SECURITY,
    PvdeError,
    SerializationError,
    _ct_eq,
    pack_bytes,
    unpack_bytes,
)
from ..cryptography.puzzle import TimeLockPuzzleParam

logger = logging.getLogger("pvde.zkp")

_KEY_MAGIC = b"PVDK"
_PROOF_MAGIC = b"PVDZ"
_WIRE_VERSION = 1


class Relation(IntEnum):
    """Relations with their own key pair."""
    KEY_VALIDATION = 1   # puzzle correctness
    ENCRYPTION = 2       # encryption correctness


class KeyKind(IntEnum):
    PROVING = 0
    VERIFYING = 1


# =============================================================================
# Blobs
# =============================================================================

@dataclass(frozen=True)
class Blob:
    """Immutable byte buffer."""
    data: bytes

    def __post_init__(self):
        if not isinstance(self.data, (bytes, bytearray, memoryview)):
            raise TypeError("Blob data must be bytes")
        object.__setattr__(self, "data", bytes(self.data))

    def __len__(self) -> int:
        return len(self.data)

    def __bytes__(self) -> bytes:
        return self.data

    def hex(self) -> str:
        return self.data.hex()

    @classmethod
    def from_hex(cls, s: str):
        try:
            return cls(bytes.fromhex(s))
        except (TypeError, ValueError) as e:
            raise SerializationError(f"{cls.__name__}: not hex") from e


class ProvingKey(Blob):
    pass


class VerifyingKey(Blob):
    pass


class Proof(Blob):
    pass


class TimeLockPuzzleProof(Proof):
    pass


class EncryptionProof(Proof):
    pass


# =============================================================================
# Key descriptor
# =============================================================================

@dataclass(frozen=True)
class KeyDescriptor:
    """Decoded contents of a key blob."""
    kind: KeyKind
    relation: Relation
    hash_name: str
    epoch_digest: bytes
    challenge_bits: int = CHALLENGE_BITS
    statistical_bits: int = STATISTICAL_SECURITY

    def to_bytes(self) -> bytes:
        return (
            _KEY_MAGIC +
            struct.pack(">BBBHH", _WIRE_VERSION, self.kind, self.relation,
                        self.challenge_bits, self.statistical_bits) +
            pack_bytes(self.hash_name.encode("ascii")) +
            self.epoch_digest
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> "KeyDescriptor":
        if len(data) < 11 or data[:4] != _KEY_MAGIC:
            raise SerializationError("Key blob: bad magic")
        version, kind, relation, c_bits, s_bits = struct.unpack(">BBBHH", data[4:11])
        if version != _WIRE_VERSION:
            raise SerializationError(f"Key blob: unsupported version {version}")
        hash_raw, offset = unpack_bytes(data, 11)
        digest = data[offset:]
        if len(digest) != 32:
            raise SerializationError("Key blob: bad epoch digest length")
        try:
            return cls(
                kind=KeyKind(kind),
                relation=Relation(relation),
                hash_name=hash_raw.decode("ascii"),
                epoch_digest=bytes(digest),
                challenge_bits=c_bits,
                statistical_bits=s_bits,
            )
        except (ValueError, UnicodeDecodeError) as e:
            raise SerializationError(f"Key blob: {e}") from e

    def matches(self, param: TimeLockPuzzleParam, relation: Relation, kind: KeyKind) -> bool:
        """True iff this key is for (relation, kind) within param's epoch."""
        return (
            self.kind == kind and
            self.relation == relation and
            self.hash_name == param.hash_name and
            self.challenge_bits == CHALLENGE_BITS and
            self.statistical_bits == STATISTICAL_SECURITY and
            _ct_eq(self.epoch_digest, param.digest())
        )


def setup(
    param: TimeLockPuzzleParam,
    relation: Relation,
) -> Tuple[ProvingKey, VerifyingKey]:
    """Key pair for relation in param's epoch."""
    relation = Relation(relation)
    digest = param.digest()

    def _blob(kind: KeyKind) -> bytes:
        return KeyDescriptor(
            kind=kind,
            relation=relation,
            hash_name=param.hash_name,
            epoch_digest=digest,
        ).to_bytes()

    return ProvingKey(_blob(KeyKind.PROVING)), VerifyingKey(_blob(KeyKind.VERIFYING))


def check_key(
    key: Blob,
    param: TimeLockPuzzleParam,
    relation: Relation,
    kind: KeyKind,
) -> bool:
    """Decode a key blob and test it against (param, relation, kind)."""
    try:
        desc = KeyDescriptor.from_bytes(bytes(key))
    except SerializationError as e:
        logger.warning("rejecting key blob: %s", e)
        return False
    if not desc.matches(param, relation, kind):
        logger.warning("key blob does not match relation %s / epoch", relation.name)
        return False
    return True


# =============================================================================
# Proof envelope
# =============================================================================

def wrap_proof(relation: Relation, body: bytes) -> bytes:
    """magic(4) || version(1) || relation(1) || body"""
    return _PROOF_MAGIC + struct.pack(">BB", _WIRE_VERSION, relation) + body


def unwrap_proof(relation: Relation, data: bytes) -> bytes:
    if len(data) < 6 or data[:4] != _PROOF_MAGIC:
        raise SerializationError("Proof: bad magic")
    version, rel = struct.unpack(">BB", data[4:6])
    if version != _WIRE_VERSION:
        raise SerializationError(f"Proof: unsupported version {version}")
    if rel != relation:
        raise SerializationError(f"Proof: relation {rel} != {int(relation)}")
    return data[6:]


# =============================================================================
# Key Registry
# =============================================================================

class KeyRegistry:
    """
    Process-wide holder of loaded key pairs, keyed by (epoch, relation).

    Each (epoch, relation) pair is loaded exactly once and never replaced,
    so lookups are safe to share between threads. Several epochs may live
    in one registry side by side.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._keys: Dict[Tuple[bytes, Relation], Tuple[ProvingKey, VerifyingKey]] = {}

    def load(self, relation: Relation, proving_key: ProvingKey, verifying_key: VerifyingKey) -> bytes:
        """
        Load an externally produced key pair. The epoch is read from the
        key blobs themselves and returned.

        Raises:
            SerializationError: a blob does not decode.
            PvdeError: kind/relation/epoch disagree, or the pair is
                already loaded.
        """
        relation = Relation(relation)
        pk_desc = KeyDescriptor.from_bytes(bytes(proving_key))
        vk_desc = KeyDescriptor.from_bytes(bytes(verifying_key))
        if pk_desc.kind != KeyKind.PROVING or vk_desc.kind != KeyKind.VERIFYING:
            raise PvdeError("Key kinds do not match (proving, verifying)")
        if pk_desc.relation != relation or vk_desc.relation != relation:
            raise PvdeError(f"Key blobs are not for {relation.name}")
        if not _ct_eq(pk_desc.epoch_digest, vk_desc.epoch_digest):
            raise PvdeError("Proving and verifying keys belong to different epochs")
        epoch = pk_desc.epoch_digest
        with self._lock:
            if (epoch, relation) in self._keys:
                raise PvdeError(f"Keys for {relation.name} already loaded for this epoch")
            self._keys[(epoch, relation)] = (ProvingKey(bytes(proving_key)), VerifyingKey(bytes(verifying_key)))
        logger.debug("loaded keys for %s (epoch %s)", relation.name, epoch.hex()[:16])
        return epoch

    def initialize(self, param: TimeLockPuzzleParam) -> bytes:
        """Derive and load both relations for param's epoch (idempotent)."""
        epoch = param.digest()
        with self._lock:
            for relation in Relation:
                if (epoch, relation) not in self._keys:
                    self._keys[(epoch, relation)] = setup(param, relation)
        logger.debug("key registry initialized for epoch %s", epoch.hex()[:16])
        return epoch

    def epochs(self) -> List[bytes]:
        return sorted({epoch for epoch, _ in self._keys})

    def is_loaded(self, relation: Relation, epoch: bytes) -> bool:
        return (bytes(epoch), Relation(relation)) in self._keys

    def proving_key(self, relation: Relation, epoch: bytes) -> ProvingKey:
        return self._get(relation, epoch)[0]

    def verifying_key(self, relation: Relation, epoch: bytes) -> VerifyingKey:
        return self._get(relation, epoch)[1]

    def _get(self, relation: Relation, epoch: bytes) -> Tuple[ProvingKey, VerifyingKey]:
        try:
            return self._keys[(bytes(epoch), Relation(relation))]
        except KeyError:
            raise PvdeError(f"Keys for {Relation(relation).name} not loaded for this epoch") from None


_DEFAULT_REGISTRY = KeyRegistry()


def default_registry() -> KeyRegistry:
    return _DEFAULT_REGISTRY
