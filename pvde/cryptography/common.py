# pvde/cryptography/common.py
"""
PVDE Common Components

Shared constants, exceptions, utilities and wire helpers for the
publicly verifiable delay encryption (PVDE) library.

Wire Format:
  - Header fields: big-endian (">I", ">H", ">B")
  - Group elements: little-endian uint64 limb arrays ("<u8"), fixed width
    per modulus (ceil(|n| / 64) limbs)
  - Unbounded integers (responses, exponents): ">I" byte length followed
    by big-endian magnitude
  - Headers follow network byte order; limb arrays follow the limb layout
    used when public inputs are laid out as an instance vector.
"""

from __future__ import annotations

import hashlib
import hmac
import struct
from typing import Dict, Iterable, List, Optional, Tuple

import numpy as np


# =============================================================================
# Constants
# =============================================================================

BITS_LEN: int = 2048
LIMB_WIDTH: int = 64
LIMB_COUNT: int = BITS_LEN // LIMB_WIDTH

G_DEFAULT: int = 5

# RSA-2048 challenge modulus: its factorisation is not known to anyone.
N_RSA2048: int = int(
    "251959084756578934940271832400483985714292821262040320277771378360436620"
    "207075955562640185258807844069182906412495150821892985591491761845028084"
    "891200728449926873928072877767359714183472702618963750149718246911650776"
    "133798590957000973304597488084284017974291006424586918171951187461215151"
    "726546322822168699875491824224336372590851418654620435767984233871847744"
    "479207399342365848238242811981638150106748104516603773060562016196762561"
    "338441436038339044149526344321901146575444541784240209246165157233507787"
    "077498171257724679629263863563732899121548314381678998850404453640235273"
    "81951378636564391212010397122822120720357"
)

DEFAULT_T: int = 2048
DEFAULT_HASH: str = "sha256"

CHALLENGE_BITS: int = 128         # Fiat-Shamir challenge length
STATISTICAL_SECURITY: int = 128   # slack bits hiding integer responses

NONCE_BYTES: int = 16             # ChaCha20 (32-bit counter || 96-bit nonce)
KEY_BYTES: int = 32

PARAMETER_PRESETS: Dict[str, Dict[str, int]] = {
    "rsa2048": {"bits": 2048, "t": DEFAULT_T, "g": G_DEFAULT},
    "test": {"bits": 512, "t": 64, "g": G_DEFAULT},
}

# Hash names accepted for Fiat-Shamir, hash-to-group and tag exponents.
SUPPORTED_HASHES: Tuple[str, ...] = (
    "sha256",
    "sha384",
    "sha512",
    "sha3_256",
    "sha3_512",
    "blake2b",
    "blake2s",
)


# =============================================================================
# Exceptions
# =============================================================================

class PvdeError(Exception):
    """Base PVDE error."""
    pass


class MalformedParameterError(PvdeError, ValueError):
    """Invalid modulus, generator, exponent or time parameter."""
    pass


class SerializationError(PvdeError, ValueError):
    """Record could not be encoded or decoded exactly."""
    pass


class SolveMismatchError(PvdeError):
    """Recovered secret does not open the published commitments."""
    pass


class SolveCancelled(PvdeError):
    """Sequential squaring was abandoned by the caller."""
    def __init__(self, completed: int, total: int):
        self.completed = completed
        self.total = total
        super().__init__(f"Solve cancelled after {completed}/{total} squarings")


class ProofGenerationError(PvdeError):
    """Witness does not satisfy the relation being proven."""
    pass


class ParticipantLimitError(PvdeError):
    """More key shares than the session allows."""
    def __init__(self, got: int, limit: int):
        self.got = got
        self.limit = limit
        super().__init__(f"Too many participants: {got} > {limit}")


# =============================================================================
# Utility Functions
# =============================================================================

def check_hash_name(hash_name: str) -> str:
    """Validate a hash name against SUPPORTED_HASHES."""
    if hash_name not in SUPPORTED_HASHES:
        raise MalformedParameterError(f"Unsupported hash: {hash_name!r}")
    return hash_name


def _hash(hash_name: str, *chunks: bytes) -> bytes:
    """Compute the digest of concatenated inputs with the named hash."""
    h = hashlib.new(hash_name)
    for c in chunks:
        h.update(c)
    return h.digest()


def _sha256(*chunks: bytes) -> bytes:
    """Compute SHA-256 hash of concatenated inputs."""
    return _hash("sha256", *chunks)


def _ct_eq(a: bytes, b: bytes) -> bool:
    """Constant-time byte comparison (length check is not constant-time)."""
    if len(a) != len(b):
        return False
    return hmac.compare_digest(a, b)


def _byte_len(x: int) -> int:
    return max(1, (int(x).bit_length() + 7) // 8)


def _int_to_bytes(x: int, length: Optional[int] = None) -> bytes:
    """Convert non-negative integer to big-endian bytes."""
    x = int(x)
    if x < 0:
        raise SerializationError("Negative integers are not encodable")
    return x.to_bytes(length if length is not None else _byte_len(x), "big")


def _int_from_bytes(b: bytes) -> int:
    """Convert bytes to integer (big-endian, unsigned)."""
    return int.from_bytes(b, "big", signed=False)


def pack_int(x: int) -> bytes:
    """Length-prefixed big-endian integer: len(4, BE) || magnitude."""
    body = _int_to_bytes(x)
    return struct.pack(">I", len(body)) + body


def unpack_int(data: bytes, offset: int) -> Tuple[int, int]:
    """Read a pack_int value at offset. Returns (value, new_offset)."""
    if offset + 4 > len(data):
        raise SerializationError(f"Truncated integer header at offset {offset}")
    (length,) = struct.unpack(">I", data[offset:offset + 4])
    offset += 4
    if offset + length > len(data):
        raise SerializationError(
            f"Truncated integer: need {offset + length}, have {len(data)}"
        )
    return _int_from_bytes(data[offset:offset + length]), offset + length


def pack_bytes(b: bytes) -> bytes:
    """Length-prefixed byte string."""
    return struct.pack(">I", len(b)) + bytes(b)


def unpack_bytes(data: bytes, offset: int) -> Tuple[bytes, int]:
    """Read a pack_bytes value at offset. Returns (value, new_offset)."""
    if offset + 4 > len(data):
        raise SerializationError(f"Truncated byte header at offset {offset}")
    (length,) = struct.unpack(">I", data[offset:offset + 4])
    offset += 4
    if offset + length > len(data):
        raise SerializationError(
            f"Truncated bytes: need {offset + length}, have {len(data)}"
        )
    return bytes(data[offset:offset + length]), offset + length


def expand(hash_name: str, seed: bytes, out_len: int, domain: bytes) -> bytes:
    """
    Deterministic expansion of seed using the named hash in counter mode.

    Used for hash-to-group and tag exponents. Cross-platform compatible
    (no PRNG implementation dependency).
    """
    out = bytearray()
    ctr = 0
    while len(out) < out_len:
        out.extend(_hash(hash_name, domain, struct.pack(">I", ctr), seed))
        ctr += 1
    return bytes(out[:out_len])


# =============================================================================
# Limb Codec
# =============================================================================

def limb_count_for(n: int, limb_width: int = LIMB_WIDTH) -> int:
    """Number of limbs needed to hold any residue modulo n."""
    return max(1, (int(n).bit_length() + limb_width - 1) // limb_width)


def decompose_big(x: int, number_of_limbs: int = LIMB_COUNT, limb_width: int = LIMB_WIDTH) -> np.ndarray:
    """
    Split a non-negative integer into little-endian limbs.

    Returns a uint64 array of exactly number_of_limbs entries.
    """
    if limb_width > 64:
        raise ValueError("limb_width must be <= 64")
    x = int(x)
    if x < 0 or x >> (number_of_limbs * limb_width):
        raise SerializationError(
            f"Value does not fit in {number_of_limbs} x {limb_width}-bit limbs"
        )
    mask = (1 << limb_width) - 1
    limbs = [(x >> (limb_width * i)) & mask for i in range(number_of_limbs)]
    return np.array(limbs, dtype="<u8")


def compose_big(limbs: np.ndarray, limb_width: int = LIMB_WIDTH) -> int:
    """Inverse of decompose_big."""
    x = 0
    for i, limb in enumerate(np.asarray(limbs, dtype="<u8").tolist()):
        x |= int(limb) << (limb_width * i)
    return x


def elements_to_bytes(values: Iterable[int], n: int) -> bytes:
    """Encode group elements as a contiguous (count, limbs) uint64 array."""
    limbs = limb_count_for(n)
    rows = [decompose_big(v, limbs) for v in values]
    if not rows:
        return b""
    return np.stack(rows).astype("<u8", copy=False).tobytes()


def elements_from_bytes(data: bytes, count: int, n: int) -> List[int]:
    """Decode count group elements written by elements_to_bytes."""
    limbs = limb_count_for(n)
    expected = count * limbs * 8
    if len(data) != expected:
        raise SerializationError(
            f"Element block size mismatch: {len(data)} != {expected}"
        )
    arr = np.frombuffer(data, dtype="<u8").reshape(count, limbs)
    return [compose_big(row) for row in arr]


# =============================================================================
# HKDF (RFC 5869)
# =============================================================================

class HKDF:
    """HMAC-based Key Derivation Function (RFC 5869)."""

    def __init__(self, salt: Optional[bytes] = None, hash_name: str = DEFAULT_HASH):
        self.hash_name = check_hash_name(hash_name)
        self.hash_len = hashlib.new(hash_name).digest_size
        self.salt = salt if salt is not None else b"\x00" * self.hash_len

    def extract(self, ikm: bytes) -> bytes:
        """HKDF-Extract: PRK = HMAC(salt, IKM)"""
        return hmac.new(self.salt, ikm, self.hash_name).digest()

    def expand(self, prk: bytes, info: bytes = b"", length: int = 32) -> bytes:
        """HKDF-Expand: OKM = T(1) || T(2) || ... truncated to length"""
        if length > 255 * self.hash_len:
            raise ValueError(f"Cannot expand to more than {255 * self.hash_len} bytes")
        n_blocks = (length + self.hash_len - 1) // self.hash_len
        okm = b""
        t_prev = b""
        for i in range(1, n_blocks + 1):
            t_prev = hmac.new(prk, t_prev + info + bytes([i]), self.hash_name).digest()
            okm += t_prev
        return okm[:length]

    def derive(self, ikm: bytes, info: bytes = b"", length: int = 32) -> bytes:
        """One-shot derivation: Extract then Expand."""
        return self.expand(self.extract(ikm), info, length)


# =============================================================================
# Dict helpers
# =============================================================================

def check_fields(data: Dict, expected: Iterable[str], record: str) -> None:
    """Reject records with missing or unexpected fields."""
    expected = set(expected)
    got = set(data)
    missing = expected - got
    extra = got - expected
    if missing or extra:
        raise SerializationError(
            f"{record}: missing={sorted(missing)} unexpected={sorted(extra)}"
        )


def int_field(data: Dict, name: str, record: str) -> int:
    """Parse a decimal-string (or int) field as a non-negative integer."""
    value = data[name]
    try:
        if isinstance(value, (bool, float)):
            raise TypeError
        out = int(value)
    except (TypeError, ValueError) as e:
        raise SerializationError(f"{record}.{name}: not an integer") from e
    if out < 0:
        raise SerializationError(f"{record}.{name}: negative")
    return out
