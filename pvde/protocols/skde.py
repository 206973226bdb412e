# pvde/protocols/skde.py
"""
PVDE Multi-Party Delay Encryption (SKDE)

Session-keyed delay encryption among a bounded set of participants,
reusing the sequential-squaring structure without per-message puzzles
or proofs.

Parameters: (n, g, t, h = g^(2^t) mod n, max_participants)

Key lifecycle:
    1. Each participant i samples r_i in [1, n), s_i in [1, n / max)
       and publishes PartialKey:
           u_i = g^r_i mod n
           v_i = (h^r_i mod n)^n * (1 + n)^s_i mod n^2
           y_i = g^s_i mod n
    2. aggregate_key multiplies up to max_participants partial keys:
           u = prod u_i,  v = prod v_i,  y = prod y_i
       y is the session encryption key.
    3. After t squarings of u anybody recovers
           x = u^(2^t) = h^R,   v * x^-n = (1 + n)^S mod n^2
       and S = sum s_i, checked against g^S == y.

The share bound keeps S < n, so it is recovered exactly.

Encryption is hashed ElGamal in Z_n^*: c1 = g^l, shared = y^l, and the
delay cipher keyed by deriveKey(shared) carries the message.

Usage:
    params = setup(t=1 << 20)
    partials = [generate_partial_key(params) for _ in range(3)]
    aggregated = aggregate_key(params, partials)
    ct = encrypt(params, "hello", aggregated.y)
    ...after the delay
    sk = solve_secret_key(params, aggregated)
    assert decrypt_text(params, ct, sk) == "hello"
"""

from __future__ import annotations

import logging
import secrets
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional, Union

import gmpy2

from ..cryptography.cipher import DelayCipher, DelayCiphertext
from ..cryptography.common import (
    DEFAULT_HASH,
    DEFAULT_T,
    G_DEFAULT,
    N_RSA2048,
    MalformedParameterError,
    ParticipantLimitError,
    PvdeError,
    SerializationError,
    SolveMismatchError,
    check_fields,
    check_hash_name,
    int_field,
    pack_bytes,
    pack_int,
    unpack_bytes,
    unpack_int,
)
from ..cryptography.group import RSAGroup, group_for
from ..cryptography.kdf import derive_key

logger = logging.getLogger("pvde.skde")

DEFAULT_MAX_PARTICIPANTS: int = 16

_PARAMS_MAGIC = b"PVDT"
_PARTIAL_MAGIC = b"PVDU"
_AGGREGATED_MAGIC = b"PVDA"
_CT_MAGIC = b"PVDS"
_WIRE_VERSION = 1


# =============================================================================
# Exceptions
# =============================================================================

class SkdeDecryptionError(PvdeError):
    """Ciphertext tag does not match the key derived from the secret key."""
    pass


# =============================================================================
# Data Structures
# =============================================================================

def _ints_to_dict(obj, names) -> Dict[str, Any]:
    return {name: str(getattr(obj, name)) for name in names}


def _ints_from_dict(cls, data: Dict[str, Any], names):
    record = cls.__name__
    check_fields(data, names, record)
    return cls(**{name: int_field(data, name, record) for name in names})


def _check_header(data: bytes, magic: bytes, record: str) -> int:
    if len(data) < 5 or data[:4] != magic:
        raise SerializationError(f"{record}: bad magic")
    if data[4] != _WIRE_VERSION:
        raise SerializationError(f"{record}: unsupported version {data[4]}")
    return 5


def _ints_to_bytes(obj, magic: bytes, names) -> bytes:
    out = magic + bytes([_WIRE_VERSION])
    for name in names:
        out += pack_int(getattr(obj, name))
    return out


def _ints_from_bytes(cls, data: bytes, magic: bytes, names):
    record = cls.__name__
    offset = _check_header(data, magic, record)
    values = {}
    for name in names:
        values[name], offset = unpack_int(data, offset)
    if offset != len(data):
        raise SerializationError(f"{record}: trailing bytes")
    return cls(**values)


@dataclass(frozen=True)
class SkdeParams:
    """Session parameters shared by all participants."""
    n: int
    g: int
    t: int
    h: int
    max_participants: int = DEFAULT_MAX_PARTICIPANTS
    hash_name: str = DEFAULT_HASH

    @property
    def group(self) -> RSAGroup:
        return group_for(self.n)

    @property
    def n_square(self) -> int:
        return self.n * self.n

    @property
    def share_bound(self) -> int:
        """Exclusive upper bound on one participant's s_i."""
        return self.n // self.max_participants

    def validate(self) -> "SkdeParams":
        if isinstance(self.t, bool) or not isinstance(self.t, int) or self.t < 1:
            raise MalformedParameterError("t must be a positive integer")
        if self.max_participants < 1:
            raise MalformedParameterError("max_participants must be positive")
        if self.share_bound < 2:
            raise MalformedParameterError("max_participants too large for n")
        check_hash_name(self.hash_name)
        group = self.group
        group.element(self.g, "g")
        group.element(self.h, "h")
        return self

    def is_consistent(self) -> bool:
        """Replay the t squarings and compare against h."""
        return self.group.repeated_squaring(self.g, self.t) == self.h

    def to_dict(self) -> Dict[str, Any]:
        out = _ints_to_dict(self, ("n", "g", "t", "h", "max_participants"))
        out["hash_name"] = self.hash_name
        return out

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SkdeParams":
        record = "SkdeParams"
        check_fields(data, ("n", "g", "t", "h", "max_participants", "hash_name"), record)
        params = cls(
            n=int_field(data, "n", record),
            g=int_field(data, "g", record),
            t=int_field(data, "t", record),
            h=int_field(data, "h", record),
            max_participants=int_field(data, "max_participants", record),
            hash_name=data["hash_name"],
        )
        return params.validate()

    def to_bytes(self) -> bytes:
        """magic(4) "PVDT" || version(1) || t, max_participants, hash name, n, g, h."""
        return (
            _PARAMS_MAGIC + bytes([_WIRE_VERSION]) +
            pack_int(self.t) +
            pack_int(self.max_participants) +
            pack_bytes(self.hash_name.encode("ascii")) +
            pack_int(self.n) +
            pack_int(self.g) +
            pack_int(self.h)
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> "SkdeParams":
        record = "SkdeParams"
        offset = _check_header(data, _PARAMS_MAGIC, record)
        t, offset = unpack_int(data, offset)
        max_participants, offset = unpack_int(data, offset)
        hash_raw, offset = unpack_bytes(data, offset)
        n, offset = unpack_int(data, offset)
        g, offset = unpack_int(data, offset)
        h, offset = unpack_int(data, offset)
        if offset != len(data):
            raise SerializationError(f"{record}: trailing bytes")
        try:
            hash_name = hash_raw.decode("ascii")
        except UnicodeDecodeError as e:
            raise SerializationError(f"{record}: bad hash name") from e
        return cls(n=n, g=g, t=t, h=h, max_participants=max_participants, hash_name=hash_name).validate()


@dataclass(frozen=True)
class PartialKey:
    """One participant's published contribution."""
    u: int
    v: int
    y: int

    _FIELDS = ("u", "v", "y")

    def to_dict(self) -> Dict[str, Any]:
        return _ints_to_dict(self, self._FIELDS)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PartialKey":
        return _ints_from_dict(cls, data, cls._FIELDS)

    def to_bytes(self) -> bytes:
        return _ints_to_bytes(self, _PARTIAL_MAGIC, self._FIELDS)

    @classmethod
    def from_bytes(cls, data: bytes) -> "PartialKey":
        return _ints_from_bytes(cls, data, _PARTIAL_MAGIC, cls._FIELDS)


@dataclass(frozen=True)
class AggregatedKey:
    """Product of partial keys; y is the session encryption key."""
    u: int
    v: int
    y: int

    _FIELDS = ("u", "v", "y")

    def to_dict(self) -> Dict[str, Any]:
        return _ints_to_dict(self, self._FIELDS)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AggregatedKey":
        return _ints_from_dict(cls, data, cls._FIELDS)

    def to_bytes(self) -> bytes:
        return _ints_to_bytes(self, _AGGREGATED_MAGIC, self._FIELDS)

    @classmethod
    def from_bytes(cls, data: bytes) -> "AggregatedKey":
        return _ints_from_bytes(cls, data, _AGGREGATED_MAGIC, cls._FIELDS)


@dataclass(frozen=True)
class PartialSecret:
    """Participant-side randomness behind a PartialKey. Never published."""
    r: int = field(repr=False)
    s: int = field(repr=False)


@dataclass(frozen=True)
class SecretKey:
    """Session decryption key S = sum of s_i."""
    sk: int = field(repr=False)

    def to_dict(self) -> Dict[str, Any]:
        return {"sk": str(self.sk)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SecretKey":
        check_fields(data, ("sk",), "SecretKey")
        return cls(sk=int_field(data, "sk", "SecretKey"))


@dataclass(frozen=True)
class SkdeCiphertext:
    """
    Wire format:
      - magic(4) "PVDS" || version(1)
      - c1:   len(4, BE) || big-endian
      - data: len(4, BE) || DelayCiphertext wire form
    """
    c1: int
    data: DelayCiphertext

    def to_bytes(self) -> bytes:
        return (
            _CT_MAGIC + bytes([_WIRE_VERSION]) +
            pack_int(self.c1) +
            pack_bytes(self.data.to_bytes())
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> "SkdeCiphertext":
        offset = _check_header(data, _CT_MAGIC, "SkdeCiphertext")
        c1, offset = unpack_int(data, offset)
        inner, offset = unpack_bytes(data, offset)
        if offset != len(data):
            raise SerializationError("SkdeCiphertext: trailing bytes")
        return cls(c1=c1, data=DelayCiphertext.from_bytes(inner))

    def to_string(self) -> str:
        return self.to_bytes().hex()

    @classmethod
    def from_string(cls, s: str) -> "SkdeCiphertext":
        try:
            raw = bytes.fromhex(s)
        except (TypeError, ValueError) as e:
            raise SerializationError("SkdeCiphertext: not hex") from e
        return cls.from_bytes(raw)

    def to_dict(self) -> Dict[str, Any]:
        return {"c1": str(self.c1), "data": self.data.to_dict()}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SkdeCiphertext":
        record = "SkdeCiphertext"
        check_fields(data, ("c1", "data"), record)
        if not isinstance(data["data"], dict):
            raise SerializationError(f"{record}.data: expected object")
        return cls(c1=int_field(data, "c1", record), data=DelayCiphertext.from_dict(data["data"]))


# =============================================================================
# Setup
# =============================================================================

def setup(
    t: int = DEFAULT_T,
    *,
    n: int = N_RSA2048,
    g: int = G_DEFAULT,
    max_participants: int = DEFAULT_MAX_PARTICIPANTS,
    hash_name: str = DEFAULT_HASH,
) -> SkdeParams:
    """Build session parameters; h is computed by t sequential squarings."""
    if isinstance(t, bool) or not isinstance(t, int) or t < 1:
        raise MalformedParameterError("t must be a positive integer")
    group = group_for(int(n))
    group.element(g, "g")
    start = time.perf_counter()
    h = group.repeated_squaring(g, t)
    logger.debug("skde setup: bits=%d t=%d in %.3fs", group.bits, t, time.perf_counter() - start)
    return SkdeParams(
        n=group.n, g=g, t=t, h=h,
        max_participants=max_participants,
        hash_name=hash_name,
    ).validate()


# =============================================================================
# Key Lifecycle
# =============================================================================

def _one_plus_n_pow(s: int, n: int, n_square: int) -> int:
    # (1 + n)^s = 1 + s*n mod n^2
    return (1 + s * n) % n_square


def generate_partial_key(
    params: SkdeParams,
    return_secret: bool = False,
) -> Union[PartialKey, tuple]:
    """
    Sample a participant contribution.

    Returns PartialKey, or (PartialKey, PartialSecret) when return_secret.
    """
    group = params.group
    n, n_square = params.n, params.n_square

    r = secrets.randbelow(n - 1) + 1
    s = secrets.randbelow(params.share_bound - 1) + 1

    u = group.exp(params.g, r)
    hr = gmpy2.mpz(group.exp(params.h, r))
    v = int(gmpy2.powmod(hr, n, n_square) * _one_plus_n_pow(s, n, n_square) % n_square)
    y = group.exp(params.g, s)

    key = PartialKey(u=u, v=v, y=y)
    if return_secret:
        return key, PartialSecret(r=r, s=s)
    return key


def aggregate_key(params: SkdeParams, partial_keys: Iterable[PartialKey]) -> AggregatedKey:
    """
    Multiply partial keys together.

    Raises:
        ParticipantLimitError: more than params.max_participants keys.
        MalformedParameterError: no keys, or a component out of range.
    """
    keys = list(partial_keys)
    if not keys:
        raise MalformedParameterError("At least one partial key is required")
    if len(keys) > params.max_participants:
        raise ParticipantLimitError(len(keys), params.max_participants)

    n, n_square = params.n, params.n_square
    group = params.group
    u = v = y = gmpy2.mpz(1)
    for i, pk in enumerate(keys):
        group.element(pk.u, f"partial_keys[{i}].u")
        group.element(pk.y, f"partial_keys[{i}].y")
        if not 0 < pk.v < n_square or gmpy2.gcd(pk.v, n) != 1:
            raise MalformedParameterError(f"partial_keys[{i}].v out of range")
        u = u * pk.u % n
        v = v * pk.v % n_square
        y = y * pk.y % n

    logger.debug("aggregated %d partial keys", len(keys))
    return AggregatedKey(u=int(u), v=int(v), y=int(y))


def solve_secret_key(
    params: SkdeParams,
    aggregated_key: AggregatedKey,
    cancel: Optional[threading.Event] = None,
) -> SecretKey:
    """
    Recover S by t sequential squarings of u.

    Raises:
        SolveMismatchError: g^S != y (corrupted key or wrong parameters).
        SolveCancelled: cancel was set mid-solve.
    """
    group = params.group
    n, n_square = params.n, params.n_square

    start = time.perf_counter()
    x = group.repeated_squaring(aggregated_key.u, params.t, cancel=cancel)

    x_n = gmpy2.powmod(gmpy2.mpz(x), n, n_square)
    try:
        d = gmpy2.mpz(aggregated_key.v) * gmpy2.invert(x_n, n_square) % n_square
    except ZeroDivisionError as e:
        raise SolveMismatchError("x^n is not invertible modulo n^2") from e
    if (d - 1) % n != 0:
        raise SolveMismatchError("v does not open to (1 + n)^S")
    sk = int((d - 1) // n)

    if group.exp(params.g, sk) != aggregated_key.y:
        raise SolveMismatchError("g^S != y")

    logger.debug("solved secret key in %.3fs", time.perf_counter() - start)
    return SecretKey(sk=sk)


# =============================================================================
# Encryption
# =============================================================================

def _session_cipher(params: SkdeParams, shared: int) -> DelayCipher:
    return DelayCipher(derive_key(shared, params.n, params.hash_name))


def encrypt(
    params: SkdeParams,
    message: Union[str, bytes],
    encryption_key: Union[AggregatedKey, int],
) -> SkdeCiphertext:
    """Encrypt under the session key y (an AggregatedKey or its y)."""
    y = encryption_key.y if isinstance(encryption_key, AggregatedKey) else encryption_key
    group = params.group
    group.element(y, "encryption_key")

    ell = secrets.randbelow(params.n - 1) + 1
    c1 = group.exp(params.g, ell)
    shared = group.exp(y, ell)
    return SkdeCiphertext(c1=c1, data=_session_cipher(params, shared).encrypt(message))


def decrypt(
    params: SkdeParams,
    ciphertext: Union[SkdeCiphertext, str],
    decryption_key: SecretKey,
) -> bytes:
    """
    Decrypt with the solved session secret.

    Returns the plaintext bytes exactly as they were encrypted; use
    decrypt_text for str messages.

    Raises:
        SkdeDecryptionError: the tag does not match the derived key.
    """
    if isinstance(ciphertext, str):
        ciphertext = SkdeCiphertext.from_string(ciphertext)
    group = params.group
    group.element(ciphertext.c1, "c1")

    shared = group.exp(ciphertext.c1, decryption_key.sk)
    cipher = _session_cipher(params, shared)
    if not cipher.check_tag(ciphertext.data):
        raise SkdeDecryptionError("Ciphertext tag mismatch (wrong key or session)")
    return cipher.decrypt(ciphertext.data)


def decrypt_text(
    params: SkdeParams,
    ciphertext: Union[SkdeCiphertext, str],
    decryption_key: SecretKey,
) -> str:
    """decrypt and decode as UTF-8 (raises UnicodeDecodeError on binary payloads)."""
    return decrypt(params, ciphertext, decryption_key).decode("utf-8")
