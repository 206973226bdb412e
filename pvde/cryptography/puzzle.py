# pvde/cryptography/puzzle.py
"""
PVDE Time-Lock Puzzle

Puzzle generation, sequential solving and delay calibration over Z_n^*.

Setup (once per epoch):
    y    = g^(2^t) mod n         (t sequential squarings)
    yTwo = y^2 mod n

Puzzle (per commitment), committer samples s in [1, n):
    o          = g^s             (published, the locked value)
    k          = y^s = o^(2^t)   (secret, recoverable by t squarings of o)
    kTwo       = yTwo^s = k^2
    kHashValue = Hash(k)
    (r1, r2, z)                  DLEQ transcript: log_g(o) == log_yTwo(kTwo)

The committer reaches k through the exponent s; everybody else must walk
the whole squaring chain starting from o. s is discarded after generation.
"""

from __future__ import annotations

import json
import logging
import math
import secrets
import threading
import time
from dataclasses import dataclass, field
from enum import IntEnum
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

from .common import (
    BITS_LEN,
    DEFAULT_HASH,
    DEFAULT_T,
    G_DEFAULT,
    N_RSA2048,
    PARAMETER_PRESETS,
    MalformedParameterError,
    SerializationError,
    _sha256,
    check_fields,
    check_hash_name,
    int_field,
    pack_bytes,
    pack_int,
    unpack_bytes,
    unpack_int,
)
from .group import RSAGroup, generate_modulus, group_for
from .hash import CommitmentHash
from .sigma import DLEQProof, Transcript, prove_dleq, verify_dleq

logger = logging.getLogger("pvde.puzzle")

_PARAM_MAGIC = b"PVDP"
_PUBLIC_MAGIC = b"PVDI"
_WIRE_VERSION = 1


def _check_t(t: int) -> int:
    if isinstance(t, bool) or not isinstance(t, int):
        raise MalformedParameterError("t must be an integer")
    if t < 1:
        raise MalformedParameterError(f"t must be positive, got {t}")
    return t


def _check_header(data: bytes, magic: bytes, record: str) -> int:
    if len(data) < 5 or data[:4] != magic:
        raise SerializationError(f"{record}: bad magic")
    if data[4] != _WIRE_VERSION:
        raise SerializationError(f"{record}: unsupported version {data[4]}")
    return 5


# =============================================================================
# Data Structures
# =============================================================================

@dataclass(frozen=True)
class TimeLockPuzzleParam:
    """
    Puzzle-independent setup output for one parameter epoch.

    y and y_two are a deterministic function of (g, n, t); hash_name fixes
    the byte hash used for commitments and Fiat-Shamir within the epoch.
    """
    g: int
    n: int
    t: int
    y: int
    y_two: int
    hash_name: str = DEFAULT_HASH

    _FIELDS = ("g", "n", "t", "y", "y_two", "hash_name")

    @property
    def group(self) -> RSAGroup:
        return group_for(self.n)

    def validate(self) -> "TimeLockPuzzleParam":
        """Cheap structural checks (does not replay the squaring chain)."""
        _check_t(self.t)
        check_hash_name(self.hash_name)
        group = self.group
        group.element(self.g, "g")
        group.element(self.y, "y")
        group.element(self.y_two, "y_two")
        if group.square(self.y) != self.y_two:
            raise MalformedParameterError("y_two != y^2 mod n")
        return self

    def is_consistent(self) -> bool:
        """Replay the t squarings and compare against y."""
        return self.group.repeated_squaring(self.g, self.t) == self.y

    def digest(self) -> bytes:
        """Epoch identifier: SHA-256 over the wire form."""
        return _sha256(self.to_bytes())

    # -----------------------------------------
    # Serialization
    # -----------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {
            "g": str(self.g),
            "n": str(self.n),
            "t": self.t,
            "y": str(self.y),
            "y_two": str(self.y_two),
            "hash_name": self.hash_name,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TimeLockPuzzleParam":
        record = "TimeLockPuzzleParam"
        check_fields(data, cls._FIELDS, record)
        if not isinstance(data["hash_name"], str):
            raise SerializationError(f"{record}.hash_name: not a string")
        param = cls(
            g=int_field(data, "g", record),
            n=int_field(data, "n", record),
            t=int_field(data, "t", record),
            y=int_field(data, "y", record),
            y_two=int_field(data, "y_two", record),
            hash_name=data["hash_name"],
        )
        return param.validate()

    def to_bytes(self) -> bytes:
        return (
            _PARAM_MAGIC + bytes([_WIRE_VERSION]) +
            pack_int(self.t) +
            pack_bytes(self.hash_name.encode("ascii")) +
            pack_int(self.n) +
            pack_int(self.g) +
            pack_int(self.y) +
            pack_int(self.y_two)
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> "TimeLockPuzzleParam":
        offset = _check_header(data, _PARAM_MAGIC, "TimeLockPuzzleParam")
        t, offset = unpack_int(data, offset)
        hash_raw, offset = unpack_bytes(data, offset)
        n, offset = unpack_int(data, offset)
        g, offset = unpack_int(data, offset)
        y, offset = unpack_int(data, offset)
        y_two, offset = unpack_int(data, offset)
        if offset != len(data):
            raise SerializationError("TimeLockPuzzleParam: trailing bytes")
        try:
            hash_name = hash_raw.decode("ascii")
        except UnicodeDecodeError as e:
            raise SerializationError("TimeLockPuzzleParam: bad hash name") from e
        return cls(g=g, n=n, t=t, y=y, y_two=y_two, hash_name=hash_name).validate()


@dataclass(frozen=True)
class TimeLockPuzzlePublicInput:
    """
    Published per-instance puzzle data.

    o is the locked value, (k_hash_value, k_two) commit to k, and
    (r1, r2, z) is the DLEQ transcript tying o to k_two.
    """
    o: int
    k_hash_value: int
    k_two: int
    r1: int
    r2: int
    z: int

    _FIELDS = ("o", "k_hash_value", "k_two", "r1", "r2", "z")

    @property
    def sigma_proof(self) -> DLEQProof:
        return DLEQProof(a1=self.r1, a2=self.r2, z=self.z)

    def to_dict(self) -> Dict[str, Any]:
        return {name: str(getattr(self, name)) for name in self._FIELDS}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TimeLockPuzzlePublicInput":
        record = "TimeLockPuzzlePublicInput"
        check_fields(data, cls._FIELDS, record)
        return cls(**{name: int_field(data, name, record) for name in cls._FIELDS})

    def to_bytes(self) -> bytes:
        out = _PUBLIC_MAGIC + bytes([_WIRE_VERSION])
        for name in self._FIELDS:
            out += pack_int(getattr(self, name))
        return out

    @classmethod
    def from_bytes(cls, data: bytes) -> "TimeLockPuzzlePublicInput":
        offset = _check_header(data, _PUBLIC_MAGIC, "TimeLockPuzzlePublicInput")
        values = {}
        for name in cls._FIELDS:
            values[name], offset = unpack_int(data, offset)
        if offset != len(data):
            raise SerializationError("TimeLockPuzzlePublicInput: trailing bytes")
        return cls(**values)


@dataclass(frozen=True)
class TimeLockPuzzleSecretInput:
    """Committer-only secret. Re-derived by any solver after the delay."""
    k: int = field(repr=False)

    def to_dict(self) -> Dict[str, Any]:
        return {"k": str(self.k)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TimeLockPuzzleSecretInput":
        check_fields(data, ("k",), "TimeLockPuzzleSecretInput")
        return cls(k=int_field(data, "k", "TimeLockPuzzleSecretInput"))


class SolveStatus(IntEnum):
    """Outcome of a checked solve."""
    OK = 0
    MISMATCH = 1      # k does not open k_hash_value / k_two


@dataclass(frozen=True)
class SolveResult:
    """Recovered k plus whether it opens the published commitments."""
    k: int = field(repr=False)
    status: SolveStatus
    elapsed: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status == SolveStatus.OK

    @property
    def secret_input(self) -> TimeLockPuzzleSecretInput:
        return TimeLockPuzzleSecretInput(k=self.k)


# =============================================================================
# Parameter Generation
# =============================================================================

def generate_param(
    t: Optional[int] = None,
    *,
    n: Optional[int] = None,
    g: Optional[int] = None,
    bit_length: Optional[int] = None,
    preset: Optional[str] = None,
    hash_name: str = DEFAULT_HASH,
) -> TimeLockPuzzleParam:
    """
    Build the parameter for one epoch.

    Modulus selection:
      - n given: used as is
      - bit_length given: a fresh modulus is sampled, factors discarded
      - preset given: its bit size, with BITS_LEN meaning the RSA-2048
        challenge modulus and any other size a fresh sample
      - none of these: the RSA-2048 challenge modulus

    A preset from PARAMETER_PRESETS also supplies t and g unless they
    are passed explicitly; otherwise t defaults to DEFAULT_T.

    y is computed by t sequential squarings of g; no randomness touches
    the squaring chain, so equal (g, n, t) always give equal (y, y_two).
    """
    if preset is not None:
        try:
            settings = PARAMETER_PRESETS[preset]
        except KeyError:
            raise MalformedParameterError(
                f"Unknown preset {preset!r}; expected one of {sorted(PARAMETER_PRESETS)}"
            ) from None
        if n is not None or bit_length is not None:
            raise MalformedParameterError("A preset fixes the modulus size; drop n/bit_length")
        t = settings["t"] if t is None else t
        g = settings["g"] if g is None else g
        if settings["bits"] != BITS_LEN:
            bit_length = settings["bits"]
    t = DEFAULT_T if t is None else t

    _check_t(t)
    check_hash_name(hash_name)
    if n is not None and bit_length is not None:
        raise MalformedParameterError("Pass either n or bit_length, not both")

    if n is None:
        n = generate_modulus(bit_length) if bit_length is not None else N_RSA2048
    g = G_DEFAULT if g is None else g

    group = group_for(int(n))
    group.element(g, "g")
    if g == 1 or g == group.n - 1:
        raise MalformedParameterError("g has trivial order")

    start = time.perf_counter()
    y = group.repeated_squaring(g, t)
    y_two = group.square(y)
    logger.debug(
        "generated param: bits=%d t=%d in %.3fs",
        group.bits, t, time.perf_counter() - start,
    )

    return TimeLockPuzzleParam(g=g, n=group.n, t=t, y=y, y_two=y_two, hash_name=hash_name)


def export_param(file_path: Union[str, Path], param: TimeLockPuzzleParam) -> None:
    """Write the parameter as JSON."""
    Path(file_path).write_text(json.dumps(param.to_dict(), indent=2))


def import_param(file_path: Union[str, Path]) -> TimeLockPuzzleParam:
    """Read a parameter written by export_param."""
    try:
        data = json.loads(Path(file_path).read_text())
    except json.JSONDecodeError as e:
        raise SerializationError(f"Invalid parameter file: {e}") from e
    if not isinstance(data, dict):
        raise SerializationError("Parameter file must hold a JSON object")
    return TimeLockPuzzleParam.from_dict(data)


# =============================================================================
# Puzzle Generation
# =============================================================================

def _sigma_transcript(param: TimeLockPuzzleParam) -> Transcript:
    tr = Transcript(b"pvde/time-lock-puzzle/sigma", param.hash_name)
    tr.append_int(b"n", param.n)
    tr.append_int(b"t", param.t)
    return tr


def generate_time_lock_puzzle(
    param: TimeLockPuzzleParam,
) -> Tuple[TimeLockPuzzleSecretInput, TimeLockPuzzlePublicInput]:
    """
    Lock a fresh uniformly sampled k behind param.t squarings.

    Returns (secret_input, public_input). Only the public input may be
    published.
    """
    group = param.group
    s = secrets.randbelow(param.n - 1) + 1

    o = group.exp(param.g, s)
    k = group.exp(param.y, s)
    k_two = group.exp(param.y_two, s)
    k_hash_value = CommitmentHash(param.n, param.hash_name)(k)

    sigma = prove_dleq(group, _sigma_transcript(param), param.g, o, param.y_two, k_two, s)
    del s

    public_input = TimeLockPuzzlePublicInput(
        o=o,
        k_hash_value=k_hash_value,
        k_two=k_two,
        r1=sigma.a1,
        r2=sigma.a2,
        z=sigma.z,
    )
    return TimeLockPuzzleSecretInput(k=k), public_input


def verify_sigma(param: TimeLockPuzzleParam, public_input: TimeLockPuzzlePublicInput) -> bool:
    """
    Check the DLEQ transcript carried in the public input:
        g^z    == r1 * o^c
        yTwo^z == r2 * kTwo^c
    """
    return verify_dleq(
        param.group,
        _sigma_transcript(param),
        param.g, public_input.o,
        param.y_two, public_input.k_two,
        public_input.sigma_proof,
    )


# =============================================================================
# Sequential Solver
# =============================================================================

def solve_time_lock_puzzle(
    o: int,
    t: int,
    n: int,
    cancel: Optional[threading.Event] = None,
) -> int:
    """
    Recover k = o^(2^t) mod n by t sequential squarings.

    Stateless: every call starts again from o. Setting cancel abandons the
    computation with SolveCancelled.
    """
    _check_t(t)
    group = group_for(int(n))
    group.element(o, "o")
    start = time.perf_counter()
    k = group.repeated_squaring(o, t, cancel=cancel)
    logger.debug("solved t=%d in %.3fs", t, time.perf_counter() - start)
    return k


def solve_and_check(
    param: TimeLockPuzzleParam,
    public_input: TimeLockPuzzlePublicInput,
    cancel: Optional[threading.Event] = None,
) -> SolveResult:
    """
    Solve and verify k against k_hash_value and k_two.

    The puzzle proof pins k only up to sign: k and n - k share k_two and
    both are known to the committer. Whichever of the two opens
    k_hash_value is returned with status OK. A mismatch is reported
    through SolveResult.status, never silently.
    """
    start = time.perf_counter()
    k = solve_time_lock_puzzle(public_input.o, param.t, param.n, cancel=cancel)
    elapsed = time.perf_counter() - start

    group = param.group
    commitment = CommitmentHash(param.n, param.hash_name)
    opens_square = group.square(k) == public_input.k_two

    if opens_square:
        for root in (k, param.n - k):
            if commitment.matches(root, public_input.k_hash_value):
                if root != k:
                    logger.debug("commitment opens to the negated root n - k")
                return SolveResult(k=root, status=SolveStatus.OK, elapsed=elapsed)

    logger.warning(
        "solve mismatch: square=%s (corrupted input or wrong epoch)",
        opens_square,
    )
    return SolveResult(k=k, status=SolveStatus.MISMATCH, elapsed=elapsed)


# =============================================================================
# Delay Calibration
# =============================================================================

def calibrate(n: int = N_RSA2048, trials: int = 2000) -> float:
    """Measure sequential squarings per second modulo n on this machine."""
    if trials < 1:
        raise ValueError("trials must be positive")
    group = group_for(int(n))
    x = secrets.randbelow(group.n - 3) + 2
    start = time.perf_counter()
    group.repeated_squaring(x, trials)
    elapsed = max(time.perf_counter() - start, 1e-9)
    return trials / elapsed


def time_parameter_for_delay(
    seconds: float,
    n: int = N_RSA2048,
    squarings_per_second: Optional[float] = None,
) -> int:
    """
    Smallest t whose solve takes at least `seconds` at the measured speed.

    The estimate is only as good as the calibrating machine; a faster
    solver finishes sooner.
    """
    if seconds <= 0:
        raise MalformedParameterError("Delay must be positive")
    rate = squarings_per_second if squarings_per_second is not None else calibrate(n)
    if rate <= 0:
        raise MalformedParameterError("squarings_per_second must be positive")
    return max(1, math.ceil(seconds * rate))
