# pvde/protocols/pvde.py
"""
PVDE Commit / Verify / Reveal Pipeline

Delay encryption for commit-then-reveal ordering: content is committed
and verified as well-formed up front, and only becomes legible after
the squaring delay.

Flow:
    1. COMMIT: committer locks k behind the puzzle, encrypts under
       deriveKey(k) and proves both steps (proofs run concurrently)
    2. VERIFY: anybody checks both proofs against the epoch keys
    3. REVEAL: any solver performs t squarings of o, re-derives the key
       and decrypts

Security Properties:
    - Binding: kHashValue ties puzzle and ciphertext to one k
    - Hiding: nothing short of t squarings (or factoring n) exposes k
    - Integrity: a revealed message is PROVISIONAL until the encryption
      proof for its ciphertext has been verified

Usage:
    from pvde.protocols import DelayEncryptor, CommitmentVerifier, DelaySolver

    param = generate_param(t)
    commitment = DelayEncryptor(param).commit(b"tx bytes")
    assert CommitmentVerifier(param).verify(commitment)
    result = DelaySolver(param).reveal(commitment)
"""

from __future__ import annotations

import logging
import struct
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, Optional, Union

from ..cryptography.cipher import DelayCipher, DelayCiphertext
from ..cryptography.common import (
    SerializationError,
    SolveMismatchError,
    _ct_eq,
    _sha256,
    check_fields,
    pack_bytes,
    unpack_bytes,
)
from ..cryptography.kdf import derive_key
from ..cryptography.puzzle import (
    SolveStatus,
    TimeLockPuzzleParam,
    TimeLockPuzzlePublicInput,
    generate_time_lock_puzzle,
    solve_and_check,
)
from ..zkp import encryption, key_validation
from ..zkp.encryption import EncryptionPublicInput, EncryptionSecretInput
from ..zkp.keys import (
    EncryptionProof,
    KeyRegistry,
    Relation,
    TimeLockPuzzleProof,
    default_registry,
)

logger = logging.getLogger("pvde.protocol")

_COMMITMENT_MAGIC = b"PVDM"
_WIRE_VERSION = 1


# =============================================================================
# Types
# =============================================================================

class IntegrityStatus(IntEnum):
    """How far a revealed message can be trusted."""
    PROVISIONAL = 0   # decrypted, encryption proof not (successfully) checked
    VERIFIED = 1      # encryption proof and tag both hold


@dataclass(frozen=True)
class Commitment:
    """
    Everything a committer publishes for one message.

    Wire format:
      - magic(4) "PVDM" || version(1)
      - epoch digest (32)
      - public_input:     len(4, BE) || TimeLockPuzzlePublicInput wire
      - ciphertext:       len(4, BE) || DelayCiphertext wire
      - puzzle_proof:     len(4, BE) || proof bytes
      - encryption_proof: len(4, BE) || proof bytes
    """
    epoch: bytes
    public_input: TimeLockPuzzlePublicInput
    ciphertext: DelayCiphertext
    puzzle_proof: TimeLockPuzzleProof
    encryption_proof: EncryptionProof

    @property
    def encryption_public_input(self) -> EncryptionPublicInput:
        return EncryptionPublicInput(
            encrypted_data=self.ciphertext,
            k_hash_value=self.public_input.k_hash_value,
        )

    @property
    def commit_id(self) -> bytes:
        """32-byte identifier over the wire form."""
        return _sha256(b"pvde/commitment-id", self.to_bytes())

    def to_bytes(self) -> bytes:
        return (
            _COMMITMENT_MAGIC + struct.pack(">B", _WIRE_VERSION) +
            self.epoch +
            pack_bytes(self.public_input.to_bytes()) +
            pack_bytes(self.ciphertext.to_bytes()) +
            pack_bytes(bytes(self.puzzle_proof)) +
            pack_bytes(bytes(self.encryption_proof))
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> "Commitment":
        if len(data) < 37 or data[:4] != _COMMITMENT_MAGIC:
            raise SerializationError("Commitment: bad magic")
        if data[4] != _WIRE_VERSION:
            raise SerializationError(f"Commitment: unsupported version {data[4]}")
        epoch = data[5:37]
        public_raw, offset = unpack_bytes(data, 37)
        ct_raw, offset = unpack_bytes(data, offset)
        puzzle_raw, offset = unpack_bytes(data, offset)
        enc_raw, offset = unpack_bytes(data, offset)
        if offset != len(data):
            raise SerializationError("Commitment: trailing bytes")
        return cls(
            epoch=bytes(epoch),
            public_input=TimeLockPuzzlePublicInput.from_bytes(public_raw),
            ciphertext=DelayCiphertext.from_bytes(ct_raw),
            puzzle_proof=TimeLockPuzzleProof(puzzle_raw),
            encryption_proof=EncryptionProof(enc_raw),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "epoch": self.epoch.hex(),
            "public_input": self.public_input.to_dict(),
            "ciphertext": self.ciphertext.to_dict(),
            "puzzle_proof": self.puzzle_proof.hex(),
            "encryption_proof": self.encryption_proof.hex(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Commitment":
        record = "Commitment"
        check_fields(
            data,
            ("epoch", "public_input", "ciphertext", "puzzle_proof", "encryption_proof"),
            record,
        )
        try:
            epoch = bytes.fromhex(data["epoch"])
        except (TypeError, ValueError) as e:
            raise SerializationError(f"{record}.epoch: not hex") from e
        if len(epoch) != 32:
            raise SerializationError(f"{record}.epoch: must be 32 bytes")
        for name in ("public_input", "ciphertext"):
            if not isinstance(data[name], dict):
                raise SerializationError(f"{record}.{name}: expected object")
        return cls(
            epoch=epoch,
            public_input=TimeLockPuzzlePublicInput.from_dict(data["public_input"]),
            ciphertext=DelayCiphertext.from_dict(data["ciphertext"]),
            puzzle_proof=TimeLockPuzzleProof.from_hex(data["puzzle_proof"]),
            encryption_proof=EncryptionProof.from_hex(data["encryption_proof"]),
        )


@dataclass(frozen=True)
class RevealResult:
    """Outcome of DelaySolver.reveal."""
    message: bytes = field(repr=False)
    status: SolveStatus
    integrity: IntegrityStatus = IntegrityStatus.PROVISIONAL
    elapsed: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status == SolveStatus.OK

    @property
    def verified(self) -> bool:
        return self.ok and self.integrity == IntegrityStatus.VERIFIED

    def text(self) -> str:
        return self.message.decode("utf-8")


# =============================================================================
# Committer
# =============================================================================

def _registry_for(param: TimeLockPuzzleParam, registry: Optional[KeyRegistry]) -> KeyRegistry:
    registry = registry if registry is not None else default_registry()
    registry.initialize(param)
    return registry


class DelayEncryptor:
    """
    Committer side: puzzle, ciphertext and both proofs in one call.

    Generation is atomic: if either proof fails, commit raises and
    nothing is returned.
    """

    def __init__(
        self,
        param: TimeLockPuzzleParam,
        registry: Optional[KeyRegistry] = None,
        max_workers: int = 2,
    ):
        self.param = param.validate()
        self.registry = _registry_for(param, registry)
        self.max_workers = max_workers
        self._epoch = param.digest()

    def commit(self, message: Union[str, bytes]) -> Commitment:
        if isinstance(message, str):
            message = message.encode("utf-8")
        param = self.param

        secret, public = generate_time_lock_puzzle(param)
        key = derive_key(secret.k, param.n, param.hash_name)
        ciphertext = DelayCipher(key).encrypt(message)

        enc_public = EncryptionPublicInput(
            encrypted_data=ciphertext,
            k_hash_value=public.k_hash_value,
        )
        enc_secret = EncryptionSecretInput(data=bytes(message), k=secret.k)

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            puzzle_future = pool.submit(
                key_validation.prove,
                param,
                self.registry.proving_key(Relation.KEY_VALIDATION, self._epoch),
                public,
                secret,
            )
            encryption_future = pool.submit(
                encryption.prove,
                param,
                self.registry.proving_key(Relation.ENCRYPTION, self._epoch),
                enc_public,
                enc_secret,
            )
            puzzle_proof = puzzle_future.result()
            encryption_proof = encryption_future.result()

        commitment = Commitment(
            epoch=self._epoch,
            public_input=public,
            ciphertext=ciphertext,
            puzzle_proof=puzzle_proof,
            encryption_proof=encryption_proof,
        )
        logger.debug("commitment %s created (%d byte body)", commitment.commit_id.hex()[:16], len(ciphertext))
        return commitment


# =============================================================================
# Verifier
# =============================================================================

class CommitmentVerifier:
    """Checks both proofs of a commitment. Never raises on bad input."""

    def __init__(self, param: TimeLockPuzzleParam, registry: Optional[KeyRegistry] = None):
        self.param = param.validate()
        self.registry = _registry_for(param, registry)
        self._epoch = param.digest()

    def verify_puzzle(self, commitment: Commitment) -> bool:
        return key_validation.verify(
            self.param,
            self.registry.verifying_key(Relation.KEY_VALIDATION, self._epoch),
            commitment.public_input,
            commitment.puzzle_proof,
        )

    def verify_encryption(self, commitment: Commitment) -> bool:
        return encryption.verify(
            self.param,
            self.registry.verifying_key(Relation.ENCRYPTION, self._epoch),
            commitment.encryption_public_input,
            commitment.encryption_proof,
        )

    def verify(self, commitment: Commitment) -> bool:
        if not _ct_eq(commitment.epoch, self._epoch):
            logger.warning("commitment from another epoch rejected")
            return False
        if not self.verify_puzzle(commitment):
            logger.warning("puzzle proof rejected")
            return False
        if not self.verify_encryption(commitment):
            logger.warning("encryption proof rejected")
            return False
        return True


# =============================================================================
# Solver
# =============================================================================

class DelaySolver:
    """
    Solver side: t squarings, key derivation, decryption.

    With check_proof the encryption proof is verified after decryption
    and the result is marked VERIFIED when it holds.
    """

    def __init__(
        self,
        param: TimeLockPuzzleParam,
        registry: Optional[KeyRegistry] = None,
        check_proof: bool = True,
    ):
        self.param = param.validate()
        self.check_proof = check_proof
        self._verifier = CommitmentVerifier(param, registry) if check_proof else None
        self._epoch = param.digest()

    def reveal(
        self,
        commitment: Commitment,
        cancel: Optional[threading.Event] = None,
        strict: bool = False,
    ) -> RevealResult:
        """
        Solve and decrypt.

        A mismatching solve is returned with status MISMATCH and an empty
        message, or raised as SolveMismatchError when strict.
        """
        if not _ct_eq(commitment.epoch, self._epoch):
            logger.warning("reveal for another epoch")
            return self._mismatch(strict, "commitment epoch does not match parameter")

        solved = solve_and_check(self.param, commitment.public_input, cancel=cancel)
        if not solved.ok:
            return self._mismatch(strict, "recovered k does not open the commitment", solved.elapsed)

        cipher = DelayCipher(derive_key(solved.k, self.param.n, self.param.hash_name))
        message = cipher.decrypt(commitment.ciphertext)

        integrity = IntegrityStatus.PROVISIONAL
        if self._verifier is not None:
            if self._verifier.verify_encryption(commitment) and cipher.check_tag(commitment.ciphertext):
                integrity = IntegrityStatus.VERIFIED
            else:
                logger.warning("revealed message left provisional: encryption proof or tag rejected")

        return RevealResult(
            message=message,
            status=SolveStatus.OK,
            integrity=integrity,
            elapsed=solved.elapsed,
        )

    @staticmethod
    def _mismatch(strict: bool, reason: str, elapsed: float = 0.0) -> RevealResult:
        if strict:
            raise SolveMismatchError(reason)
        return RevealResult(message=b"", status=SolveStatus.MISMATCH, elapsed=elapsed)
