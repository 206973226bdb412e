"""
PVDE Protocol Module

Protocols built on PVDE cryptography.

Components:
    - pvde: commit / verify / reveal pipeline (DelayEncryptor,
      CommitmentVerifier, DelaySolver)
    - skde: multi-party session keys and direct encrypt / decrypt

Protocol Flow:
    1. Committer publishes a Commitment (puzzle, ciphertext, two proofs)
    2. Anybody verifies the proofs before the delay elapses
    3. After t squarings any solver reveals the message

Example:
    >>> from pvde.cryptography import generate_param
    >>> from pvde.protocols import DelayEncryptor, CommitmentVerifier, DelaySolver
    >>>
    >>> param = generate_param(2048)
    >>> commitment = DelayEncryptor(param).commit(b"hello")
    >>> CommitmentVerifier(param).verify(commitment)
    True
    >>> DelaySolver(param).reveal(commitment).message
    b'hello'
"""

from .pvde import (
    IntegrityStatus,
    Commitment,
    RevealResult,
    DelayEncryptor,
    CommitmentVerifier,
    DelaySolver,
)

from . import skde

from .skde import (
    SkdeParams,
    PartialKey,
    AggregatedKey,
    SecretKey,
    SkdeCiphertext,
    SkdeDecryptionError,
)

__all__ = [
    # Pipeline
    "IntegrityStatus",
    "Commitment",
    "RevealResult",
    "DelayEncryptor",
    "CommitmentVerifier",
    "DelaySolver",
    # Multi-party
    "skde",
    "SkdeParams",
    "PartialKey",
    "AggregatedKey",
    "SecretKey",
    "SkdeCiphertext",
    "SkdeDecryptionError",
]
