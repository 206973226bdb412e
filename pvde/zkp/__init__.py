# pvde/zkp/__init__.py
"""
PVDE Zero-Knowledge Proof Module

Two relations, each with its own (ProvingKey, VerifyingKey) pair bound
to the parameter epoch:
    - key_validation: the puzzle instance commits to one k
    - encryption:     the ciphertext was produced under deriveKey(k)

verify() of either relation returns False on any failure and never raises.
"""

from .keys import (
    Relation,
    KeyKind,
    ProvingKey,
    VerifyingKey,
    Proof,
    TimeLockPuzzleProof,
    EncryptionProof,
    KeyDescriptor,
    KeyRegistry,
    default_registry,
    setup,
)

from . import key_validation
from . import encryption

from .encryption import (
    EncryptionPublicInput,
    EncryptionSecretInput,
)

__all__ = [
    "Relation",
    "KeyKind",
    "ProvingKey",
    "VerifyingKey",
    "Proof",
    "TimeLockPuzzleProof",
    "EncryptionProof",
    "KeyDescriptor",
    "KeyRegistry",
    "default_registry",
    "setup",
    "key_validation",
    "encryption",
    "EncryptionPublicInput",
    "EncryptionSecretInput",
]
