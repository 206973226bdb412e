# pvde/__init__.py
"""
PVDE: Publicly Verifiable Delay Encryption

Commit now, reveal after a provable delay:
- RSA time-lock puzzle (sequential squaring, no parallel speed-up)
- Puzzle-correctness and encryption-correctness proofs (Fiat-Shamir
  sigma protocols over a group of unknown order)
- Delay cipher keyed by the puzzle secret (ChaCha20 + binding tag)
- Multi-party session keys for a bounded committee (SKDE)

Architecture:
    ┌─────────────────────────────────────────────────────────┐
    │  pvde                                                   │
    │  ├── cryptography/     # Core primitives                │
    │  │   ├── common.py     # Constants, errors, wire codec  │
    │  │   ├── group.py      # RSA group, repeated squaring   │
    │  │   ├── hash.py       # Hash-to-group, Hash(k)         │
    │  │   ├── sigma.py      # Transcript, DLEQ               │
    │  │   ├── puzzle.py     # Puzzle, solver, calibration    │
    │  │   ├── kdf.py        # deriveKey                      │
    │  │   └── cipher.py     # Delay cipher                   │
    │  │                                                      │
    │  ├── zkp/              # Proof systems                  │
    │  │   ├── keys.py       # Key blobs, registry            │
    │  │   ├── key_validation.py  # Puzzle correctness        │
    │  │   └── encryption.py      # Encryption correctness    │
    │  │                                                      │
    │  └── protocols/        # Pipelines                      │
    │      ├── pvde.py       # Commit / verify / reveal       │
    │      └── skde.py       # Multi-party delay encryption   │
    └─────────────────────────────────────────────────────────┘
"""

__version__ = "0.1.0"

# =============================================================================
# Core Cryptography
# =============================================================================

from .cryptography.common import (
    N_RSA2048,
    G_DEFAULT,
    DEFAULT_T,
    DEFAULT_HASH,
    PARAMETER_PRESETS,
    PvdeError,
    MalformedParameterError,
    SerializationError,
    SolveMismatchError,
    SolveCancelled,
    ProofGenerationError,
    ParticipantLimitError,
)

from .cryptography.puzzle import (
    TimeLockPuzzleParam,
    TimeLockPuzzlePublicInput,
    TimeLockPuzzleSecretInput,
    SolveStatus,
    SolveResult,
    generate_param,
    export_param,
    import_param,
    generate_time_lock_puzzle,
    solve_time_lock_puzzle,
    solve_and_check,
    calibrate,
    time_parameter_for_delay,
)

from .cryptography.kdf import (
    SymmetricKey,
    derive_key,
    get_decryption_key,
)

from .cryptography.cipher import (
    DelayCiphertext,
    encrypt,
    decrypt,
    decrypt_text,
)

# =============================================================================
# Proof Systems
# =============================================================================

from .zkp import (
    Relation,
    ProvingKey,
    VerifyingKey,
    TimeLockPuzzleProof,
    EncryptionProof,
    KeyRegistry,
    EncryptionPublicInput,
    EncryptionSecretInput,
    setup,
    key_validation,
    encryption,
)

# =============================================================================
# Protocols
# =============================================================================

from .protocols import (
    IntegrityStatus,
    Commitment,
    RevealResult,
    DelayEncryptor,
    CommitmentVerifier,
    DelaySolver,
    skde,
)

__all__ = [
    "__version__",
    # Constants
    "N_RSA2048",
    "G_DEFAULT",
    "DEFAULT_T",
    "DEFAULT_HASH",
    "PARAMETER_PRESETS",
    # Exceptions
    "PvdeError",
    "MalformedParameterError",
    "SerializationError",
    "SolveMismatchError",
    "SolveCancelled",
    "ProofGenerationError",
    "ParticipantLimitError",
    # Puzzle
    "TimeLockPuzzleParam",
    "TimeLockPuzzlePublicInput",
    "TimeLockPuzzleSecretInput",
    "SolveStatus",
    "SolveResult",
    "generate_param",
    "export_param",
    "import_param",
    "generate_time_lock_puzzle",
    "solve_time_lock_puzzle",
    "solve_and_check",
    "calibrate",
    "time_parameter_for_delay",
    # Key / cipher
    "SymmetricKey",
    "derive_key",
    "get_decryption_key",
    "DelayCiphertext",
    "encrypt",
    "decrypt",
    "decrypt_text",
    # Proofs
    "Relation",
    "ProvingKey",
    "VerifyingKey",
    "TimeLockPuzzleProof",
    "EncryptionProof",
    "KeyRegistry",
    "EncryptionPublicInput",
    "EncryptionSecretInput",
    "setup",
    "key_validation",
    "encryption",
    # Protocols
    "IntegrityStatus",
    "Commitment",
    "RevealResult",
    "DelayEncryptor",
    "CommitmentVerifier",
    "DelaySolver",
    "skde",
]
