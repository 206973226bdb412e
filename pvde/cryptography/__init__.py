# pvde/cryptography/__init__.py
"""
PVDE Cryptography Module

Primitives for delay encryption over an RSA group of unknown order:
  - Group arithmetic and sequential squaring (gmpy2)
  - Time-lock puzzle generation and solving
  - Symmetric key derivation and the delay cipher (ChaCha20)

Wire Format:
  - Header fields: big-endian
  - Group elements: little-endian uint64 limbs
"""

# Common utilities, constants and exceptions
from .common import (
    # Constants
    BITS_LEN,
    LIMB_WIDTH,
    LIMB_COUNT,
    G_DEFAULT,
    N_RSA2048,
    DEFAULT_T,
    DEFAULT_HASH,
    CHALLENGE_BITS,
    STATISTICAL_SECURITY,
    NONCE_BYTES,
    KEY_BYTES,
    PARAMETER_PRESETS,
    SUPPORTED_HASHES,
    # Exceptions
    PvdeError,
    MalformedParameterError,
    SerializationError,
    SolveMismatchError,
    SolveCancelled,
    ProofGenerationError,
    ParticipantLimitError,
    # Utilities
    HKDF,
    decompose_big,
    compose_big,
)

# Group arithmetic
from .group import (
    RSAGroup,
    group_for,
    generate_modulus,
)

# Hashing
from .hash import (
    CommitmentHash,
    hash_to_group,
)

# Time-lock puzzle
from .puzzle import (
    TimeLockPuzzleParam,
    TimeLockPuzzlePublicInput,
    TimeLockPuzzleSecretInput,
    SolveStatus,
    SolveResult,
    generate_param,
    export_param,
    import_param,
    generate_time_lock_puzzle,
    verify_sigma,
    solve_time_lock_puzzle,
    solve_and_check,
    calibrate,
    time_parameter_for_delay,
)

# Key derivation and delay cipher
from .kdf import (
    SymmetricKey,
    derive_key,
    get_decryption_key,
)
from .cipher import (
    DelayCipher,
    DelayCiphertext,
    encrypt,
    decrypt,
    decrypt_text,
)

__all__ = [
    # Constants
    "BITS_LEN",
    "LIMB_WIDTH",
    "LIMB_COUNT",
    "G_DEFAULT",
    "N_RSA2048",
    "DEFAULT_T",
    "DEFAULT_HASH",
    "CHALLENGE_BITS",
    "STATISTICAL_SECURITY",
    "NONCE_BYTES",
    "KEY_BYTES",
    "PARAMETER_PRESETS",
    "SUPPORTED_HASHES",
    # Exceptions
    "PvdeError",
    "MalformedParameterError",
    "SerializationError",
    "SolveMismatchError",
    "SolveCancelled",
    "ProofGenerationError",
    "ParticipantLimitError",
    # Utilities
    "HKDF",
    "decompose_big",
    "compose_big",
    # Group
    "RSAGroup",
    "group_for",
    "generate_modulus",
    "CommitmentHash",
    "hash_to_group",
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
    "verify_sigma",
    "solve_time_lock_puzzle",
    "solve_and_check",
    "calibrate",
    "time_parameter_for_delay",
    # Key / cipher
    "SymmetricKey",
    "derive_key",
    "get_decryption_key",
    "DelayCipher",
    "DelayCiphertext",
    "encrypt",
    "decrypt",
    "decrypt_text",
]
