# pvde/cryptography/cipher.py
"""
PVDE Delay Cipher

ChaCha20 keystream encryption under key0, plus a binding tag under key1:

    body = ChaCha20(key0, nonce) XOR message
    e    = H("pvde/tag-exponent" || nonce || body) | 1
    tag  = key1^e mod n

The nonce is carried in the ciphertext and never regenerated on decrypt.
decrypt does not authenticate: a wrong key yields opaque bytes, and the
tag exists so that the encryption-correctness proof can bind the
ciphertext to the committed k. Callers treat plaintext as provisional
until that proof has been verified.
"""

from __future__ import annotations

import os
import struct
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from cryptography.hazmat.primitives.ciphers import Cipher, algorithms

from .common import (
    NONCE_BYTES,
    SerializationError,
    check_fields,
    int_field,
    pack_bytes,
    pack_int,
    unpack_bytes,
    unpack_int,
)
from .group import group_for
from .hash import tag_exponent
from .kdf import SymmetricKey

_CT_MAGIC = b"PVDC"
_WIRE_VERSION = 1


# =============================================================================
# Data Structures
# =============================================================================

@dataclass(frozen=True)
class DelayCiphertext:
    """
    Delay cipher output.

    Wire format:
      - magic(4) || version(1)
      - nonce: len(4, BE) || 16 bytes
      - body:  len(4, BE) || ciphertext body
      - tag:   len(4, BE) || big-endian group element
    """
    nonce: bytes
    body: bytes
    tag: int

    def __len__(self) -> int:
        return len(self.body)

    def to_bytes(self) -> bytes:
        return (
            _CT_MAGIC + bytes([_WIRE_VERSION]) +
            pack_bytes(self.nonce) +
            pack_bytes(self.body) +
            pack_int(self.tag)
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> "DelayCiphertext":
        if len(data) < 5 or data[:4] != _CT_MAGIC:
            raise SerializationError("DelayCiphertext: bad magic")
        if data[4] != _WIRE_VERSION:
            raise SerializationError(f"DelayCiphertext: unsupported version {data[4]}")
        nonce, offset = unpack_bytes(data, 5)
        body, offset = unpack_bytes(data, offset)
        tag, offset = unpack_int(data, offset)
        if offset != len(data):
            raise SerializationError("DelayCiphertext: trailing bytes")
        if len(nonce) != NONCE_BYTES:
            raise SerializationError(f"DelayCiphertext: nonce must be {NONCE_BYTES} bytes")
        return cls(nonce=nonce, body=body, tag=tag)

    def to_dict(self) -> Dict[str, Any]:
        return {"nonce": self.nonce.hex(), "body": self.body.hex(), "tag": str(self.tag)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DelayCiphertext":
        record = "DelayCiphertext"
        check_fields(data, ("nonce", "body", "tag"), record)
        try:
            nonce = bytes.fromhex(data["nonce"])
            body = bytes.fromhex(data["body"])
        except (TypeError, ValueError) as e:
            raise SerializationError(f"{record}: nonce/body not hex") from e
        if len(nonce) != NONCE_BYTES:
            raise SerializationError(f"{record}: nonce must be {NONCE_BYTES} bytes")
        return cls(nonce=nonce, body=body, tag=int_field(data, "tag", record))


# =============================================================================
# Delay Cipher
# =============================================================================

class DelayCipher:
    """
    Symmetric cipher keyed by a SymmetricKey.

    Deterministic for a fixed (key, nonce); a fresh random nonce is drawn
    when none is supplied.
    """

    NONCE_BYTES = NONCE_BYTES

    def __init__(self, key: SymmetricKey):
        self.key = key
        self.group = group_for(key.n)

    @staticmethod
    def fresh_nonce() -> bytes:
        """32-bit zero block counter || 96-bit random nonce."""
        return struct.pack("<I", 0) + os.urandom(NONCE_BYTES - 4)

    def _keystream_xor(self, data: bytes, nonce: bytes) -> bytes:
        if len(nonce) != NONCE_BYTES:
            raise ValueError(f"Nonce must be {NONCE_BYTES} bytes")
        ctx = Cipher(algorithms.ChaCha20(self.key.key0, nonce), mode=None).encryptor()
        return ctx.update(data) + ctx.finalize()

    def tag_for(self, nonce: bytes, body: bytes) -> int:
        e = tag_exponent(self.key.hash_name, pack_bytes(nonce), pack_bytes(body))
        return self.group.exp(self.key.key1, e)

    def encrypt(self, message: Union[str, bytes], nonce: Optional[bytes] = None) -> DelayCiphertext:
        if isinstance(message, str):
            message = message.encode("utf-8")
        nonce = nonce if nonce is not None else self.fresh_nonce()
        body = self._keystream_xor(bytes(message), nonce)
        return DelayCiphertext(nonce=nonce, body=body, tag=self.tag_for(nonce, body))

    def decrypt(self, ciphertext: DelayCiphertext) -> bytes:
        """Unauthenticated decryption; output is opaque bytes."""
        return self._keystream_xor(ciphertext.body, ciphertext.nonce)

    def check_tag(self, ciphertext: DelayCiphertext) -> bool:
        """True iff the tag was produced under this key."""
        return self.tag_for(ciphertext.nonce, ciphertext.body) == ciphertext.tag


def encrypt(
    message: Union[str, bytes],
    key: SymmetricKey,
    nonce: Optional[bytes] = None,
) -> DelayCiphertext:
    return DelayCipher(key).encrypt(message, nonce)


def decrypt(ciphertext: DelayCiphertext, key: SymmetricKey) -> bytes:
    return DelayCipher(key).decrypt(ciphertext)


def decrypt_text(ciphertext: DelayCiphertext, key: SymmetricKey) -> str:
    """decrypt and decode as UTF-8 (raises UnicodeDecodeError on garbage)."""
    return decrypt(ciphertext, key).decode("utf-8")
