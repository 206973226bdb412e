# tests/test_cipher.py
"""Key derivation and the delay cipher."""

import pytest

from pvde.cryptography.cipher import (
    DelayCipher,
    DelayCiphertext,
    decrypt,
    decrypt_text,
    encrypt,
)
from pvde.cryptography.common import (
    KEY_BYTES,
    NONCE_BYTES,
    MalformedParameterError,
    SerializationError,
)
from pvde.cryptography.kdf import SymmetricKey, derive_key, get_decryption_key


class TestDeriveKey:
    def test_deterministic(self, small_param, puzzle):
        secret, _ = puzzle
        a = derive_key(secret.k, small_param.n)
        b = derive_key(secret.k, small_param.n)
        assert a == b
        assert len(a.key0) == KEY_BYTES

    def test_distinct_secrets(self, small_param):
        a = derive_key(5, small_param.n)
        b = derive_key(7, small_param.n)
        assert a.key0 != b.key0
        assert a.key1 != b.key1

    def test_independent_of_commitment(self, small_param, puzzle):
        secret, public = puzzle
        key = derive_key(secret.k, small_param.n)
        assert key.key1 != public.k_hash_value

    def test_rejects_non_element(self, small_param):
        with pytest.raises(MalformedParameterError):
            derive_key(0, small_param.n)

    def test_key_not_in_repr(self, small_param):
        key = derive_key(5, small_param.n)
        assert key.key0.hex() not in repr(key)

    def test_dict(self, small_param):
        key = derive_key(5, small_param.n)
        assert SymmetricKey.from_dict(key.to_dict()) == key

    def test_bad_key0_length(self, small_param):
        with pytest.raises(ValueError):
            SymmetricKey(key0=b"short", key1=5, n=small_param.n)

    def test_get_decryption_key(self, small_param, puzzle):
        secret, public = puzzle
        key = get_decryption_key(public.o, small_param.t, small_param.n)
        assert key == derive_key(secret.k, small_param.n)


class TestDelayCipher:
    @pytest.mark.parametrize("message", [b"", b"hello", bytes(range(256)) * 5])
    def test_round_trip(self, small_param, puzzle, message):
        secret, _ = puzzle
        key = derive_key(secret.k, small_param.n)
        ct = encrypt(message, key)
        assert len(ct) == len(message)
        assert decrypt(ct, key) == message

    def test_text(self, small_param):
        key = derive_key(5, small_param.n)
        assert decrypt_text(encrypt("héllo", key), key) == "héllo"

    def test_nonce_carried(self, small_param):
        key = derive_key(5, small_param.n)
        ct = encrypt(b"same", key)
        assert len(ct.nonce) == NONCE_BYTES
        assert ct.nonce[:4] == b"\x00\x00\x00\x00"
        assert encrypt(b"same", key).nonce != ct.nonce

    def test_fixed_nonce_deterministic(self, small_param):
        key = derive_key(5, small_param.n)
        nonce = bytes(NONCE_BYTES)
        assert encrypt(b"msg", key, nonce) == encrypt(b"msg", key, nonce)

    def test_wrong_key(self, small_param):
        right = derive_key(5, small_param.n)
        wrong = derive_key(7, small_param.n)
        message = b"attack at dawn, not before"
        ct = encrypt(message, right)
        assert decrypt(ct, wrong) != message
        assert not DelayCipher(wrong).check_tag(ct)
        assert DelayCipher(right).check_tag(ct)

    def test_bad_nonce_length(self, small_param):
        key = derive_key(5, small_param.n)
        with pytest.raises(ValueError):
            encrypt(b"x", key, nonce=b"\x00" * 12)


class TestCiphertextSerialization:
    def test_bytes(self, small_param):
        ct = encrypt(b"payload", derive_key(5, small_param.n))
        assert DelayCiphertext.from_bytes(ct.to_bytes()) == ct

    def test_dict(self, small_param):
        ct = encrypt(b"payload", derive_key(5, small_param.n))
        assert DelayCiphertext.from_dict(ct.to_dict()) == ct

    def test_bad_magic(self, small_param):
        raw = encrypt(b"payload", derive_key(5, small_param.n)).to_bytes()
        with pytest.raises(SerializationError):
            DelayCiphertext.from_bytes(b"XXXX" + raw[4:])

    def test_truncated(self, small_param):
        raw = encrypt(b"payload", derive_key(5, small_param.n)).to_bytes()
        with pytest.raises(SerializationError):
            DelayCiphertext.from_bytes(raw[:-3])

    def test_dict_missing_field(self, small_param):
        data = encrypt(b"payload", derive_key(5, small_param.n)).to_dict()
        del data["tag"]
        with pytest.raises(SerializationError):
            DelayCiphertext.from_dict(data)
