# tests/test_zkp.py
"""Proof key material and both correctness proofs."""

import dataclasses
import threading

import pytest

from pvde.cryptography.cipher import encrypt
from pvde.cryptography.common import ProofGenerationError, PvdeError, SerializationError
from pvde.cryptography.kdf import derive_key
from pvde.cryptography.puzzle import (
    TimeLockPuzzlePublicInput,
    TimeLockPuzzleSecretInput,
    generate_param,
    generate_time_lock_puzzle,
)
from pvde.zkp import encryption, key_validation
from pvde.zkp.encryption import EncryptionPublicInput, EncryptionSecretInput
from pvde.zkp.keys import (
    KeyDescriptor,
    KeyKind,
    KeyRegistry,
    Proof,
    ProvingKey,
    Relation,
    setup,
)


def _mutate(public, name, bit=1):
    data = public.to_dict()
    data[name] = str(int(data[name]) ^ bit)
    return TimeLockPuzzlePublicInput.from_dict(data)


@pytest.fixture(scope="module")
def other_param(small_param):
    """Same modulus, different epoch."""
    return generate_param(small_param.t + 1, n=small_param.n)


@pytest.fixture
def kv_keys(small_keys):
    return small_keys[Relation.KEY_VALIDATION]


@pytest.fixture
def enc_keys(small_keys):
    return small_keys[Relation.ENCRYPTION]


@pytest.fixture
def kv_proof(small_param, kv_keys, puzzle):
    secret, public = puzzle
    return key_validation.prove(small_param, kv_keys[0], public, secret)


@pytest.fixture
def enc_statement(small_param, puzzle):
    secret, public = puzzle
    data = b"ordered transaction bytes"
    ct = encrypt(data, derive_key(secret.k, small_param.n, small_param.hash_name))
    return (
        EncryptionPublicInput(encrypted_data=ct, k_hash_value=public.k_hash_value),
        EncryptionSecretInput(data=data, k=secret.k),
    )


# =============================================================================
# Key material
# =============================================================================

class TestKeys:
    def test_setup_binds_epoch(self, small_param, kv_keys):
        pk, vk = kv_keys
        desc = KeyDescriptor.from_bytes(bytes(vk))
        assert desc.kind == KeyKind.VERIFYING
        assert desc.relation == Relation.KEY_VALIDATION
        assert desc.epoch_digest == small_param.digest()
        assert KeyDescriptor.from_bytes(bytes(pk)).kind == KeyKind.PROVING

    def test_blobs_immutable(self, kv_keys):
        pk, _ = kv_keys
        assert len(pk) == len(bytes(pk)) > 0
        with pytest.raises(dataclasses.FrozenInstanceError):
            pk.data = b""

    def test_setup_deterministic(self, small_param):
        assert setup(small_param, Relation.ENCRYPTION) == setup(small_param, Relation.ENCRYPTION)

    def test_descriptor_rejects_garbage(self):
        with pytest.raises(SerializationError):
            KeyDescriptor.from_bytes(b"PVDK\x01")
        with pytest.raises(SerializationError):
            KeyDescriptor.from_bytes(b"not a key at all")

    def test_hex(self, kv_keys):
        pk, _ = kv_keys
        assert ProvingKey.from_hex(pk.hex()) == pk
        with pytest.raises(SerializationError):
            ProvingKey.from_hex("zz")


class TestKeyRegistry:
    def test_initialize_idempotent(self, small_param):
        registry = KeyRegistry()
        epoch = registry.initialize(small_param)
        assert registry.initialize(small_param) == epoch == small_param.digest()
        assert registry.is_loaded(Relation.KEY_VALIDATION, epoch)
        assert registry.epochs() == [epoch]

    def test_holds_several_epochs(self, small_param, other_param):
        registry = KeyRegistry()
        first = registry.initialize(small_param)
        second = registry.initialize(other_param)
        assert first != second
        assert sorted([first, second]) == registry.epochs()
        for param in (small_param, other_param):
            epoch = param.digest()
            for relation in Relation:
                pk, vk = setup(param, relation)
                assert registry.proving_key(relation, epoch) == pk
                assert registry.verifying_key(relation, epoch) == vk

    def test_load_once(self, small_param, kv_keys):
        registry = KeyRegistry()
        epoch = registry.load(Relation.KEY_VALIDATION, *kv_keys)
        assert epoch == small_param.digest()
        with pytest.raises(PvdeError):
            registry.load(Relation.KEY_VALIDATION, *kv_keys)
        assert registry.proving_key(Relation.KEY_VALIDATION, epoch) == kv_keys[0]
        assert not registry.is_loaded(Relation.ENCRYPTION, epoch)

    def test_load_other_epoch_alongside(self, small_param, other_param, kv_keys):
        registry = KeyRegistry()
        registry.load(Relation.KEY_VALIDATION, *kv_keys)
        other = registry.load(Relation.KEY_VALIDATION, *setup(other_param, Relation.KEY_VALIDATION))
        assert registry.is_loaded(Relation.KEY_VALIDATION, small_param.digest())
        assert registry.is_loaded(Relation.KEY_VALIDATION, other)

    def test_load_rejects_mixed_pair(self, small_param, other_param, kv_keys):
        pk, _ = kv_keys
        _, other_vk = setup(other_param, Relation.KEY_VALIDATION)
        _, enc_vk = setup(small_param, Relation.ENCRYPTION)
        registry = KeyRegistry()
        with pytest.raises(PvdeError):
            registry.load(Relation.KEY_VALIDATION, pk, other_vk)
        with pytest.raises(PvdeError):
            registry.load(Relation.KEY_VALIDATION, pk, enc_vk)
        with pytest.raises(PvdeError):
            registry.load(Relation.ENCRYPTION, *kv_keys)
        with pytest.raises(PvdeError):
            registry.load(Relation.KEY_VALIDATION, kv_keys[1], kv_keys[0])

    def test_missing_relation(self, small_param):
        with pytest.raises(PvdeError):
            KeyRegistry().verifying_key(Relation.ENCRYPTION, small_param.digest())

    def test_concurrent_initialize(self, small_param, other_param):
        registry = KeyRegistry()
        errors = []

        def worker(param):
            try:
                registry.initialize(param)
            except PvdeError as e:
                errors.append(e)

        threads = [
            threading.Thread(target=worker, args=(param,))
            for param in (small_param, other_param) * 4
        ]
        for th in threads:
            th.start()
        for th in threads:
            th.join()

        assert not errors
        epoch = small_param.digest()
        assert registry.verifying_key(Relation.ENCRYPTION, epoch) == setup(small_param, Relation.ENCRYPTION)[1]
        assert len(registry.epochs()) == 2


# =============================================================================
# Puzzle correctness
# =============================================================================

class TestKeyValidationProof:
    def test_valid(self, small_param, kv_keys, puzzle, kv_proof):
        _, public = puzzle
        assert key_validation.verify(small_param, kv_keys[1], public, kv_proof)

    def test_proof_is_blob(self, kv_proof):
        assert isinstance(kv_proof, Proof)
        assert len(kv_proof) > 0

    def test_no_secret_in_proof(self, small_param, puzzle, kv_proof):
        secret, _ = puzzle
        k_bytes = secret.k.to_bytes((small_param.n.bit_length() + 7) // 8, "big")
        assert k_bytes not in bytes(kv_proof)

    @pytest.mark.parametrize("name", ["o", "k_hash_value", "k_two", "r1", "r2", "z"])
    def test_rejects_field_mutation(self, small_param, kv_keys, puzzle, kv_proof, name):
        _, public = puzzle
        assert not key_validation.verify(small_param, kv_keys[1], _mutate(public, name), kv_proof)

    def test_rejects_other_instance(self, small_param, kv_keys, kv_proof):
        _, other = generate_time_lock_puzzle(small_param)
        assert not key_validation.verify(small_param, kv_keys[1], other, kv_proof)

    def test_rejects_other_epoch(self, small_param, other_param, kv_keys, puzzle, kv_proof):
        _, public = puzzle
        _, other_vk = setup(other_param, Relation.KEY_VALIDATION)
        assert not key_validation.verify(other_param, other_vk, public, kv_proof)
        assert not key_validation.verify(other_param, kv_keys[1], public, kv_proof)

    def test_rejects_wrong_key(self, small_param, kv_keys, enc_keys, puzzle, kv_proof):
        _, public = puzzle
        assert not key_validation.verify(small_param, enc_keys[1], public, kv_proof)
        assert not key_validation.verify(small_param, kv_keys[0], public, kv_proof)
        assert not key_validation.verify(small_param, b"garbage", public, kv_proof)

    @pytest.mark.parametrize("cut", [0, 1, 6, 40, -1])
    def test_rejects_truncated_proof(self, small_param, kv_keys, puzzle, kv_proof, cut):
        _, public = puzzle
        raw = bytes(kv_proof)
        truncated = raw[:cut] if cut >= 0 else raw[:-1]
        assert not key_validation.verify(small_param, kv_keys[1], public, truncated)

    def test_rejects_flipped_proof_byte(self, small_param, kv_keys, puzzle, kv_proof):
        _, public = puzzle
        raw = bytearray(bytes(kv_proof))
        raw[len(raw) // 2] ^= 0x01
        assert not key_validation.verify(small_param, kv_keys[1], public, bytes(raw))

    def test_rejects_trailing_bytes(self, small_param, kv_keys, puzzle, kv_proof):
        _, public = puzzle
        assert not key_validation.verify(small_param, kv_keys[1], public, bytes(kv_proof) + b"\x00")

    def test_rejects_encryption_proof_bytes(self, small_param, kv_keys, enc_keys, puzzle, enc_statement):
        _, public = puzzle
        enc_public, enc_secret = enc_statement
        enc_proof = encryption.prove(small_param, enc_keys[0], enc_public, enc_secret)
        assert not key_validation.verify(small_param, kv_keys[1], public, enc_proof)

    def test_prove_rejects_wrong_witness(self, small_param, kv_keys, puzzle):
        _, public = puzzle
        with pytest.raises(ProofGenerationError):
            key_validation.prove(small_param, kv_keys[0], public, TimeLockPuzzleSecretInput(k=5))

    def test_prove_rejects_verifying_key(self, small_param, kv_keys, puzzle):
        secret, public = puzzle
        with pytest.raises(ProofGenerationError):
            key_validation.prove(small_param, kv_keys[1], public, secret)


# =============================================================================
# Encryption correctness
# =============================================================================

def _with_ciphertext(public, **changes):
    ct = dataclasses.replace(public.encrypted_data, **changes)
    return EncryptionPublicInput(encrypted_data=ct, k_hash_value=public.k_hash_value)


class TestEncryptionProof:
    @pytest.fixture
    def enc_proof(self, small_param, enc_keys, enc_statement):
        public, secret = enc_statement
        return encryption.prove(small_param, enc_keys[0], public, secret)

    def test_valid(self, small_param, enc_keys, enc_statement, enc_proof):
        public, _ = enc_statement
        assert encryption.verify(small_param, enc_keys[1], public, enc_proof)

    def test_no_plaintext_in_proof(self, enc_statement, enc_proof):
        _, secret = enc_statement
        assert secret.data not in bytes(enc_proof)

    def test_rejects_body_mutation(self, small_param, enc_keys, enc_statement, enc_proof):
        public, _ = enc_statement
        body = bytearray(public.encrypted_data.body)
        body[0] ^= 0x01
        mutated = _with_ciphertext(public, body=bytes(body))
        assert not encryption.verify(small_param, enc_keys[1], mutated, enc_proof)

    def test_rejects_nonce_mutation(self, small_param, enc_keys, enc_statement, enc_proof):
        public, _ = enc_statement
        nonce = bytearray(public.encrypted_data.nonce)
        nonce[-1] ^= 0x01
        mutated = _with_ciphertext(public, nonce=bytes(nonce))
        assert not encryption.verify(small_param, enc_keys[1], mutated, enc_proof)

    def test_rejects_tag_mutation(self, small_param, enc_keys, enc_statement, enc_proof):
        public, _ = enc_statement
        mutated = _with_ciphertext(public, tag=public.encrypted_data.tag ^ 2)
        assert not encryption.verify(small_param, enc_keys[1], mutated, enc_proof)

    def test_rejects_k_hash_value_mutation(self, small_param, enc_keys, enc_statement, enc_proof):
        public, _ = enc_statement
        mutated = EncryptionPublicInput(
            encrypted_data=public.encrypted_data,
            k_hash_value=public.k_hash_value ^ 2,
        )
        assert not encryption.verify(small_param, enc_keys[1], mutated, enc_proof)

    def test_rejects_other_epoch(self, other_param, enc_statement, enc_proof):
        public, _ = enc_statement
        _, other_vk = setup(other_param, Relation.ENCRYPTION)
        assert not encryption.verify(other_param, other_vk, public, enc_proof)

    def test_rejects_malformed_proof(self, small_param, enc_keys, enc_statement, enc_proof):
        public, _ = enc_statement
        for raw in (b"", b"PVDZ", bytes(enc_proof)[:-1], bytes(enc_proof) + b"\x00"):
            assert not encryption.verify(small_param, enc_keys[1], public, raw)

    def test_prove_rejects_wrong_data(self, small_param, enc_keys, enc_statement):
        public, secret = enc_statement
        wrong = EncryptionSecretInput(data=b"something else entirely!!", k=secret.k)
        with pytest.raises(ProofGenerationError):
            encryption.prove(small_param, enc_keys[0], public, wrong)

    def test_prove_rejects_ciphertext_under_other_key(self, small_param, enc_keys, puzzle):
        secret, public = puzzle
        data = b"payload"
        ct = encrypt(data, derive_key(5, small_param.n))
        statement = EncryptionPublicInput(encrypted_data=ct, k_hash_value=public.k_hash_value)
        with pytest.raises(ProofGenerationError):
            encryption.prove(small_param, enc_keys[0], statement, EncryptionSecretInput(data=data, k=secret.k))


class TestEncryptionInputs:
    def test_public_input_dict(self, enc_statement):
        public, _ = enc_statement
        assert EncryptionPublicInput.from_dict(public.to_dict()) == public

    def test_public_input_bytes(self, enc_statement):
        public, _ = enc_statement
        assert EncryptionPublicInput.from_bytes(public.to_bytes()) == public

    def test_secret_input_dict(self, enc_statement):
        _, secret = enc_statement
        assert EncryptionSecretInput.from_dict(secret.to_dict()) == secret

    def test_nested_ciphertext_must_be_object(self, enc_statement):
        public, _ = enc_statement
        data = public.to_dict()
        data["encrypted_data"] = public.encrypted_data.to_bytes().hex()
        with pytest.raises(SerializationError):
            EncryptionPublicInput.from_dict(data)
