# tests/test_skde.py
"""Multi-party delay encryption: key lifecycle and direct encrypt / decrypt."""

import threading

import pytest

from pvde.cryptography.common import (
    MalformedParameterError,
    ParticipantLimitError,
    SerializationError,
    SolveCancelled,
    SolveMismatchError,
)
from pvde.protocols import skde
from pvde.protocols.skde import (
    AggregatedKey,
    PartialKey,
    SecretKey,
    SkdeCiphertext,
    SkdeDecryptionError,
    SkdeParams,
)


@pytest.fixture(scope="module")
def params(small_param):
    return skde.setup(32, n=small_param.n, max_participants=4)


@pytest.fixture(scope="module")
def session(params):
    """(partials, secrets, aggregated) for three participants."""
    pairs = [skde.generate_partial_key(params, return_secret=True) for _ in range(3)]
    partials = [p for p, _ in pairs]
    secrets_ = [s for _, s in pairs]
    return partials, secrets_, skde.aggregate_key(params, partials)


class TestSetup:
    def test_h(self, params):
        assert params.h == pow(params.g, 2 ** params.t, params.n)
        assert params.is_consistent()

    def test_share_bound(self, params):
        assert params.share_bound == params.n // 4

    def test_rejects_bad_t(self, small_param):
        with pytest.raises(MalformedParameterError):
            skde.setup(0, n=small_param.n)

    def test_rejects_zero_participants(self, small_param):
        with pytest.raises(MalformedParameterError):
            skde.setup(4, n=small_param.n, max_participants=0)

    def test_dict(self, params):
        assert SkdeParams.from_dict(params.to_dict()) == params

    def test_dict_unexpected_field(self, params):
        data = params.to_dict()
        data["max_sequencer_number"] = "2"
        with pytest.raises(SerializationError):
            SkdeParams.from_dict(data)

    def test_bytes(self, params):
        raw = params.to_bytes()
        assert raw[:4] == b"PVDT"
        assert SkdeParams.from_bytes(raw) == params

    def test_bytes_trailing(self, params):
        with pytest.raises(SerializationError):
            SkdeParams.from_bytes(params.to_bytes() + b"\x00")

    def test_bytes_bad_magic(self, params):
        with pytest.raises(SerializationError):
            SkdeParams.from_bytes(b"XXXX" + params.to_bytes()[4:])


class TestKeyLifecycle:
    def test_partial_key_shape(self, params, session):
        partials, secrets_, _ = session
        for pk, sec in zip(partials, secrets_):
            assert pk.u == pow(params.g, sec.r, params.n)
            assert pk.y == pow(params.g, sec.s, params.n)
            assert 0 < sec.s < params.share_bound
            assert 0 < pk.v < params.n_square

    def test_aggregate_is_product(self, params, session):
        partials, _, aggregated = session
        y = 1
        for pk in partials:
            y = y * pk.y % params.n
        assert aggregated.y == y

    def test_solve_recovers_sum(self, params, session):
        _, secrets_, aggregated = session
        sk = skde.solve_secret_key(params, aggregated)
        assert sk.sk == sum(s.s for s in secrets_)

    def test_single_participant(self, params):
        pk, sec = skde.generate_partial_key(params, return_secret=True)
        sk = skde.solve_secret_key(params, skde.aggregate_key(params, [pk]))
        assert sk.sk == sec.s

    def test_participant_limit(self, params):
        partials = [skde.generate_partial_key(params) for _ in range(5)]
        with pytest.raises(ParticipantLimitError) as exc:
            skde.aggregate_key(params, partials)
        assert exc.value.got == 5
        assert exc.value.limit == 4

    def test_empty_aggregate(self, params):
        with pytest.raises(MalformedParameterError):
            skde.aggregate_key(params, [])

    def test_corrupted_v(self, params, session):
        _, _, aggregated = session
        bad = AggregatedKey(u=aggregated.u, v=aggregated.v * 2 % params.n_square, y=aggregated.y)
        with pytest.raises(SolveMismatchError):
            skde.solve_secret_key(params, bad)

    def test_corrupted_y(self, params, session):
        _, _, aggregated = session
        bad = AggregatedKey(u=aggregated.u, v=aggregated.v, y=aggregated.y * 2 % params.n)
        with pytest.raises(SolveMismatchError):
            skde.solve_secret_key(params, bad)

    def test_cancel(self, params, session):
        _, _, aggregated = session
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(SolveCancelled):
            skde.solve_secret_key(params, aggregated, cancel=cancel)

    def test_key_serialization(self, session):
        partials, _, aggregated = session
        assert PartialKey.from_dict(partials[0].to_dict()) == partials[0]
        assert AggregatedKey.from_dict(aggregated.to_dict()) == aggregated
        assert SecretKey.from_dict(SecretKey(sk=42).to_dict()) == SecretKey(sk=42)

    def test_key_bytes(self, params, session):
        partials, _, aggregated = session
        assert PartialKey.from_bytes(partials[0].to_bytes()) == partials[0]
        assert AggregatedKey.from_bytes(aggregated.to_bytes()) == aggregated
        # the two key records are not interchangeable on the wire
        with pytest.raises(SerializationError):
            AggregatedKey.from_bytes(partials[0].to_bytes())

    def test_key_bytes_truncated(self, session):
        _, _, aggregated = session
        with pytest.raises(SerializationError):
            AggregatedKey.from_bytes(aggregated.to_bytes()[:-1])

    def test_aggregate_from_wire(self, params, session):
        partials, _, aggregated = session
        received = [PartialKey.from_bytes(pk.to_bytes()) for pk in partials]
        assert skde.aggregate_key(params, received) == aggregated


class TestEncryption:
    def test_round_trip(self, params, session):
        _, _, aggregated = session
        ct = skde.encrypt(params, "fair ordering", aggregated)
        sk = skde.solve_secret_key(params, aggregated)
        assert skde.decrypt(params, ct, sk) == b"fair ordering"
        assert skde.decrypt_text(params, ct, sk) == "fair ordering"

    def test_binary_payload(self, params, session):
        _, _, aggregated = session
        payload = b"\xff\xfe binary \x00\x80"
        ct = skde.encrypt(params, payload, aggregated)
        sk = skde.solve_secret_key(params, aggregated)
        assert skde.decrypt(params, ct, sk) == payload
        with pytest.raises(UnicodeDecodeError):
            skde.decrypt_text(params, ct, sk)

    def test_string_form(self, params, session):
        _, _, aggregated = session
        ct = skde.encrypt(params, "hello", aggregated.y)
        s = ct.to_string()
        assert SkdeCiphertext.from_string(s) == ct
        sk = skde.solve_secret_key(params, aggregated)
        assert skde.decrypt_text(params, s, sk) == "hello"

    def test_dict(self, params, session):
        _, _, aggregated = session
        ct = skde.encrypt(params, "hello", aggregated)
        assert SkdeCiphertext.from_dict(ct.to_dict()) == ct

    def test_randomized(self, params, session):
        _, _, aggregated = session
        a = skde.encrypt(params, "same", aggregated)
        b = skde.encrypt(params, "same", aggregated)
        assert a.c1 != b.c1

    def test_wrong_secret(self, params, session):
        _, _, aggregated = session
        ct = skde.encrypt(params, "hello", aggregated)
        with pytest.raises(SkdeDecryptionError):
            skde.decrypt(params, ct, SecretKey(sk=12345))

    def test_bad_string(self, params):
        with pytest.raises(SerializationError):
            SkdeCiphertext.from_string("not hex")
