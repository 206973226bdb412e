# tests/test_group.py
"""Group arithmetic engine: validation, exponentiation, sequential squaring."""

import threading

import pytest

from pvde.cryptography.common import (
    BITS_LEN,
    LIMB_COUNT,
    N_RSA2048,
    MalformedParameterError,
    SolveCancelled,
    compose_big,
    decompose_big,
    elements_from_bytes,
    elements_to_bytes,
    limb_count_for,
)
from pvde.cryptography.group import RSAGroup, generate_modulus, group_for


# 61 * 53
TOY_N = 3233


class TestRSAGroup:
    @pytest.mark.parametrize("n", [2, 3, 3232, 9409, 3229])
    def test_rejects_bad_modulus(self, n):
        # too small, even, square (97^2), prime
        with pytest.raises(MalformedParameterError):
            RSAGroup(n)

    def test_accepts_composite(self):
        group = RSAGroup(TOY_N)
        assert group.n == TOY_N
        assert group.bits == 12

    def test_exp_matches_pow(self):
        group = RSAGroup(TOY_N)
        for base, e in [(2, 0), (2, 1), (5, 17), (1234, 65537)]:
            assert group.exp(base, e) == pow(base, e, TOY_N)

    def test_negative_exponent_rejected(self):
        group = RSAGroup(TOY_N)
        with pytest.raises(MalformedParameterError):
            group.exp(5, -1)

    def test_element_checks(self):
        group = RSAGroup(TOY_N)
        assert group.element(5) == 5
        for bad in (0, TOY_N, TOY_N + 1, 61, -5):
            assert not group.contains(bad)
            with pytest.raises(MalformedParameterError):
                group.element(bad)
        with pytest.raises(MalformedParameterError):
            group.element(True)

    def test_inv_and_mul(self):
        group = RSAGroup(TOY_N)
        a = 17
        assert group.mul(a, group.inv(a)) == 1
        with pytest.raises(MalformedParameterError):
            group.inv(61)

    def test_multi_exp(self):
        group = RSAGroup(TOY_N)
        expected = pow(3, 10, TOY_N) * pow(7, 20, TOY_N) % TOY_N
        assert group.multi_exp([(3, 10), (7, 20)]) == expected

    def test_group_for_is_cached(self):
        assert group_for(TOY_N) is group_for(TOY_N)


class TestRepeatedSquaring:
    @pytest.mark.parametrize("t", [0, 1, 16, 1024])
    def test_matches_closed_form(self, t):
        group = RSAGroup(N_RSA2048)
        x = 5
        assert group.repeated_squaring(x, t) == pow(x, 2 ** t, N_RSA2048)

    def test_cancel(self):
        group = RSAGroup(N_RSA2048)
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(SolveCancelled) as exc:
            group.repeated_squaring(5, 10_000, cancel=cancel)
        assert exc.value.completed == 0
        assert exc.value.total == 10_000

    def test_unset_cancel_runs_to_completion(self):
        group = RSAGroup(TOY_N)
        cancel = threading.Event()
        assert group.repeated_squaring(5, 3000, cancel=cancel) == pow(5, 2 ** 3000, TOY_N)


class TestModulus:
    def test_bit_length(self):
        n = generate_modulus(128)
        assert n.bit_length() == 128
        RSAGroup(n)

    @pytest.mark.parametrize("bits", [32, 127])
    def test_rejects_bad_bit_length(self, bits):
        with pytest.raises(MalformedParameterError):
            generate_modulus(bits)


class TestLimbCodec:
    def test_rsa2048_limb_count(self):
        assert limb_count_for(N_RSA2048) == LIMB_COUNT == BITS_LEN // 64

    def test_decompose_compose(self):
        x = N_RSA2048 - 12345
        limbs = decompose_big(x)
        assert limbs.dtype.str == "<u8"
        assert len(limbs) == LIMB_COUNT
        assert compose_big(limbs) == x

    def test_decompose_overflow(self):
        with pytest.raises(ValueError):
            decompose_big(1 << BITS_LEN)

    def test_element_block(self):
        values = [1, 5, N_RSA2048 - 1]
        raw = elements_to_bytes(values, N_RSA2048)
        assert len(raw) == 3 * LIMB_COUNT * 8
        assert elements_from_bytes(raw, 3, N_RSA2048) == values

    def test_element_block_size_mismatch(self):
        raw = elements_to_bytes([1, 2], N_RSA2048)
        with pytest.raises(ValueError):
            elements_from_bytes(raw[:-1], 2, N_RSA2048)
