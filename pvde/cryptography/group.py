# pvde/cryptography/group.py
"""
PVDE Group Arithmetic Engine

Fixed-modulus big-integer arithmetic over the multiplicative group Z_n^*
of an RSA modulus n = p*q whose factorisation is unknown to everybody.

Every other component builds on two operations:
  - modular exponentiation with an arbitrary non-negative exponent
  - iterated squaring x -> x^2 mod n, applied t times

Iterated squaring is a strict dependency chain: step i+1 consumes the
output of step i. It is never batched, split or vectorised, because that
chain is what enforces the minimum elapsed time of a delay.
"""

from __future__ import annotations

import logging
import secrets
import threading
from functools import lru_cache
from typing import Iterable, Optional, Tuple

import gmpy2

from .common import MalformedParameterError, SolveCancelled

logger = logging.getLogger("pvde.group")

# Cancellation is polled once per this many squarings.
CANCEL_POLL_INTERVAL: int = 1024

MIN_MODULUS_BITS: int = 64


# =============================================================================
# RSA Group
# =============================================================================

class RSAGroup:
    """
    Multiplicative group modulo a composite n.

    Elements are plain Python ints in [1, n). All arithmetic is done with
    gmpy2 and converted back to int at the boundary.
    """

    def __init__(self, n: int):
        n = int(n)
        if n <= 3:
            raise MalformedParameterError(f"Modulus too small: {n}")
        if n % 2 == 0:
            raise MalformedParameterError("Modulus must be odd")
        if gmpy2.is_square(n):
            raise MalformedParameterError("Modulus must not be a perfect square")
        if gmpy2.is_prime(n):
            raise MalformedParameterError("Modulus must be composite")

        self.n = n
        self._n = gmpy2.mpz(n)

    @property
    def bits(self) -> int:
        return self.n.bit_length()

    def __repr__(self) -> str:
        return f"RSAGroup(bits={self.bits})"

    # -----------------------------------------
    # Validation
    # -----------------------------------------

    def contains(self, x: int) -> bool:
        """True iff x is a unit modulo n."""
        x = int(x)
        return 0 < x < self.n and gmpy2.gcd(x, self._n) == 1

    def element(self, x: int, name: str = "element") -> int:
        """Validate and return x as a group element."""
        if isinstance(x, bool) or not isinstance(x, int):
            raise MalformedParameterError(f"{name} must be an integer")
        if not 0 < x < self.n:
            raise MalformedParameterError(f"{name} out of range [1, n)")
        if gmpy2.gcd(x, self._n) != 1:
            raise MalformedParameterError(f"{name} is not a unit modulo n")
        return x

    @staticmethod
    def exponent(e: int, name: str = "exponent") -> int:
        if isinstance(e, bool) or not isinstance(e, int):
            raise MalformedParameterError(f"{name} must be an integer")
        if e < 0:
            raise MalformedParameterError(f"{name} must be non-negative")
        return e

    # -----------------------------------------
    # Arithmetic
    # -----------------------------------------

    def exp(self, base: int, e: int) -> int:
        """base^e mod n for non-negative e."""
        self.exponent(e)
        return int(gmpy2.powmod(gmpy2.mpz(base), gmpy2.mpz(e), self._n))

    def mul(self, a: int, b: int) -> int:
        return int(gmpy2.mpz(a) * gmpy2.mpz(b) % self._n)

    def inv(self, a: int) -> int:
        try:
            return int(gmpy2.invert(gmpy2.mpz(a), self._n))
        except ZeroDivisionError as e:
            raise MalformedParameterError("Element is not invertible modulo n") from e

    def square(self, x: int) -> int:
        x = gmpy2.mpz(x)
        return int(x * x % self._n)

    def multi_exp(self, pairs: Iterable[Tuple[int, int]]) -> int:
        """prod(base_i ^ e_i) mod n."""
        acc = gmpy2.mpz(1)
        for base, e in pairs:
            self.exponent(e)
            acc = acc * gmpy2.powmod(gmpy2.mpz(base), gmpy2.mpz(e), self._n) % self._n
        return int(acc)

    def repeated_squaring(
        self,
        x: int,
        t: int,
        cancel: Optional[threading.Event] = None,
    ) -> int:
        """
        Compute x^(2^t) mod n by t sequential squarings.

        If cancel is given it is polled every CANCEL_POLL_INTERVAL steps;
        once set, SolveCancelled is raised and the partial value is dropped.
        """
        self.exponent(t, "t")
        acc = gmpy2.mpz(x) % self._n
        n = self._n
        for i in range(t):
            if cancel is not None and i % CANCEL_POLL_INTERVAL == 0 and cancel.is_set():
                raise SolveCancelled(i, t)
            acc = acc * acc % n
        return int(acc)


@lru_cache(maxsize=32)
def group_for(n: int) -> RSAGroup:
    """Shared, validated group instance for modulus n."""
    return RSAGroup(n)


# =============================================================================
# Modulus sampling
# =============================================================================

def _random_prime(bits: int) -> int:
    while True:
        # Top two bits set so that p*q has exactly 2*bits bits.
        candidate = secrets.randbits(bits) | (3 << (bits - 2)) | 1
        p = gmpy2.next_prime(candidate)
        if p.bit_length() == bits:
            return int(p)


def generate_modulus(bit_length: int) -> int:
    """
    Sample an RSA modulus of exactly bit_length bits.

    The prime factors are discarded before returning; nobody, including
    the caller, learns the group order.
    """
    if bit_length < MIN_MODULUS_BITS or bit_length % 2:
        raise MalformedParameterError(
            f"bit_length must be even and >= {MIN_MODULUS_BITS}, got {bit_length}"
        )
    half = bit_length // 2
    while True:
        p = _random_prime(half)
        q = _random_prime(half)
        if p != q and (p * q).bit_length() == bit_length:
            n = p * q
            del p, q
            logger.debug("sampled %d-bit modulus", bit_length)
            return n
