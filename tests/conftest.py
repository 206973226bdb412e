# tests/conftest.py
"""Shared fixtures: one full-size epoch, one small sampled epoch."""

import pytest

from pvde.cryptography.puzzle import generate_param, generate_time_lock_puzzle
from pvde.zkp.keys import KeyRegistry, Relation, setup


@pytest.fixture(scope="session")
def rsa_param():
    """RSA-2048 challenge modulus, g = 5, t = 2048."""
    return generate_param(preset="rsa2048")


@pytest.fixture(scope="session")
def small_param():
    """Fresh 512-bit modulus, t = 64."""
    return generate_param(preset="test")


@pytest.fixture(scope="session")
def small_keys(small_param):
    return {relation: setup(small_param, relation) for relation in Relation}


@pytest.fixture
def small_registry(small_param):
    registry = KeyRegistry()
    registry.initialize(small_param)
    return registry


@pytest.fixture
def puzzle(small_param):
    """(secret_input, public_input) for the small epoch."""
    return generate_time_lock_puzzle(small_param)
