"""
Shared pytest fixtures for the CipherTalk test suite.

RSA key generation is slow enough to matter, so a few key pairs are
generated once per session and shared by tests that only need *some*
valid key. Tests that exercise generation itself build their own.
"""

import pytest

from ciphertalk.e2e.cipher_engine import KeyPair
from ciphertalk.e2e.key_store import KeyStore
from ciphertalk.relay.state import RelayState


@pytest.fixture(scope="session")
def alice_keys():
    return KeyPair.generate()


@pytest.fixture(scope="session")
def bob_keys():
    return KeyPair.generate()


@pytest.fixture(scope="session")
def mallory_keys():
    return KeyPair.generate()


@pytest.fixture
def key_store(tmp_path):
    """KeyStore backed by a temp database."""
    return KeyStore(db_path=str(tmp_path / "keys.db"))


@pytest.fixture
def relay():
    return RelayState()
