# Spruce test configuration and shared fixtures

import pytest

from spruce import (
    HandshakeEngine,
    InMemoryKeyDirectory,
    KeyManager,
    MessageCipher,
    ProtocolConfig,
    Provider,
)


@pytest.fixture(scope="session")
def provider():
    """Default provider: X25519, Kyber768, Dilithium3, HKDF-SHA256, AES-256-GCM."""
    return Provider.default()


@pytest.fixture(scope="session")
def demo_provider():
    """Provider with the compatibility KEM."""
    return Provider.from_config(ProtocolConfig(kem="demo"))


@pytest.fixture(scope="session")
def alice(provider):
    return KeyManager(provider).generate_identity()


@pytest.fixture(scope="session")
def bob(provider):
    return KeyManager(provider).generate_identity()


@pytest.fixture
def directory(alice, bob):
    directory = InMemoryKeyDirectory()
    directory.publish(alice.public_keys("alice"))
    directory.publish(bob.public_keys("bob"))
    return directory


@pytest.fixture
def engine(provider, directory):
    """Fresh engine per test so the replay cache starts empty."""
    return HandshakeEngine(provider, directory)


@pytest.fixture
def cipher(provider):
    return MessageCipher(provider)
