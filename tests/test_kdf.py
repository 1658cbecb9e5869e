"""Tests for session key derivation."""

import hashlib

import pytest
from Crypto.Hash import SHA256
from Crypto.Protocol.KDF import HKDF

from spruce import SESSION_INFO, SESSION_SALT, SessionClosed, SessionKey, combine_secrets, derive_session_key


ECDH_SS = bytes(range(32))
KEM_SS = bytes(range(32, 64))


def test_combine_secrets_is_sha256_of_concatenation():
    assert combine_secrets(ECDH_SS, KEM_SS) == hashlib.sha256(ECDH_SS + KEM_SS).digest()


def test_derive_session_key_chain():
    """session_key = HKDF(SHA256(ecdh || kem), salt, info, 32)."""
    seed = hashlib.sha256(ECDH_SS + KEM_SS).digest()
    expected = HKDF(seed, 32, salt=SESSION_SALT, num_keys=1, hashmod=SHA256, context=SESSION_INFO)

    key = derive_session_key(ECDH_SS, KEM_SS)

    assert key == expected
    assert len(key) == 32


def test_derive_session_key_order_sensitive():
    """Swapping the two secrets gives a different key."""
    assert derive_session_key(ECDH_SS, KEM_SS) != derive_session_key(KEM_SS, ECDH_SS)


def test_derive_session_key_domain_separated():
    assert derive_session_key(ECDH_SS, KEM_SS) != derive_session_key(
        ECDH_SS, KEM_SS, salt=b"other-protocol", info=b"other-protocol"
    )


def test_derive_session_key_accepts_bytearrays():
    assert derive_session_key(bytearray(ECDH_SS), bytearray(KEM_SS)) == derive_session_key(ECDH_SS, KEM_SS)


def test_session_key_zeroed_on_scope_exit():
    with SessionKey(b"\xaa" * 32, "hs-1") as sk:
        assert sk.key == b"\xaa" * 32
        assert not sk.closed

    assert sk.closed
    assert sk._key == bytearray(32)
    with pytest.raises(SessionClosed):
        _ = sk.key


def test_session_key_repr_hides_key():
    sk = SessionKey(b"\xaa" * 32, "hs-1")
    assert "aaaa" not in repr(sk)
    assert "hs-1" in repr(sk)
