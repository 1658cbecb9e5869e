"""Tests for the message cipher."""

from dataclasses import replace

import pytest

from spruce import (
    AuthenticationFailure,
    DecryptError,
    MessageCipher,
    ProtocolConfig,
    Provider,
    SessionClosed,
    SessionKey,
    default_aad,
)
from spruce.primitives import rand_bytes


@pytest.fixture
def key():
    return SessionKey(rand_bytes(32), "hs-test")


def test_encrypt_decrypt(cipher, key):
    ct, nonce = cipher.encrypt(b"payload", key, b"alice|bob")

    assert len(nonce) == 12
    assert cipher.decrypt(ct, nonce, b"alice|bob", key) == b"payload"


def test_seal_open(cipher, key):
    msg = cipher.seal(key, b"hello", b"alice|bob", sender="alice", recipient="bob")

    assert msg.sender == "alice"
    assert msg.recipient == "bob"
    assert msg.aad == b"alice|bob"
    assert cipher.open(key, msg) == b"hello"


def test_seal_accepts_text(cipher, key):
    msg = cipher.seal(key, "héllo")
    assert cipher.open(key, msg) == "héllo".encode("utf-8")


def test_empty_plaintext(cipher, key):
    msg = cipher.seal(key, b"")
    assert cipher.open(key, msg) == b""


def test_nonces_never_repeat(cipher, key):
    """Every seal draws a fresh nonce."""
    nonces = {cipher.seal(key, b"x").nonce for _ in range(10000)}
    assert len(nonces) == 10000


def test_message_ids_unique(cipher, key):
    ids = {cipher.seal(key, b"x").message_id for _ in range(1000)}
    assert len(ids) == 1000


def test_wrong_key(cipher, key):
    msg = cipher.seal(key, b"hello", b"alice|bob")
    other = SessionKey(rand_bytes(32), "hs-other")

    with pytest.raises(AuthenticationFailure):
        cipher.open(other, msg)


@pytest.mark.parametrize("index", [0, 4, -1, -16])
def test_tampered_ciphertext_or_tag(cipher, key, index):
    msg = cipher.seal(key, b"hello", b"alice|bob")
    tampered = bytearray(msg.ciphertext)
    tampered[index] ^= 0x01

    with pytest.raises(AuthenticationFailure):
        cipher.open(key, replace(msg, ciphertext=bytes(tampered)))


def test_tampered_aad(cipher, key):
    msg = cipher.seal(key, b"hello", b"alice|bob")

    with pytest.raises(AuthenticationFailure):
        cipher.open(key, replace(msg, aad=b"alice|carol"))


def test_tampered_nonce(cipher, key):
    msg = cipher.seal(key, b"hello")
    nonce = bytearray(msg.nonce)
    nonce[0] ^= 0xFF

    with pytest.raises(AuthenticationFailure):
        cipher.open(key, replace(msg, nonce=bytes(nonce)))


def test_truncated_input(cipher, key):
    msg = cipher.seal(key, b"hello")

    for ct in (msg.ciphertext[:-1], msg.ciphertext[:15], b""):
        with pytest.raises(AuthenticationFailure):
            cipher.open(key, replace(msg, ciphertext=ct))
    with pytest.raises(AuthenticationFailure):
        cipher.open(key, replace(msg, nonce=msg.nonce[:11]))


def test_failures_are_indistinguishable(cipher, key):
    """Every failure reports the same type and message."""
    msg = cipher.seal(key, b"hello", b"ad")
    attempts = [
        (key, replace(msg, ciphertext=msg.ciphertext[:3])),
        (key, replace(msg, aad=b"da")),
        (key, replace(msg, ciphertext=bytes(len(msg.ciphertext)))),
        (SessionKey(rand_bytes(32), "x"), msg),
    ]
    errors = set()
    for k, bad in attempts:
        with pytest.raises(DecryptError) as excinfo:
            cipher.open(k, bad)
        errors.add((type(excinfo.value), str(excinfo.value)))

    assert len(errors) == 1


def test_closed_key(cipher, key):
    msg = cipher.seal(key, b"hello")
    key.close()

    with pytest.raises(SessionClosed):
        cipher.open(key, msg)
    with pytest.raises(SessionClosed):
        cipher.seal(key, b"again")


def test_chacha20_provider():
    cipher = MessageCipher(Provider.from_config(ProtocolConfig(aead="chacha20-poly1305")))
    key = SessionKey(rand_bytes(32), "hs-chacha")
    msg = cipher.seal(key, b"hello", b"alice|bob")

    assert cipher.open(key, msg) == b"hello"


def test_default_aad():
    assert default_aad("alice", "bob") == b"alice|bob"
