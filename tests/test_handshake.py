"""Tests for the hybrid handshake engine."""

from dataclasses import replace

import pytest

from spruce import (
    HandshakeEngine,
    HandshakeError,
    InvalidKeyEncoding,
    KeyManager,
    NotFound,
    ProtocolConfig,
    ReplayDetected,
    SignatureVerificationFailed,
    TRANSCRIPT_CONTEXT,
    build_transcript,
)
from spruce.handshake import Failed, Idle, Received, _require


def flip(data: bytes, index: int = 0) -> bytes:
    out = bytearray(data)
    out[index] ^= 0x01
    return bytes(out)


def test_handshake_roundtrip(engine, alice, bob):
    """Initiator and responder derive byte-equal session keys."""
    msg, alice_key = engine.initiate_handshake("alice", "bob", alice.signature.private)
    bob_key = engine.accept_handshake(msg, bob, alice.signature.public)

    assert alice_key.key == bob_key.key
    assert len(bob_key.key) == 32
    assert alice_key.handshake_id == bob_key.handshake_id == msg.handshake_id


def test_handshake_message_fields(engine, alice):
    msg, _ = engine.initiate_handshake("alice", "bob", alice.signature.private)

    assert msg.sender == "alice"
    assert msg.recipient == "bob"
    assert len(msg.ephemeral_pub) == 32
    assert len(msg.kem_ct) == 1088
    assert msg.timestamp > 0
    assert msg.handshake_id


def test_tampered_ephemeral_key_rejected(engine, alice, bob):
    msg, _ = engine.initiate_handshake("alice", "bob", alice.signature.private)
    forged = replace(msg, ephemeral_pub=flip(msg.ephemeral_pub, 5))

    with pytest.raises(SignatureVerificationFailed):
        engine.accept_handshake(forged, bob, alice.signature.public)


def test_tampered_kem_ciphertext_rejected(engine, alice, bob):
    msg, _ = engine.initiate_handshake("alice", "bob", alice.signature.private)
    forged = replace(msg, kem_ct=flip(msg.kem_ct, 700))

    with pytest.raises(SignatureVerificationFailed):
        engine.accept_handshake(forged, bob, alice.signature.public)


def test_rebound_identities_rejected(engine, alice, bob):
    """Changing sender or recipient breaks the transcript signature."""
    msg, _ = engine.initiate_handshake("alice", "bob", alice.signature.private)

    with pytest.raises(SignatureVerificationFailed):
        engine.accept_handshake(replace(msg, sender="mallory"), bob, alice.signature.public)
    with pytest.raises(SignatureVerificationFailed):
        engine.accept_handshake(replace(msg, recipient="carol"), bob, alice.signature.public)


def test_misaddressed_handshake_rejected(engine, alice, bob):
    msg, _ = engine.initiate_handshake("alice", "bob", alice.signature.private)

    with pytest.raises(SignatureVerificationFailed):
        engine.accept_handshake(msg, bob, alice.signature.public, self_id="carol")


def test_wrong_verification_key_rejected(engine, alice, bob):
    msg, _ = engine.initiate_handshake("alice", "bob", alice.signature.private)

    with pytest.raises(SignatureVerificationFailed):
        engine.accept_handshake(msg, bob, bob.signature.public)


def test_failed_state_attached(engine, alice, bob):
    msg, _ = engine.initiate_handshake("alice", "bob", alice.signature.private)
    forged = replace(msg, kem_ct=flip(msg.kem_ct))

    with pytest.raises(SignatureVerificationFailed) as excinfo:
        engine.accept_handshake(forged, bob, alice.signature.public)

    state = excinfo.value.state
    assert isinstance(state, Failed)
    assert state.role == "responder"
    assert state.at == "Received"
    assert state.handshake_id == msg.handshake_id


def test_replay_detected(engine, alice, bob):
    """A handshake message is consumed exactly once."""
    msg, _ = engine.initiate_handshake("alice", "bob", alice.signature.private)
    engine.accept_handshake(msg, bob, alice.signature.public)

    with pytest.raises(ReplayDetected):
        engine.accept_handshake(msg, bob, alice.signature.public)
    # A fresh id does not make an old transcript new
    with pytest.raises(ReplayDetected):
        engine.accept_handshake(replace(msg, handshake_id="other"), bob, alice.signature.public)


def test_replay_cache_bounded(provider, directory, alice, bob):
    engine = HandshakeEngine(provider, directory, ProtocolConfig(replay_cache_size=1))
    first, _ = engine.initiate_handshake("alice", "bob", alice.signature.private)
    second, _ = engine.initiate_handshake("alice", "bob", alice.signature.private)
    engine.accept_handshake(first, bob, alice.signature.public)
    engine.accept_handshake(second, bob, alice.signature.public)

    assert len(engine._consumed) == 1
    # Within the window the newest transcript is still caught
    with pytest.raises(ReplayDetected):
        engine.accept_handshake(second, bob, alice.signature.public)
    # The evicted one falls outside it
    engine.accept_handshake(first, bob, alice.signature.public)


def test_unknown_peer(engine, alice):
    with pytest.raises(NotFound):
        engine.initiate_handshake("alice", "nobody", alice.signature.private)


def test_no_directory_needs_explicit_keys(provider, alice, bob):
    engine = HandshakeEngine(provider)
    with pytest.raises(NotFound):
        engine.initiate_handshake("alice", "bob", alice.signature.private)

    msg, key = engine.initiate_handshake(
        "alice", "bob", alice.signature.private, peer_keys=bob.public_keys("bob")
    )
    assert engine.accept_handshake(msg, bob, alice.signature.public).key == key.key


def test_mismatched_peer_keys(engine, alice, bob):
    with pytest.raises(HandshakeError):
        engine.initiate_handshake("alice", "bob", alice.signature.private, peer_keys=bob.public_keys("carol"))


def test_handshakes_are_unlinkable(engine, alice, bob):
    """Two handshakes between the same pair share no ephemeral material."""
    msg1, key1 = engine.initiate_handshake("alice", "bob", alice.signature.private)
    msg2, key2 = engine.initiate_handshake("alice", "bob", alice.signature.private)

    assert msg1.ephemeral_pub != msg2.ephemeral_pub
    assert msg1.kem_ct != msg2.kem_ct
    assert msg1.handshake_id != msg2.handshake_id
    assert key1.key != key2.key


def test_wrong_responder_identity_mismatches(engine, provider, alice, bob):
    """A responder with other keys derives a different key; the mismatch shows up at first decrypt."""
    carol = KeyManager(provider).generate_identity()
    msg, alice_key = engine.initiate_handshake("alice", "bob", alice.signature.private)
    carol_key = engine.accept_handshake(msg, carol, alice.signature.public)

    assert carol_key.key != alice_key.key


def test_malformed_ephemeral_key(engine, alice, bob):
    """A correctly signed but malformed ephemeral key fails with InvalidKeyEncoding."""
    transcript = build_transcript("alice", "bob", b"\x01" * 31, b"\x00" * 1088)
    sig = engine.provider.sign(transcript, alice.signature.private)
    msg, _ = engine.initiate_handshake("alice", "bob", alice.signature.private)
    forged = replace(msg, ephemeral_pub=b"\x01" * 31, kem_ct=b"\x00" * 1088, signature=sig)

    with pytest.raises(InvalidKeyEncoding) as excinfo:
        engine.accept_handshake(forged, bob, alice.signature.public)
    assert excinfo.value.state.at == "SignatureVerified"


def test_demo_kem_handshake(demo_provider):
    """The compatibility KEM interoperates through the same engine."""
    km = KeyManager(demo_provider)
    a = km.generate_identity()
    b = km.generate_identity()
    engine = HandshakeEngine(demo_provider)

    msg, a_key = engine.initiate_handshake("alice", "bob", a.signature.private, peer_keys=b.public_keys("bob"))
    b_key = engine.accept_handshake(msg, b, a.signature.public)

    assert a_key.key == b_key.key


def test_transcript_encoding():
    """Fields are length-prefixed in fixed order."""
    t = build_transcript("a", "bc", b"\x01\x02", b"\x03")
    assert t == (
        TRANSCRIPT_CONTEXT
        + b"\x00\x00\x00\x01a"
        + b"\x00\x00\x00\x02bc"
        + b"\x00\x00\x00\x02\x01\x02"
        + b"\x00\x00\x00\x01\x03"
    )
    # Moving bytes between fields changes the transcript
    assert build_transcript("ab", "c", b"\x01\x02", b"\x03") != t


def test_illegal_transition(engine):
    """Steps only accept their own predecessor state."""
    idle = Idle("hs", "alice", "bob")
    with pytest.raises(HandshakeError):
        _require(idle, Received)
    with pytest.raises(HandshakeError):
        engine._derive(idle)
