"""
Hybrid handshake: X25519 + KEM, authenticated with a transcript signature.

Each handshake is a chain of immutable state values. Every step takes the
one state it may follow and returns the next, so a session key can only
come out of a verified (responder) or signed (initiator) state. A failure
at any step becomes a Failed state attached to the raised HandshakeError.

Initiator: Idle -> EphemeralGenerated -> SecretsComputed -> TranscriptSigned -> Sent
Responder: Received -> SignatureVerified -> SecretsComputed -> Derived
"""

import hashlib
import logging
import struct
import threading
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Optional, Tuple, Union

from .directory import KeyDirectory
from .error import HandshakeError, NotFound, ReplayDetected, SignatureVerificationFailed
from .kdf import SessionKey, derive_session_key
from .keys import Identity
from .primitives import Provider
from .types import (
    TRANSCRIPT_CONTEXT,
    HandshakeMessage,
    KeyPair,
    ProtocolConfig,
    PublicKeySet,
    SharedSecretPair,
    new_id,
)

log = logging.getLogger(__name__)

INITIATOR = "initiator"
RESPONDER = "responder"


def build_transcript(sender: str, recipient: str, ephemeral_pub: bytes, kem_ct: bytes) -> bytes:
    """
    Canonical transcript signed by the initiator.

    context || len(sender) || sender || len(recipient) || recipient
            || len(ephemeral_pub) || ephemeral_pub || len(kem_ct) || kem_ct

    Lengths are 4-byte big-endian, ids are UTF-8.
    """
    out = bytearray(TRANSCRIPT_CONTEXT)
    for part in (sender.encode("utf-8"), recipient.encode("utf-8"), bytes(ephemeral_pub), bytes(kem_ct)):
        out += struct.pack(">I", len(part))
        out += part
    return bytes(out)


# ============================================================================
# States
# ============================================================================

@dataclass(frozen=True)
class Idle:
    handshake_id: str
    sender: str
    recipient: str


@dataclass(frozen=True)
class EphemeralGenerated:
    handshake_id: str
    sender: str
    recipient: str
    ephemeral: KeyPair


@dataclass(frozen=True)
class SecretsComputed:
    role: str
    handshake_id: str
    sender: str
    recipient: str
    ephemeral_pub: bytes
    kem_ct: bytes
    secrets: SharedSecretPair
    message: Optional[HandshakeMessage] = None  # set on the responder side


@dataclass(frozen=True)
class TranscriptSigned:
    handshake_id: str
    message: HandshakeMessage
    secrets: SharedSecretPair


@dataclass(frozen=True)
class Sent:
    message: HandshakeMessage
    session_key: SessionKey


@dataclass(frozen=True)
class Received:
    message: HandshakeMessage


@dataclass(frozen=True)
class SignatureVerified:
    message: HandshakeMessage


@dataclass(frozen=True)
class Derived:
    message: HandshakeMessage
    session_key: SessionKey


@dataclass(frozen=True)
class Failed:
    role: str
    handshake_id: str
    at: str  # name of the last state reached
    reason: str


HandshakeState = Union[
    Idle, EphemeralGenerated, SecretsComputed, TranscriptSigned, Sent,
    Received, SignatureVerified, Derived, Failed,
]


def _require(state: HandshakeState, expected: type) -> None:
    if not isinstance(state, expected):
        raise HandshakeError(
            f"Illegal transition from {type(state).__name__}, expected {expected.__name__}"
        )


# ============================================================================
# Engine
# ============================================================================

class HandshakeEngine:
    """Runs initiator and responder handshakes over an injected provider."""

    def __init__(
        self,
        provider: Provider,
        directory: Optional[KeyDirectory] = None,
        config: Optional[ProtocolConfig] = None,
    ):
        self.provider = provider
        self.directory = directory
        self.config = config or ProtocolConfig.default()
        self.config.validate()
        self._lock = threading.Lock()
        self._consumed: "OrderedDict[bytes, None]" = OrderedDict()

    # ------------------------------------------------------------------
    # Initiator
    # ------------------------------------------------------------------

    def initiate_handshake(
        self,
        self_id: str,
        peer_id: str,
        self_signing_key: bytes,
        peer_keys: Optional[PublicKeySet] = None,
    ) -> Tuple[HandshakeMessage, SessionKey]:
        """
        Start a handshake to peer_id.

        Args:
            self_id: Our user id
            peer_id: Responder's user id
            self_signing_key: Our signature private key
            peer_keys: Responder's public keys; looked up in the directory if omitted

        Returns:
            Tuple of (handshake_message, session_key)

        Raises:
            NotFound: If the peer's keys are unknown
            InvalidKeyEncoding: If a published key is malformed
        """
        handshake_id = new_id()
        if peer_keys is None:
            if self.directory is None:
                raise NotFound(f"No key directory to look up {peer_id!r}")
            peer_keys = self.directory.get_public_keys(peer_id)
        if peer_keys.user_id != peer_id:
            raise HandshakeError(f"Public keys belong to {peer_keys.user_id!r}, not {peer_id!r}")

        state = self._run(INITIATOR, handshake_id, Idle(handshake_id, self_id, peer_id), (
            self._generate_ephemeral,
            lambda s: self._initiator_secrets(s, peer_keys),
            lambda s: self._sign_transcript(s, self_signing_key),
            self._send,
        ))
        log.info("handshake %s sent %s -> %s", handshake_id, self_id, peer_id)
        return state.message, state.session_key

    def _generate_ephemeral(self, state: Idle) -> EphemeralGenerated:
        _require(state, Idle)
        return EphemeralGenerated(
            handshake_id=state.handshake_id,
            sender=state.sender,
            recipient=state.recipient,
            ephemeral=self.provider.ecdh_generate(),
        )

    def _initiator_secrets(self, state: EphemeralGenerated, peer: PublicKeySet) -> SecretsComputed:
        _require(state, EphemeralGenerated)
        ecdh_secret = self.provider.ecdh_agree(state.ephemeral.private, peer.ecdh_pub)
        kem_secret, kem_ct = self.provider.kem_encapsulate(peer.kem_pub)
        # The ephemeral private key is dropped here; only its public half travels on
        return SecretsComputed(
            role=INITIATOR,
            handshake_id=state.handshake_id,
            sender=state.sender,
            recipient=state.recipient,
            ephemeral_pub=state.ephemeral.public,
            kem_ct=kem_ct,
            secrets=SharedSecretPair(ecdh=bytearray(ecdh_secret), kem=bytearray(kem_secret)),
        )

    def _sign_transcript(self, state: SecretsComputed, signing_key: bytes) -> TranscriptSigned:
        _require(state, SecretsComputed)
        transcript = build_transcript(state.sender, state.recipient, state.ephemeral_pub, state.kem_ct)
        signature = self.provider.sign(transcript, signing_key)
        message = HandshakeMessage(
            sender=state.sender,
            recipient=state.recipient,
            ephemeral_pub=state.ephemeral_pub,
            kem_ct=state.kem_ct,
            signature=signature,
            handshake_id=state.handshake_id,
        )
        return TranscriptSigned(handshake_id=state.handshake_id, message=message, secrets=state.secrets)

    def _send(self, state: TranscriptSigned) -> Sent:
        _require(state, TranscriptSigned)
        return Sent(message=state.message, session_key=self._session_key(state.secrets, state.handshake_id))

    # ------------------------------------------------------------------
    # Responder
    # ------------------------------------------------------------------

    def accept_handshake(
        self,
        msg: HandshakeMessage,
        own: Identity,
        peer_verification_key: bytes,
        self_id: Optional[str] = None,
    ) -> SessionKey:
        """
        Verify a received handshake and derive the session key.

        Args:
            msg: Received handshake message
            own: Our identity (ECDH private key and KEM key pair)
            peer_verification_key: Sender's signature public key
            self_id: Our user id; if given, msg must be addressed to it

        Returns:
            Session key identical to the initiator's

        Raises:
            SignatureVerificationFailed: If the transcript signature is invalid
            ReplayDetected: If this transcript was already accepted
            InvalidKeyEncoding: If a key or ciphertext is malformed
        """
        state = self._run(RESPONDER, msg.handshake_id, Received(msg), (
            lambda s: self._verify(s, peer_verification_key, self_id),
            lambda s: self._responder_secrets(s, own),
            self._derive,
        ))
        log.info("handshake %s derived %s <- %s", msg.handshake_id, msg.recipient, msg.sender)
        return state.session_key

    def _verify(self, state: Received, verification_key: bytes, self_id: Optional[str]) -> SignatureVerified:
        _require(state, Received)
        msg = state.message
        if self_id is not None and msg.recipient != self_id:
            raise SignatureVerificationFailed("Handshake addressed to another recipient")
        transcript = build_transcript(msg.sender, msg.recipient, msg.ephemeral_pub, msg.kem_ct)
        if not self.provider.verify(transcript, msg.signature, verification_key):
            raise SignatureVerificationFailed("Handshake signature verification failed")
        self._consume(hashlib.sha256(transcript).digest())
        return SignatureVerified(message=msg)

    def _responder_secrets(self, state: SignatureVerified, own: Identity) -> SecretsComputed:
        _require(state, SignatureVerified)
        msg = state.message
        ecdh_secret = self.provider.ecdh_agree(own.ecdh.private, msg.ephemeral_pub)
        kem_secret = self.provider.kem_decapsulate(own.kem, msg.kem_ct)
        return SecretsComputed(
            role=RESPONDER,
            handshake_id=msg.handshake_id,
            sender=msg.sender,
            recipient=msg.recipient,
            ephemeral_pub=msg.ephemeral_pub,
            kem_ct=msg.kem_ct,
            secrets=SharedSecretPair(ecdh=bytearray(ecdh_secret), kem=bytearray(kem_secret)),
            message=msg,
        )

    def _derive(self, state: SecretsComputed) -> Derived:
        _require(state, SecretsComputed)
        if state.role != RESPONDER:
            raise HandshakeError("Initiator secrets must be signed before deriving")
        return Derived(message=state.message, session_key=self._session_key(state.secrets, state.handshake_id))

    # ------------------------------------------------------------------
    # Shared
    # ------------------------------------------------------------------

    def _session_key(self, secrets: SharedSecretPair, handshake_id: str) -> SessionKey:
        with secrets:
            key = derive_session_key(
                secrets.ecdh,
                secrets.kem,
                salt=self.config.session_salt,
                info=self.config.session_info,
                kdf=self.provider.kdf,
            )
        return SessionKey(key, handshake_id)

    def _consume(self, digest: bytes) -> None:
        """
        Record a transcript digest, raising ReplayDetected if it was seen.

        The cache is FIFO and holds replay_cache_size digests. Once that many
        later handshakes have been accepted the oldest digest is evicted and
        its handshake would be accepted again, so a replay is only caught
        within that window. A caller that swaps sessions on every accepted
        handshake (Client.accept) should size the cache accordingly.
        """
        with self._lock:
            if digest in self._consumed:
                raise ReplayDetected("Handshake already consumed")
            self._consumed[digest] = None
            while len(self._consumed) > self.config.replay_cache_size:
                self._consumed.popitem(last=False)

    def _run(self, role: str, handshake_id: str, state: HandshakeState,
             steps: Tuple[Callable[[HandshakeState], HandshakeState], ...]) -> HandshakeState:
        for step in steps:
            try:
                state = step(state)
            except HandshakeError as e:
                secrets = getattr(state, "secrets", None)
                if secrets is not None:
                    secrets.zero()
                failed = Failed(role=role, handshake_id=handshake_id, at=type(state).__name__, reason=str(e))
                log.warning("handshake %s failed at %s (%s): %s", handshake_id, failed.at, role, type(e).__name__)
                e.state = failed
                raise
        return state
