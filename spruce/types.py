"""Constants and types for the Spruce protocol."""

import base64
import json
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

from .error import AuthenticationFailure, ConfigError, InvalidKeyEncoding


# Protocol version, carried in every wire envelope
VERSION: int = 1

# Session key length in bytes
KEY_LEN: int = 32

# Salt and info for the session key derivation
SESSION_SALT: bytes = b"Spruce-Hybrid-Session"
SESSION_INFO: bytes = b"Spruce-Hybrid-Session"

# Demo KEM derivation salt
DEMO_KEM_SALT: bytes = b"spruce:kyber-demo"

# Prefix of every signed handshake transcript
TRANSCRIPT_CONTEXT: bytes = b"Spruce-Handshake-v1"

# X25519 sizes
X25519_PUBLIC_KEY_SIZE: int = 32
X25519_PRIVATE_KEY_SIZE: int = 32

# Kyber768 sizes
KYBER768_PUBLIC_KEY_SIZE: int = 1184
KYBER768_CIPHERTEXT_SIZE: int = 1088

# Dilithium3 sizes
DILITHIUM3_PUBLIC_KEY_SIZE: int = 1952
DILITHIUM3_PRIVATE_KEY_SIZE: int = 4000
DILITHIUM3_SIGNATURE_SIZE: int = 3293

# AEAD parameters (both supported ciphers)
NONCE_LEN: int = 12
TAG_LEN: int = 16

# 2**32 messages per key keeps random 96-bit nonces collision-safe
DEFAULT_MAX_MESSAGES_PER_SESSION: int = 2 ** 32
DEFAULT_REPLAY_CACHE_SIZE: int = 4096

# Sessions expire 30 minutes after the handshake
DEFAULT_SESSION_TIMEOUT: float = 30 * 60

KEM_CHOICES = ("kyber768", "demo")
AEAD_CHOICES = ("aes-256-gcm", "chacha20-poly1305")

HANDSHAKE_TYPE = "handshake"
MESSAGE_TYPE = "message"


def b64e(data: bytes) -> str:
    """Encode bytes as standard base64 text."""
    return base64.b64encode(data).decode("ascii")


def b64d(text: str) -> bytes:
    """Decode standard base64 text, raising ValueError on malformed input."""
    return base64.b64decode(text, validate=True)


def zero_bytes(data: bytearray) -> None:
    """
    Overwrite a bytearray in place.
    Note: Python doesn't guarantee memory clearing, but we overwrite anyway.
    """
    for i in range(len(data)):
        data[i] = 0


def now_ms() -> int:
    """Wall clock in milliseconds; used for observability only."""
    return int(time.time() * 1000)


def new_id() -> str:
    return str(uuid.uuid4())


@dataclass
class ProtocolConfig:
    """Protocol configuration."""

    kem: str = "kyber768"
    aead: str = "aes-256-gcm"
    session_salt: bytes = SESSION_SALT
    session_info: bytes = SESSION_INFO
    max_messages_per_session: int = DEFAULT_MAX_MESSAGES_PER_SESSION
    replay_cache_size: int = DEFAULT_REPLAY_CACHE_SIZE
    # Seconds from key derivation until the session expires; None disables
    session_timeout: Optional[float] = DEFAULT_SESSION_TIMEOUT

    @classmethod
    def default(cls) -> "ProtocolConfig":
        """Return the default configuration."""
        return cls()

    def validate(self) -> None:
        """Validate the configuration, raises ConfigError if invalid."""
        if self.kem not in KEM_CHOICES:
            raise ConfigError(f"unknown kem {self.kem!r}")
        if self.aead not in AEAD_CHOICES:
            raise ConfigError(f"unknown aead {self.aead!r}")
        if not self.session_salt or not self.session_info:
            raise ConfigError("session_salt and session_info must be non-empty")
        if self.max_messages_per_session < 1:
            raise ConfigError("max_messages_per_session must be >= 1")
        if self.replay_cache_size < 1:
            raise ConfigError("replay_cache_size must be >= 1")
        if self.session_timeout is not None and not self.session_timeout > 0:
            raise ConfigError("session_timeout must be > 0 or None")


@dataclass(frozen=True)
class KeyPair:
    """Key pair for one primitive. The private half never leaves the process."""

    algorithm: str
    public: bytes
    private: bytes = field(repr=False)

    def public_b64(self) -> str:
        return b64e(self.public)

    def __repr__(self) -> str:
        return f"KeyPair(algorithm={self.algorithm!r}, public={len(self.public)} bytes)"


@dataclass(frozen=True)
class PublicKeySet:
    """Published public keys of one identity."""

    user_id: str
    ecdh_pub: bytes
    kem_pub: bytes
    signature_pub: bytes

    def to_dict(self) -> Dict[str, str]:
        return {
            "username": self.user_id,
            "x25519PublicKey": b64e(self.ecdh_pub),
            "kyberPublicKey": b64e(self.kem_pub),
            "dilithiumPublicKey": b64e(self.signature_pub),
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "PublicKeySet":
        try:
            return cls(
                user_id=d["username"],
                ecdh_pub=b64d(d["x25519PublicKey"]),
                kem_pub=b64d(d["kyberPublicKey"]),
                signature_pub=b64d(d["dilithiumPublicKey"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidKeyEncoding(f"Malformed public key set: {e}")


@dataclass
class SharedSecretPair:
    """The two independent handshake secrets, zeroed on exit."""

    ecdh: bytearray
    kem: bytearray

    def zero(self) -> None:
        zero_bytes(self.ecdh)
        zero_bytes(self.kem)

    def __enter__(self) -> "SharedSecretPair":
        return self

    def __exit__(self, *exc) -> None:
        self.zero()

    def __repr__(self) -> str:
        return "SharedSecretPair(<redacted>)"


@dataclass(frozen=True)
class HandshakeMessage:
    """Handshake message sent by the initiator; consumed once by the responder."""

    sender: str
    recipient: str
    ephemeral_pub: bytes  # X25519 ephemeral public key (32 bytes)
    kem_ct: bytes  # KEM ciphertext
    signature: bytes  # Signature over the canonical transcript
    timestamp: int = field(default_factory=now_ms)
    handshake_id: str = field(default_factory=new_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": HANDSHAKE_TYPE,
            "version": VERSION,
            "sender": self.sender,
            "recipient": self.recipient,
            "ephemeralX25519PublicKey": b64e(self.ephemeral_pub),
            "kyberCiphertext": b64e(self.kem_ct),
            "dilithiumSignature": b64e(self.signature),
            "timestamp": self.timestamp,
            "handshakeId": self.handshake_id,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "HandshakeMessage":
        try:
            return cls(
                sender=str(d["sender"]),
                recipient=str(d["recipient"]),
                ephemeral_pub=b64d(d["ephemeralX25519PublicKey"]),
                kem_ct=b64d(d["kyberCiphertext"]),
                signature=b64d(d["dilithiumSignature"]),
                timestamp=int(d["timestamp"]),
                handshake_id=str(d["handshakeId"]),
            )
        except (KeyError, TypeError, ValueError, OverflowError) as e:
            raise InvalidKeyEncoding(f"Malformed handshake message: {e}")

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_json(cls, data: Union[str, bytes]) -> "HandshakeMessage":
        try:
            d = json.loads(data)
        except ValueError as e:
            raise InvalidKeyEncoding(f"Malformed handshake message: {e}")
        return cls.from_dict(d)


@dataclass(frozen=True)
class EncryptedMessage:
    """One sealed application payload."""

    sender: str
    recipient: str
    ciphertext: bytes  # Ciphertext with authentication tag
    nonce: bytes
    aad: bytes = b""
    timestamp: int = field(default_factory=now_ms)
    message_id: str = field(default_factory=new_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": MESSAGE_TYPE,
            "version": VERSION,
            "sender": self.sender,
            "recipient": self.recipient,
            "encryptedContent": b64e(self.ciphertext),
            "nonce": b64e(self.nonce),
            "aad": b64e(self.aad),
            "timestamp": self.timestamp,
            "messageId": self.message_id,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "EncryptedMessage":
        try:
            return cls(
                sender=str(d["sender"]),
                recipient=str(d["recipient"]),
                ciphertext=b64d(d["encryptedContent"]),
                nonce=b64d(d["nonce"]),
                aad=b64d(d.get("aad") or ""),
                timestamp=int(d["timestamp"]),
                message_id=str(d["messageId"]),
            )
        except (KeyError, TypeError, ValueError, OverflowError):
            raise AuthenticationFailure("Decryption failed")

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_json(cls, data: Union[str, bytes]) -> "EncryptedMessage":
        try:
            d = json.loads(data)
        except ValueError:
            raise AuthenticationFailure("Decryption failed")
        return cls.from_dict(d)


Envelope = Union[HandshakeMessage, EncryptedMessage]


def encode_envelope(msg: Envelope) -> str:
    """Serialize a handshake or message for a text transport."""
    return msg.to_json()


def decode_envelope(data: Union[str, bytes]) -> Envelope:
    """
    Parse the text form produced by encode_envelope.

    Envelopes without a version field are read as the current version.
    """
    try:
        d = json.loads(data)
    except ValueError as e:
        raise InvalidKeyEncoding(f"Malformed envelope: {e}")
    kind: Optional[str] = d.get("type") if isinstance(d, dict) else None
    if kind is not None and d.get("version", VERSION) != VERSION:
        raise InvalidKeyEncoding(f"Unsupported protocol version {d.get('version')!r}")
    if kind == HANDSHAKE_TYPE:
        return HandshakeMessage.from_dict(d)
    if kind == MESSAGE_TYPE:
        return EncryptedMessage.from_dict(d)
    raise InvalidKeyEncoding(f"Unknown envelope type {kind!r}")
