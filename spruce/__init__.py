"""
Spruce: hybrid post-quantum handshake and message encryption

Establishes a session key between two parties by combining an X25519 key
agreement with a post-quantum KEM (Kyber768), authenticates the exchange
with a Dilithium3 signature over a canonical transcript, and protects
every following message with AES-256-GCM under fresh random nonces.

Features:
- Hybrid secret: SHA256(ecdh_secret || kem_secret) fed to HKDF-SHA256
- Transcript signature binding sender, recipient, ephemeral key and KEM ciphertext
- Replay detection for accepted handshakes
- Pluggable primitives via an explicit Provider object
- Session keys zeroed on scope exit

The session stays confidential while either the classical or the
post-quantum agreement remains unbroken.
"""

import logging

from .types import (
    VERSION,
    KEY_LEN,
    NONCE_LEN,
    TAG_LEN,
    SESSION_SALT,
    SESSION_INFO,
    TRANSCRIPT_CONTEXT,
    ProtocolConfig,
    KeyPair,
    PublicKeySet,
    SharedSecretPair,
    HandshakeMessage,
    EncryptedMessage,
    encode_envelope,
    decode_envelope,
)
from .primitives import (
    Provider,
    X25519KeyAgreement,
    Kyber768Kem,
    DemoKem,
    Dilithium3Signer,
    HkdfSha256,
    AesGcmAead,
    ChaCha20Poly1305Aead,
)
from .kdf import combine_secrets, derive_session_key, SessionKey
from .keys import Identity, KeyManager
from .handshake import HandshakeEngine, build_transcript
from .crypto import MessageCipher, default_aad
from .session import Session
from .directory import KeyDirectory, InMemoryKeyDirectory
from .mailbox import Mailbox, InMemoryMailbox
from .client import Client, Delivery
from .error import (
    SpruceError,
    ConfigError,
    HandshakeError,
    InvalidKeyEncoding,
    SignatureVerificationFailed,
    NotFound,
    ReplayDetected,
    DecryptError,
    AuthenticationFailure,
    SessionClosed,
    SessionExhausted,
)

logging.getLogger(__name__).addHandler(logging.NullHandler())

__version__ = "0.1.0"
__all__ = [
    # Constants
    "VERSION",
    "KEY_LEN",
    "NONCE_LEN",
    "TAG_LEN",
    "SESSION_SALT",
    "SESSION_INFO",
    "TRANSCRIPT_CONTEXT",
    # Types
    "ProtocolConfig",
    "KeyPair",
    "PublicKeySet",
    "SharedSecretPair",
    "HandshakeMessage",
    "EncryptedMessage",
    "encode_envelope",
    "decode_envelope",
    # Primitives
    "Provider",
    "X25519KeyAgreement",
    "Kyber768Kem",
    "DemoKem",
    "Dilithium3Signer",
    "HkdfSha256",
    "AesGcmAead",
    "ChaCha20Poly1305Aead",
    # KDF
    "combine_secrets",
    "derive_session_key",
    "SessionKey",
    # Keys
    "Identity",
    "KeyManager",
    # Handshake
    "HandshakeEngine",
    "build_transcript",
    # Messages
    "MessageCipher",
    "default_aad",
    "Session",
    # Collaborators
    "KeyDirectory",
    "InMemoryKeyDirectory",
    "Mailbox",
    "InMemoryMailbox",
    "Client",
    "Delivery",
    # Errors
    "SpruceError",
    "ConfigError",
    "HandshakeError",
    "InvalidKeyEncoding",
    "SignatureVerificationFailed",
    "NotFound",
    "ReplayDetected",
    "DecryptError",
    "AuthenticationFailure",
    "SessionClosed",
    "SessionExhausted",
]
