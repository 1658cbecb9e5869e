"""
Primitive provider: X25519, Kyber768, Dilithium3, HKDF-SHA256 and AEAD.

Each primitive sits behind a small abstract base so a Provider can be
assembled from any combination. Providers are plain objects handed to the
handshake engine and message cipher; nothing is registered globally.
"""

import logging
import os
from abc import ABC, abstractmethod
from typing import Tuple

from Crypto.Cipher import AES, ChaCha20_Poly1305
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey, X25519PublicKey
from dilithium_py.dilithium import Dilithium3
from kyber_py.kyber import Kyber768

from .error import AuthenticationFailure, InvalidKeyEncoding
from .kdf import hkdf
from .types import (
    DEMO_KEM_SALT,
    DILITHIUM3_PRIVATE_KEY_SIZE,
    DILITHIUM3_PUBLIC_KEY_SIZE,
    DILITHIUM3_SIGNATURE_SIZE,
    KEY_LEN,
    KYBER768_CIPHERTEXT_SIZE,
    KYBER768_PUBLIC_KEY_SIZE,
    NONCE_LEN,
    TAG_LEN,
    X25519_PRIVATE_KEY_SIZE,
    X25519_PUBLIC_KEY_SIZE,
    KeyPair,
    ProtocolConfig,
)

log = logging.getLogger(__name__)


def rand_bytes(n: int) -> bytes:
    """Generate n random bytes using OS-provided secure random."""
    return os.urandom(n)


def _check_len(name: str, value: bytes, expected: int) -> None:
    if not isinstance(value, (bytes, bytearray)) or len(value) != expected:
        got = len(value) if isinstance(value, (bytes, bytearray)) else type(value).__name__
        raise InvalidKeyEncoding(f"{name} must be {expected} bytes, got {got}")


# ============================================================================
# Key agreement
# ============================================================================

class KeyAgreement(ABC):
    algorithm: str

    @abstractmethod
    def generate(self) -> KeyPair:
        ...

    @abstractmethod
    def agree(self, own_private: bytes, peer_public: bytes) -> bytes:
        ...


class X25519KeyAgreement(KeyAgreement):
    algorithm = "x25519"

    def generate(self) -> KeyPair:
        private_key = X25519PrivateKey.generate()
        return KeyPair(
            algorithm=self.algorithm,
            public=private_key.public_key().public_bytes_raw(),
            private=private_key.private_bytes_raw(),
        )

    def agree(self, own_private: bytes, peer_public: bytes) -> bytes:
        """
        Compute the X25519 shared secret.

        Raises:
            InvalidKeyEncoding: If either key has the wrong length or the
                peer point yields the all-zero secret
        """
        _check_len("X25519 private key", own_private, X25519_PRIVATE_KEY_SIZE)
        _check_len("X25519 public key", peer_public, X25519_PUBLIC_KEY_SIZE)
        private_key = X25519PrivateKey.from_private_bytes(bytes(own_private))
        public_key = X25519PublicKey.from_public_bytes(bytes(peer_public))
        try:
            return private_key.exchange(public_key)
        except ValueError as e:
            raise InvalidKeyEncoding(f"X25519 agreement failed: {e}")


# ============================================================================
# Key encapsulation
# ============================================================================

class Kem(ABC):
    algorithm: str

    @abstractmethod
    def generate(self) -> KeyPair:
        ...

    @abstractmethod
    def encapsulate(self, peer_public: bytes) -> Tuple[bytes, bytes]:
        """Return (shared_secret, ciphertext)."""

    @abstractmethod
    def decapsulate(self, own: KeyPair, ciphertext: bytes) -> bytes:
        """Recover the shared secret from our own KEM key pair and the ciphertext."""


class Kyber768Kem(Kem):
    """Kyber768 with decapsulation under the private key."""

    algorithm = "kyber768"

    def generate(self) -> KeyPair:
        public_key, private_key = Kyber768.keygen()
        return KeyPair(algorithm=self.algorithm, public=public_key, private=private_key)

    def encapsulate(self, peer_public: bytes) -> Tuple[bytes, bytes]:
        _check_len("Kyber768 public key", peer_public, KYBER768_PUBLIC_KEY_SIZE)
        try:
            shared_secret, ciphertext = Kyber768.encaps(bytes(peer_public))
        except ValueError as e:
            raise InvalidKeyEncoding(f"Kyber768 encapsulation failed: {e}")
        return shared_secret, ciphertext

    def decapsulate(self, own: KeyPair, ciphertext: bytes) -> bytes:
        _check_len("Kyber768 ciphertext", ciphertext, KYBER768_CIPHERTEXT_SIZE)
        try:
            return Kyber768.decaps(own.private, bytes(ciphertext))
        except ValueError as e:
            raise InvalidKeyEncoding(f"Kyber768 decapsulation failed: {e}")


class DemoKem(Kem):
    """
    Compatibility KEM matching the deployed demo clients.

    The ciphertext is random and the secret is HKDF(ciphertext || public key),
    so decapsulation needs only the public half of the key pair. Anyone who
    holds the ciphertext and the published key can recompute the secret; the
    hybrid session is then only as strong as its X25519 half. Use
    Kyber768Kem wherever interop with those clients is not needed.
    """

    algorithm = "spruce-demo-kem"
    key_size = 32
    ciphertext_size = KYBER768_CIPHERTEXT_SIZE

    def generate(self) -> KeyPair:
        return KeyPair(
            algorithm=self.algorithm,
            public=rand_bytes(self.key_size),
            private=rand_bytes(self.key_size),
        )

    def _derive(self, ciphertext: bytes, public: bytes) -> bytes:
        return hkdf(bytes(ciphertext) + bytes(public), DEMO_KEM_SALT, b"", KEY_LEN)

    def encapsulate(self, peer_public: bytes) -> Tuple[bytes, bytes]:
        _check_len("demo KEM public key", peer_public, self.key_size)
        ciphertext = rand_bytes(self.ciphertext_size)
        return self._derive(ciphertext, peer_public), ciphertext

    def decapsulate(self, own: KeyPair, ciphertext: bytes) -> bytes:
        _check_len("demo KEM ciphertext", ciphertext, self.ciphertext_size)
        _check_len("demo KEM public key", own.public, self.key_size)
        return self._derive(ciphertext, own.public)


# ============================================================================
# Signatures
# ============================================================================

class Signer(ABC):
    algorithm: str

    @abstractmethod
    def generate(self) -> KeyPair:
        ...

    @abstractmethod
    def sign(self, message: bytes, signing_key: bytes) -> bytes:
        ...

    @abstractmethod
    def verify(self, message: bytes, signature: bytes, verification_key: bytes) -> bool:
        ...


class Dilithium3Signer(Signer):
    algorithm = "dilithium3"

    def generate(self) -> KeyPair:
        public_key, private_key = Dilithium3.keygen()
        return KeyPair(algorithm=self.algorithm, public=public_key, private=private_key)

    def sign(self, message: bytes, signing_key: bytes) -> bytes:
        _check_len("Dilithium3 private key", signing_key, DILITHIUM3_PRIVATE_KEY_SIZE)
        return Dilithium3.sign(bytes(signing_key), bytes(message))

    def verify(self, message: bytes, signature: bytes, verification_key: bytes) -> bool:
        """Verify a signature. Malformed input is a failed verification, not an error."""
        if len(verification_key) != DILITHIUM3_PUBLIC_KEY_SIZE:
            return False
        if len(signature) != DILITHIUM3_SIGNATURE_SIZE:
            return False
        try:
            return bool(Dilithium3.verify(bytes(verification_key), bytes(message), bytes(signature)))
        except (ValueError, IndexError) as e:
            log.debug("Dilithium3 verify rejected malformed input: %s", type(e).__name__)
            return False


# ============================================================================
# KDF
# ============================================================================

class Kdf(ABC):
    @abstractmethod
    def derive(self, ikm: bytes, salt: bytes, info: bytes, length: int) -> bytes:
        ...


class HkdfSha256(Kdf):
    def derive(self, ikm: bytes, salt: bytes, info: bytes, length: int) -> bytes:
        return hkdf(bytes(ikm), salt, info, length)


# ============================================================================
# AEAD
# ============================================================================

class Aead(ABC):
    algorithm: str
    key_len: int = KEY_LEN
    nonce_len: int = NONCE_LEN
    tag_len: int = TAG_LEN

    @abstractmethod
    def _new(self, key: bytes, nonce: bytes):
        ...

    def encrypt(self, key: bytes, nonce: bytes, plaintext: bytes, associated_data: bytes) -> bytes:
        """
        Return ciphertext || tag.

        Raises:
            InvalidKeyEncoding: If the key or nonce has the wrong length
        """
        if len(key) != self.key_len:
            raise InvalidKeyEncoding(f"{self.algorithm} requires a {self.key_len}-byte key")
        if len(nonce) != self.nonce_len:
            raise InvalidKeyEncoding(f"{self.algorithm} requires a {self.nonce_len}-byte nonce")
        cipher = self._new(key, nonce)
        cipher.update(associated_data)
        ciphertext, tag = cipher.encrypt_and_digest(plaintext)
        return ciphertext + tag

    def decrypt(self, key: bytes, nonce: bytes, ciphertext: bytes, associated_data: bytes) -> bytes:
        """
        Verify and decrypt ciphertext || tag.

        Raises:
            AuthenticationFailure: On any failure; the reason is not reported
        """
        if (len(key) != self.key_len or len(nonce) != self.nonce_len
                or len(ciphertext) < self.tag_len):
            raise AuthenticationFailure("Decryption failed")
        cipher = self._new(key, nonce)
        cipher.update(associated_data)
        try:
            return cipher.decrypt_and_verify(ciphertext[:-self.tag_len], ciphertext[-self.tag_len:])
        except ValueError:
            raise AuthenticationFailure("Decryption failed") from None


class AesGcmAead(Aead):
    algorithm = "aes-256-gcm"

    def _new(self, key: bytes, nonce: bytes):
        return AES.new(bytes(key), AES.MODE_GCM, nonce=nonce, mac_len=self.tag_len)


class ChaCha20Poly1305Aead(Aead):
    algorithm = "chacha20-poly1305"

    def _new(self, key: bytes, nonce: bytes):
        return ChaCha20_Poly1305.new(key=bytes(key), nonce=nonce)


# ============================================================================
# Provider
# ============================================================================

_KEMS = {"kyber768": Kyber768Kem, "demo": DemoKem}
_AEADS = {"aes-256-gcm": AesGcmAead, "chacha20-poly1305": ChaCha20Poly1305Aead}


class Provider:
    """One ECDH, KEM, signature scheme, KDF and AEAD behind fixed operations."""

    def __init__(
        self,
        key_agreement: KeyAgreement,
        kem: Kem,
        signer: Signer,
        kdf: Kdf,
        aead: Aead,
    ):
        self.key_agreement = key_agreement
        self.kem = kem
        self.signer = signer
        self.kdf_impl = kdf
        self.aead = aead

    @classmethod
    def default(cls) -> "Provider":
        """X25519 + Kyber768 + Dilithium3 + HKDF-SHA256 + AES-256-GCM."""
        return cls.from_config(ProtocolConfig.default())

    @classmethod
    def from_config(cls, config: ProtocolConfig) -> "Provider":
        config.validate()
        return cls(
            key_agreement=X25519KeyAgreement(),
            kem=_KEMS[config.kem](),
            signer=Dilithium3Signer(),
            kdf=HkdfSha256(),
            aead=_AEADS[config.aead](),
        )

    @property
    def nonce_len(self) -> int:
        return self.aead.nonce_len

    def ecdh_generate(self) -> KeyPair:
        return self.key_agreement.generate()

    def ecdh_agree(self, own_private: bytes, peer_public: bytes) -> bytes:
        return self.key_agreement.agree(own_private, peer_public)

    def kem_generate(self) -> KeyPair:
        return self.kem.generate()

    def kem_encapsulate(self, peer_public: bytes) -> Tuple[bytes, bytes]:
        return self.kem.encapsulate(peer_public)

    def kem_decapsulate(self, own: KeyPair, ciphertext: bytes) -> bytes:
        return self.kem.decapsulate(own, ciphertext)

    def signature_generate(self) -> KeyPair:
        return self.signer.generate()

    def sign(self, message: bytes, signing_key: bytes) -> bytes:
        return self.signer.sign(message, signing_key)

    def verify(self, message: bytes, signature: bytes, verification_key: bytes) -> bool:
        return self.signer.verify(message, signature, verification_key)

    def kdf(self, ikm: bytes, salt: bytes, info: bytes, length: int) -> bytes:
        return self.kdf_impl.derive(ikm, salt, info, length)

    def aead_encrypt(self, key: bytes, nonce: bytes, plaintext: bytes, associated_data: bytes) -> bytes:
        return self.aead.encrypt(key, nonce, plaintext, associated_data)

    def aead_decrypt(self, key: bytes, nonce: bytes, ciphertext: bytes, associated_data: bytes) -> bytes:
        return self.aead.decrypt(key, nonce, ciphertext, associated_data)

    def __repr__(self) -> str:
        return (
            f"Provider({self.key_agreement.algorithm}, {self.kem.algorithm}, "
            f"{self.signer.algorithm}, {self.aead.algorithm})"
        )
