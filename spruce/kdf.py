"""Key derivation functions using HKDF-SHA256."""

import logging
import time
from typing import Callable, Optional

from Crypto.Hash import SHA256
from Crypto.Protocol.KDF import HKDF

from .error import SessionClosed
from .types import KEY_LEN, SESSION_INFO, SESSION_SALT, zero_bytes

log = logging.getLogger(__name__)


def hkdf(ikm: bytes, salt: bytes, info: bytes, length: int = KEY_LEN) -> bytes:
    """HKDF-SHA256 extract-and-expand."""
    return HKDF(ikm, length, salt=salt, num_keys=1, hashmod=SHA256, context=info)


def combine_secrets(ecdh_secret: bytes, kem_secret: bytes) -> bytes:
    """
    Pre-hash the two handshake secrets into one 32-byte seed.

    seed = SHA256(ecdh_secret || kem_secret)

    The order is fixed: ECDH first, KEM second.
    """
    h = SHA256.new()
    h.update(bytes(ecdh_secret))
    h.update(bytes(kem_secret))
    return h.digest()


def derive_session_key(
    ecdh_secret: bytes,
    kem_secret: bytes,
    salt: bytes = SESSION_SALT,
    info: bytes = SESSION_INFO,
    kdf: Callable[[bytes, bytes, bytes, int], bytes] = hkdf,
) -> bytes:
    """
    Derive the hybrid session key.

    session_key = HKDF(SHA256(ecdh_secret || kem_secret), salt, info, 32)

    Args:
        ecdh_secret: X25519 shared secret
        kem_secret: KEM shared secret
        salt: Domain-separation salt
        info: Domain-separation info
        kdf: Extract-and-expand function, HKDF-SHA256 unless a provider supplies one

    Returns:
        32-byte session key
    """
    seed = combine_secrets(ecdh_secret, kem_secret)
    return kdf(seed, salt, info, KEY_LEN)


class SessionKey:
    """
    Symmetric key of one established session.

    The key bytes live in a bytearray that close() overwrites; use it as a
    context manager so the overwrite happens on scope exit.
    """

    def __init__(self, key: bytes, handshake_id: str, created_at: Optional[float] = None):
        self._key = bytearray(key)
        self.handshake_id = handshake_id
        self.created_at = created_at if created_at is not None else time.time()
        self._closed = False

    @property
    def key(self) -> bytes:
        if self._closed:
            raise SessionClosed("Session key destroyed")
        return bytes(self._key)

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        if self._closed:
            return
        zero_bytes(self._key)
        self._closed = True
        log.debug("session key for handshake %s destroyed", self.handshake_id)

    def __enter__(self) -> "SessionKey":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def __len__(self) -> int:
        return len(self._key)

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"SessionKey(handshake_id={self.handshake_id!r}, {state})"
