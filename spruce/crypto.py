"""Message cipher: AEAD under an established session key."""

import logging
from typing import Tuple, Union

from .error import AuthenticationFailure
from .kdf import SessionKey
from .primitives import Provider, rand_bytes
from .types import EncryptedMessage

log = logging.getLogger(__name__)

KeyLike = Union[SessionKey, bytes]


def default_aad(sender: str, recipient: str) -> bytes:
    """Associated data binding a message to its sender and recipient."""
    return f"{sender}|{recipient}".encode("utf-8")


def _key_bytes(key: KeyLike) -> bytes:
    if isinstance(key, SessionKey):
        return key.key
    return bytes(key)


class MessageCipher:
    """
    Encrypts and decrypts payloads with the provider's AEAD.

    Nonces are always fresh random values drawn here; callers cannot supply
    one for encryption.
    """

    def __init__(self, provider: Provider):
        self.provider = provider

    def encrypt(self, plaintext: bytes, session_key: KeyLike, aad: bytes = b"") -> Tuple[bytes, bytes]:
        """
        Encrypt plaintext.

        Returns:
            Tuple of (ciphertext_with_tag, nonce)
        """
        nonce = rand_bytes(self.provider.nonce_len)
        ct = self.provider.aead_encrypt(_key_bytes(session_key), nonce, bytes(plaintext), bytes(aad))
        return ct, nonce

    def decrypt(self, ciphertext: bytes, nonce: bytes, aad: bytes, session_key: KeyLike) -> bytes:
        """
        Decrypt and authenticate.

        Raises:
            AuthenticationFailure: On a bad tag, truncated input or wrong key
        """
        return self.provider.aead_decrypt(_key_bytes(session_key), bytes(nonce), bytes(ciphertext), bytes(aad))

    def seal(
        self,
        session_key: KeyLike,
        plaintext: Union[bytes, str],
        aad: bytes = b"",
        sender: str = "",
        recipient: str = "",
    ) -> EncryptedMessage:
        """Encrypt plaintext into an EncryptedMessage."""
        if isinstance(plaintext, str):
            plaintext = plaintext.encode("utf-8")
        ct, nonce = self.encrypt(plaintext, session_key, aad)
        msg = EncryptedMessage(sender=sender, recipient=recipient, ciphertext=ct, nonce=nonce, aad=bytes(aad))
        log.debug("sealed message %s (%d bytes)", msg.message_id, len(ct))
        return msg

    def open(self, session_key: KeyLike, msg: EncryptedMessage) -> bytes:
        """
        Decrypt an EncryptedMessage.

        Raises:
            AuthenticationFailure: If the message does not authenticate
        """
        try:
            pt = self.decrypt(msg.ciphertext, msg.nonce, msg.aad, session_key)
        except AuthenticationFailure:
            log.warning("message %s from %s failed authentication", msg.message_id, msg.sender)
            raise
        log.debug("opened message %s", msg.message_id)
        return pt
