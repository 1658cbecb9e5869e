"""Key material manager: long-term identities."""

import logging
import threading
from dataclasses import dataclass

from .primitives import Provider
from .types import KeyPair, PublicKeySet

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    """The three long-term key pairs of one user.

    Also serves as the responder's private context during a handshake:
    its ECDH private key and KEM key pair are what accept_handshake needs.
    """

    ecdh: KeyPair
    kem: KeyPair
    signature: KeyPair

    def public_keys(self, user_id: str) -> PublicKeySet:
        """Public halves, ready to publish to a key directory."""
        return PublicKeySet(
            user_id=user_id,
            ecdh_pub=self.ecdh.public,
            kem_pub=self.kem.public,
            signature_pub=self.signature.public,
        )


class KeyManager:
    """Generates identities from a provider."""

    def __init__(self, provider: Provider):
        self._provider = provider
        self._lock = threading.Lock()

    def generate_identity(self) -> Identity:
        """
        Generate fresh ECDH, KEM and signature key pairs.

        Returns:
            A new Identity; nothing is persisted
        """
        with self._lock:
            identity = Identity(
                ecdh=self._provider.ecdh_generate(),
                kem=self._provider.kem_generate(),
                signature=self._provider.signature_generate(),
            )
        log.info(
            "generated identity keys (%s, %s, %s)",
            identity.ecdh.algorithm, identity.kem.algorithm, identity.signature.algorithm,
        )
        return identity
