"""Session management for the Spruce protocol."""

import logging
import threading
import time
from typing import Callable, Optional, Union

from .crypto import MessageCipher, default_aad
from .error import AuthenticationFailure, SessionClosed, SessionExhausted
from .kdf import SessionKey
from .types import EncryptedMessage, ProtocolConfig

log = logging.getLogger(__name__)


class Session:
    """One established session between a local user and a peer."""

    def __init__(
        self,
        session_key: SessionKey,
        local_id: str,
        peer_id: str,
        cipher: MessageCipher,
        config: Optional[ProtocolConfig] = None,
        is_initiator: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        """
        Create a session around a derived key.

        Args:
            session_key: Key from the handshake; the session owns and closes it
            local_id: Our user id
            peer_id: Peer's user id
            cipher: Message cipher to seal/open with
            config: Protocol configuration (message limit, timeout)
            is_initiator: Whether we started the handshake
            clock: Seconds since the epoch, compared against the key's created_at
        """
        self._lock = threading.Lock()
        self._key = session_key
        self._cipher = cipher
        self._config = config or ProtocolConfig.default()
        self._clock = clock
        self._ns: int = 0
        self._nr: int = 0
        self.local_id = local_id
        self.peer_id = peer_id
        self.is_initiator = is_initiator

    @property
    def handshake_id(self) -> str:
        return self._key.handshake_id

    @property
    def closed(self) -> bool:
        return self._key.closed

    @property
    def expired(self) -> bool:
        timeout = self._config.session_timeout
        return timeout is not None and self._clock() - self._key.created_at >= timeout

    def _check_live(self) -> None:
        # Caller holds self._lock
        if not self._key.closed and self.expired:
            self._key.close()
            log.info("session %s with %s expired", self.handshake_id, self.peer_id)
        if self._key.closed:
            raise SessionClosed("Session closed: new handshake required")

    @property
    def sent(self) -> int:
        with self._lock:
            return self._ns

    @property
    def received(self) -> int:
        with self._lock:
            return self._nr

    def seal(self, pt: Union[bytes, str], aad: Optional[bytes] = None) -> EncryptedMessage:
        """
        Encrypt a message to the peer.

        Args:
            pt: Plaintext
            aad: Associated data; defaults to "local|peer"

        Raises:
            SessionExhausted: If the per-key message limit is reached
            SessionClosed: If the session was closed or has expired
        """
        if aad is None:
            aad = default_aad(self.local_id, self.peer_id)
        with self._lock:
            self._check_live()
            if self._ns >= self._config.max_messages_per_session:
                raise SessionExhausted("Session exhausted: new handshake required")
            msg = self._cipher.seal(self._key, pt, aad, sender=self.local_id, recipient=self.peer_id)
            self._ns += 1
            return msg

    def open(self, msg: EncryptedMessage) -> bytes:
        """
        Decrypt a message from the peer.

        Raises:
            AuthenticationFailure: If the message is not from the peer to us,
                or does not authenticate
            SessionClosed: If the session was closed or has expired
        """
        with self._lock:
            self._check_live()
            if msg.sender != self.peer_id or msg.recipient != self.local_id:
                log.warning("message %s not addressed to this session", msg.message_id)
                raise AuthenticationFailure("Decryption failed")
            pt = self._cipher.open(self._key, msg)
            self._nr += 1
            return pt

    def close(self) -> None:
        """Destroy the session key."""
        with self._lock:
            if not self._key.closed:
                self._key.close()
                log.info("session %s with %s closed", self.handshake_id, self.peer_id)

    def __enter__(self) -> "Session":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"Session({self.local_id!r} <-> {self.peer_id!r}, handshake_id={self.handshake_id!r})"
