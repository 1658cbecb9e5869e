"""
Client: one user's identity, sessions, and mailbox traffic.

Ties the key manager, handshake engine and sessions to the external key
directory and mailbox. Each peer has at most one live session; a new
handshake with that peer closes and replaces the old one.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Dict, List, Optional, Union

from .crypto import MessageCipher
from .directory import KeyDirectory
from .error import AuthenticationFailure, SessionClosed, SpruceError
from .handshake import HandshakeEngine
from .keys import Identity, KeyManager
from .mailbox import Mailbox
from .primitives import Provider
from .session import Session
from .types import EncryptedMessage, HandshakeMessage, ProtocolConfig, PublicKeySet, decode_envelope

log = logging.getLogger(__name__)

HANDSHAKE = "handshake"
MESSAGE = "message"
# Item that could not be decoded from its wire form
MALFORMED = "malformed"


@dataclass(frozen=True)
class Delivery:
    """Outcome of processing one drained mailbox item."""

    kind: str
    sender: str
    plaintext: Optional[bytes] = None
    error: Optional[SpruceError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class Client:
    def __init__(
        self,
        user_id: str,
        provider: Provider,
        directory: KeyDirectory,
        mailbox: Mailbox,
        config: Optional[ProtocolConfig] = None,
        identity: Optional[Identity] = None,
    ):
        self.user_id = user_id
        self.provider = provider
        self.directory = directory
        self.mailbox = mailbox
        self.config = config or ProtocolConfig.default()
        self.engine = HandshakeEngine(provider, directory, self.config)
        self.cipher = MessageCipher(provider)
        self.identity = identity or KeyManager(provider).generate_identity()
        self._lock = threading.Lock()
        self._sessions: Dict[str, Session] = {}
        directory.publish(self.public_keys)

    @property
    def public_keys(self) -> PublicKeySet:
        return self.identity.public_keys(self.user_id)

    def session(self, peer_id: str) -> Optional[Session]:
        with self._lock:
            return self._sessions.get(peer_id)

    def _install(self, session: Session) -> None:
        with self._lock:
            old = self._sessions.get(session.peer_id)
            self._sessions[session.peer_id] = session
        if old is not None:
            old.close()
            log.info("session with %s superseded by handshake %s", session.peer_id, session.handshake_id)

    def connect(self, peer_id: str) -> HandshakeMessage:
        """
        Start a handshake with peer_id and deliver it.

        Raises:
            NotFound: If peer_id has no published keys
        """
        msg, key = self.engine.initiate_handshake(
            self.user_id, peer_id, self.identity.signature.private,
        )
        self._install(Session(key, self.user_id, peer_id, self.cipher, self.config, is_initiator=True))
        self.mailbox.deliver(peer_id, msg)
        return msg

    def send(self, peer_id: str, plaintext: Union[bytes, str], aad: Optional[bytes] = None) -> EncryptedMessage:
        """
        Seal and deliver a message to peer_id.

        Raises:
            SessionClosed: If there is no live session with peer_id
        """
        session = self.session(peer_id)
        if session is None or session.closed:
            raise SessionClosed(f"No session with {peer_id!r}; connect first")
        msg = session.seal(plaintext, aad)
        self.mailbox.deliver(peer_id, msg)
        return msg

    def accept(self, msg: HandshakeMessage) -> Session:
        """Accept a handshake, looking up the sender's verification key."""
        peer_keys = self.directory.get_public_keys(msg.sender)
        key = self.engine.accept_handshake(msg, self.identity, peer_keys.signature_pub, self_id=self.user_id)
        session = Session(key, self.user_id, msg.sender, self.cipher, self.config, is_initiator=False)
        self._install(session)
        return session

    def receive(self, msg: EncryptedMessage) -> bytes:
        """Open a message from an existing session."""
        session = self.session(msg.sender)
        if session is None or session.closed:
            raise AuthenticationFailure("Decryption failed")
        return session.open(msg)

    def poll(self) -> List[Delivery]:
        """
        Drain the mailbox and process every item in order.

        Failures are returned per item; a bad item never hides the rest.
        """
        results: List[Delivery] = []
        for wire in self.mailbox.drain(self.user_id):
            try:
                item = decode_envelope(wire)
            except SpruceError as e:
                log.warning("malformed mailbox item for %s: %s", self.user_id, type(e).__name__)
                results.append(Delivery(MALFORMED, "", error=e))
                continue
            if isinstance(item, HandshakeMessage):
                try:
                    self.accept(item)
                    results.append(Delivery(HANDSHAKE, item.sender))
                except SpruceError as e:
                    results.append(Delivery(HANDSHAKE, item.sender, error=e))
            else:
                try:
                    results.append(Delivery(MESSAGE, item.sender, plaintext=self.receive(item)))
                except SpruceError as e:
                    results.append(Delivery(MESSAGE, item.sender, error=e))
        return results

    def close(self) -> None:
        """Close every session."""
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            session.close()

    def __enter__(self) -> "Client":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
