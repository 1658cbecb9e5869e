"""Store-and-forward relay for handshakes and messages."""

import logging
import threading
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Dict, List

from .types import Envelope, encode_envelope

log = logging.getLogger(__name__)


class Mailbox(ABC):
    @abstractmethod
    def deliver(self, recipient_id: str, msg: Envelope) -> None:
        ...

    @abstractmethod
    def drain(self, user_id: str) -> List[str]:
        """
        Remove and return the wire form of everything queued for user_id,
        oldest first. Decoding is left to the recipient so one malformed
        item cannot take the rest of the batch with it.
        """


class InMemoryMailbox(Mailbox):
    """
    Per-recipient FIFO queues.

    Only the base64/JSON wire form is stored, so nothing but public
    fields ever sits in the relay.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._queues: Dict[str, List[str]] = defaultdict(list)

    def deliver(self, recipient_id: str, msg: Envelope) -> None:
        wire = encode_envelope(msg)
        with self._lock:
            self._queues[recipient_id].append(wire)
        log.debug("relayed %s from %s to %s", type(msg).__name__, msg.sender, recipient_id)

    def drain(self, user_id: str) -> List[str]:
        with self._lock:
            queued = self._queues.pop(user_id, [])
        if queued:
            log.debug("drained %d item(s) for %s", len(queued), user_id)
        return queued

    def pending(self) -> Dict[str, int]:
        """Queue depth per recipient."""
        with self._lock:
            return {user: len(items) for user, items in self._queues.items() if items}
