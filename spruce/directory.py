"""Identity lookup: maps a user id to its published public keys."""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Dict

from .error import NotFound
from .types import PublicKeySet

log = logging.getLogger(__name__)


class KeyDirectory(ABC):
    @abstractmethod
    def publish(self, public_keys: PublicKeySet) -> None:
        ...

    @abstractmethod
    def get_public_keys(self, user_id: str) -> PublicKeySet:
        """
        Raises:
            NotFound: If the user id is unknown
        """


class InMemoryKeyDirectory(KeyDirectory):
    """Process-local directory, keyed by user id."""

    def __init__(self):
        self._lock = threading.Lock()
        self._keys: Dict[str, PublicKeySet] = {}

    def publish(self, public_keys: PublicKeySet) -> None:
        """Publish (or replace) the public keys of one identity."""
        with self._lock:
            self._keys[public_keys.user_id] = public_keys
        log.info("published public keys for %s", public_keys.user_id)

    def get_public_keys(self, user_id: str) -> PublicKeySet:
        with self._lock:
            keys = self._keys.get(user_id)
        if keys is None:
            raise NotFound(f"Unknown user {user_id!r}")
        return keys
