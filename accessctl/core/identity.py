"""
Identity store adapters.

The engine never owns user records. It reads them through ``IdentityStore``;
the upsert helpers exist so embedding services and tests can sync users in.
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional

from accessctl.models.access import User
from accessctl.storage.base import KeyValueStore

logger = logging.getLogger(__name__)


class IdentityStore(ABC):
    """Read-only view of the identity collaborator."""

    @abstractmethod
    def get_user(self, user_id: str) -> Optional[User]:
        """Return the user record, or None if unknown."""

    @abstractmethod
    def list_users(self) -> List[User]:
        """Return every known user."""


class InMemoryIdentityStore(IdentityStore):
    """Process-local identity store."""

    def __init__(self, users: Optional[Iterable[User]] = None):
        self._users: Dict[str, User] = {}
        self._lock = threading.Lock()
        for user in users or []:
            self.upsert_user(user)

    def get_user(self, user_id: str) -> Optional[User]:
        return self._users.get(user_id)

    def list_users(self) -> List[User]:
        return list(self._users.values())

    def upsert_user(self, user: User) -> User:
        with self._lock:
            users = dict(self._users)
            users[user.id] = user
            self._users = users
        return user

    def remove_user(self, user_id: str) -> bool:
        with self._lock:
            if user_id not in self._users:
                return False
            users = dict(self._users)
            del users[user_id]
            self._users = users
        return True


class StorageIdentityStore(IdentityStore):
    """Identity store backed by the ``users`` table of a ``KeyValueStore``."""

    TABLE = "users"

    def __init__(self, store: KeyValueStore):
        self.store = store

    def get_user(self, user_id: str) -> Optional[User]:
        data = self.store.get(self.TABLE, user_id)
        if data is None:
            return None
        return User.model_validate(data)

    def list_users(self) -> List[User]:
        return [User.model_validate(data) for data in self.store.list(self.TABLE).values()]

    def upsert_user(self, user: User) -> User:
        self.store.put(self.TABLE, user.id, user.model_dump(mode="json"))
        logger.debug(f"Synced user {user.id} into identity table")
        return user

    def remove_user(self, user_id: str) -> bool:
        return self.store.delete(self.TABLE, user_id)
