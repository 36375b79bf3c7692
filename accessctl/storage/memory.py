"""In-memory storage backend."""

import copy
import threading
from collections import defaultdict
from typing import Any, Dict, Optional

from accessctl.storage.base import KeyValueStore


class InMemoryStore(KeyValueStore):
    """Process-local store; values are deep-copied on the way in and out."""

    def __init__(self):
        self._tables: Dict[str, Dict[str, Dict[str, Any]]] = defaultdict(dict)
        self._lock = threading.Lock()

    def get(self, table: str, key: str) -> Optional[Dict[str, Any]]:
        self._check_table(table)
        with self._lock:
            value = self._tables[table].get(key)
            return copy.deepcopy(value) if value is not None else None

    def put(self, table: str, key: str, value: Dict[str, Any]) -> None:
        self._check_table(table)
        with self._lock:
            self._tables[table][key] = copy.deepcopy(value)

    def delete(self, table: str, key: str) -> bool:
        self._check_table(table)
        with self._lock:
            return self._tables[table].pop(key, None) is not None

    def list(self, table: str) -> Dict[str, Dict[str, Any]]:
        self._check_table(table)
        with self._lock:
            return copy.deepcopy(self._tables[table])
