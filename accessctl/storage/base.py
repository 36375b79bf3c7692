"""
Persistence interface for the access-control engine.

The engine only needs get/put/delete/list semantics over a handful of
logical tables, each keyed by the natural id of its records. Values are
JSON-compatible dictionaries.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

TABLES = (
    "users",
    "roles",
    "role_assignments",
    "access_requests",
    "audit_log",
    "security_policies",
    "config",
)


class KeyValueStore(ABC):
    """Abstract base class for engine storage backends."""

    @abstractmethod
    def get(self, table: str, key: str) -> Optional[Dict[str, Any]]:
        """Get a record by key, or None."""

    @abstractmethod
    def put(self, table: str, key: str, value: Dict[str, Any]) -> None:
        """Insert or replace a record."""

    @abstractmethod
    def delete(self, table: str, key: str) -> bool:
        """Delete a record. Returns True if it existed."""

    @abstractmethod
    def list(self, table: str) -> Dict[str, Dict[str, Any]]:
        """Return a snapshot of every record in a table."""

    def close(self) -> None:
        """Release backend resources."""

    @staticmethod
    def _check_table(table: str) -> None:
        if table not in TABLES:
            raise ValueError(f"Unknown table '{table}'")
