"""
Storage backends for the access-control engine.

This module provides the storage interface and its implementations:
- InMemoryStore: process-local, for tests and embedding
- JSONFileStore: write-ahead log + snapshot compaction on local disk
"""

from pathlib import Path

from accessctl.storage.base import TABLES, KeyValueStore
from accessctl.storage.file import JSONFileStore
from accessctl.storage.memory import InMemoryStore


def create_store(backend: str = "memory", data_dir: str = "data", compact_threshold: int = 1000,
                 fsync: bool = True) -> KeyValueStore:
    """Create a storage backend by name ("memory" or "file")."""
    if backend == "memory":
        return InMemoryStore()
    if backend == "file":
        return JSONFileStore(Path(data_dir), compact_threshold=compact_threshold, fsync=fsync)
    raise ValueError(f"Unknown storage backend '{backend}'")


__all__ = [
    "TABLES",
    "KeyValueStore",
    "InMemoryStore",
    "JSONFileStore",
    "create_store",
]
