"""
Durable JSON file storage backend.

Every mutation is appended to a per-table write-ahead log and fsynced before
the in-memory view is updated. Once the log grows past a threshold, the
table is compacted into a snapshot written atomically (temp file, fsync,
rename) and the log is truncated. Startup loads the snapshot and replays the
log; a torn trailing line left by a crash is discarded.
"""

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Dict, Optional

from accessctl.core.errors import StorageError
from accessctl.storage.base import TABLES, KeyValueStore

logger = logging.getLogger(__name__)


class JSONFileStore(KeyValueStore):
    """Write-ahead logged, snapshot-compacted JSON store."""

    def __init__(self, data_dir: Path, compact_threshold: int = 1000, fsync: bool = True):
        """Initialize the store.

        Args:
            data_dir: Directory holding snapshots and logs. Created if missing.
            compact_threshold: Log entries per table before compaction.
            fsync: Whether to fsync log appends and snapshots.
        """
        self.data_dir = Path(data_dir)
        self.compact_threshold = compact_threshold
        self.fsync = fsync
        self._tables: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._wal_counts: Dict[str, int] = {}
        self._locks: Dict[str, threading.Lock] = {table: threading.Lock() for table in TABLES}

        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot create data directory {self.data_dir}: {e}") from e

        for table in TABLES:
            self._tables[table] = self._load_table(table)

    def _snapshot_path(self, table: str) -> Path:
        return self.data_dir / f"{table}.snapshot.json"

    def _wal_path(self, table: str) -> Path:
        return self.data_dir / f"{table}.wal"

    def _load_table(self, table: str) -> Dict[str, Dict[str, Any]]:
        records: Dict[str, Dict[str, Any]] = {}
        snapshot = self._snapshot_path(table)
        if snapshot.exists():
            try:
                with open(snapshot, 'r', encoding='utf8') as file:
                    records = json.load(file)
            except (OSError, ValueError) as e:
                raise StorageError(f"Corrupt snapshot {snapshot}: {e}") from e

        replayed = 0
        wal = self._wal_path(table)
        if wal.exists():
            with open(wal, 'r', encoding='utf8') as file:
                lines = file.readlines()
            for index, line in enumerate(lines):
                try:
                    entry = json.loads(line)
                except ValueError:
                    if index == len(lines) - 1:
                        logger.warning(f"Discarding torn log record at end of {wal}")
                        break
                    raise StorageError(f"Corrupt log record {index + 1} in {wal}")
                if entry["op"] == "put":
                    records[entry["key"]] = entry["value"]
                else:
                    records.pop(entry["key"], None)
                replayed += 1

        self._wal_counts[table] = replayed
        if replayed:
            logger.info(f"Replayed {replayed} log records for table {table}")
        return records

    def _append(self, table: str, entry: Dict[str, Any]) -> None:
        line = json.dumps(entry, separators=(",", ":"), default=str)
        try:
            with open(self._wal_path(table), 'a', encoding='utf8') as file:
                file.write(line + "\n")
                file.flush()
                if self.fsync:
                    os.fsync(file.fileno())
        except OSError as e:
            raise StorageError(f"Failed to append to {table} log: {e}") from e

        self._wal_counts[table] += 1

    def get(self, table: str, key: str) -> Optional[Dict[str, Any]]:
        self._check_table(table)
        with self._locks[table]:
            value = self._tables[table].get(key)
            return json.loads(json.dumps(value)) if value is not None else None

    def put(self, table: str, key: str, value: Dict[str, Any]) -> None:
        self._check_table(table)
        with self._locks[table]:
            self._append(table, {"op": "put", "key": key, "value": value})
            self._tables[table][key] = json.loads(json.dumps(value, default=str))
            self._maybe_compact(table)

    def delete(self, table: str, key: str) -> bool:
        self._check_table(table)
        with self._locks[table]:
            if key not in self._tables[table]:
                return False
            self._append(table, {"op": "delete", "key": key})
            del self._tables[table][key]
            self._maybe_compact(table)
            return True

    def list(self, table: str) -> Dict[str, Dict[str, Any]]:
        self._check_table(table)
        with self._locks[table]:
            return json.loads(json.dumps(self._tables[table]))

    def _maybe_compact(self, table: str) -> None:
        if self._wal_counts[table] >= self.compact_threshold:
            self._compact_locked(table)

    def compact(self, table: Optional[str] = None) -> None:
        """Write snapshots and truncate logs for one table or all of them."""
        for name in ([table] if table else TABLES):
            with self._locks[name]:
                self._compact_locked(name)

    def _compact_locked(self, table: str) -> None:
        snapshot = self._snapshot_path(table)
        try:
            fd, tmp_path = tempfile.mkstemp(dir=self.data_dir, prefix=f".{table}.", suffix=".tmp")
            with os.fdopen(fd, 'w', encoding='utf8') as file:
                json.dump(self._tables[table], file, separators=(",", ":"))
                file.flush()
                if self.fsync:
                    os.fsync(file.fileno())
            os.replace(tmp_path, snapshot)
            with open(self._wal_path(table), 'w', encoding='utf8'):
                pass
        except OSError as e:
            raise StorageError(f"Failed to compact table {table}: {e}") from e

        self._wal_counts[table] = 0
        logger.debug(f"Compacted table {table} ({len(self._tables[table])} records)")

    def close(self) -> None:
        self.compact()
