"""Unit tests for storage backends."""

import json

import pytest

from accessctl.core.errors import StorageError
from accessctl.storage import create_store
from accessctl.storage.file import JSONFileStore
from accessctl.storage.memory import InMemoryStore


@pytest.fixture(params=["memory", "file"])
def kv_store(request, temp_directory):
    """Each backend behind the same interface."""
    if request.param == "memory":
        yield InMemoryStore()
    else:
        store = JSONFileStore(temp_directory, compact_threshold=1000, fsync=False)
        yield store
        store.close()


class TestKeyValueContract:
    """Test cases shared by every storage backend."""

    def test_store_put_get_delete(self, kv_store):
        kv_store.put("roles", "r1", {"id": "r1", "name": "One"})

        assert kv_store.get("roles", "r1") == {"id": "r1", "name": "One"}
        assert kv_store.list("roles") == {"r1": {"id": "r1", "name": "One"}}
        assert kv_store.delete("roles", "r1") is True
        assert kv_store.delete("roles", "r1") is False
        assert kv_store.get("roles", "r1") is None

    def test_store_returns_copies(self, kv_store):
        """Test callers cannot mutate stored records in place."""
        kv_store.put("roles", "r1", {"id": "r1", "tags": ["a"]})
        record = kv_store.get("roles", "r1")
        record["tags"].append("b")

        assert kv_store.get("roles", "r1")["tags"] == ["a"]

    def test_store_unknown_table(self, kv_store):
        with pytest.raises(ValueError):
            kv_store.put("widgets", "w1", {})

    def test_create_store(self, temp_directory):
        assert isinstance(create_store("memory"), InMemoryStore)
        store = create_store("file", data_dir=str(temp_directory), fsync=False)
        assert isinstance(store, JSONFileStore)
        with pytest.raises(ValueError):
            create_store("redis")


class TestJSONFileStore:
    """Test cases for write-ahead logging and compaction."""

    def test_wal_replay_after_restart(self, temp_directory):
        """Test a new store replays the log of a store that was never closed."""
        store = JSONFileStore(temp_directory, fsync=False)
        store.put("roles", "r1", {"id": "r1"})
        store.put("roles", "r2", {"id": "r2"})
        store.delete("roles", "r1")

        reopened = JSONFileStore(temp_directory, fsync=False)
        assert reopened.list("roles") == {"r2": {"id": "r2"}}

    def test_torn_wal_line_is_discarded(self, temp_directory):
        """Test a partial trailing record from a crash is ignored."""
        store = JSONFileStore(temp_directory, fsync=False)
        store.put("roles", "r1", {"id": "r1"})
        with open(temp_directory / "roles.wal", "a", encoding="utf8") as file:
            file.write('{"op":"put","key":"r2","val')

        reopened = JSONFileStore(temp_directory, fsync=False)
        assert reopened.list("roles") == {"r1": {"id": "r1"}}

    def test_corrupt_wal_middle_line(self, temp_directory):
        """Test corruption before the last record is a hard error."""
        with open(temp_directory / "roles.wal", "w", encoding="utf8") as file:
            file.write("not json\n")
            file.write(json.dumps({"op": "put", "key": "r1", "value": {}}) + "\n")

        with pytest.raises(StorageError):
            JSONFileStore(temp_directory, fsync=False)

    def test_compaction(self, temp_directory):
        """Test the log is folded into a snapshot once it reaches the threshold."""
        store = JSONFileStore(temp_directory, compact_threshold=3, fsync=False)
        for index in range(4):
            store.put("roles", f"r{index}", {"id": f"r{index}"})

        snapshot = json.loads((temp_directory / "roles.snapshot.json").read_text())
        assert set(snapshot) == {"r0", "r1", "r2"}
        wal_lines = (temp_directory / "roles.wal").read_text().splitlines()
        assert len(wal_lines) == 1

        reopened = JSONFileStore(temp_directory, fsync=False)
        assert set(reopened.list("roles")) == {"r0", "r1", "r2", "r3"}

    def test_close_compacts_everything(self, temp_directory):
        store = JSONFileStore(temp_directory, fsync=False)
        store.put("config", "access_control", {"default_user_role": "tenant"})
        store.close()

        assert (temp_directory / "config.wal").read_text() == ""
        reopened = JSONFileStore(temp_directory, fsync=False)
        assert reopened.get("config", "access_control") == {"default_user_role": "tenant"}

    def test_corrupt_snapshot(self, temp_directory):
        (temp_directory / "roles.snapshot.json").write_text("{broken")
        with pytest.raises(StorageError):
            JSONFileStore(temp_directory, fsync=False)
