"""Tests for the key/value storage backends."""

import pytest

from vpnguard.config import VPNGuardConfig
from vpnguard.storage import JsonFileStorage, MemoryStorage, SqlStorage, create_storage


@pytest.fixture(params=["memory", "json", "sqlite"])
def backend(request, tmp_path):
    if request.param == "memory":
        yield MemoryStorage()
    elif request.param == "json":
        yield JsonFileStorage(tmp_path / "state" / "vpnguard.json")
    else:
        storage = SqlStorage(f"sqlite:///{tmp_path / 'vpnguard.db'}")
        yield storage
        storage.close()


class TestBackends:
    def test_missing_key(self, backend):
        assert backend.get_item("nope") is None

    def test_set_get_overwrite(self, backend):
        backend.set_item("prefs", '{"a": 1}')
        backend.set_item("prefs", '{"a": 2}')
        assert backend.get_item("prefs") == '{"a": 2}'

    def test_remove(self, backend):
        backend.set_item("prefs", "{}")
        backend.remove_item("prefs")
        backend.remove_item("prefs")
        assert backend.get_item("prefs") is None

    def test_keys_independent(self, backend):
        backend.set_item("a", "1")
        backend.set_item("b", "2")
        backend.remove_item("a")
        assert backend.get_item("b") == "2"


class TestJsonFileStorage:
    def test_survives_reopen(self, tmp_path):
        path = tmp_path / "vpnguard.json"
        JsonFileStorage(path).set_item("k", "v")
        assert JsonFileStorage(path).get_item("k") == "v"
        assert not list(tmp_path.glob(".*.tmp"))

    def test_corrupt_file_raises(self, tmp_path):
        path = tmp_path / "vpnguard.json"
        path.write_text("[1, 2, 3]", encoding="utf-8")
        with pytest.raises(ValueError):
            JsonFileStorage(path).get_item("k")


class TestSqlStorage:
    def test_survives_reopen(self, tmp_path):
        url = f"sqlite:///{tmp_path / 'vpnguard.db'}"
        first = SqlStorage(url)
        first.set_item("k", "v")
        first.close()

        second = SqlStorage(url)
        assert second.get_item("k") == "v"
        second.close()


class TestCreateStorage:
    def test_memory(self):
        assert isinstance(create_storage(VPNGuardConfig(storage_backend="memory")), MemoryStorage)

    def test_json(self, tmp_path):
        storage = create_storage(VPNGuardConfig(storage_path=str(tmp_path / "s.json")))
        assert isinstance(storage, JsonFileStorage)

    def test_sqlite(self, tmp_path):
        storage = create_storage(VPNGuardConfig(
            storage_backend="sqlite",
            database_url=f"sqlite:///{tmp_path / 'x.db'}",
        ))
        assert isinstance(storage, SqlStorage)
        storage.close()
