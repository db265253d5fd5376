"""Contract tests shared by the record store adapters."""

import pytest

from store.base import ARCHIVES, MACHINES
from store.memory_store import InMemoryRecordStore
from store.sqlite_store import SQLiteRecordStore


@pytest.fixture(params=["memory", "sqlite"])
def record_store(request):
    if request.param == "memory":
        yield InMemoryRecordStore()
    else:
        store = SQLiteRecordStore(":memory:")
        yield store
        store.close()


class TestRecordStoreContract:
    def test_upsert_and_load(self, record_store):
        record_store.upsert("o1", {"id": "a", "location": "R-1"})
        record_store.upsert("o1", {"id": "b", "location": "R-2"})
        assert [r["id"] for r in record_store.load("o1")] == ["a", "b"]

    def test_upsert_merges_by_id(self, record_store):
        record_store.upsert("o1", {"id": "a", "location": "R-1", "extra": "kept"})
        record_store.upsert("o1", {"id": "a", "location": "R-9"})
        assert record_store.load("o1") == [{"id": "a", "location": "R-9", "extra": "kept"}]

    def test_owner_and_collection_scoping(self, record_store):
        record_store.upsert("o1", {"id": "a"})
        record_store.upsert("o2", {"id": "b"})
        record_store.upsert("o1", {"id": "c"}, ARCHIVES)
        assert [r["id"] for r in record_store.load("o1", MACHINES)] == ["a"]
        assert [r["id"] for r in record_store.load("o1", ARCHIVES)] == ["c"]
        assert [r["id"] for r in record_store.load("o2")] == ["b"]

    def test_delete_missing_is_not_an_error(self, record_store):
        record_store.delete("o1", "nope")
        record_store.upsert("o1", {"id": "a"})
        record_store.delete("o1", "a")
        assert record_store.load("o1") == []

    def test_subscribe_receives_snapshots(self, record_store):
        snapshots = []
        unsubscribe = record_store.subscribe("o1", snapshots.append)

        record_store.upsert("o1", {"id": "a"})
        record_store.upsert("o2", {"id": "other"})
        unsubscribe()
        record_store.upsert("o1", {"id": "b"})

        assert snapshots == [[{"id": "a"}]]

    def test_failing_listener_does_not_break_writes(self, record_store):
        def broken(snapshot):
            raise RuntimeError("listener bug")

        record_store.subscribe("o1", broken)
        record_store.upsert("o1", {"id": "a"})
        assert len(record_store.load("o1")) == 1


class TestSQLiteDurability:
    def test_reopen_keeps_records(self, tmp_path):
        path = str(tmp_path / "records.db")
        first = SQLiteRecordStore(path)
        first.upsert("o1", {"id": "a", "data": {"kvp": "70"}})
        first.close()

        second = SQLiteRecordStore(path)
        assert second.load("o1") == [{"id": "a", "data": {"kvp": "70"}}]
        assert second.count("o1") == 1
        second.close()
