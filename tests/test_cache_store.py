import pytest
from datetime import timedelta

from skids_sync.core.connectivity import ConnectivityState
from skids_sync.core.exceptions import (
    StoreInitializationError,
    StoreNotInitializedError,
    UnknownEntityError,
    UnknownIndexError,
)
from skids_sync.crud.cache import LocalCacheStore
from skids_sync.database.engine import make_engine
from skids_sync.models.cache import SyncAction


class TestSave:
    def test_save_online_sets_synced_at(self, store, clock):
        record = store.save("children", "child-1", {"id": "child-1", "name": "Asha", "parentId": "p-1"})

        assert record.id == "child-1"
        assert record.collection == "children"
        assert record.cached_at == clock.now
        assert record.synced_at == clock.now

    def test_save_offline_leaves_synced_at_empty(self, store, sync_engine):
        sync_engine.connectivity.is_online = False

        record = store.save("children", "child-1", {"id": "child-1", "name": "Asha"})

        assert record.synced_at is None

    def test_save_overwrites_existing_record(self, store, clock):
        store.save("children", "child-1", {"id": "child-1", "name": "Asha"})
        clock.advance(minutes=10)

        store.save("children", "child-1", {"id": "child-1", "name": "Asha R."})
        record = store.get("children", "child-1")

        assert record.payload["name"] == "Asha R."
        assert record.cached_at == clock.now
        assert len(store.get_all("children")) == 1

    def test_offline_overwrite_clears_previous_sync(self, store, sync_engine):
        store.save("children", "child-1", {"id": "child-1", "name": "Asha"})
        sync_engine.connectivity.is_online = False

        store.save("children", "child-1", {"id": "child-1", "name": "Edited offline"})

        assert store.get("children", "child-1").synced_at is None

    def test_save_unknown_collection(self, store):
        with pytest.raises(UnknownEntityError):
            store.save("pets", "pet-1", {"id": "pet-1"})


class TestReads:
    def test_get_missing_returns_none(self, store):
        assert store.get("appointments", "nope") is None

    def test_get_all_returns_every_record(self, store):
        for i in range(3):
            store.save("campaigns", f"c-{i}", {"id": f"c-{i}", "title": f"Campaign {i}"})

        records = store.get_all("campaigns")

        assert {r.id for r in records} == {"c-0", "c-1", "c-2"}

    def test_get_by_index(self, store):
        store.save("appointments", "a-1", {"id": "a-1", "childId": "child-1", "scheduledAt": "2026-11-01T10:00:00Z"})
        store.save("appointments", "a-2", {"id": "a-2", "childId": "child-2", "scheduledAt": "2026-11-02T10:00:00Z"})
        store.save("appointments", "a-3", {"id": "a-3", "childId": "child-1", "scheduledAt": "2026-11-03T10:00:00Z"})

        records = store.get_by_index("appointments", "by-child", "child-1")

        assert sorted(r.id for r in records) == ["a-1", "a-3"]

    def test_get_by_index_follows_payload_changes(self, store):
        store.save("reports", "r-1", {"id": "r-1", "childId": "child-1"})
        store.save("reports", "r-1", {"id": "r-1", "childId": "child-2"})

        assert store.get_by_index("reports", "by-child", "child-1") == []
        assert [r.id for r in store.get_by_index("reports", "by-child", "child-2")] == ["r-1"]

    def test_get_by_unknown_index(self, store):
        with pytest.raises(UnknownIndexError):
            store.get_by_index("campaigns", "by-child", "child-1")

    def test_delete(self, store):
        store.save("messages", "m-1", {"id": "m-1", "content": "hi"})

        assert store.delete("messages", "m-1") is True
        assert store.delete("messages", "m-1") is False
        assert store.get("messages", "m-1") is None


class TestSaveMany:
    def test_save_many_marks_records_synced(self, store, clock, sync_engine):
        sync_engine.connectivity.is_online = False
        store.save("children", "child-1", {"id": "child-1", "name": "Offline edit"})
        pulled_at = clock.now + timedelta(minutes=5)

        written = store.save_many(
            "children",
            [{"id": "child-1", "name": "Server"}, {"id": "child-2", "name": "Other"}],
            synced_at=pulled_at,
        )

        assert written == 2
        assert store.get("children", "child-1").payload["name"] == "Server"
        assert all(r.synced_at == pulled_at for r in store.get_all("children"))

    def test_save_many_skips_payloads_without_id(self, store):
        written = store.save_many("campaigns", [{"title": "no id"}, {"id": 7, "title": "numeric id"}])

        assert written == 1
        assert store.get("campaigns", "7") is not None


class TestMetadata:
    def test_metadata_starts_empty(self, store):
        metadata = store.get_metadata()
        assert metadata.last_sync_at is None
        assert metadata.last_online_at is None

    def test_set_and_read_timestamps(self, store, clock):
        store.set_last_sync_at()
        clock.advance(minutes=1)
        store.set_last_online_at()

        metadata = store.get_metadata()
        assert metadata.last_sync_at == clock.now - timedelta(minutes=1)
        assert metadata.last_online_at == clock.now


class TestClearAll:
    def test_clear_all_wipes_everything(self, store, queue):
        store.save("children", "child-1", {"id": "child-1"})
        store.save("appointments", "a-1", {"id": "a-1", "childId": "child-1"})
        store.save("messages", "m-1", {"id": "m-1"})
        queue.enqueue("appointment", SyncAction.CREATE, {"childId": "child-1"})
        store.set_last_sync_at()

        store.clear_all()

        for collection in ("children", "appointments", "reports", "campaigns", "messages"):
            assert store.get_all(collection) == []
        assert queue.list_pending() == []
        assert store.get_metadata().last_sync_at is None
        assert store.has_data() is False

    def test_clear_store_only_touches_one_collection(self, store):
        store.save("children", "child-1", {"id": "child-1"})
        store.save("campaigns", "c-1", {"id": "c-1"})

        store.clear_store("children")

        assert store.get_all("children") == []
        assert len(store.get_all("campaigns")) == 1


class TestLifecycle:
    def test_use_before_init_raises(self):
        store = LocalCacheStore(make_engine("sqlite://"), ConnectivityState())

        with pytest.raises(StoreNotInitializedError):
            store.get_all("children")

    def test_init_failure_is_fatal(self, tmp_path):
        missing_dir = tmp_path / "does-not-exist" / "cache.db"
        store = LocalCacheStore(make_engine(f"sqlite:///{missing_dir}"), ConnectivityState())

        with pytest.raises(StoreInitializationError):
            store.init()
        assert store.is_initialized is False

    def test_teardown_wipes_and_closes(self, store):
        store.save("children", "child-1", {"id": "child-1"})

        store.teardown()

        assert store.is_initialized is False
        with pytest.raises(StoreNotInitializedError):
            store.get_all("children")

        store.init()
        assert store.get_all("children") == []
