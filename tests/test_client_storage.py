"""
Client Storage Tests
====================

Tests for local durable storage, the task cache and the queue document.
"""

import sys
import threading
from datetime import date

import pytest

from taskflow.client.cache import LocalTaskCache
from taskflow.client.errors import StorageError
from taskflow.client.models import ClientTask, LocalRef, RemoteRef, TaskDraft, CreateOperation
from taskflow.client.queue import PendingOperationQueue
from taskflow.client.storage import (
    FileKeyValueStore,
    MemoryKeyValueStore,
    StorageKeys,
    open_store,
)
from taskflow.client.workspace import Preferences, TaskWorkspace, Theme


class TestFileStore:

    def test_round_trip_and_delete(self, tmp_path):
        store = FileKeyValueStore(tmp_path)

        assert store.set("taskflow.theme", "dark")
        assert store.get("taskflow.theme") == "dark"
        assert store.delete("taskflow.theme")
        assert store.get("taskflow.theme", "light") == "light"
        assert not store.delete("taskflow.theme")

    def test_corrupt_value_reads_as_default(self, tmp_path):
        store = FileKeyValueStore(tmp_path)
        (tmp_path / "taskflow.theme.json").write_text("{not json", encoding="utf-8")

        assert store.get("taskflow.theme", "light") == "light"

    def test_unwritable_location_reports_failure(self, tmp_path):
        blocker = tmp_path / "occupied"
        blocker.write_text("", encoding="utf-8")
        store = FileKeyValueStore(blocker / "store")

        assert store.set("taskflow.theme", "dark") is False
        assert store.get("taskflow.theme", "light") == "light"

    def test_update_is_read_modify_write(self, tmp_path):
        store = FileKeyValueStore(tmp_path)

        store.update("counter", lambda n: n + 1, default=0)
        persisted = store.update("counter", lambda n: n + 1, default=0)

        assert persisted is True
        assert store.get("counter") == 2

    def test_update_reports_failed_write(self, tmp_path):
        blocker = tmp_path / "occupied"
        blocker.write_text("", encoding="utf-8")
        store = FileKeyValueStore(blocker / "store")

        assert store.update("counter", lambda n: n + 1, default=0) is False

    @pytest.mark.skipif(sys.platform == "win32", reason="flock is POSIX only")
    def test_updates_from_separate_stores_are_not_lost(self, tmp_path):
        stores = [FileKeyValueStore(tmp_path) for _ in range(4)]

        def bump(store):
            for _ in range(25):
                store.update("counter", lambda n: n + 1, default=0)

        threads = [threading.Thread(target=bump, args=(s,)) for s in stores]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert FileKeyValueStore(tmp_path).get("counter") == 100

    def test_keys_are_sanitised(self, tmp_path):
        store = FileKeyValueStore(tmp_path)

        store.set(StorageKeys.task_cache("../evil/acct"), [])

        assert [p.name for p in tmp_path.glob("*.json")] == ["taskflow.cache..._evil_acct.json"]

    def test_open_store_picks_backend(self, tmp_path):
        assert isinstance(open_store(None), MemoryKeyValueStore)
        assert isinstance(open_store(tmp_path), FileKeyValueStore)


class TestTaskCache:

    def test_malformed_entries_are_dropped(self):
        store = MemoryKeyValueStore()
        store.set(StorageKeys.task_cache("acct"), [
            {"ref": {"kind": "remote", "server_id": 1}, "title": "Ok", "due_date": "2026-10-17"},
            {"ref": {"kind": "remote", "server_id": 2}, "title": "", "due_date": "2026-10-17"},
            "junk",
        ])

        tasks = LocalTaskCache(store, "acct").read()

        assert [t.title for t in tasks] == ["Ok"]

    def test_caches_are_per_account(self):
        store = MemoryKeyValueStore()
        task = ClientTask(ref=RemoteRef(server_id=1), title="Mine", due_date=date(2026, 10, 17))

        LocalTaskCache(store, "a").write([task])

        assert LocalTaskCache(store, "b").read() == []


class TestQueueDocument:

    def _create(self, temp_id=1):
        return CreateOperation(
            ref=LocalRef(temp_id=temp_id),
            draft=TaskDraft.build(title="A", due_date="2026-10-17"),
        )

    def test_persisted_shape(self):
        store = MemoryKeyValueStore()
        queue = PendingOperationQueue(store, "acct")

        queue.enqueue(self._create())

        document = store.get(StorageKeys.pending_queue("acct"))
        assert document["resolved"] == {}
        assert document["operations"][0]["op"] == "create"
        assert document["operations"][0]["ref"] == {"kind": "local", "temp_id": 1}

    def test_pop_head_records_mapping(self):
        queue = PendingOperationQueue(MemoryKeyValueStore(), "acct")
        create = self._create()
        queue.enqueue(create)

        assert queue.pop_head(create, server_id=7)

        state = queue.load()
        assert state.operations == []
        assert state.resolved == {"1": 7}

    def test_pop_head_refuses_other_operation(self):
        queue = PendingOperationQueue(MemoryKeyValueStore(), "acct")
        queue.enqueue(self._create(1))

        assert not queue.pop_head(self._create(2), server_id=9)
        assert len(queue) == 1

    def test_pop_head_raises_when_write_fails(self, tmp_path):
        store = FileKeyValueStore(tmp_path)
        queue = PendingOperationQueue(store, "acct")
        create = self._create()
        queue.enqueue(create)
        store.directory = tmp_path / "missing" / "nested"
        (tmp_path / "missing").write_text("", encoding="utf-8")

        with pytest.raises(StorageError):
            queue.pop_head(create, server_id=7)

    def test_unreadable_operations_are_dropped(self):
        store = MemoryKeyValueStore()
        store.set(StorageKeys.pending_queue("acct"), {
            "operations": [{"op": "explode"}, {"op": "delete", "target": {"kind": "remote", "server_id": 3}}],
            "resolved": {"5": "not-an-int"},
        })

        state = PendingOperationQueue(store, "acct").load()

        assert len(state.operations) == 1
        assert state.resolved == {}


class TestGuestMode:

    async def _load(self, store):
        workspace = TaskWorkspace(store)
        await workspace.load()
        return workspace

    @pytest.mark.asyncio
    async def test_tasks_persist_between_sessions(self):
        store = MemoryKeyValueStore()
        first = await self._load(store)
        task = await first.create_task("Read", "2026-10-17", priority="LOW")
        await first.toggle_task(task.ref)

        second = await self._load(store)

        assert len(second.tasks) == 1
        assert second.tasks[0].completed
        assert second.tasks[0].priority.value == "LOW"
        assert second.mode == "guest"

    @pytest.mark.asyncio
    async def test_delete_persists(self):
        store = MemoryKeyValueStore()
        first = await self._load(store)
        task = await first.create_task("Read", "2026-10-17")
        await first.delete_task(task.ref)

        second = await self._load(store)

        assert second.tasks == []

    @pytest.mark.asyncio
    async def test_stored_data_is_parsed_tolerantly(self):
        store = MemoryKeyValueStore()
        store.set(StorageKeys.GUEST_TASKS, [
            {"ref": {"kind": "local", "temp_id": 1}, "title": "Read", "due_date": "2026-10-17",
             "due_time": "09:00", "completed": False, "priority": "LOW"},
            {"ref": {"kind": "local", "temp_id": 2}, "title": "Odd", "due_date": "2026-10-18",
             "priority": "URGENT"},
            {"title": ""},
            "junk",
        ])

        workspace = await self._load(store)

        assert [t.title for t in workspace.tasks] == ["Read", "Odd"]
        assert workspace.tasks[1].priority.value == "MEDIUM"

    @pytest.mark.asyncio
    async def test_not_a_list_reads_as_empty(self):
        store = MemoryKeyValueStore()
        store.set(StorageKeys.GUEST_TASKS, {"oops": True})

        workspace = await self._load(store)

        assert workspace.tasks == []


class TestPreferences:

    def test_theme_defaults_and_persists(self):
        store = MemoryKeyValueStore()
        preferences = Preferences(store)

        assert preferences.theme is Theme.LIGHT
        preferences.theme = "dark"

        assert Preferences(store).theme is Theme.DARK

    def test_unknown_theme_falls_back(self):
        store = MemoryKeyValueStore()
        store.set(StorageKeys.THEME, "purple")

        assert Preferences(store).theme is Theme.LIGHT
