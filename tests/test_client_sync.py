"""
Offline Sync Tests
==================

Tests for the client workspace, pending operation queue and reconciler:
- direct server calls while synced
- optimistic changes queued while offline and replayed on reconnect
- placeholder identities resolved to server ids
- flush no-ops, partial failures and concurrent mutations
"""

import asyncio
from datetime import date

import pytest

from taskflow.client.connectivity import ConnectivityMonitor, SyncState
from taskflow.client.errors import NotFoundError, TaskValidationError
from taskflow.client.models import (
    DeleteOperation,
    LocalRef,
    RemoteRef,
    TaskChanges,
    UpdateOperation,
)
from taskflow.client.storage import MemoryKeyValueStore
from taskflow.client.workspace import TaskWorkspace

from fake_api import FakeTaskApi

ACCOUNT = "acct-1"


class FailingStore(MemoryKeyValueStore):
    """Memory store whose writes can be switched off."""

    fail_writes = False

    def set(self, key, value):
        if self.fail_writes:
            return False
        return super().set(key, value)


def _workspace(api, online=True, store=None, **kwargs):
    monitor = ConnectivityMonitor(online=online)
    workspace = TaskWorkspace(
        store or MemoryKeyValueStore(),
        api=api,
        account_id=ACCOUNT,
        monitor=monitor,
        **kwargs,
    )
    return workspace, monitor


def _snapshot(tasks):
    return sorted(
        (t.title, t.description, t.due_date, t.due_time, t.completed, t.priority)
        for t in tasks
    )


def _calls(api, name):
    return [call for call in api.calls if call[0] == name]


async def _wait_until_flushing(workspace):
    while not workspace.reconciler.flushing:
        await asyncio.sleep(0)


async def _edit_session(workspace):
    """A fixed sequence of edits applied to a fresh workspace."""
    a = await workspace.create_task("Plan trip", "2026-10-18", "08:00")
    b = await workspace.create_task("Pay rent", "2026-10-17", "09:00", priority="HIGH")
    await workspace.update_task(a.ref, title="Plan holiday", description="Beach?")
    await workspace.toggle_task(b.ref)
    c = await workspace.create_task("Temporary", "2026-10-19")
    await workspace.delete_task(c.ref)
    d = await workspace.create_task("Call bank", "2026-10-17", "07:30", description="Card")
    await workspace.update_task(d.ref, description=None)


class TestDirectMode:

    @pytest.mark.asyncio
    async def test_create_goes_straight_to_server(self):
        api = FakeTaskApi()
        workspace, _ = _workspace(api)
        await workspace.load()

        task = await workspace.create_task(" Buy milk ", "2026-10-17")

        assert task.ref == RemoteRef(server_id=1)
        assert task.title == "Buy milk"
        assert api.titles() == ["Buy milk"]
        assert workspace.queue.is_empty()
        assert workspace.sync_state is SyncState.SYNCED

    @pytest.mark.asyncio
    async def test_failed_call_falls_back_to_queue(self):
        api = FakeTaskApi()
        workspace, _ = _workspace(api)
        await workspace.load()
        api.unreachable = True

        task = await workspace.create_task("Buy milk", "2026-10-17")

        assert isinstance(task.ref, LocalRef)
        assert len(workspace.queue) == 1
        assert workspace.sync_state is SyncState.OFFLINE_QUEUED

        api.unreachable = False
        result = await workspace.flush()

        assert result.completed
        assert api.titles() == ["Buy milk"]
        assert workspace.get(task.ref).ref == RemoteRef(server_id=1)

    @pytest.mark.asyncio
    async def test_server_rejection_rolls_back(self):
        api = FakeTaskApi()
        api.reject_titles = {"Bad"}
        workspace, _ = _workspace(api)
        await workspace.load()

        with pytest.raises(TaskValidationError):
            await workspace.create_task("Bad", "2026-10-17")

        assert workspace.tasks == []
        assert workspace.queue.is_empty()

    @pytest.mark.asyncio
    async def test_update_of_task_deleted_elsewhere(self):
        api = FakeTaskApi()
        workspace, _ = _workspace(api)
        await workspace.load()
        task = await workspace.create_task("Shared", "2026-10-17")
        del api.tasks[task.ref.server_id]

        with pytest.raises(NotFoundError):
            await workspace.update_task(task.ref, completed=True)

        assert workspace.tasks == []


class TestValidation:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("fields, message", [
        ({"title": "   ", "due_date": "2026-10-17"}, "Title cannot be empty."),
        ({"title": "Run", "due_date": "2026-10-17", "due_time": "25:00"}, "Invalid due time value."),
        ({"title": "Run", "due_date": "not-a-date"}, None),
    ])
    async def test_invalid_create_changes_nothing(self, fields, message):
        api = FakeTaskApi()
        workspace, _ = _workspace(api, online=False)
        await workspace.load()

        with pytest.raises(TaskValidationError) as exc_info:
            await workspace.create_task(**fields)

        if message:
            assert exc_info.value.message == message
        assert workspace.tasks == []
        assert workspace.queue.is_empty()
        assert api.calls == []

    @pytest.mark.asyncio
    async def test_update_without_fields_is_rejected(self):
        workspace, _ = _workspace(FakeTaskApi(), online=False)
        await workspace.load()
        task = await workspace.create_task("Run", "2026-10-17")

        with pytest.raises(TaskValidationError, match="No valid fields provided."):
            await workspace.update_task(task.ref)

        assert len(workspace.queue) == 1


class TestOfflineReplay:

    @pytest.mark.asyncio
    async def test_replay_matches_direct_edits(self):
        online_api = FakeTaskApi()
        direct, _ = _workspace(online_api)
        await direct.load()
        await _edit_session(direct)

        offline_api = FakeTaskApi()
        queued, monitor = _workspace(offline_api, online=False)
        await queued.load()
        await _edit_session(queued)

        assert offline_api.calls == []
        assert _snapshot(queued.tasks) == _snapshot(direct.tasks)

        await monitor.set_online(True)

        assert _snapshot(offline_api.tasks.values()) == _snapshot(online_api.tasks.values())
        assert queued.tasks == await offline_api.list()
        assert queued.queue.is_empty()
        assert queued.sync_state is SyncState.SYNCED

    @pytest.mark.asyncio
    async def test_create_then_update_hits_one_server_task(self):
        api = FakeTaskApi()
        workspace, monitor = _workspace(api, online=False)
        await workspace.load()

        draft = await workspace.create_task("Draft", "2026-10-17")
        await workspace.update_task(draft.ref, title="Final")
        await monitor.set_online(True)

        assert api.titles() == ["Final"]
        assert _calls(api, "create") == [("create", "Draft")]
        assert _calls(api, "update") == [("update", 1)]

    @pytest.mark.asyncio
    async def test_create_then_delete_leaves_nothing(self):
        api = FakeTaskApi()
        workspace, monitor = _workspace(api, online=False)
        await workspace.load()

        task = await workspace.create_task("Oops", "2026-10-17")
        await workspace.delete_task(task.ref)
        await monitor.set_online(True)

        assert api.tasks == {}
        assert _calls(api, "delete") == [("delete", 1)]
        assert workspace.tasks == []

    @pytest.mark.asyncio
    async def test_state_is_rebuilt_after_restart(self):
        api = FakeTaskApi()
        store = MemoryKeyValueStore()
        first, monitor = _workspace(api, store=store)
        await first.load()
        await first.create_task("Synced", "2026-10-17")
        await monitor.set_online(False)
        await first.create_task("Queued", "2026-10-18")

        second, _ = _workspace(api, online=False, store=store)
        tasks = await second.load()

        assert [t.title for t in tasks] == ["Synced", "Queued"]
        assert isinstance(tasks[1].ref, LocalRef)

    @pytest.mark.asyncio
    async def test_placeholder_ids_are_not_reused_after_restart(self):
        store = MemoryKeyValueStore()
        first, _ = _workspace(FakeTaskApi(), online=False, store=store)
        await first.load()
        a = await first.create_task("A", "2026-10-17")

        second, _ = _workspace(FakeTaskApi(), online=False, store=store)
        await second.load()
        b = await second.create_task("B", "2026-10-17")

        assert b.ref.temp_id > a.ref.temp_id
        assert len(second.queue) == 2


class TestFlushNoOps:

    @pytest.mark.asyncio
    async def test_offline_flush_does_nothing(self):
        api = FakeTaskApi()
        workspace, _ = _workspace(api, online=False)
        await workspace.load()
        await workspace.create_task("A", "2026-10-17")

        result = await workspace.flush()

        assert result.skipped
        assert api.calls == []
        assert len(workspace.queue) == 1

    @pytest.mark.asyncio
    async def test_empty_queue_flush_does_nothing(self):
        api = FakeTaskApi()
        workspace, _ = _workspace(api)
        await workspace.load()
        api.calls.clear()

        result = await workspace.flush()

        assert result.skipped
        assert api.calls == []

    @pytest.mark.asyncio
    async def test_unauthenticated_flush_does_nothing(self):
        api = FakeTaskApi()
        workspace, monitor = _workspace(api, online=False)
        await workspace.load()
        await workspace.create_task("A", "2026-10-17")
        workspace.auth_required = True

        await monitor.set_online(True)
        result = await workspace.flush()

        assert result.skipped
        assert api.calls == []

    @pytest.mark.asyncio
    async def test_second_flush_while_running_is_a_no_op(self):
        api = FakeTaskApi()
        workspace, monitor = _workspace(api, online=False)
        await workspace.load()
        await workspace.create_task("A", "2026-10-17")
        await workspace.create_task("B", "2026-10-18")

        api.gate = asyncio.Event()
        running = asyncio.create_task(monitor.set_online(True))
        await _wait_until_flushing(workspace)

        second = await workspace.flush()
        api.gate.set()
        await running

        assert second.skipped
        assert _calls(api, "create") == [("create", "A"), ("create", "B")]
        assert api.titles() == ["A", "B"]


class TestFlushFailures:

    @pytest.mark.asyncio
    async def test_network_drop_keeps_remainder_and_mapping(self):
        api = FakeTaskApi()
        workspace, monitor = _workspace(api, online=False)
        await workspace.load()
        a = await workspace.create_task("A", "2026-10-17")
        await workspace.create_task("B", "2026-10-18")
        await workspace.create_task("C", "2026-10-19")

        api.budget = 1
        await monitor.set_online(True)

        state = workspace.queue.load()
        assert api.titles() == ["A"]
        assert len(state.operations) == 2
        assert state.resolved == {str(a.ref.temp_id): 1}
        assert workspace.sync_state is SyncState.OFFLINE_QUEUED
        assert len(workspace.tasks) == 3

        api.budget = None
        result = await workspace.flush()

        assert result.completed
        assert result.replayed == 2
        assert api.titles() == ["A", "B", "C"]

    @pytest.mark.asyncio
    async def test_restart_after_partial_flush_keeps_replayed_tasks(self):
        api = FakeTaskApi()
        store = MemoryKeyValueStore()
        workspace, monitor = _workspace(api, online=False, store=store)
        await workspace.load()
        await workspace.create_task("A", "2026-10-17")
        b = await workspace.create_task("B", "2026-10-18")
        await workspace.update_task(b.ref, title="B2")

        api.budget = 1
        await monitor.set_online(True)

        restarted, _ = _workspace(api, online=False, store=store)
        tasks = await restarted.load()

        assert [t.title for t in tasks] == ["A", "B2"]
        assert tasks[0].ref == RemoteRef(server_id=1)
        assert isinstance(tasks[1].ref, LocalRef)

    @pytest.mark.asyncio
    async def test_restart_after_partial_flush_keeps_replayed_edits(self):
        api = FakeTaskApi()
        store = MemoryKeyValueStore()
        workspace, monitor = _workspace(api, store=store)
        await workspace.load()
        keep = await workspace.create_task("Keep", "2026-10-17")
        gone = await workspace.create_task("Gone", "2026-10-18")
        await monitor.set_online(False)
        await workspace.update_task(keep.ref, completed=True)
        await workspace.delete_task(gone.ref)
        await workspace.create_task("Later", "2026-10-19")

        api.budget = 2
        await monitor.set_online(True)

        restarted, _ = _workspace(api, online=False, store=store)
        await restarted.load()

        assert restarted.cache.read() == [api.tasks[1]]
        assert [(t.title, t.completed) for t in restarted.tasks] == [("Keep", True), ("Later", False)]

    @pytest.mark.asyncio
    async def test_failed_queue_write_stops_flush(self):
        api = FakeTaskApi()
        store = FailingStore()
        workspace, monitor = _workspace(api, online=False, store=store)
        await workspace.load()
        await workspace.create_task("A", "2026-10-17")
        await workspace.create_task("B", "2026-10-18")

        store.fail_writes = True
        await monitor.set_online(True)

        assert _calls(api, "create") == [("create", "A")]
        assert len(workspace.queue) == 2
        assert workspace.sync_state is SyncState.OFFLINE_QUEUED

    @pytest.mark.asyncio
    async def test_expired_session_keeps_operation_queued(self):
        api = FakeTaskApi()
        prompts = []
        workspace, _ = _workspace(api, on_auth_required=lambda: prompts.append(True))
        await workspace.load()
        api.unauthorized = True

        await workspace.create_task("A", "2026-10-17")
        await workspace.create_task("B", "2026-10-18")

        assert workspace.auth_required
        assert prompts == [True]
        assert len(workspace.queue) == 2
        assert [t.title for t in workspace.tasks] == ["A", "B"]

        api.unauthorized = False
        workspace.reauthenticated()
        result = await workspace.flush()

        assert result.completed
        assert api.titles() == ["A", "B"]

    @pytest.mark.asyncio
    async def test_unresolvable_placeholder_is_discarded(self):
        api = FakeTaskApi()
        workspace, _ = _workspace(api)
        workspace.queue.enqueue(
            UpdateOperation(
                target=LocalRef(temp_id=999),
                changes=TaskChanges.build(completed=True),
            )
        )

        result = await workspace.flush()

        assert result.discarded == 1
        assert result.completed
        assert _calls(api, "update") == []

    @pytest.mark.asyncio
    async def test_not_found_on_replay_counts_as_done(self):
        api = FakeTaskApi()
        workspace, _ = _workspace(api)
        workspace.queue.enqueue(DeleteOperation(target=RemoteRef(server_id=42)))

        result = await workspace.flush()

        assert result.replayed == 1
        assert result.completed
        assert workspace.queue.is_empty()

    @pytest.mark.asyncio
    async def test_rejected_create_is_discarded_with_its_edits(self):
        api = FakeTaskApi()
        api.reject_titles = {"Bad"}
        workspace, monitor = _workspace(api, online=False)
        await workspace.load()
        bad = await workspace.create_task("Bad", "2026-10-17")
        await workspace.update_task(bad.ref, completed=True)
        await workspace.create_task("Good", "2026-10-18")

        await monitor.set_online(True)

        assert api.titles() == ["Good"]
        assert [t.title for t in workspace.tasks] == ["Good"]
        assert workspace.queue.is_empty()


class TestConcurrentMutation:

    @pytest.mark.asyncio
    async def test_edit_during_flush_is_queued_and_replayed(self):
        api = FakeTaskApi()
        workspace, monitor = _workspace(api, online=False)
        await workspace.load()
        await workspace.create_task("A", "2026-10-17")

        api.gate = asyncio.Event()
        running = asyncio.create_task(monitor.set_online(True))
        await _wait_until_flushing(workspace)

        assert workspace.sync_state is SyncState.FLUSHING
        late = await workspace.create_task("Late", "2026-10-18")

        assert isinstance(late.ref, LocalRef)
        assert _calls(api, "create") == [("create", "A")]

        api.gate.set()
        await running

        assert api.titles() == ["A", "Late"]
        assert workspace.queue.is_empty()
        assert all(isinstance(t.ref, RemoteRef) for t in workspace.tasks)


class TestFilters:

    def test_views_and_search(self):
        from taskflow.client.models import ClientTask
        from taskflow.client.workspace import filter_tasks

        today = date(2026, 10, 17)

        def task(n, due, completed=False, title=None):
            return ClientTask(
                ref=RemoteRef(server_id=n),
                title=title or f"Task {n}",
                due_date=due,
                completed=completed,
            )

        overdue = task(1, date(2026, 10, 16))
        done = task(2, date(2026, 10, 16), completed=True)
        due_today = task(3, today, title="Write report")
        upcoming = task(4, date(2026, 10, 20))
        tasks = [overdue, done, due_today, upcoming]

        assert filter_tasks(tasks, "all", today=today) == tasks
        assert filter_tasks(tasks, "today", today=today) == [due_today]
        assert filter_tasks(tasks, "upcoming", today=today) == [upcoming]
        assert filter_tasks(tasks, "completed", today=today) == [done]
        assert filter_tasks(tasks, "overdue", today=today) == [overdue]
        assert filter_tasks(tasks, "all", search=" REP ", today=today) == [due_today]
