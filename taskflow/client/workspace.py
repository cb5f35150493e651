"""
Task Workspace
==============

The client's view of one user's tasks, in guest or account mode.

Guest mode keeps tasks in local storage only. Account mode talks to the
server and falls back to the Local Task Cache and Pending Operation
Queue whenever the server cannot be reached:

    SYNCED          mutation goes straight to the server
    OFFLINE_QUEUED  mutation is applied locally and queued
    FLUSHING        mutation is applied locally and queued; the running
                    flush replays it

Every mutation is validated before any state changes and is applied to
the in-memory list immediately.
"""

import logging
from datetime import date
from enum import Enum
from typing import Any, Callable, Iterable, Optional, Union

from taskflow.client.api import TaskApi
from taskflow.client.cache import LocalTaskCache
from taskflow.client.connectivity import ConnectivityMonitor, SyncState
from taskflow.client.errors import (
    AuthorizationError,
    NotFoundError,
    TransientNetworkError,
)
from taskflow.client.models import (
    ClientTask,
    CreateOperation,
    DeleteOperation,
    LocalRef,
    RemoteRef,
    TaskChanges,
    TaskDraft,
    TempIdAllocator,
    UpdateOperation,
    apply_operation,
    dump_tasks,
    parse_stored_tasks,
    resolve_ref,
)
from taskflow.client.queue import PendingOperationQueue
from taskflow.client.reconciler import FlushResult, SyncReconciler
from taskflow.client.reminders import NotifiedKeyStore
from taskflow.client.storage import KeyValueStore, StorageKeys
from taskflow.models.task import DEFAULT_DUE_TIME, TaskPriority
from taskflow.utils.helpers import utc_now

logger = logging.getLogger(__name__)

Ref = Union[LocalRef, RemoteRef]


# =============================================================================
# Filters
# =============================================================================

class TaskFilter(str, Enum):
    ALL = "all"
    TODAY = "today"
    UPCOMING = "upcoming"
    COMPLETED = "completed"
    OVERDUE = "overdue"


def _matches_filter(task: ClientTask, view: TaskFilter, today: date) -> bool:
    if view is TaskFilter.TODAY:
        return task.due_date == today
    if view is TaskFilter.UPCOMING:
        return task.due_date > today and not task.completed
    if view is TaskFilter.COMPLETED:
        return task.completed
    if view is TaskFilter.OVERDUE:
        return not task.completed and task.due_date < today
    return True


def filter_tasks(
    tasks: Iterable[ClientTask],
    view: Union[TaskFilter, str] = TaskFilter.ALL,
    search: str = "",
    today: Optional[date] = None,
) -> list[ClientTask]:
    """Tasks matching a list view and a case-insensitive title search."""
    view = TaskFilter(view)
    today = today or date.today()
    term = search.strip().lower()
    return [
        task
        for task in tasks
        if _matches_filter(task, view, today)
        and (not term or term in task.title.lower())
    ]


# =============================================================================
# Preferences
# =============================================================================

class Theme(str, Enum):
    LIGHT = "light"
    DARK = "dark"


class Preferences:
    """Small per-device settings kept in local storage."""

    def __init__(self, store: KeyValueStore):
        self.store = store

    @property
    def theme(self) -> Theme:
        try:
            return Theme(self.store.get(StorageKeys.THEME, Theme.LIGHT.value))
        except ValueError:
            return Theme.LIGHT

    @theme.setter
    def theme(self, value: Union[Theme, str]) -> None:
        self.store.set(StorageKeys.THEME, Theme(value).value)

    @property
    def notifications_asked(self) -> bool:
        return bool(self.store.get(StorageKeys.NOTIFICATIONS_ASKED, False))

    def mark_notifications_asked(self) -> None:
        self.store.set(StorageKeys.NOTIFICATIONS_ASKED, True)


# =============================================================================
# Workspace
# =============================================================================

class TaskWorkspace:
    """Tasks of one guest or one signed-in account."""

    def __init__(
        self,
        store: KeyValueStore,
        api: Optional[TaskApi] = None,
        account_id: Optional[str] = None,
        monitor: Optional[ConnectivityMonitor] = None,
        on_auth_required: Optional[Callable[[], None]] = None,
        temp_ids: Optional[TempIdAllocator] = None,
    ):
        if account_id is not None and api is None:
            raise ValueError("Account mode needs a TaskApi")

        self.store = store
        self.api = api
        self.account_id = account_id
        self.monitor = monitor or ConnectivityMonitor(online=True)
        self.on_auth_required = on_auth_required
        self.temp_ids = temp_ids or TempIdAllocator()
        self.preferences = Preferences(store)

        self.auth_required = False
        self._tasks: list[ClientTask] = []
        # Placeholder -> server id, kept after the queue is cleared
        self._aliases: dict[str, int] = {}

        self.queue: Optional[PendingOperationQueue] = None
        self.cache: Optional[LocalTaskCache] = None
        self.reconciler: Optional[SyncReconciler] = None
        self._unsubscribe: Optional[Callable[[], None]] = None

        if account_id is not None:
            self.queue = PendingOperationQueue(store, account_id)
            self.cache = LocalTaskCache(store, account_id)
            self.reconciler = SyncReconciler(
                api=api,
                queue=self.queue,
                cache=self.cache,
                monitor=self.monitor,
                is_authenticated=self.is_authenticated,
                on_ref_resolved=self._on_ref_resolved,
                on_tasks_replaced=self._on_tasks_replaced,
            )
            self._unsubscribe = self.monitor.subscribe(self._on_connectivity)

    # -- state -------------------------------------------------------------

    @property
    def mode(self) -> str:
        return "guest" if self.account_id is None else "account"

    @property
    def tasks(self) -> list[ClientTask]:
        return list(self._tasks)

    @property
    def sync_state(self) -> SyncState:
        if self.reconciler is None:
            return SyncState.SYNCED
        return self.reconciler.state

    def is_authenticated(self) -> bool:
        return self.account_id is not None and not self.auth_required

    def _resolved(self) -> dict[str, int]:
        resolved = dict(self._aliases)
        if self.queue is not None:
            resolved.update(self.queue.load().resolved)
        return resolved

    def get(self, ref: Ref) -> ClientTask:
        """
        Raises:
            NotFoundError: If no task has this identity
        """
        resolved = self._resolved()
        wanted = resolve_ref(ref, resolved)
        for task in self._tasks:
            if resolve_ref(task.ref, resolved) == wanted:
                return task
        raise NotFoundError("Task not found.")

    def view(
        self,
        view: Union[TaskFilter, str] = TaskFilter.ALL,
        search: str = "",
        today: Optional[date] = None,
    ) -> list[ClientTask]:
        return filter_tasks(self._tasks, view, search, today)

    # -- lifecycle ---------------------------------------------------------

    async def load(self) -> list[ClientTask]:
        """
        Populate the in-memory list.

        Account mode fetches from the server when online with nothing
        queued; otherwise it rebuilds from the cache plus the queued
        operations, then flushes if online.
        """
        if self.account_id is None:
            self._tasks = parse_stored_tasks(self.store.get(StorageKeys.GUEST_TASKS, []))
            for task in self._tasks:
                if isinstance(task.ref, LocalRef):
                    self.temp_ids.observe(task.ref.temp_id)
            return self.tasks

        state = self.queue.load()
        for operation in state.operations:
            if isinstance(operation, CreateOperation):
                self.temp_ids.observe(operation.ref.temp_id)

        if self.monitor.online and not state.operations and self.is_authenticated():
            try:
                self._on_tasks_replaced(await self.api.list())
                self.cache.write(self._tasks)
                return self.tasks
            except TransientNetworkError as e:
                logger.warning("Task list fetch failed, using cache: %s", e)
            except AuthorizationError:
                self._require_auth()

        tasks = self.cache.read()
        for operation in state.operations:
            tasks = apply_operation(tasks, operation, state.resolved)
        self._tasks = tasks

        if self.monitor.online:
            await self.flush()
        return self.tasks

    async def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    async def flush(self) -> FlushResult:
        if self.reconciler is None:
            return FlushResult(skipped=True)
        result = await self.reconciler.flush()
        if isinstance(result.error, AuthorizationError):
            self._require_auth()
        return result

    def reauthenticated(self) -> None:
        """The session was renewed; queued work may be sent again."""
        self.auth_required = False

    # -- mutations ---------------------------------------------------------

    async def create_task(
        self,
        title: str,
        due_date: Union[date, str],
        due_time: str = DEFAULT_DUE_TIME,
        description: Optional[str] = None,
        priority: Union[TaskPriority, str] = TaskPriority.MEDIUM,
    ) -> ClientTask:
        """
        Raises:
            TaskValidationError: If any field is invalid
        """
        draft = TaskDraft.build(
            title=title,
            description=description,
            due_date=due_date,
            due_time=due_time,
            priority=priority,
        )
        operation = CreateOperation(
            ref=self.temp_ids.next(),
            draft=draft,
            created_at=utc_now().isoformat(),
        )
        await self._mutate(operation)
        return self.get(operation.ref)

    async def update_task(self, ref: Ref, **fields: Any) -> ClientTask:
        """
        Apply a partial change. ``description=None`` clears it.

        Raises:
            TaskValidationError: If a field is invalid or nothing changes
            NotFoundError: If the task is unknown
        """
        changes = TaskChanges.build(**fields)
        task = self.get(ref)
        operation = UpdateOperation(
            target=resolve_ref(task.ref, self._resolved()),
            changes=changes,
        )
        await self._mutate(operation)
        return self.get(task.ref)

    async def toggle_task(self, ref: Ref) -> ClientTask:
        task = self.get(ref)
        return await self.update_task(task.ref, completed=not task.completed)

    async def delete_task(self, ref: Ref) -> None:
        """
        Raises:
            NotFoundError: If the task is unknown
        """
        task = self.get(ref)
        operation = DeleteOperation(target=resolve_ref(task.ref, self._resolved()))
        await self._mutate(operation)

    async def _mutate(self, operation) -> None:
        previous = self._tasks
        self._tasks = apply_operation(self._tasks, operation, self._resolved())

        if self.account_id is None:
            self.store.set(StorageKeys.GUEST_TASKS, dump_tasks(self._tasks))
            return

        # A placeholder target can only be replayed after its create
        unresolved = isinstance(getattr(operation, "target", None), LocalRef)
        if (
            self.sync_state is SyncState.SYNCED
            and self.is_authenticated()
            and not unresolved
        ):
            try:
                await self._send(operation)
                self.cache.write(self._tasks)
                return
            except TransientNetworkError as e:
                logger.info("Server unreachable, queueing %s: %s", operation.op, e)
            except AuthorizationError:
                self._require_auth()
            except NotFoundError:
                if isinstance(operation, DeleteOperation):
                    self.cache.write(self._tasks)
                    return
                # Gone on the server: drop it locally too
                self._tasks = apply_operation(
                    previous, DeleteOperation(target=operation.target), self._resolved()
                )
                self.cache.write(self._tasks)
                raise
            except Exception:
                self._tasks = previous
                raise

        self.queue.enqueue(operation)
        if self.monitor.online:
            await self.flush()

    async def _send(self, operation) -> None:
        if isinstance(operation, CreateOperation):
            created = await self.api.create(operation.draft)
            self._on_ref_resolved(operation.ref, created.ref)
            self._replace(created)
        elif isinstance(operation, UpdateOperation):
            self._replace(await self.api.update(operation.target.server_id, operation.changes))
        elif isinstance(operation, DeleteOperation):
            await self.api.delete(operation.target.server_id)

    # -- callbacks ---------------------------------------------------------

    def _replace(self, server_task: ClientTask) -> None:
        self._tasks = [
            server_task if task.ref == server_task.ref else task
            for task in self._tasks
        ]

    def _on_ref_resolved(self, local: LocalRef, remote: RemoteRef) -> None:
        self._aliases[str(local.temp_id)] = remote.server_id
        # Reminders already shown for the placeholder stay shown
        NotifiedKeyStore(self.store).rename_task(self.mode, local.key, remote.key)
        self._tasks = [
            task.model_copy(update={"ref": remote}) if task.ref == local else task
            for task in self._tasks
        ]

    def _on_tasks_replaced(self, tasks: list[ClientTask]) -> None:
        self._tasks = list(tasks)

    def _require_auth(self) -> None:
        if self.auth_required:
            return
        self.auth_required = True
        logger.warning("Session expired; queued changes wait for sign-in")
        if self.on_auth_required is not None:
            self.on_auth_required()

    async def _on_connectivity(self, online: bool) -> None:
        if online:
            await self.flush()
