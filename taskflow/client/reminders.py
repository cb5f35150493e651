"""
Reminder Scheduler
==================

Periodic check that shows a local notification when a task falls due.

Lifecycle:
    1. ``start()`` asks for notification permission once per device and
       enters the check loop.
    2. Every interval, incomplete tasks whose due instant lies within
       ``[due, due + grace]`` are notified, once per notified key.
    3. ``stop()`` ends the loop.

A notified key is ``{mode}:{task}:{due_date}:{due_time}``, so editing a
task's due time makes it eligible again.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional, Protocol

from taskflow.client.models import ClientTask
from taskflow.client.storage import KeyValueStore, StorageKeys
from taskflow.utils.helpers import due_instant

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def permission_granted(self) -> bool: ...

    async def request_permission(self) -> bool: ...

    def show(self, title: str, body: str) -> None: ...


class LoggingNotifier:
    """Notifier that writes reminders to the log."""

    def __init__(self, granted: bool = True):
        self.granted = granted

    def permission_granted(self) -> bool:
        return self.granted

    async def request_permission(self) -> bool:
        return self.granted

    def show(self, title: str, body: str) -> None:
        logger.info("%s: %s", title, body)


class NotifiedKeyStore:
    """Bounded, durable list of reminders already shown (oldest dropped)."""

    def __init__(self, store: KeyValueStore, limit: int = 500):
        self.store = store
        self.limit = limit

    def _keys(self) -> list[str]:
        keys = self.store.get(StorageKeys.NOTIFIED_KEYS, [])
        return [k for k in keys if isinstance(k, str)] if isinstance(keys, list) else []

    def __contains__(self, key: str) -> bool:
        return key in self._keys()

    def add(self, key: str) -> None:
        def append(keys) -> list:
            keys = [k for k in keys if isinstance(k, str)] if isinstance(keys, list) else []
            if key not in keys:
                keys.append(key)
            return keys[-self.limit:]

        self.store.update(StorageKeys.NOTIFIED_KEYS, append, default=[])

    def rename_task(self, mode: str, old_key: str, new_key: str) -> None:
        """Move keys recorded under a placeholder identity to the server id."""
        old_prefix = f"{mode}:{old_key}:"
        new_prefix = f"{mode}:{new_key}:"

        def rename(keys) -> list:
            keys = [k for k in keys if isinstance(k, str)] if isinstance(keys, list) else []
            renamed = []
            for k in keys:
                if k.startswith(old_prefix):
                    k = new_prefix + k[len(old_prefix):]
                if k not in renamed:
                    renamed.append(k)
            return renamed

        self.store.update(StorageKeys.NOTIFIED_KEYS, rename, default=[])


def notified_key(mode: str, task: ClientTask) -> str:
    return f"{mode}:{task.key}:{task.due_date.isoformat()}:{task.due_time}"


def reminder_content(task: ClientTask) -> tuple[str, str]:
    return (
        f"Task Due: {task.title}",
        f"Due now at {task.due_time} ({task.due_date.isoformat()})",
    )


class ReminderScheduler:
    """Background loop that shows due-task reminders."""

    def __init__(
        self,
        tasks: Callable[[], Iterable[ClientTask]],
        mode: Callable[[], str],
        notifier: Notifier,
        notified: NotifiedKeyStore,
        interval: float = 30.0,
        grace: timedelta = timedelta(hours=6),
        clock: Callable[[], datetime] = datetime.now,
        on_permission_asked: Optional[Callable[[], None]] = None,
        permission_asked: Callable[[], bool] = lambda: False,
    ):
        self.tasks = tasks
        self.mode = mode
        self.notifier = notifier
        self.notified = notified
        self.interval = interval
        self.grace = grace
        self.clock = clock
        self.on_permission_asked = on_permission_asked
        self.permission_asked = permission_asked
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @classmethod
    def for_workspace(cls, workspace, notifier: Notifier, settings) -> "ReminderScheduler":
        """Scheduler over a ``TaskWorkspace`` using ``ClientSettings``."""
        return cls(
            tasks=lambda: workspace.tasks,
            mode=lambda: workspace.mode,
            notifier=notifier,
            notified=NotifiedKeyStore(workspace.store, settings.NOTIFIED_KEYS_LIMIT),
            interval=settings.REMINDER_INTERVAL_SECONDS,
            grace=timedelta(hours=settings.REMINDER_GRACE_HOURS),
            on_permission_asked=workspace.preferences.mark_notifications_asked,
            permission_asked=lambda: workspace.preferences.notifications_asked,
        )

    @property
    def running(self) -> bool:
        return self._running

    # -- lifecycle ---------------------------------------------------------

    async def start(self) -> None:
        """Ask for permission if never asked, then start the check loop."""
        if self._running:
            return
        if not self.notifier.permission_granted() and not self.permission_asked():
            await self.notifier.request_permission()
            if self.on_permission_asked is not None:
                self.on_permission_asked()

        self._running = True
        self._task = asyncio.create_task(self._check_loop())
        logger.info("ReminderScheduler started")

    async def stop(self) -> None:
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("ReminderScheduler stopped")

    async def _check_loop(self) -> None:
        while self._running:
            try:
                self.check_now()
            except Exception:
                logger.exception("Reminder check failed")
            await asyncio.sleep(self.interval)

    # -- check -------------------------------------------------------------

    def is_due(self, task: ClientTask, now: datetime) -> bool:
        if task.completed:
            return False
        due = due_instant(task.due_date, task.due_time)
        if due is None:
            return False
        return due <= now <= due + self.grace

    def check_now(self) -> list[ClientTask]:
        """Show reminders for tasks that are due. Returns the tasks notified."""
        if not self.notifier.permission_granted():
            return []

        now = self.clock()
        mode = self.mode()
        fired = []
        for task in self.tasks():
            if not self.is_due(task, now):
                continue
            key = notified_key(mode, task)
            if key in self.notified:
                continue
            title, body = reminder_content(task)
            self.notifier.show(title, body)
            self.notified.add(key)
            fired.append(task)
        return fired
