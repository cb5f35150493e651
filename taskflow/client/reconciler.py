"""
Sync Reconciler
===============

Replays the pending operation queue against the server, head first, and
refreshes the local task list from the server once the queue is drained.

Replay rules:
    - create: on success the operation is removed and its placeholder id
      is mapped to the new server id in one write.
    - update/delete: the target is resolved through that mapping. A
      placeholder that never got a server id is discarded.
    - Not found on update/delete means the task is gone on the server;
      the operation counts as replayed.
    - A validation rejection discards the operation so the queue cannot
      stall behind it.
    - Any other failure stops the flush and keeps the remaining
      operations, head included.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from taskflow.client.api import TaskApi
from taskflow.client.cache import LocalTaskCache
from taskflow.client.connectivity import ConnectivityMonitor, SyncState
from taskflow.client.errors import ClientError, NotFoundError, TaskValidationError
from taskflow.client.models import (
    ClientTask,
    CreateOperation,
    DeleteOperation,
    LocalRef,
    RemoteRef,
    ResolvedMap,
    UpdateOperation,
    resolve_ref,
    sort_tasks,
)
from taskflow.client.queue import PendingOperationQueue

logger = logging.getLogger(__name__)


@dataclass
class FlushResult:
    replayed: int = 0
    discarded: int = 0
    completed: bool = False
    skipped: bool = False
    error: Optional[ClientError] = None


def _noop(*args) -> None:
    return None


class _QueueChanged(Exception):
    """The queue head moved while an operation was being replayed."""


class SyncReconciler:
    """Drain one account's pending operation queue."""

    def __init__(
        self,
        api: TaskApi,
        queue: PendingOperationQueue,
        cache: LocalTaskCache,
        monitor: ConnectivityMonitor,
        is_authenticated: Callable[[], bool],
        on_ref_resolved: Callable[[LocalRef, RemoteRef], None] = _noop,
        on_tasks_replaced: Callable[[list[ClientTask]], None] = _noop,
    ):
        self.api = api
        self.queue = queue
        self.cache = cache
        self.monitor = monitor
        self.is_authenticated = is_authenticated
        self.on_ref_resolved = on_ref_resolved
        self.on_tasks_replaced = on_tasks_replaced
        self._flushing = False

    @property
    def flushing(self) -> bool:
        return self._flushing

    @property
    def state(self) -> SyncState:
        if self._flushing:
            return SyncState.FLUSHING
        if not self.monitor.online or not self.queue.is_empty():
            return SyncState.OFFLINE_QUEUED
        return SyncState.SYNCED

    async def flush(self) -> FlushResult:
        """
        Replay every queued operation, then refresh from the server.

        Does nothing while unauthenticated, offline, with an empty queue,
        or when a flush is already running; the running flush also picks
        up operations queued after it started.
        """
        if self._flushing:
            return FlushResult(skipped=True)
        if not self.is_authenticated() or not self.monitor.online:
            return FlushResult(skipped=True)
        if self.queue.is_empty():
            return FlushResult(skipped=True)

        self._flushing = True
        result = FlushResult()
        try:
            while True:
                state = self.queue.load()
                if state.operations:
                    await self._replay(state.operations[0], state.resolved, result)
                    continue

                tasks = await self.api.list()
                if not self.queue.is_empty():
                    # Queued while the list was in flight
                    continue

                self.queue.clear()
                self.cache.write(tasks)
                self.on_tasks_replaced(tasks)
                result.completed = True
                logger.info(
                    "Flush complete: replayed=%d discarded=%d",
                    result.replayed,
                    result.discarded,
                )
                return result
        except _QueueChanged:
            logger.warning("Queue changed during flush; stopping")
            return result
        except ClientError as e:
            logger.warning("Flush stopped, keeping %d queued operation(s): %s", len(self.queue), e)
            result.error = e
            return result
        finally:
            self._flushing = False

    async def _replay(self, operation, resolved: ResolvedMap, result: FlushResult) -> None:
        if isinstance(operation, CreateOperation):
            try:
                created = await self.api.create(operation.draft)
            except TaskValidationError as e:
                self._discard(operation, result, f"rejected by server: {e}")
                return
            self._consume(operation, server_id=created.ref.server_id)
            self._cache_put(created)
            self.on_ref_resolved(operation.ref, created.ref)
            result.replayed += 1
            return

        target = resolve_ref(operation.target, resolved)
        if isinstance(target, LocalRef):
            self._discard(operation, result, "target task was never created on the server")
            return

        updated = None
        try:
            if isinstance(operation, UpdateOperation):
                updated = await self.api.update(target.server_id, operation.changes)
            elif isinstance(operation, DeleteOperation):
                await self.api.delete(target.server_id)
        except NotFoundError:
            logger.info("Task %s no longer exists on the server", target.server_id)
        except TaskValidationError as e:
            self._discard(operation, result, f"rejected by server: {e}")
            return

        self._consume(operation)
        if updated is not None:
            self._cache_put(updated)
        else:
            self._cache_drop(target)
        result.replayed += 1

    # The cache follows every consumed operation, so cache plus the
    # remaining queue always rebuild the current view.

    def _cache_put(self, server_task: ClientTask) -> None:
        tasks = [t for t in self.cache.read() if t.ref != server_task.ref]
        tasks.append(server_task)
        self.cache.write(sort_tasks(tasks))

    def _cache_drop(self, target: RemoteRef) -> None:
        self.cache.write([t for t in self.cache.read() if t.ref != target])

    def _consume(self, operation, server_id: Optional[int] = None) -> None:
        if not self.queue.pop_head(operation, server_id=server_id):
            raise _QueueChanged()

    def _discard(self, operation, result: FlushResult, reason: str) -> None:
        logger.warning("Discarding queued %s operation: %s", operation.op, reason)
        self._consume(operation)
        result.discarded += 1
