"""
Local Task Cache
================

Last server-confirmed task list of one account. Only read when the
server cannot be reached.
"""

from typing import Iterable

from taskflow.client.models import ClientTask, dump_tasks, parse_stored_tasks
from taskflow.client.storage import KeyValueStore, StorageKeys


class LocalTaskCache:
    """Durable copy of one account's server task list."""

    def __init__(self, store: KeyValueStore, account_id: str):
        self.store = store
        self.key = StorageKeys.task_cache(account_id)

    def read(self) -> list[ClientTask]:
        return parse_stored_tasks(self.store.get(self.key, []))

    def write(self, tasks: Iterable[ClientTask]) -> bool:
        """Overwrite the cached list wholesale."""
        return self.store.set(self.key, dump_tasks(tasks))

    def clear(self) -> None:
        self.store.delete(self.key)
