"""
Pending Operation Queue
=======================

Durable, per-account FIFO of mutations made while the server could not
be reached. Persisted as one document::

    {"operations": [...], "resolved": {"<temp_id>": <server_id>}}

``resolved`` records which placeholder ids the server has already
assigned real ids to. It is written together with the removal of the
replayed create, so a crash can never leave a create both consumed and
unmapped.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from pydantic import ValidationError

from taskflow.client.errors import StorageError
from taskflow.client.models import (
    CreateOperation,
    PendingOperation,
    dump_operation,
    load_operation,
)
from taskflow.client.storage import KeyValueStore, StorageKeys

logger = logging.getLogger(__name__)


@dataclass
class QueueState:
    operations: list = field(default_factory=list)
    resolved: dict[str, int] = field(default_factory=dict)


def _empty() -> dict:
    return {"operations": [], "resolved": {}}


def _normalise(document: Any) -> dict:
    if not isinstance(document, dict):
        return _empty()
    operations = document.get("operations")
    resolved = document.get("resolved")
    return {
        "operations": operations if isinstance(operations, list) else [],
        "resolved": resolved if isinstance(resolved, dict) else {},
    }


class PendingOperationQueue:
    """Queue of pending operations for one account."""

    def __init__(self, store: KeyValueStore, account_id: str):
        self.store = store
        self.account_id = account_id
        self.key = StorageKeys.pending_queue(account_id)

    def load(self) -> QueueState:
        """Read the queue, dropping entries that no longer parse."""
        document = _normalise(self.store.get(self.key))
        operations = []
        for raw in document["operations"]:
            try:
                operations.append(load_operation(raw))
            except ValidationError as e:
                logger.warning("Dropping unreadable queued operation: %s", e)
        resolved = {}
        for temp_id, server_id in document["resolved"].items():
            if isinstance(server_id, int):
                resolved[str(temp_id)] = server_id
        return QueueState(operations=operations, resolved=resolved)

    def __len__(self) -> int:
        return len(_normalise(self.store.get(self.key))["operations"])

    def is_empty(self) -> bool:
        return len(self) == 0

    def head(self) -> Optional[PendingOperation]:
        state = self.load()
        return state.operations[0] if state.operations else None

    def enqueue(self, operation: PendingOperation) -> None:
        """Append *operation* in one atomic read-modify-write."""
        raw = dump_operation(operation)

        def append(document: Any) -> dict:
            document = _normalise(document)
            document["operations"].append(raw)
            return document

        self.store.update(self.key, append, default=_empty())

    def pop_head(
        self,
        expected: PendingOperation,
        server_id: Optional[int] = None,
    ) -> bool:
        """
        Remove the replayed head operation. Returns False when the head is
        no longer *expected*; raises ``StorageError`` when the removal
        could not be persisted.

        When the head is a create, *server_id* is recorded against its
        placeholder in the same write.
        """
        expected_raw = dump_operation(expected)
        removed = False

        def pop(document: Any) -> dict:
            nonlocal removed
            document = _normalise(document)
            operations = document["operations"]
            if not operations or operations[0] != expected_raw:
                return document
            operations.pop(0)
            removed = True
            if isinstance(expected, CreateOperation) and server_id is not None:
                document["resolved"][str(expected.ref.temp_id)] = server_id
            return document

        if not self.store.update(self.key, pop, default=_empty()):
            raise StorageError(f"Could not persist queue {self.key}")
        return removed

    def clear(self) -> None:
        """Drop every operation and mapping."""
        self.store.delete(self.key)
