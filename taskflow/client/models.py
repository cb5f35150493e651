"""
Client Models
=============

Task identity, task data and the pending operations the offline client
queues while the server is unreachable.

A task created offline has no server identifier yet. It is addressed by a
``LocalRef`` until its create is replayed, after which every reference to
it resolves to the ``RemoteRef`` the server assigned.
"""

import logging
import threading
import time
from datetime import date
from typing import Annotated, Any, Iterable, Literal, Mapping, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
    model_serializer,
)

from taskflow.client.errors import TaskValidationError
from taskflow.models.task import DEFAULT_DUE_TIME, TaskPriority
from taskflow.utils.validators import (
    normalize_description,
    validate_due_time,
    validate_title,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Identity
# =============================================================================

class LocalRef(BaseModel):
    """Placeholder identity of a task the server has not seen yet."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["local"] = "local"
    temp_id: int

    @property
    def key(self) -> str:
        return f"local-{self.temp_id}"


class RemoteRef(BaseModel):
    """Server-assigned identity."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["remote"] = "remote"
    server_id: int

    @property
    def key(self) -> str:
        return str(self.server_id)


TaskRef = Annotated[Union[LocalRef, RemoteRef], Field(discriminator="kind")]

# Persisted as {str(temp_id): server_id}
ResolvedMap = Mapping[str, int]


def resolve_ref(ref: Union[LocalRef, RemoteRef], resolved: ResolvedMap) -> Union[LocalRef, RemoteRef]:
    """Replace a resolved ``LocalRef`` by its ``RemoteRef``."""
    if isinstance(ref, LocalRef):
        server_id = resolved.get(str(ref.temp_id))
        if server_id is not None:
            return RemoteRef(server_id=server_id)
    return ref


class TempIdAllocator:
    """
    Monotonic placeholder ids seeded from the wall clock in milliseconds.

    Ids are never handed out twice, including after a restart, as long as
    ids already in use are passed to ``observe``.
    """

    def __init__(self) -> None:
        self._last = 0
        self._lock = threading.Lock()

    def observe(self, temp_id: int) -> None:
        with self._lock:
            self._last = max(self._last, temp_id)

    def next(self) -> LocalRef:
        with self._lock:
            self._last = max(self._last + 1, int(time.time() * 1000))
            return LocalRef(temp_id=self._last)


# =============================================================================
# Task data
# =============================================================================

def validation_message(exc: ValidationError) -> tuple[str, Optional[str]]:
    """First human-readable message and field name of a pydantic error."""
    errors = exc.errors()
    if not errors:
        return str(exc), None
    first = errors[0]
    ctx_error = (first.get("ctx") or {}).get("error")
    message = str(ctx_error) if ctx_error else first.get("msg", "Invalid task.")
    loc = first.get("loc") or ()
    field = str(loc[0]) if loc else None
    return message, field


def _validated(model_cls, data: Mapping[str, Any]):
    try:
        return model_cls.model_validate(data)
    except ValidationError as exc:
        message, field = validation_message(exc)
        raise TaskValidationError(message, field=field) from exc


class TaskDraft(BaseModel):
    """Fields of a task about to be created."""

    model_config = ConfigDict(frozen=True)

    title: str
    description: Optional[str] = None
    due_date: date
    due_time: str = DEFAULT_DUE_TIME
    priority: TaskPriority = TaskPriority.MEDIUM

    @field_validator("title")
    @classmethod
    def _title(cls, v: str) -> str:
        return validate_title(v)

    @field_validator("description")
    @classmethod
    def _description(cls, v: Optional[str]) -> Optional[str]:
        return normalize_description(v)

    @field_validator("due_time")
    @classmethod
    def _due_time(cls, v: str) -> str:
        return validate_due_time(v)

    @classmethod
    def build(cls, **fields: Any) -> "TaskDraft":
        """
        Raises:
            TaskValidationError: If any field is invalid
        """
        return _validated(cls, fields)

    def to_api_payload(self) -> dict:
        return {
            "title": self.title,
            "description": self.description,
            "dueDate": self.due_date.isoformat(),
            "dueTime": self.due_time,
            "priority": self.priority.value,
        }


class TaskChanges(BaseModel):
    """
    Partial change set. Only fields given explicitly are part of it; an
    explicit ``description=None`` clears the description.
    """

    model_config = ConfigDict(frozen=True)

    title: Optional[str] = None
    description: Optional[str] = None
    due_date: Optional[date] = None
    due_time: Optional[str] = None
    priority: Optional[TaskPriority] = None
    completed: Optional[bool] = None

    @field_validator("title")
    @classmethod
    def _title(cls, v: Optional[str]) -> str:
        if v is None:
            raise ValueError("Title cannot be empty.")
        return validate_title(v)

    @field_validator("description")
    @classmethod
    def _description(cls, v: Optional[str]) -> Optional[str]:
        return normalize_description(v)

    @field_validator("due_date")
    @classmethod
    def _due_date(cls, v: Optional[date]) -> date:
        if v is None:
            raise ValueError("Due date is required.")
        return v

    @field_validator("due_time")
    @classmethod
    def _due_time(cls, v: Optional[str]) -> str:
        if v is None:
            raise ValueError("Invalid due time value.")
        return validate_due_time(v)

    @field_validator("priority", "completed")
    @classmethod
    def _not_null(cls, v: Any) -> Any:
        if v is None:
            raise ValueError("Field cannot be null.")
        return v

    @model_serializer(mode="wrap")
    def _only_given(self, handler):
        data = handler(self)
        return {k: v for k, v in data.items() if k in self.model_fields_set}

    @classmethod
    def build(cls, **fields: Any) -> "TaskChanges":
        """
        Raises:
            TaskValidationError: If a field is invalid or nothing changes
        """
        changes = _validated(cls, fields)
        if not changes.model_fields_set:
            raise TaskValidationError("No valid fields provided.")
        return changes

    def fields(self) -> dict[str, Any]:
        return {name: getattr(self, name) for name in self.model_fields_set}

    def to_api_payload(self) -> dict:
        names = {"due_date": "dueDate", "due_time": "dueTime"}
        payload: dict[str, Any] = {}
        for name, value in self.fields().items():
            if isinstance(value, date):
                value = value.isoformat()
            elif isinstance(value, TaskPriority):
                value = value.value
            payload[names.get(name, name)] = value
        return payload


class ClientTask(BaseModel):
    """A task as the client holds it in memory and in local storage."""

    model_config = ConfigDict(frozen=True)

    ref: TaskRef
    title: str
    description: Optional[str] = None
    due_date: date
    due_time: str = DEFAULT_DUE_TIME
    completed: bool = False
    priority: TaskPriority = TaskPriority.MEDIUM
    created_at: Optional[str] = None

    @field_validator("title")
    @classmethod
    def _title(cls, v: str) -> str:
        return validate_title(v)

    @field_validator("due_time")
    @classmethod
    def _due_time(cls, v: str) -> str:
        return validate_due_time(v)

    @field_validator("priority", mode="before")
    @classmethod
    def _known_priority(cls, v: Any) -> Any:
        if isinstance(v, TaskPriority):
            return v
        try:
            return TaskPriority(str(v).upper())
        except ValueError:
            return TaskPriority.MEDIUM

    @property
    def key(self) -> str:
        return self.ref.key

    @classmethod
    def from_api(cls, data: Mapping[str, Any]) -> "ClientTask":
        """Build from the server's camelCase task object."""
        return cls(
            ref=RemoteRef(server_id=int(data["id"])),
            title=data["title"],
            description=data.get("description"),
            due_date=data["dueDate"],
            due_time=data.get("dueTime") or DEFAULT_DUE_TIME,
            completed=bool(data.get("completed", False)),
            priority=data.get("priority", TaskPriority.MEDIUM),
            created_at=data.get("createdAt"),
        )

    def to_storage(self) -> dict:
        return self.model_dump(mode="json")

    def with_changes(self, changes: TaskChanges) -> "ClientTask":
        return self.model_copy(update=changes.fields())


def sort_tasks(tasks: Iterable[ClientTask]) -> list[ClientTask]:
    """Due date, then due time, then creation, like the server list."""
    return sorted(
        tasks,
        key=lambda t: (t.due_date, t.due_time, t.created_at or "", t.key),
    )


def parse_stored_tasks(raw: Any) -> list[ClientTask]:
    """
    Rebuild tasks from local storage, dropping entries that are not valid
    tasks. Unknown priorities fall back to ``MEDIUM``.
    """
    if not isinstance(raw, list):
        return []
    tasks = []
    for entry in raw:
        if not isinstance(entry, dict):
            continue
        try:
            tasks.append(ClientTask.model_validate(entry))
        except ValidationError as exc:
            logger.warning("Dropping malformed stored task: %s", validation_message(exc)[0])
    return tasks


def dump_tasks(tasks: Iterable[ClientTask]) -> list[dict]:
    return [task.to_storage() for task in tasks]


# =============================================================================
# Pending operations
# =============================================================================

class CreateOperation(BaseModel):
    model_config = ConfigDict(frozen=True)

    op: Literal["create"] = "create"
    ref: LocalRef
    draft: TaskDraft
    created_at: Optional[str] = None


class UpdateOperation(BaseModel):
    model_config = ConfigDict(frozen=True)

    op: Literal["update"] = "update"
    target: TaskRef
    changes: TaskChanges


class DeleteOperation(BaseModel):
    model_config = ConfigDict(frozen=True)

    op: Literal["delete"] = "delete"
    target: TaskRef


PendingOperation = Annotated[
    Union[CreateOperation, UpdateOperation, DeleteOperation],
    Field(discriminator="op"),
]

_operation_adapter: TypeAdapter = TypeAdapter(PendingOperation)


def load_operation(data: Mapping[str, Any]):
    return _operation_adapter.validate_python(data)


def dump_operation(operation) -> dict:
    return operation.model_dump(mode="json")


def _matches(task: ClientTask, target, resolved: ResolvedMap) -> bool:
    return resolve_ref(task.ref, resolved) == resolve_ref(target, resolved)


def apply_operation(
    tasks: Iterable[ClientTask],
    operation,
    resolved: Optional[ResolvedMap] = None,
) -> list[ClientTask]:
    """
    Return the task list with *operation* applied. Pure: the input is not
    modified. Used both for optimistic updates and to rebuild state from
    the cache plus the queue.
    """
    resolved = resolved or {}
    current = list(tasks)

    if isinstance(operation, CreateOperation):
        draft = operation.draft
        current.append(
            ClientTask(
                ref=operation.ref,
                title=draft.title,
                description=draft.description,
                due_date=draft.due_date,
                due_time=draft.due_time,
                priority=draft.priority,
                created_at=operation.created_at,
            )
        )
        return sort_tasks(current)

    if isinstance(operation, UpdateOperation):
        return sort_tasks(
            task.with_changes(operation.changes)
            if _matches(task, operation.target, resolved)
            else task
            for task in current
        )

    if isinstance(operation, DeleteOperation):
        return [t for t in current if not _matches(t, operation.target, resolved)]

    raise TypeError(f"Unknown operation {operation!r}")
