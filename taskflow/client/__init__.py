from taskflow.client.api import TaskApiClient
from taskflow.client.config import ClientSettings, get_client_settings
from taskflow.client.connectivity import ConnectivityMonitor, SyncState
from taskflow.client.errors import (
    AuthorizationError,
    ClientError,
    NotFoundError,
    TaskValidationError,
    TransientNetworkError,
)
from taskflow.client.models import ClientTask, LocalRef, RemoteRef
from taskflow.client.reminders import LoggingNotifier, ReminderScheduler
from taskflow.client.storage import FileKeyValueStore, MemoryKeyValueStore
from taskflow.client.workspace import TaskFilter, TaskWorkspace

__all__ = [
    "AuthorizationError",
    "ClientError",
    "ClientSettings",
    "ClientTask",
    "ConnectivityMonitor",
    "FileKeyValueStore",
    "LocalRef",
    "LoggingNotifier",
    "MemoryKeyValueStore",
    "NotFoundError",
    "ReminderScheduler",
    "RemoteRef",
    "SyncState",
    "TaskApiClient",
    "TaskFilter",
    "TaskValidationError",
    "TaskWorkspace",
    "TransientNetworkError",
    "get_client_settings",
]
