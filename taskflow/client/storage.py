"""
Local Durable Storage
=====================

Small key-value store the client persists its state in.

Key naming convention:
    taskflow.{resource}[.{account_id}]

Every read and write is guarded: a failing store logs a warning and the
caller gets the default value (or ``False`` from a write), so storage
trouble never takes the client down.
"""

import contextlib
import copy
import errno
import json
import logging
import os
import re
import tempfile
import threading
import time
from pathlib import Path
from typing import Any, Callable, Iterator, Optional, Protocol

try:  # POSIX only
    import fcntl
except ImportError:  # pragma: no cover
    fcntl = None

logger = logging.getLogger(__name__)

DEFAULT_LOCK_TIMEOUT = 8.0  # seconds
LOCK_SLEEP_INTERVAL = 0.05  # seconds


# =============================================================================
# Keys
# =============================================================================

class StorageKeys:
    """Storage key builders for consistent naming."""

    GUEST_TASKS = "taskflow.guest_tasks"
    THEME = "taskflow.theme"
    NOTIFICATIONS_ASKED = "taskflow.notifications_asked"
    NOTIFIED_KEYS = "taskflow.notified_keys"

    @staticmethod
    def task_cache(account_id: str) -> str:
        return f"taskflow.cache.{account_id}"

    @staticmethod
    def pending_queue(account_id: str) -> str:
        return f"taskflow.queue.{account_id}"


# =============================================================================
# Stores
# =============================================================================

class KeyValueStore(Protocol):
    def get(self, key: str, default: Any = None) -> Any: ...

    def set(self, key: str, value: Any) -> bool: ...

    def delete(self, key: str) -> bool: ...

    def update(
        self,
        key: str,
        mutate: Callable[[Any], Any],
        default: Any = None,
    ) -> bool: ...


class MemoryKeyValueStore:
    """Process-local store, used for tests and ephemeral sessions."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}
        self._lock = threading.RLock()

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            raw = self._data.get(key)
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except ValueError as e:
            logger.warning("Storage read error for key %s: %s", key, e)
            return default

    def set(self, key: str, value: Any) -> bool:
        try:
            raw = json.dumps(value)
        except (TypeError, ValueError) as e:
            logger.warning("Storage write error for key %s: %s", key, e)
            return False
        with self._lock:
            self._data[key] = raw
        return True

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def update(
        self,
        key: str,
        mutate: Callable[[Any], Any],
        default: Any = None,
    ) -> bool:
        """Read-modify-write *key* atomically. Returns whether it persisted."""
        with self._lock:
            current = self.get(key, copy.deepcopy(default))
            return self.set(key, mutate(current))


def _lock_file_path(path: Path) -> Path:
    return path.parent / f"{path.name}.lock"


@contextlib.contextmanager
def _file_lock(target_path: Path, exclusive: bool, timeout: float = DEFAULT_LOCK_TIMEOUT) -> Iterator[None]:
    """
    Hold an advisory ``flock`` on the companion lock file of *target_path*.

    No-op where ``fcntl`` is unavailable. Raises ``TimeoutError`` when the
    lock is not acquired within *timeout* seconds.
    """
    if fcntl is None:
        yield
        return

    lock_type = fcntl.LOCK_EX if exclusive else fcntl.LOCK_SH
    deadline = time.monotonic() + timeout

    with open(_lock_file_path(target_path), "a") as lock_file:
        while True:
            try:
                fcntl.flock(lock_file.fileno(), lock_type | fcntl.LOCK_NB)
                break
            except OSError as exc:
                if exc.errno not in (errno.EACCES, errno.EAGAIN):
                    raise
                if time.monotonic() >= deadline:
                    raise TimeoutError(f"Timed out waiting for lock on {target_path}") from exc
                time.sleep(LOCK_SLEEP_INTERVAL)

        try:
            yield
        finally:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)


class FileKeyValueStore:
    """
    One JSON file per key under a directory.

    Writes go to a temporary file that replaces the target, so a crash
    never leaves a half-written value. Each key has a companion ``.lock``
    file held with ``flock``, so ``update`` is atomic across processes
    sharing the directory, not only across threads.
    """

    _UNSAFE = re.compile(r"[^A-Za-z0-9._-]")

    def __init__(self, directory: Path, lock_timeout: float = DEFAULT_LOCK_TIMEOUT):
        self.directory = Path(directory)
        self.lock_timeout = lock_timeout
        self._lock = threading.RLock()

    def _path(self, key: str) -> Path:
        return self.directory / f"{self._UNSAFE.sub('_', key)}.json"

    def _read(self, path: Path, default: Any) -> Any:
        if not path.exists():
            return default
        return json.loads(path.read_text(encoding="utf-8"))

    def _write(self, path: Path, raw: str) -> None:
        fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=".tmp-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(raw)
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def get(self, key: str, default: Any = None) -> Any:
        path = self._path(key)
        try:
            with self._lock:
                if not path.exists():
                    return default
                with _file_lock(path, exclusive=False, timeout=self.lock_timeout):
                    return self._read(path, default)
        except (OSError, ValueError) as e:
            logger.warning("Storage read error for key %s: %s", key, e)
            return default

    def set(self, key: str, value: Any) -> bool:
        path = self._path(key)
        try:
            raw = json.dumps(value)
            with self._lock:
                self.directory.mkdir(parents=True, exist_ok=True)
                with _file_lock(path, exclusive=True, timeout=self.lock_timeout):
                    self._write(path, raw)
            return True
        except (OSError, TypeError, ValueError) as e:
            logger.warning("Storage write error for key %s: %s", key, e)
            return False

    def delete(self, key: str) -> bool:
        path = self._path(key)
        try:
            with self._lock:
                if not path.exists():
                    return False
                with _file_lock(path, exclusive=True, timeout=self.lock_timeout):
                    path.unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.warning("Storage delete error for key %s: %s", key, e)
            return False

    def update(
        self,
        key: str,
        mutate: Callable[[Any], Any],
        default: Any = None,
    ) -> bool:
        """
        Read-modify-write *key* under one exclusive lock.

        Returns whether the new value was persisted. An unreadable current
        value reaches *mutate* as *default*.
        """
        path = self._path(key)
        try:
            with self._lock:
                self.directory.mkdir(parents=True, exist_ok=True)
                with _file_lock(path, exclusive=True, timeout=self.lock_timeout):
                    try:
                        current = self._read(path, copy.deepcopy(default))
                    except ValueError as e:
                        logger.warning("Storage read error for key %s: %s", key, e)
                        current = copy.deepcopy(default)
                    self._write(path, json.dumps(mutate(current)))
            return True
        except (OSError, TypeError, ValueError) as e:
            logger.warning("Storage write error for key %s: %s", key, e)
            return False


def open_store(directory: Optional[Path] = None) -> KeyValueStore:
    """File store under *directory*, or an in-memory store when ``None``."""
    if directory is None:
        return MemoryKeyValueStore()
    return FileKeyValueStore(directory)
