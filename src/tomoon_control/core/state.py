"""Shared state cells with per-value read/write locking.

This module provides the synchronization layer shared by the persistence loop,
the process supervisor and the API accessors:
- ``RWLock``: a writer-preferring multi-reader/single-writer lock
- ``Guarded``: one value behind its own ``RWLock``
- ``SharedState``: the five independently locked cells of the runtime

Each value gets its own lock so unrelated operations never serialize on each
other. Failing to acquire a cell raises ``LockError``; callers log it and skip
the unit of work instead of letting it take down the control loop.

A cell becomes poisoned when an unexpected exception escapes a ``write()``
block, since the value may be half-updated. ``CoreError`` subclasses are the
normal reporting path and leave the cell usable.

Example:
    cell = Guarded(Settings(), "settings")
    with cell.write() as guard:
        guard.value.enable = True
    with cell.read() as guard:
        print(guard.value.enable)
"""

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Generic, TypeVar

from loguru import logger

from tomoon_control.core.exceptions import CoreError, LockError
from tomoon_control.core.settings import RuntimeState, Settings

if TYPE_CHECKING:
    from tomoon_control.core.supervisor import CoreSupervisor

T = TypeVar("T")


class DownloadStatus(Enum):
    """Progress of a background download."""

    DOWNLOADING = "Downloading"
    FAILED = "Failed"
    SUCCESS = "Success"
    ERROR = "Error"
    NONE = "None"

    def __str__(self) -> str:
        return self.value


class RWLock:
    """Multi-reader/single-writer lock.

    Waiting writers block new readers so a steady stream of reads cannot
    starve a write. The lock is not reentrant.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    def _can_read(self) -> bool:
        return not self._writer and not self._waiting_writers

    def _can_write(self) -> bool:
        return not self._writer and not self._readers

    def acquire_read(self, timeout: float | None = None) -> bool:
        with self._cond:
            if not self._cond.wait_for(self._can_read, timeout):
                return False
            self._readers += 1
            return True

    def release_read(self) -> None:
        with self._cond:
            self._readers -= 1
            if not self._readers:
                self._cond.notify_all()

    def acquire_write(self, timeout: float | None = None) -> bool:
        with self._cond:
            self._waiting_writers += 1
            try:
                acquired = self._cond.wait_for(self._can_write, timeout)
                if acquired:
                    self._writer = True
                return acquired
            finally:
                self._waiting_writers -= 1
                if not self._writer:
                    # Readers held back by this writer may proceed
                    self._cond.notify_all()

    def release_write(self) -> None:
        with self._cond:
            self._writer = False
            self._cond.notify_all()


class Guard(Generic[T]):
    """Access handle for a locked cell, valid only inside its ``with`` block."""

    def __init__(self, cell: "Guarded[T]", *, writable: bool) -> None:
        self._cell = cell
        self._writable = writable

    @property
    def value(self) -> T:
        return self._cell._value

    @value.setter
    def value(self, new_value: T) -> None:
        if not self._writable:
            msg = f"{self._cell.name} is held for reading"
            raise AttributeError(msg)
        self._cell._value = new_value


class Guarded(Generic[T]):
    """A value guarded by its own read/write lock."""

    def __init__(self, value: T, name: str) -> None:
        self._value = value
        self.name = name
        self._lock = RWLock()
        self._poisoned = False

    @property
    def poisoned(self) -> bool:
        return self._poisoned

    def clear_poison(self) -> None:
        self._poisoned = False

    def _check_poison(self) -> None:
        if self._poisoned:
            msg = f"{self.name} lock is poisoned"
            raise LockError(msg)

    @contextmanager
    def read(self, timeout: float | None = None) -> Iterator[Guard[T]]:
        """Hold the cell for shared reading.

        Args:
            timeout: Seconds to wait for the lock, ``None`` waits forever

        Raises:
            LockError: If the cell is poisoned or the lock times out
        """
        self._check_poison()
        if not self._lock.acquire_read(timeout):
            msg = f"Timed out acquiring {self.name} read lock"
            raise LockError(msg)
        try:
            self._check_poison()
            yield Guard(self, writable=False)
        finally:
            self._lock.release_read()

    @contextmanager
    def write(self, timeout: float | None = None) -> Iterator[Guard[T]]:
        """Hold the cell exclusively.

        Args:
            timeout: Seconds to wait for the lock, ``None`` waits forever

        Raises:
            LockError: If the cell is poisoned or the lock times out
        """
        self._check_poison()
        if not self._lock.acquire_write(timeout):
            msg = f"Timed out acquiring {self.name} write lock"
            raise LockError(msg)
        try:
            self._check_poison()
            yield Guard(self, writable=True)
        except CoreError:
            raise
        except BaseException:
            self._poisoned = True
            logger.error(f"{self.name} lock poisoned by an unexpected error")
            raise
        finally:
            self._lock.release_write()


@dataclass
class SharedState:
    """The runtime's independently locked values."""

    settings: Guarded[Settings]
    state: Guarded[RuntimeState]
    supervisor: Guarded["CoreSupervisor"]
    download_status: Guarded[DownloadStatus] = field(
        default_factory=lambda: Guarded(DownloadStatus.NONE, "download_status")
    )
    update_status: Guarded[DownloadStatus] = field(
        default_factory=lambda: Guarded(DownloadStatus.NONE, "update_status")
    )
