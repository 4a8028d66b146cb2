"""Shared types and dataclasses for the deploy engine.

This module provides:
- DeployError and its subclasses: Exception classes
- FileCategory, EventKind: Classification enums
- TrackedFile: A watched path and its last committed mtime
- TaskResult: Outcome reported by the build queue
- ConnectionState: Lifecycle of a pooled connection
- Type aliases for callbacks
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum, IntEnum, auto


class DeployError(Exception):
    """Base exception for deploy errors."""


class BuildError(DeployError):
    """The transformer could not produce an artifact."""


class NotASyncFileError(DeployError):
    """A push was requested for a path no sync pattern matches."""

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"It's not a sync file! ({path})")


class CacheCorruptError(DeployError):
    """The persisted mtime cache exists but cannot be read."""


class PoolExhaustedError(DeployError, ConnectionError):
    """A new transport session could not be opened after all retries."""


class FileCategory(Enum):
    """How a source path is handled."""

    BUILDABLE = "buildable"  # transformed locally, uploaded one-way
    SYNC_FILE = "sync_file"  # replicated both ways, newest wins


class EventKind(Enum):
    """Kinds of source tree events delivered by the watcher."""

    ADD = "add"
    CHANGE = "change"
    REMOVE = "unlink"
    ADD_DIR = "addDir"
    REMOVE_DIR = "unlinkDir"


@dataclass
class TrackedFile:
    """A source path with its last successfully processed mtime.

    Attributes:
        path: Path relative to the source directory.
        local_mtime_ms: Local modification time (ms) when last deployed.
        category: Handling mode of the path.
    """

    path: str
    local_mtime_ms: float
    category: FileCategory = FileCategory.BUILDABLE


class TaskStatus(IntEnum):
    """Outcome of a queued task."""

    COMPLETED = auto()
    FAILED = auto()


@dataclass
class TaskResult:
    """Result of one task executed by the build queue.

    Attributes:
        path: Path the task was serialized on.
        description: Short label used in logs (e.g. "build", "remove").
        status: Whether the task completed.
        error: The exception raised by the task, if any.
        started_at: Monotonic start time.
        finished_at: Monotonic end time.
    """

    path: str
    description: str
    status: TaskStatus
    error: BaseException | None = None
    started_at: float = 0.0
    finished_at: float = field(default_factory=time.monotonic)

    @property
    def success(self) -> bool:
        """Whether the task completed without raising."""
        return self.status == TaskStatus.COMPLETED

    @property
    def elapsed(self) -> float:
        """Seconds spent running the task."""
        return max(self.finished_at - self.started_at, 0.0)


class ConnectionState(IntEnum):
    """State of a pooled connection."""

    IDLE = auto()
    BORROWED = auto()
    VALIDATING = auto()
    DESTROYED = auto()


# Type alias for the queue's result sink
ResultCallback = Callable[[TaskResult], None]
