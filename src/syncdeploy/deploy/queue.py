"""Per-path serialized task execution.

This module provides:
- BuildQueue: Runs tasks on a thread pool, one at a time per path
- log_result: Default result sink

Each path behaves like a small actor: its tasks wait in a FIFO deque and a
single executor job at a time works through them. Tasks for different
paths run concurrently.

Tasks are fire-and-forget. A task that raises is reported as a failed
TaskResult to the result sink, and the next task for the same path still
runs. The future returned by :meth:`BuildQueue.enqueue` always resolves
with the TaskResult and never raises; it only exists for completion
signaling.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from syncdeploy.deploy.types import ResultCallback, TaskResult, TaskStatus

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 32


def log_result(result: TaskResult) -> None:
    """Default sink: log failures, trace successes."""
    if result.success:
        logger.debug(
            "%s %s done in %.2fs", result.description, result.path, result.elapsed
        )
    else:
        logger.error(
            "Error at %s %s: %s",
            result.description,
            result.path,
            result.error,
            exc_info=result.error,
        )


@dataclass
class _QueuedTask:
    func: Callable[[], object]
    description: str
    future: Future[TaskResult] = field(default_factory=Future)


@dataclass
class _PathChain:
    pending: deque[_QueuedTask] = field(default_factory=deque)
    running: bool = False


class BuildQueue:
    """Serializes tasks per path while running different paths in parallel.

    Usage:
        queue = BuildQueue(max_workers=32)
        queue.enqueue("app.js", lambda: build("app.js"), "build")
        queue.enqueue("app.js", lambda: remove("app.js"), "remove")  # runs after the build
        queue.wait_idle()
        queue.shutdown()
    """

    def __init__(
        self,
        max_workers: int = DEFAULT_MAX_WORKERS,
        on_result: ResultCallback | None = None,
    ) -> None:
        """Initialize the queue.

        Args:
            max_workers: Threads shared by all paths.
            on_result: Sink receiving every TaskResult (defaults to logging).
        """
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="BuildQueue"
        )
        self._on_result = on_result or log_result
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._chains: dict[str, _PathChain] = {}
        self._outstanding = 0
        self._closed = False

    @property
    def pending_count(self) -> int:
        """Number of tasks queued or running."""
        with self._lock:
            return self._outstanding

    def is_busy(self, path: str) -> bool:
        """Whether a task for ``path`` is queued or running."""
        with self._lock:
            return path in self._chains

    def enqueue(
        self,
        path: str,
        task: Callable[[], object],
        description: str = "task",
    ) -> Future[TaskResult]:
        """Append a task to the tail of the path's chain.

        Args:
            path: Serialization key (relative source path).
            task: Callable run on a worker thread; its return value is ignored.
            description: Label used in results and logs.

        Returns:
            Future resolved with the TaskResult once the task has run.

        Raises:
            RuntimeError: If the queue has been shut down.
        """
        item = _QueuedTask(func=task, description=description)
        with self._lock:
            if self._closed:
                raise RuntimeError("Build queue is shut down")
            chain = self._chains.setdefault(path, _PathChain())
            chain.pending.append(item)
            self._outstanding += 1
            start = not chain.running
            chain.running = True
        if start:
            self._executor.submit(self._step, path)
        logger.debug("Queued %s for %s", description, path)
        return item.future

    def _step(self, path: str) -> None:
        """Run the next task of a path, then reschedule the path if needed."""
        with self._lock:
            item = self._chains[path].pending.popleft()

        started = time.monotonic()
        try:
            item.func()
        except Exception as e:
            result = TaskResult(
                path=path,
                description=item.description,
                status=TaskStatus.FAILED,
                error=e,
                started_at=started,
            )
        else:
            result = TaskResult(
                path=path,
                description=item.description,
                status=TaskStatus.COMPLETED,
                started_at=started,
            )

        try:
            self._on_result(result)
        except Exception:
            logger.exception("Result sink failed for %s", path)

        with self._lock:
            self._outstanding -= 1
            chain = self._chains[path]
            if chain.pending:
                reschedule = True
            else:
                reschedule = False
                del self._chains[path]
            if self._outstanding == 0:
                self._idle.notify_all()

        item.future.set_result(result)
        if reschedule:
            self._executor.submit(self._step, path)

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until no task is queued or running.

        Returns:
            True if the queue became idle, False on timeout.
        """
        with self._idle:
            return self._idle.wait_for(lambda: self._outstanding == 0, timeout=timeout)

    def shutdown(self, wait: bool = True) -> None:
        """Refuse new tasks and stop the worker threads.

        Args:
            wait: Let already queued tasks finish first.
        """
        with self._lock:
            self._closed = True
        if wait:
            self.wait_idle()
        self._executor.shutdown(wait=wait)
