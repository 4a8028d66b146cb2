"""Two-way synchronization of sync files.

This module provides:
- SyncCoordinator: Push pipeline (local -> remote), pull pipeline
  (remote -> local) and the pull interval

Sync files never go through the build mirror: pushes read the source file
directly and pulls write straight back into the source tree.

Exclusion rules:
    | State                      | push(path)          | pull()        |
    |----------------------------|---------------------|---------------|
    | idle                       | runs                | runs          |
    | push pending for any path  | queued per path     | skipped       |
    | pull pass running          | runs                | skipped       |

A push marks the path pending before it is queued and clears the mark on
every exit path, but only if no newer push for the same path was queued in
the meantime. Each push captures a per-path sequence number for that check.

A pull downloads into the staging area and renames the file onto its
destination, so readers see either the old or the new content.
"""

from __future__ import annotations

import errno
import logging
import os
import shutil
import tempfile
import threading
from concurrent.futures import ThreadPoolExecutor, wait
from pathlib import Path
from typing import TYPE_CHECKING

from syncdeploy.core.paths import to_remote_path
from syncdeploy.deploy.remote import SYNC_FILE_MODE, chmod, last_mod_ms, put_file
from syncdeploy.deploy.types import NotASyncFileError

if TYPE_CHECKING:
    from collections.abc import Callable
    from concurrent.futures import Future

    from syncdeploy.core.paths import ProjectPaths
    from syncdeploy.deploy.patterns import SyncPatternRegistry
    from syncdeploy.deploy.pool import ConnectionPool
    from syncdeploy.deploy.queue import BuildQueue
    from syncdeploy.deploy.types import TaskResult

logger = logging.getLogger(__name__)

DEFAULT_PULL_WORKERS = 16


class SyncCoordinator:
    """Pushes and pulls sync files.

    Usage:
        coordinator = SyncCoordinator(registry, pool, queue, paths)
        registry.start_loading()
        coordinator.start_interval(1.0)   # pull every second
        coordinator.push("data/scores.db")
        ...
        coordinator.close()
    """

    def __init__(
        self,
        registry: SyncPatternRegistry,
        pool: ConnectionPool,
        queue: BuildQueue,
        paths: ProjectPaths,
        time_offset_hours: float = 0.0,
        pull_workers: int = DEFAULT_PULL_WORKERS,
        on_pulled: Callable[[str], None] | None = None,
    ) -> None:
        """Initialize the coordinator.

        Args:
            registry: Sync file patterns.
            pool: Connection pool shared with builds.
            queue: Per-path queue shared with builds.
            paths: Project directories.
            time_offset_hours: Correction subtracted from remote mtimes.
            pull_workers: Threads used to pull paths concurrently.
            on_pulled: Called with the path after a file was pulled.
        """
        self._registry = registry
        self._pool = pool
        self._queue = queue
        self._paths = paths
        self._offset = time_offset_hours
        self._on_pulled = on_pulled

        self._lock = threading.Lock()
        # path -> last known remote mtime (ms)
        self._pull_record: dict[str, float] = {}
        # path -> sequence of the newest in-flight push
        self._pending: dict[str, int] = {}
        # path -> last sequence handed out
        self._sequences: dict[str, int] = {}
        self._seeded = False
        self._pull_running = False
        self._first_pull = True

        self._pull_executor = ThreadPoolExecutor(
            max_workers=pull_workers, thread_name_prefix="Pull"
        )
        self._interval_thread: threading.Thread | None = None
        self._interval_stop: threading.Event | None = None

    def set_on_pulled(self, callback: Callable[[str], None]) -> None:
        """Set callback invoked with the path after a file was pulled."""
        self._on_pulled = callback

    @property
    def pull_record(self) -> dict[str, float]:
        """Copy of the path -> known remote mtime map."""
        with self._lock:
            return dict(self._pull_record)

    @property
    def pending_pushes(self) -> dict[str, int]:
        """Copy of the path -> pending push sequence map."""
        with self._lock:
            return dict(self._pending)

    @property
    def has_pending_push(self) -> bool:
        """Whether any push is in flight."""
        with self._lock:
            return bool(self._pending)

    @property
    def is_pulling(self) -> bool:
        """Whether a pull pass is running."""
        with self._lock:
            return self._pull_running

    @property
    def interval_running(self) -> bool:
        """Whether the pull interval is active."""
        with self._lock:
            return self._interval_thread is not None

    def _ensure_loaded(self) -> None:
        """Wait for the registry and seed the pull record once."""
        self._registry.wait_ready()
        with self._lock:
            if self._seeded:
                return
            for path in self._registry.initial_paths:
                self._pull_record.setdefault(path, 0.0)
            self._seeded = True

    # =========================================================================
    # Push
    # =========================================================================

    def _mark_pending(self, path: str) -> int:
        with self._lock:
            seq = self._sequences.get(path, 0) + 1
            self._sequences[path] = seq
            self._pending[path] = seq
            return seq

    def _clear_pending(self, path: str, seq: int) -> None:
        with self._lock:
            # A newer push owns the flag
            if self._pending.get(path) == seq:
                del self._pending[path]

    def _check_sync_file(self, path: str) -> None:
        self._ensure_loaded()
        if not self._registry.matches(path):
            raise NotASyncFileError(path)

    def push(self, path: str) -> Future[TaskResult]:
        """Queue a push of a sync file behind other work on the same path.

        Args:
            path: Relative source path.

        Returns:
            Future resolved once the push has run.

        Raises:
            NotASyncFileError: If no sync pattern matches the path.
        """
        self._check_sync_file(path)
        seq = self._mark_pending(path)
        try:
            return self._queue.enqueue(path, lambda: self._transfer(path, seq), "push")
        except BaseException:
            self._clear_pending(path, seq)
            raise

    def push_now(self, path: str) -> None:
        """Push a sync file in the calling thread.

        For callers already running on the path's queue.

        Raises:
            NotASyncFileError: If no sync pattern matches the path.
        """
        self._check_sync_file(path)
        self._transfer(path, self._mark_pending(path))

    def _transfer(self, path: str, seq: int) -> None:
        """Upload a sync file and record its new remote mtime."""
        try:
            remote = to_remote_path(path)
            with self._pool.connection() as transport:
                put_file(transport, self._paths.to_src(path), remote)
                chmod(transport, SYNC_FILE_MODE, remote)
                mtime = last_mod_ms(transport, remote, self._offset)
            with self._lock:
                self._pull_record[path] = mtime
            logger.info("Pushed database %s", path)
        finally:
            self._clear_pending(path, seq)

    # =========================================================================
    # Pull
    # =========================================================================

    def pull_one(self, path: str) -> bool:
        """Download one sync file if the remote copy is newer.

        Returns:
            True if the file was downloaded.
        """
        remote = to_remote_path(path)
        staging = self._paths.to_staging(path)
        with self._pool.connection() as transport:
            new_mtime = last_mod_ms(transport, remote, self._offset)
            with self._lock:
                known = self._pull_record.get(path, 0.0)
            if new_mtime <= known:
                return False
            staging.parent.mkdir(parents=True, exist_ok=True)
            with open(staging, "wb") as f:
                transport.download(remote, f)

        _promote(staging, self._paths.to_src(path))
        with self._lock:
            self._pull_record[path] = new_mtime
        logger.info("Pulled database %s", path)
        if self._on_pulled:
            self._on_pulled(path)
        return True

    def _pull_one_logged(self, path: str) -> bool:
        try:
            self.pull_one(path)
        except Exception:
            logger.exception("Error pulling %s", path)
            return False
        return True

    def pull(self) -> bool:
        """Run one pull pass over every known sync file.

        Skipped while another pass runs or while any push is pending.

        Returns:
            True if a pass ran.
        """
        self._ensure_loaded()
        with self._lock:
            if self._pull_running or self._pending:
                return False
            self._pull_running = True
            paths = list(self._pull_record)
            first = self._first_pull

        try:
            if first:
                logger.info("Begin first pulling")
            futures = [self._pull_executor.submit(self._pull_one_logged, p) for p in paths]
            wait(futures)
            shutil.rmtree(self._paths.staging, ignore_errors=True)
            failures = sum(1 for f in futures if not f.result())
            if failures:
                logger.warning("Pull pass finished with %d failed paths", failures)
            elif first:
                logger.info("End first pulling")
                with self._lock:
                    self._first_pull = False
        finally:
            with self._lock:
                self._pull_running = False
        return True

    # =========================================================================
    # Interval
    # =========================================================================

    def start_interval(self, interval: float) -> None:
        """Pull every ``interval`` seconds in a background thread.

        Waits for the pattern registry first.

        Raises:
            RuntimeError: If an interval is already running.
        """
        self._ensure_loaded()
        with self._lock:
            if self._interval_thread is not None:
                raise RuntimeError("There is already an interval running")
            stop = threading.Event()
            thread = threading.Thread(
                target=self._interval_loop,
                args=(interval, stop),
                name="PullInterval",
                daemon=True,
            )
            self._interval_stop = stop
            self._interval_thread = thread
        thread.start()
        logger.debug("Pull interval started (%.1fs)", interval)

    def stop_interval(self, timeout: float = 5.0) -> None:
        """Stop the pull interval.

        Raises:
            RuntimeError: If no interval is running.
        """
        with self._lock:
            if self._interval_thread is None or self._interval_stop is None:
                raise RuntimeError("There is currently no interval")
            thread, stop = self._interval_thread, self._interval_stop
            self._interval_thread = None
            self._interval_stop = None
        stop.set()
        if thread is not threading.current_thread():
            thread.join(timeout=timeout)

    def _interval_loop(self, interval: float, stop: threading.Event) -> None:
        while not stop.wait(interval):
            try:
                self.pull()
            except Exception:
                logger.exception("Pull pass failed")

    def close(self) -> None:
        """Stop the interval and the pull threads."""
        if self.interval_running:
            self.stop_interval()
        self._pull_executor.shutdown(wait=True)


def _promote(staging: Path, destination: Path) -> None:
    """Atomically move a downloaded file onto its destination."""
    destination.parent.mkdir(parents=True, exist_ok=True)
    try:
        os.replace(staging, destination)
        return
    except OSError as e:
        if e.errno != errno.EXDEV:
            raise
    # Staging area on another filesystem: copy next to the destination first
    fd, tmp = tempfile.mkstemp(prefix=".pull.", dir=destination.parent)
    os.close(fd)
    try:
        shutil.copyfile(staging, tmp)
        os.replace(tmp, destination)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise
    staging.unlink(missing_ok=True)
