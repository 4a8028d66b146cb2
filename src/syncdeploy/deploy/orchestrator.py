"""Dispatch of source tree events to the deploy engine.

This module provides:
- Orchestrator: Turns watcher events into builds, pushes and removals
- build_orchestrator: Assembles the engine from a DeployConfig

Event handling:
    | Event      | Serialized per path | Action                                 |
    |------------|---------------------|----------------------------------------|
    | ADD/CHANGE | yes                 | push (sync file) or build + upload     |
    | REMOVE     | yes                 | delete artifact remotely and in mirror |
    | ADD_DIR    | no                  | create directory remotely and in mirror|
    | REMOVE_DIR | no                  | delete directory remotely and in mirror|

A change is skipped when the local mtime is not newer than the cached one.
The cache is only updated once the remote side has been updated.
"""

from __future__ import annotations

import logging
import shutil
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING

from syncdeploy.core.paths import artifact_path, to_remote_path
from syncdeploy.deploy import remote
from syncdeploy.deploy.coordinator import SyncCoordinator
from syncdeploy.deploy.patterns import SyncPatternRegistry
from syncdeploy.deploy.pool import ConnectionPool
from syncdeploy.deploy.queue import BuildQueue
from syncdeploy.deploy.tracker import ChangeTracker
from syncdeploy.deploy.transformer import Transformer
from syncdeploy.deploy.types import EventKind, FileCategory

if TYPE_CHECKING:
    from collections.abc import Callable
    from concurrent.futures import Future

    from syncdeploy.core.config import DeployConfig
    from syncdeploy.core.paths import ProjectPaths
    from syncdeploy.deploy.types import TaskResult
    from syncdeploy.transport.base import Transport

logger = logging.getLogger(__name__)

DEFAULT_MIRROR_WORKERS = 16


class Orchestrator:
    """Routes watcher events to the build and sync pipelines.

    Usage:
        orchestrator = build_orchestrator(config, ftp_factory(ftp_config))
        orchestrator.start()
        watcher = FileWatcher(config.src_dir, orchestrator.handle_event,
                              on_ready=orchestrator.on_ready)
        watcher.start()
        ...
        watcher.stop()
        orchestrator.stop()
    """

    def __init__(
        self,
        paths: ProjectPaths,
        tracker: ChangeTracker,
        queue: BuildQueue,
        pool: ConnectionPool,
        registry: SyncPatternRegistry,
        coordinator: SyncCoordinator,
        transformer: Transformer,
        pull_interval: float = 1.0,
        mirror_workers: int = DEFAULT_MIRROR_WORKERS,
    ) -> None:
        self._paths = paths
        self._tracker = tracker
        self._queue = queue
        self._pool = pool
        self._registry = registry
        self._coordinator = coordinator
        self._transformer = transformer
        self._pull_interval = pull_interval
        coordinator.set_on_pulled(self._on_pulled)

        # Remote halves of mirror operations
        self._mirror = ThreadPoolExecutor(
            max_workers=mirror_workers, thread_name_prefix="Mirror"
        )
        # Directory events, which are not serialized per path
        self._background = ThreadPoolExecutor(
            max_workers=mirror_workers, thread_name_prefix="DirEvent"
        )

    @property
    def paths(self) -> ProjectPaths:
        """The project directories."""
        return self._paths

    @property
    def tracker(self) -> ChangeTracker:
        """The local mtime cache."""
        return self._tracker

    @property
    def coordinator(self) -> SyncCoordinator:
        """The sync file coordinator."""
        return self._coordinator

    @property
    def queue(self) -> BuildQueue:
        """The per-path task queue."""
        return self._queue

    def start(self) -> None:
        """Begin loading the sync patterns."""
        self._registry.start_loading()

    def on_ready(self) -> None:
        """Called when the watcher finished its startup scan."""
        logger.info("Initial scan complete, pulling every %.1fs", self._pull_interval)
        self._coordinator.start_interval(self._pull_interval)

    def stop(self) -> None:
        """Stop pulling, drain queued work and close connections."""
        self._coordinator.close()
        self._background.shutdown(wait=True)
        self._queue.shutdown(wait=True)
        self._mirror.shutdown(wait=True)
        self._pool.close()

    # =========================================================================
    # Event entry point
    # =========================================================================

    def handle_event(self, kind: EventKind, path: str) -> Future[TaskResult] | None:
        """Handle one watcher event. Never raises.

        Args:
            kind: What happened.
            path: Path relative to the source directory.

        Returns:
            Future of the queued task for serialized events, else None.
        """
        try:
            if kind in (EventKind.ADD, EventKind.CHANGE):
                logger.info("%s event: %s", "Add" if kind is EventKind.ADD else "Change", path)
                return self._queue.enqueue(path, lambda: self._deploy(path), "build")
            if kind is EventKind.REMOVE:
                return self._queue.enqueue(path, lambda: self._remove(path), "remove")
            if kind in (EventKind.ADD_DIR, EventKind.REMOVE_DIR):
                self._background.submit(self._guarded, kind, path, self._mirror_dir)
                return None
            logger.warning("Unhandled event - %s for %s", kind, path)
        except Exception:
            logger.exception("Error at %s %s", kind.value, path)
        return None

    def _guarded(self, kind: EventKind, path: str, func: Callable[[EventKind, str], None]) -> None:
        try:
            func(kind, path)
        except Exception:
            logger.exception("Error at %s %s", kind.value, path)

    # =========================================================================
    # Handlers
    # =========================================================================

    def _deploy(self, path: str) -> None:
        """Push or build-and-upload a changed file, then commit its mtime."""
        mtime_ms = self._paths.to_src(path).stat().st_mtime_ns / 1_000_000
        if not self._tracker.should_process(path, mtime_ms):
            logger.debug("Unchanged since last deploy: %s", path)
            return

        if self._registry.contains(path):
            self._coordinator.push_now(path)
            category = FileCategory.SYNC_FILE
        else:
            artifact = self._transformer.transform(path)
            logger.info("Built %s", path)
            with self._pool.connection() as transport:
                remote.upload_artifact(transport, artifact, to_remote_path(artifact_path(path)))
            category = FileCategory.BUILDABLE

        self._tracker.commit(path, mtime_ms, category)

    def _remove(self, path: str) -> None:
        """Mirror a file deletion, then drop it from the cache."""
        target = artifact_path(path)
        remote_path = to_remote_path(target)
        self._mirror_both(
            lambda transport: remote.remove_file(transport, remote_path),
            lambda: self._paths.to_dest(target).unlink(missing_ok=True),
        )
        logger.info("Removed file %s", path)
        self._tracker.forget(path)

    def _mirror_dir(self, kind: EventKind, path: str) -> None:
        remote_path = to_remote_path(path)
        local_path = self._paths.to_dest(path)
        if kind is EventKind.ADD_DIR:
            self._mirror_both(
                lambda transport: remote.ensure_dir_with_perm(transport, remote_path),
                lambda: local_path.mkdir(parents=True, exist_ok=True),
            )
            logger.debug("Created directory %s", path)
        else:
            self._mirror_both(
                lambda transport: remote.remove_dir(transport, remote_path),
                lambda: shutil.rmtree(local_path, ignore_errors=True),
            )
            logger.info("Removed directory %s", path)

    def _mirror_both(
        self,
        remote_op: Callable[[Transport], None],
        local_op: Callable[[], object],
    ) -> None:
        """Run a remote and a local operation concurrently and wait for both."""

        def run_remote() -> None:
            with self._pool.connection() as transport:
                remote_op(transport)

        remote_future = self._mirror.submit(run_remote)
        local_error: Exception | None = None
        try:
            local_op()
        except Exception as e:
            local_error = e
        remote_future.result()
        if local_error is not None:
            raise local_error

    def _on_pulled(self, path: str) -> None:
        """Record a pulled sync file so its rewrite is not pushed back."""
        try:
            mtime_ms = self._paths.to_src(path).stat().st_mtime_ns / 1_000_000
        except OSError:
            return
        self._tracker.commit(path, mtime_ms, FileCategory.SYNC_FILE)


def build_orchestrator(
    config: DeployConfig,
    transport_factory: Callable[[], Transport],
    on_result: Callable[[TaskResult], None] | None = None,
) -> Orchestrator:
    """Assemble the deploy engine from a configuration.

    Args:
        config: Project configuration.
        transport_factory: Returns new, unconnected transport sessions.
        on_result: Optional sink for queue results (defaults to logging).

    Raises:
        CacheCorruptError: If the mtime cache cannot be read.
        ValueError: If the build commands are invalid.
    """
    paths = config.paths
    tracker = ChangeTracker(config.mtime_cache_file)
    pool = ConnectionPool(
        transport_factory,
        max_size=config.pool_max,
        max_retries=config.connect_max_retries,
        initial_backoff=config.connect_initial_backoff,
        max_backoff=config.connect_max_backoff,
    )
    queue = BuildQueue(max_workers=config.pool_max, on_result=on_result)
    registry = SyncPatternRegistry(config.sync_patterns_file, config.src_dir)
    transformer = Transformer(
        paths,
        build_commands=config.build_commands,
        raw_copy_paths=config.raw_copy_paths,
    )

    coordinator = SyncCoordinator(
        registry,
        pool,
        queue,
        paths,
        time_offset_hours=config.remote_time_offset_hours,
    )
    return Orchestrator(
        paths=paths,
        tracker=tracker,
        queue=queue,
        pool=pool,
        registry=registry,
        coordinator=coordinator,
        transformer=transformer,
        pull_interval=config.pull_interval,
    )
