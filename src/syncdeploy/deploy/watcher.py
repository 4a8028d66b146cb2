"""Source tree watcher.

This module provides:
- FileWatcher: Watches the source directory with watchdog
- SourceEventHandler: Maps watchdog events to deploy event kinds

On start the watcher scans the tree and reports every existing directory
as ADD_DIR and every file as ADD, then calls ``on_ready``. Live changes
follow. A move is reported as a removal of the old path and an addition
of the new one.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING

from watchdog.events import (
    DirCreatedEvent,
    DirDeletedEvent,
    DirMovedEvent,
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

from syncdeploy.deploy.ignore import IgnorePatterns
from syncdeploy.deploy.types import EventKind

if TYPE_CHECKING:
    from collections.abc import Callable

    from watchdog.observers.api import BaseObserver

logger = logging.getLogger(__name__)


def _decode(path: str | bytes) -> Path:
    if isinstance(path, bytes):
        path = path.decode("utf-8", errors="replace")
    return Path(path)


class SourceEventHandler(FileSystemEventHandler):
    """Forwards watchdog events as (EventKind, relative path) pairs."""

    def __init__(
        self,
        base_path: Path,
        on_event: Callable[[EventKind, str], None],
        ignore_patterns: IgnorePatterns | None = None,
    ) -> None:
        super().__init__()
        self._base_path = base_path
        self._on_event = on_event
        self._ignore = ignore_patterns or IgnorePatterns()

    def emit(self, kind: EventKind, path: Path) -> None:
        """Report one event unless the path is ignored."""
        if self._ignore.should_ignore(path, self._base_path):
            return
        try:
            rel_path = path.relative_to(self._base_path)
        except ValueError:
            logger.warning("Path %s is not relative to %s", path, self._base_path)
            return
        if str(rel_path) == ".":
            return
        self._on_event(kind, str(rel_path))

    def emit_tree(self, root: Path) -> None:
        """Report a directory and everything below it as additions."""
        if root != self._base_path:
            self.emit(EventKind.ADD_DIR, root)
        for dirpath, dirnames, filenames in os.walk(root):
            current = Path(dirpath)
            # Prune ignored directories
            dirnames[:] = sorted(
                d for d in dirnames
                if not self._ignore.should_ignore(current / d, self._base_path)
            )
            for name in dirnames:
                self.emit(EventKind.ADD_DIR, current / name)
            for name in sorted(filenames):
                self.emit(EventKind.ADD, current / name)

    def on_created(self, event: FileSystemEvent) -> None:
        """Handle created event."""
        if isinstance(event, DirCreatedEvent):
            self.emit(EventKind.ADD_DIR, _decode(event.src_path))
        elif isinstance(event, FileCreatedEvent):
            self.emit(EventKind.ADD, _decode(event.src_path))

    def on_modified(self, event: FileSystemEvent) -> None:
        """Handle modified event (directory modifications are noise)."""
        if isinstance(event, FileModifiedEvent):
            self.emit(EventKind.CHANGE, _decode(event.src_path))

    def on_deleted(self, event: FileSystemEvent) -> None:
        """Handle deleted event."""
        if isinstance(event, DirDeletedEvent):
            self.emit(EventKind.REMOVE_DIR, _decode(event.src_path))
        elif isinstance(event, FileDeletedEvent):
            self.emit(EventKind.REMOVE, _decode(event.src_path))

    def on_moved(self, event: FileSystemEvent) -> None:
        """Handle moved event as remove + add."""
        if isinstance(event, DirMovedEvent):
            self.emit(EventKind.REMOVE_DIR, _decode(event.src_path))
            self.emit_tree(_decode(event.dest_path))
        elif isinstance(event, FileMovedEvent):
            self.emit(EventKind.REMOVE, _decode(event.src_path))
            self.emit(EventKind.ADD, _decode(event.dest_path))


class FileWatcher:
    """Watches a source directory and reports changes through callbacks."""

    def __init__(
        self,
        watch_path: Path,
        on_event: Callable[[EventKind, str], None],
        on_ready: Callable[[], None] | None = None,
        ignore_patterns: list[str] | None = None,
    ) -> None:
        """Initialize the file watcher.

        Args:
            watch_path: Directory to watch.
            on_event: Called with (kind, relative path) for each change.
            on_ready: Called once the startup scan has been reported.
            ignore_patterns: Additional patterns to ignore.

        Raises:
            ValueError: If ``watch_path`` is not a directory.
        """
        self._watch_path = Path(watch_path).resolve()
        if not self._watch_path.is_dir():
            raise ValueError(f"Watch path must be a directory: {watch_path}")

        self._on_ready = on_ready
        self._handler = SourceEventHandler(
            base_path=self._watch_path,
            on_event=on_event,
            ignore_patterns=IgnorePatterns(ignore_patterns),
        )
        self._observer: BaseObserver = Observer()
        self._running = False

    @property
    def watch_path(self) -> Path:
        """Get the watched directory path."""
        return self._watch_path

    @property
    def is_running(self) -> bool:
        """Check if the watcher is running."""
        return self._running

    def start(self) -> None:
        """Start watching, report the startup scan, then signal ready."""
        if self._running:
            return

        # Observe before scanning so nothing changed during the scan is lost
        self._observer.schedule(self._handler, str(self._watch_path), recursive=True)
        self._observer.start()
        self._running = True

        logger.info("Scanning %s", self._watch_path)
        self._handler.emit_tree(self._watch_path)
        if self._on_ready:
            self._on_ready()

    def stop(self) -> None:
        """Stop watching for changes."""
        if not self._running:
            return

        self._observer.stop()
        self._observer.join(timeout=5.0)
        self._running = False

    def __enter__(self) -> FileWatcher:
        """Context manager entry."""
        self.start()
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.stop()
