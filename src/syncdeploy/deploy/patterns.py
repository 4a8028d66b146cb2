"""Sync file pattern registry.

This module provides:
- SyncPatternRegistry: Globs read from ``data/.sync`` that mark sync files

A path is a sync file iff it matches any pattern. Matching is done on the
posix form of the relative path with gitignore-style wildcards (the
``gitwildmatch`` dialect of pathspec): ``*`` stays within one path segment,
``**`` spans zero or more segments, a pattern without a slash matches a name
at any depth, and dotfiles match like any other name. The same matcher
decides membership and finds the files present at load time. Every file in the source tree
matching a pattern at load time is reported through :attr:`initial_paths`
so the pull pipeline knows what to watch remotely.

Files listed in ``data/.sync`` are rewritten in place by pulls and should
be ignored by version control.
"""

from __future__ import annotations

import logging
import os
import threading
from pathlib import Path

from pathspec import PathSpec

from syncdeploy.core.paths import from_posix

logger = logging.getLogger(__name__)


class SyncPatternRegistry:
    """Ordered set of sync file globs with a ready barrier.

    Loading may run in a background thread; every query waits for the
    barrier first.
    """

    def __init__(self, pattern_file: Path, src_dir: Path) -> None:
        """Initialize an empty, not yet loaded registry.

        Args:
            pattern_file: Newline-delimited globs (``#`` starts a comment).
            src_dir: Source tree the globs are relative to.
        """
        self._pattern_file = Path(pattern_file)
        self._src_dir = Path(src_dir)
        self._patterns: list[str] = []
        self._spec = PathSpec.from_lines("gitwildmatch", [])
        self._initial_paths: list[str] = []
        self._ready = threading.Event()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()

    @classmethod
    def from_patterns(cls, patterns: list[str], src_dir: Path) -> SyncPatternRegistry:
        """Build an already loaded registry from in-memory patterns."""
        registry = cls(Path(os.devnull), src_dir)
        for pattern in patterns:
            registry._add_pattern(pattern)
        registry._ready.set()
        return registry

    @property
    def is_ready(self) -> bool:
        """Whether loading has finished."""
        return self._ready.is_set()

    @property
    def patterns(self) -> list[str]:
        """Loaded patterns in file order."""
        self.wait_ready()
        return list(self._patterns)

    @property
    def initial_paths(self) -> list[str]:
        """Existing source files that matched at load time (platform separators)."""
        self.wait_ready()
        return list(self._initial_paths)

    def start_loading(self) -> None:
        """Load the pattern file in a background thread."""
        with self._lock:
            if self._thread is not None or self._ready.is_set():
                return
            self._thread = threading.Thread(
                target=self.load, name="SyncPatternLoader", daemon=True
            )
            self._thread.start()

    def load(self) -> None:
        """Read the pattern file and resolve matching files.

        Always releases the ready barrier, even when the file cannot be
        read (the registry is then empty).
        """
        try:
            self._load_patterns()
            self._resolve_initial_paths()
            logger.info(
                "Loaded %d sync patterns matching %d files",
                len(self._patterns),
                len(self._initial_paths),
            )
        except (OSError, ValueError):
            logger.exception("Failed to load sync patterns from %s", self._pattern_file)
        finally:
            self._ready.set()

    def wait_ready(self, timeout: float | None = None) -> bool:
        """Block until loading has finished.

        Returns:
            True if ready, False on timeout.
        """
        return self._ready.wait(timeout)

    def _load_patterns(self) -> None:
        if not self._pattern_file.exists():
            logger.warning("No sync pattern file at %s", self._pattern_file)
            return
        with open(self._pattern_file, encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                # Skip comments and empty lines
                if line and not line.startswith("#"):
                    self._add_pattern(line)

    def _add_pattern(self, pattern: str) -> None:
        pattern = pattern.replace("\\", "/").lstrip("/")
        if pattern and pattern not in self._patterns:
            self._patterns.append(pattern)
            self._spec = PathSpec.from_lines("gitwildmatch", self._patterns)

    def _resolve_initial_paths(self) -> None:
        if not self._src_dir.is_dir():
            return
        found: list[str] = []
        for dirpath, _dirnames, filenames in os.walk(self._src_dir):
            for name in filenames:
                rel = Path(dirpath, name).relative_to(self._src_dir).as_posix()
                if self.matches(rel):
                    found.append(from_posix(rel))
        self._initial_paths = sorted(found)

    def matches(self, path: str) -> bool:
        """Match a relative path against the patterns without waiting."""
        return self._spec.match_file(path.replace("\\", "/"))

    def contains(self, path: str) -> bool:
        """Check whether a relative path is a sync file.

        Waits for the ready barrier first.
        """
        self.wait_ready()
        return self.matches(path)
