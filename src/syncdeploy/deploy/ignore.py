"""Ignore patterns for the source tree watcher.

This module provides:
- IgnorePatterns: Gitignore-style matching of source paths
- DEFAULT_IGNORE_PATTERNS: Paths never deployed

Three pattern forms are understood:
- ``name/``: a top-level directory and everything below it
- ``dir/*.ext``: matched against the whole relative path
- ``*.swp``: a bare name, matched against the last component at any depth
"""

from __future__ import annotations

import fnmatch
from pathlib import Path

# Version control metadata
DEFAULT_IGNORE_PATTERNS = [
    ".git",
    ".git/**",
]


class IgnorePatterns:
    """Decides which source paths the watcher never reports."""

    def __init__(self, patterns: list[str] | None = None) -> None:
        """Start from the defaults plus ``patterns``."""
        self._patterns: list[str] = []
        self._top_dirs: list[str] = []
        self._full: list[str] = []
        self._names: list[str] = []
        for pattern in [*DEFAULT_IGNORE_PATTERNS, *(patterns or [])]:
            self.add_pattern(pattern)

    @property
    def patterns(self) -> list[str]:
        """Active patterns, as given."""
        return list(self._patterns)

    def add_pattern(self, pattern: str) -> None:
        """Add an ignore pattern (duplicates are dropped)."""
        if not pattern or pattern in self._patterns:
            return
        self._patterns.append(pattern)
        if pattern.endswith("/"):
            self._top_dirs.append(pattern.rstrip("/"))
        else:
            self._full.append(pattern)
            if "/" not in pattern:
                self._names.append(pattern)

    def should_ignore(self, path: Path, base_path: Path) -> bool:
        """Check whether an absolute path under ``base_path`` is ignored.

        Paths outside ``base_path`` are never ignored.
        """
        try:
            rel = path.relative_to(base_path).as_posix()
        except ValueError:
            return False
        if rel == ".":
            return False

        top = rel.split("/", 1)[0]
        return (
            any(fnmatch.fnmatch(top, p) for p in self._top_dirs)
            or any(fnmatch.fnmatch(rel, p) for p in self._full)
            or any(fnmatch.fnmatch(path.name, p) for p in self._names)
        )
