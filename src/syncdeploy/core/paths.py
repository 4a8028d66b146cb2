"""Path mapping between the source tree, the build mirror and the remote host.

All relative paths handled by the deploy engine are relative to the source
directory and use platform separators. The remote side is always a posix
path rooted at "/".
"""

from __future__ import annotations

import os
import posixpath
from dataclasses import dataclass
from pathlib import Path


def to_remote_path(rel_path: str) -> str:
    """Convert a relative local path to its remote posix path.

    Args:
        rel_path: Path relative to the source directory.

    Returns:
        Absolute posix path on the remote host.
    """
    return posixpath.join("/", rel_path.replace(os.sep, posixpath.sep))


def from_posix(rel_path: str) -> str:
    """Convert a posix relative path to platform separators."""
    return rel_path.replace(posixpath.sep, os.sep)


def artifact_path(rel_path: str) -> str:
    """Return the relative path of the artifact built from ``rel_path``.

    Component scripts (``.jsx``) are compiled to plain scripts, so the
    artifact loses the trailing ``x``. Every other file keeps its name.
    """
    if rel_path.endswith(".jsx"):
        return rel_path[:-1]
    return rel_path


@dataclass(frozen=True)
class ProjectPaths:
    """Resolved directories of a deploy project.

    Attributes:
        src: Source tree being watched.
        dest: Local build-output mirror.
        staging: Temporary area for in-flight pulls.
    """

    src: Path
    dest: Path
    staging: Path

    def to_src(self, rel_path: str) -> Path:
        """Absolute path of a relative path in the source tree."""
        return self.src / rel_path

    def to_dest(self, rel_path: str) -> Path:
        """Absolute path of a relative path in the build mirror."""
        return self.dest / rel_path

    def to_staging(self, rel_path: str) -> Path:
        """Absolute path of a relative path in the staging area."""
        return self.staging / rel_path

    def relative(self, path: Path) -> str:
        """Relative source path (platform separators) of an absolute path."""
        return str(path.relative_to(self.src))
