"""Build step turning a source file into an uploadable artifact.

Files are dispatched by extension:

    | Extension        | Category   | Artifact name      |
    |------------------|------------|--------------------|
    | .jsx             | component  | same name, .js     |
    | .js              | script     | same name          |
    | .css             | stylesheet | same name          |
    | .php .html .htm  | markup     | same name          |
    | anything else    | raw        | same name (copied) |

A category is built by running the command configured for it in
``build_commands`` (``{src}`` is replaced with the source file); the
command's stdout becomes the artifact. Categories without a command, and
the remote paths listed in ``raw_copy_paths``, are copied unchanged.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from enum import Enum
from typing import TYPE_CHECKING

from syncdeploy.core.paths import artifact_path, to_remote_path
from syncdeploy.deploy.types import BuildError

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence
    from pathlib import Path

    from syncdeploy.core.paths import ProjectPaths

logger = logging.getLogger(__name__)


class BuildCategory(Enum):
    """How a source file is built."""

    COMPONENT = "component"
    SCRIPT = "script"
    STYLESHEET = "stylesheet"
    MARKUP = "markup"
    RAW = "raw"


_EXTENSIONS = {
    ".jsx": BuildCategory.COMPONENT,
    ".js": BuildCategory.SCRIPT,
    ".css": BuildCategory.STYLESHEET,
    ".php": BuildCategory.MARKUP,
    ".html": BuildCategory.MARKUP,
    ".htm": BuildCategory.MARKUP,
}


class Transformer:
    """Builds source files into the local build mirror."""

    def __init__(
        self,
        paths: ProjectPaths,
        build_commands: Mapping[str, Sequence[str]] | None = None,
        raw_copy_paths: Iterable[str] = (),
    ) -> None:
        """Initialize the transformer.

        Args:
            paths: Project directories.
            build_commands: Category name -> argv template.
            raw_copy_paths: Remote paths always copied without building.

        Raises:
            ValueError: If a command is configured for an unknown category.
        """
        self._paths = paths
        self._commands: dict[BuildCategory, list[str]] = {}
        for name, argv in (build_commands or {}).items():
            try:
                category = BuildCategory(name)
            except ValueError as e:
                raise ValueError(f"Unknown build category: {name!r}") from e
            if not argv:
                raise ValueError(f"Empty build command for {name!r}")
            self._commands[category] = list(argv)
        self._raw_copy_paths = frozenset(raw_copy_paths)

    def category_for(self, rel_path: str) -> BuildCategory:
        """Pick the build category of a relative source path."""
        if to_remote_path(rel_path) in self._raw_copy_paths:
            return BuildCategory.RAW
        for suffix, category in _EXTENSIONS.items():
            if rel_path.endswith(suffix):
                return category
        return BuildCategory.RAW

    def transform(self, rel_path: str) -> Path:
        """Build a source file into the mirror.

        Args:
            rel_path: Path relative to the source directory.

        Returns:
            Absolute path of the written artifact.

        Raises:
            BuildError: If the build command fails or the source is unreadable.
        """
        category = self.category_for(rel_path)
        source = self._paths.to_src(rel_path)
        target = self._paths.to_dest(artifact_path(rel_path))
        target.parent.mkdir(parents=True, exist_ok=True)

        command = self._commands.get(category)
        if category is BuildCategory.RAW or command is None:
            try:
                shutil.copyfile(source, target)
            except OSError as e:
                raise BuildError(f"Build failure at {category.value} {rel_path}: {e}") from e
            return target

        argv = [arg.replace("{src}", str(source)) for arg in command]
        logger.debug("Running %s", argv)
        try:
            result = subprocess.run(
                argv,
                cwd=self._paths.src,
                capture_output=True,
                check=True,
            )
        except subprocess.CalledProcessError as e:
            stderr = e.stderr.decode("utf-8", errors="replace").strip() if e.stderr else ""
            raise BuildError(f"Build failure at {category.value} {rel_path}\n{stderr}") from e
        except OSError as e:
            raise BuildError(f"Build failure at {category.value} {rel_path}: {e}") from e

        target.write_bytes(result.stdout or b"")
        return target
