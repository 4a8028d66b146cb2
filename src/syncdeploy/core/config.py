"""Configuration classes for syncdeploy.

This module defines:
- FTPConfig: static transport credentials read from ``data/ftp.json``
- DeployConfig: project layout and engine tuning
- load_config / load_ftp_config: JSON loaders for both
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

from syncdeploy.core.paths import ProjectPaths

logger = logging.getLogger(__name__)

DEFAULT_RAW_COPY_PATHS = ["/public_html/scripts/c2runtime.js"]
DEFAULT_IGNORE_PATTERNS = [".git", ".git/**"]


class ConfigError(Exception):
    """Configuration file missing or invalid."""


@dataclass
class FTPConfig:
    """Credentials and connection settings for the FTP transport.

    Attributes:
        host: Server hostname.
        port: Control connection port.
        user: Login name.
        password: Login password.
        secure: Use explicit FTP over TLS.
        timeout: Socket timeout in seconds.
    """

    host: str
    user: str = "anonymous"
    password: str = ""
    port: int = 21
    secure: bool = False
    timeout: float = 30.0

    def __repr__(self) -> str:
        """Representation without the password."""
        return f"FTPConfig(host={self.host!r}, port={self.port}, user={self.user!r})"


@dataclass
class DeployConfig:
    """Layout and tuning of a deploy project.

    Relative directories are resolved against ``project_dir`` (the
    directory holding ``data/``), matching the layout::

        project/            <- project_dir
            data/ftp.json
            data/.sync
            data/local_mtimes.json
            server/         <- dest_dir (build mirror)
            .sync/          <- staging_dir
        src/                <- src_dir ("../src")

    Attributes:
        project_dir: Base directory for the relative paths below.
        src_dir: Source tree to watch.
        dest_dir: Local build-output mirror.
        data_dir: Directory holding the persisted state files.
        staging_dir: Temporary area for pulls, removed after each pass.
        pull_interval: Seconds between pull passes.
        pool_max: Maximum concurrent transport sessions.
        connect_max_retries: Retries when opening a session fails.
        connect_initial_backoff: First backoff delay in seconds.
        connect_max_backoff: Backoff ceiling in seconds.
        raw_copy_paths: Remote paths that are always copied without building.
        build_commands: Per-category argv templates; ``{src}`` is replaced
            with the absolute source path and stdout becomes the artifact.
        ignore_patterns: Source paths the watcher never reports.
        remote_time_offset_hours: Correction subtracted from remote mtimes.
        debug: Trace transport commands.
    """

    project_dir: Path = field(default_factory=Path.cwd)
    src_dir: Path = Path("../src")
    dest_dir: Path = Path("server")
    data_dir: Path = Path("data")
    staging_dir: Path = Path(".sync")
    pull_interval: float = 1.0
    pool_max: int = 100
    connect_max_retries: int = 5
    connect_initial_backoff: float = 1.0
    connect_max_backoff: float = 60.0
    raw_copy_paths: list[str] = field(default_factory=lambda: list(DEFAULT_RAW_COPY_PATHS))
    build_commands: dict[str, list[str]] = field(default_factory=dict)
    ignore_patterns: list[str] = field(default_factory=lambda: list(DEFAULT_IGNORE_PATTERNS))
    remote_time_offset_hours: float = 0.0
    debug: bool = False

    def __post_init__(self) -> None:
        """Resolve directories against the project directory."""
        self.project_dir = Path(self.project_dir).expanduser().resolve()
        for name in ("src_dir", "dest_dir", "data_dir", "staging_dir"):
            value = Path(getattr(self, name)).expanduser()
            if not value.is_absolute():
                value = self.project_dir / value
            setattr(self, name, value.resolve())
        if self.pull_interval <= 0:
            raise ConfigError(f"pull_interval must be positive, got {self.pull_interval}")
        if self.pool_max < 1:
            raise ConfigError(f"pool_max must be at least 1, got {self.pool_max}")

    @property
    def paths(self) -> ProjectPaths:
        """Resolved source/dest/staging directories."""
        return ProjectPaths(src=self.src_dir, dest=self.dest_dir, staging=self.staging_dir)

    @property
    def ftp_config_file(self) -> Path:
        """Location of the transport credentials."""
        return self.data_dir / "ftp.json"

    @property
    def sync_patterns_file(self) -> Path:
        """Location of the newline-delimited sync file globs."""
        return self.data_dir / ".sync"

    @property
    def mtime_cache_file(self) -> Path:
        """Location of the persisted local mtime cache."""
        return self.data_dir / "local_mtimes.json"

    @property
    def overrides_file(self) -> Path:
        """Optional JSON file overriding these settings."""
        return self.data_dir / "deploy.json"


def _read_json(path: Path) -> Any:
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as e:
        raise ConfigError(f"Config file not found: {path}") from e
    except (OSError, ValueError) as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e


def load_config(project_dir: Path | None = None, **overrides: Any) -> DeployConfig:
    """Build a DeployConfig for a project.

    Values from ``data/deploy.json`` (if present) are applied first, then
    keyword overrides that are not None.

    Args:
        project_dir: Project directory (defaults to the current directory).
        **overrides: DeployConfig fields to force.

    Returns:
        The resolved configuration.

    Raises:
        ConfigError: If the overrides file is invalid.
    """
    base = Path(project_dir) if project_dir else Path.cwd()
    values: dict[str, Any] = {}

    data_dir = Path(overrides.get("data_dir") or "data")
    overrides_file = (data_dir if data_dir.is_absolute() else base / data_dir) / "deploy.json"
    if overrides_file.exists():
        loaded = _read_json(overrides_file)
        if not isinstance(loaded, dict):
            raise ConfigError(f"{overrides_file} must contain a JSON object")
        known = {f.name for f in fields(DeployConfig)}
        unknown = set(loaded) - known
        if unknown:
            raise ConfigError(f"Unknown settings in {overrides_file}: {', '.join(sorted(unknown))}")
        values.update(loaded)
        logger.debug("Loaded settings from %s", overrides_file)

    values.update({k: v for k, v in overrides.items() if v is not None})
    values["project_dir"] = base
    try:
        return DeployConfig(**values)
    except TypeError as e:
        raise ConfigError(str(e)) from e


def load_ftp_config(path: Path) -> FTPConfig:
    """Load transport credentials.

    Accepts the keys of :class:`FTPConfig`.

    Raises:
        ConfigError: If the file is missing, unreadable or lacks ``host``.
    """
    data = _read_json(path)
    if not isinstance(data, dict) or not data.get("host"):
        raise ConfigError(f"{path} must be a JSON object with a 'host'")
    known = {f.name for f in fields(FTPConfig)}
    try:
        return FTPConfig(**{k: v for k, v in data.items() if k in known})
    except TypeError as e:
        raise ConfigError(str(e)) from e
