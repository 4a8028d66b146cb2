"""Core module - Shared configuration and path mapping."""

from syncdeploy.core.config import (
    ConfigError,
    DeployConfig,
    FTPConfig,
    load_config,
    load_ftp_config,
)
from syncdeploy.core.paths import (
    ProjectPaths,
    artifact_path,
    from_posix,
    to_remote_path,
)

__all__ = [
    # Config
    "ConfigError",
    "DeployConfig",
    "FTPConfig",
    "load_config",
    "load_ftp_config",
    # Paths
    "ProjectPaths",
    "artifact_path",
    "from_posix",
    "to_remote_path",
]
