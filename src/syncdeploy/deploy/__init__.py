"""Deploy engine: builds, uploads and two-way sync over pooled sessions.

Architecture:
    FileWatcher → Orchestrator → BuildQueue → (Transformer | SyncCoordinator) → ConnectionPool

Components:
- **FileWatcher**: Reports source tree events (watchdog + startup scan)
- **Orchestrator**: Classifies events and dispatches them
- **ChangeTracker**: Persisted local mtimes, suppresses redundant work
- **BuildQueue**: Per-path serialized task execution
- **SyncCoordinator**: Push/pull of sync files with cross-exclusion
- **SyncPatternRegistry**: Globs marking sync files
- **ConnectionPool**: Bounded, validated transport sessions
- **Transformer**: Builds source files into the local mirror

All public symbols are re-exported here.
"""

from syncdeploy.deploy.coordinator import SyncCoordinator
from syncdeploy.deploy.ignore import IgnorePatterns
from syncdeploy.deploy.orchestrator import Orchestrator, build_orchestrator
from syncdeploy.deploy.patterns import SyncPatternRegistry
from syncdeploy.deploy.pool import ConnectionPool, PooledConnection, PoolStats
from syncdeploy.deploy.queue import BuildQueue, log_result
from syncdeploy.deploy.retry import (
    DEFAULT_BACKOFF_MULTIPLIER,
    DEFAULT_INITIAL_BACKOFF,
    DEFAULT_MAX_BACKOFF,
    DEFAULT_MAX_RETRIES,
    NETWORK_EXCEPTIONS,
    retry_with_backoff,
)
from syncdeploy.deploy.tracker import ChangeTracker
from syncdeploy.deploy.transformer import BuildCategory, Transformer
from syncdeploy.deploy.types import (
    BuildError,
    CacheCorruptError,
    ConnectionState,
    DeployError,
    EventKind,
    FileCategory,
    NotASyncFileError,
    PoolExhaustedError,
    ResultCallback,
    TaskResult,
    TaskStatus,
    TrackedFile,
)
from syncdeploy.deploy.watcher import FileWatcher, SourceEventHandler

__all__ = [
    # Retry functions and constants
    "DEFAULT_BACKOFF_MULTIPLIER",
    "DEFAULT_INITIAL_BACKOFF",
    "DEFAULT_MAX_BACKOFF",
    "DEFAULT_MAX_RETRIES",
    "NETWORK_EXCEPTIONS",
    "retry_with_backoff",
    # Types and errors
    "BuildError",
    "CacheCorruptError",
    "ConnectionState",
    "DeployError",
    "EventKind",
    "FileCategory",
    "NotASyncFileError",
    "PoolExhaustedError",
    "ResultCallback",
    "TaskResult",
    "TaskStatus",
    "TrackedFile",
    # Components
    "BuildCategory",
    "BuildQueue",
    "ChangeTracker",
    "ConnectionPool",
    "IgnorePatterns",
    "Orchestrator",
    "PoolStats",
    "PooledConnection",
    "SyncCoordinator",
    "SyncPatternRegistry",
    "Transformer",
    "build_orchestrator",
    "log_result",
    # Watcher
    "FileWatcher",
    "SourceEventHandler",
]
