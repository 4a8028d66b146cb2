"""Local modification time cache.

The tracker remembers, for every processed source path, the local mtime
at which it was last deployed. A path is only processed again when its
observed mtime is strictly newer.

The cache is a flat JSON object (relative path -> mtime in ms) that is
rewritten whole after every commit or forget. A commit must be the last
step of a successful operation chain: after a crash, anything not
committed is simply processed again.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path

from syncdeploy.deploy.types import CacheCorruptError, FileCategory, TrackedFile

logger = logging.getLogger(__name__)


class ChangeTracker:
    """Persisted path -> last deployed local mtime map."""

    def __init__(self, cache_path: Path) -> None:
        """Load the cache.

        A missing file means a first run and starts empty. A file that
        exists but cannot be parsed is fatal, because nothing safe can be
        assumed about what was already deployed.

        Args:
            cache_path: Location of the JSON cache.

        Raises:
            CacheCorruptError: If the cache cannot be read or parsed.
        """
        self._cache_path = Path(cache_path)
        self._lock = threading.Lock()
        self._mtimes: dict[str, float] = self._load()
        self._categories: dict[str, FileCategory] = {}

    def _load(self) -> dict[str, float]:
        if not self._cache_path.exists():
            logger.info("No mtime cache at %s, starting fresh", self._cache_path)
            return {}
        try:
            data = json.loads(self._cache_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise CacheCorruptError(f"Cannot read mtime cache {self._cache_path}: {e}") from e
        if not isinstance(data, dict) or not all(
            isinstance(v, (int, float)) and not isinstance(v, bool) for v in data.values()
        ):
            raise CacheCorruptError(
                f"Mtime cache {self._cache_path} is not a path -> number mapping"
            )
        logger.debug("Loaded %d cached mtimes", len(data))
        return {str(k): float(v) for k, v in data.items()}

    def _persist(self) -> None:
        """Rewrite the whole cache atomically. Caller holds the lock."""
        self._cache_path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(
            prefix=".local_mtimes.", suffix=".tmp", dir=self._cache_path.parent
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self._mtimes, f)
            os.replace(tmp, self._cache_path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    @property
    def cache_path(self) -> Path:
        """Location of the persisted cache."""
        return self._cache_path

    def should_process(self, path: str, observed_mtime_ms: float) -> bool:
        """Check whether a path has changed since it was last deployed.

        Args:
            path: Relative source path.
            observed_mtime_ms: Current local mtime in ms.

        Returns:
            True if nothing is cached or the cached mtime is older.
        """
        with self._lock:
            cached = self._mtimes.get(path)
        return cached is None or cached < observed_mtime_ms

    def commit(
        self,
        path: str,
        mtime_ms: float,
        category: FileCategory = FileCategory.BUILDABLE,
    ) -> None:
        """Record a successful deployment and persist the cache."""
        with self._lock:
            self._mtimes[path] = mtime_ms
            self._categories[path] = category
            self._persist()
        logger.debug("Committed %s at %.0f", path, mtime_ms)

    def forget(self, path: str) -> None:
        """Drop a deleted path and persist the cache."""
        with self._lock:
            self._categories.pop(path, None)
            if self._mtimes.pop(path, None) is None:
                return
            self._persist()
        logger.debug("Forgot %s", path)

    def get(self, path: str) -> TrackedFile | None:
        """Return the tracked state of a path, if any."""
        with self._lock:
            mtime = self._mtimes.get(path)
            if mtime is None:
                return None
            category = self._categories.get(path, FileCategory.BUILDABLE)
        return TrackedFile(path=path, local_mtime_ms=mtime, category=category)

    def tracked_files(self) -> list[TrackedFile]:
        """All tracked paths, sorted by path."""
        with self._lock:
            items = sorted(self._mtimes.items())
            categories = dict(self._categories)
        return [
            TrackedFile(path=p, local_mtime_ms=m, category=categories.get(p, FileCategory.BUILDABLE))
            for p, m in items
        ]

    def __contains__(self, path: object) -> bool:
        with self._lock:
            return path in self._mtimes

    def __len__(self) -> int:
        with self._lock:
            return len(self._mtimes)
