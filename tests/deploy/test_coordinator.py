"""Tests for sync file push/pull coordination."""

from __future__ import annotations

import errno
import os
import threading
import time
from collections.abc import Iterator
from pathlib import Path

import pytest

from syncdeploy.core.paths import ProjectPaths
from syncdeploy.deploy import coordinator as coordinator_module
from syncdeploy.deploy.coordinator import SyncCoordinator
from syncdeploy.deploy.patterns import SyncPatternRegistry
from syncdeploy.deploy.pool import ConnectionPool
from syncdeploy.deploy.queue import BuildQueue
from syncdeploy.deploy.types import NotASyncFileError, TaskStatus
from tests.fakes import FakeServer, write_file

DB = os.path.join("data", "scores.db")
REMOTE_DB = "/data/scores.db"


def wait_until(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


@pytest.fixture
def queue() -> Iterator[BuildQueue]:
    q = BuildQueue(max_workers=4)
    yield q
    q.shutdown(wait=False)


@pytest.fixture
def make_coordinator(
    tmp_path: Path, paths: ProjectPaths, transport_factory, queue: BuildQueue
) -> Iterator:
    """Build a coordinator over the fake server, loading patterns from disk."""
    created: list[SyncCoordinator] = []

    def make(patterns: str = "data/*.db\n", **kwargs) -> SyncCoordinator:
        registry = SyncPatternRegistry(write_file(tmp_path / "patterns", patterns), paths.src)
        registry.load()
        pool = ConnectionPool(transport_factory, max_size=4, sleep=lambda _: None)
        coordinator = SyncCoordinator(registry, pool, queue, paths, **kwargs)
        created.append(coordinator)
        return coordinator

    yield make
    for coordinator in created:
        coordinator.close()


class TestPush:
    """Tests for the push pipeline."""

    def test_push_uploads_and_records_mtime(
        self, paths: ProjectPaths, server: FakeServer, make_coordinator
    ) -> None:
        write_file(paths.to_src(DB), "rows")
        coordinator = make_coordinator()

        result = coordinator.push(DB).result(timeout=5)

        assert result.status == TaskStatus.COMPLETED
        assert server.files[REMOTE_DB] == b"rows"
        assert server.modes[REMOTE_DB] == "666"
        assert coordinator.pull_record[DB] == server.mtimes[REMOTE_DB].timestamp() * 1000
        assert not coordinator.has_pending_push

    def test_push_rejects_non_sync_file(self, paths: ProjectPaths, make_coordinator) -> None:
        """Pushing a path no pattern matches fails before anything is queued."""
        text_file = os.path.join("data", "scores.txt")
        write_file(paths.to_src(DB))
        write_file(paths.to_src(text_file))
        coordinator = make_coordinator()
        record = coordinator.pull_record

        with pytest.raises(NotASyncFileError, match="It's not a sync file!"):
            coordinator.push(text_file)

        assert not coordinator.has_pending_push
        assert coordinator.pull_record == record
        assert text_file not in coordinator.pull_record

    def test_failed_push_clears_pending(self, make_coordinator) -> None:
        """The pending flag is cleared even when the upload fails."""
        coordinator = make_coordinator()

        # Source file does not exist
        result = coordinator.push(DB).result(timeout=5)

        assert result.status == TaskStatus.FAILED
        assert not coordinator.has_pending_push

    def test_newest_push_owns_pending_flag(
        self, paths: ProjectPaths, queue: BuildQueue, make_coordinator
    ) -> None:
        """Queued pushes keep the flag until the newest one has run."""
        write_file(paths.to_src(DB))
        coordinator = make_coordinator()
        release = threading.Event()
        queue.enqueue(DB, lambda: release.wait(5))

        first = coordinator.push(DB)
        second = coordinator.push(DB)

        assert coordinator.pending_pushes == {DB: 2}
        release.set()
        first.result(timeout=5)
        second.result(timeout=5)
        assert coordinator.pending_pushes == {}

    def test_push_now_runs_inline(
        self, paths: ProjectPaths, server: FakeServer, make_coordinator
    ) -> None:
        write_file(paths.to_src(DB), "inline")
        coordinator = make_coordinator()

        coordinator.push_now(DB)

        assert server.files[REMOTE_DB] == b"inline"
        assert not coordinator.has_pending_push


class TestPull:
    """Tests for the pull pipeline."""

    def test_pulls_newer_remote_file(
        self, paths: ProjectPaths, server: FakeServer, make_coordinator
    ) -> None:
        """A known sync file changed remotely is downloaded into the source tree."""
        write_file(paths.to_src(DB), "old")
        server.put(REMOTE_DB, b"new")
        pulled: list[str] = []
        coordinator = make_coordinator(on_pulled=pulled.append)

        assert coordinator.pull()

        assert paths.to_src(DB).read_text() == "new"
        assert pulled == [DB]
        assert coordinator.pull_record[DB] == server.mtimes[REMOTE_DB].timestamp() * 1000
        assert not paths.staging.exists()

    def test_unchanged_remote_file_not_downloaded(
        self, paths: ProjectPaths, server: FakeServer, make_coordinator
    ) -> None:
        write_file(paths.to_src(DB), "old")
        server.put(REMOTE_DB, b"new")
        coordinator = make_coordinator()
        coordinator.pull()
        server.commands.clear()

        coordinator.pull()

        assert not any(c.startswith("RETR") for c in server.commands)

    def test_own_push_is_not_pulled_back(
        self, paths: ProjectPaths, server: FakeServer, make_coordinator
    ) -> None:
        """After a push the remote mtime is known, so the next pass skips it."""
        write_file(paths.to_src(DB), "mine")
        coordinator = make_coordinator()
        coordinator.push(DB).result(timeout=5)
        server.commands.clear()

        coordinator.pull()

        assert not any(c.startswith("RETR") for c in server.commands)

    def test_missing_remote_file_is_skipped(
        self, paths: ProjectPaths, server: FakeServer, make_coordinator
    ) -> None:
        write_file(paths.to_src(DB), "local only")
        coordinator = make_coordinator()

        assert coordinator.pull()
        assert paths.to_src(DB).read_text() == "local only"

    def test_failed_path_does_not_stop_pass(
        self, paths: ProjectPaths, server: FakeServer, make_coordinator
    ) -> None:
        """One failing download is logged and the other paths still pull."""
        other = os.path.join("data", "users.db")
        write_file(paths.to_src(DB))
        write_file(paths.to_src(other))
        server.put("/data/users.db", b"users")
        # Known mtime but no content: RETR fails
        server.mtimes[REMOTE_DB] = server.tick()
        coordinator = make_coordinator()

        assert coordinator.pull()

        assert paths.to_src(other).read_text() == "users"
        assert coordinator.pull_record[DB] == 0.0

    def test_skipped_while_push_pending(
        self, paths: ProjectPaths, server: FakeServer, queue: BuildQueue, make_coordinator
    ) -> None:
        """No pull pass starts while any push is in flight."""
        write_file(paths.to_src(DB), "local")
        server.put(REMOTE_DB, b"remote")
        coordinator = make_coordinator()
        release = threading.Event()
        queue.enqueue(DB, lambda: release.wait(5))
        push = coordinator.push(DB)

        assert not coordinator.pull()
        assert paths.to_src(DB).read_text() == "local"

        release.set()
        push.result(timeout=5)
        assert coordinator.pull()
        # The push made the remote copy ours
        assert paths.to_src(DB).read_text() == "local"

    def test_skipped_while_pull_running(
        self, paths: ProjectPaths, server: FakeServer, make_coordinator
    ) -> None:
        """Pull passes never overlap."""
        write_file(paths.to_src(DB), "old")
        server.put(REMOTE_DB, b"new")
        server.download_gate = threading.Event()
        coordinator = make_coordinator()
        results: list[bool] = []
        t = threading.Thread(target=lambda: results.append(coordinator.pull()))
        t.start()

        assert wait_until(lambda: coordinator.is_pulling)
        assert not coordinator.pull()

        server.download_gate.set()
        t.join(timeout=5)
        assert results == [True]
        assert not coordinator.is_pulling

    def test_push_during_running_pull(
        self, paths: ProjectPaths, server: FakeServer, queue: BuildQueue, make_coordinator
    ) -> None:
        """A push started mid-pass lets the pass finish but holds off the next one."""
        users = os.path.join("data", "users.db")
        write_file(paths.to_src(DB), "old")
        write_file(paths.to_src(users), "mine")
        server.put(REMOTE_DB, b"new")
        server.download_gate = threading.Event()
        coordinator = make_coordinator()
        results: list[bool] = []
        t = threading.Thread(target=lambda: results.append(coordinator.pull()))
        t.start()
        assert wait_until(lambda: coordinator.is_pulling)

        release = threading.Event()
        queue.enqueue(users, lambda: release.wait(5))
        push = coordinator.push(users)
        server.download_gate.set()
        t.join(timeout=5)

        assert results == [True]
        assert paths.to_src(DB).read_text() == "new"
        assert not coordinator.pull()

        release.set()
        assert push.result(timeout=5).status == TaskStatus.COMPLETED
        assert coordinator.pull()
        assert server.files["/data/users.db"] == b"mine"
        assert paths.to_src(users).read_text() == "mine"

    def test_time_offset_applied(
        self, paths: ProjectPaths, server: FakeServer, make_coordinator
    ) -> None:
        """Remote mtimes are shifted by the configured offset."""
        write_file(paths.to_src(DB))
        server.put(REMOTE_DB, b"new")
        coordinator = make_coordinator(time_offset_hours=1.0)

        coordinator.pull()

        expected = server.mtimes[REMOTE_DB].timestamp() * 1000 - 3600 * 1000
        assert coordinator.pull_record[DB] == expected


class TestPromote:
    """Tests for moving pulled files into place."""

    def test_replaces_destination(self, tmp_path: Path) -> None:
        staging = write_file(tmp_path / "staging" / "scores.db", "new")
        destination = write_file(tmp_path / "src" / "scores.db", "old")

        coordinator_module._promote(staging, destination)

        assert destination.read_text() == "new"
        assert not staging.exists()

    def test_cross_device_falls_back_to_copy(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """A rename across filesystems copies next to the destination first."""
        staging = write_file(tmp_path / "staging" / "scores.db", "new")
        destination = write_file(tmp_path / "src" / "scores.db", "old")
        real_replace = os.replace
        calls: list[str] = []

        def replace(src, dst) -> None:
            calls.append(str(src))
            if len(calls) == 1:
                raise OSError(errno.EXDEV, "Invalid cross-device link")
            real_replace(src, dst)

        monkeypatch.setattr(coordinator_module.os, "replace", replace)

        coordinator_module._promote(staging, destination)

        assert destination.read_text() == "new"
        assert not staging.exists()
        assert [p.name for p in destination.parent.iterdir()] == ["scores.db"]


class TestInterval:
    """Tests for the periodic pull."""

    def test_interval_pulls_periodically(
        self, paths: ProjectPaths, server: FakeServer, make_coordinator
    ) -> None:
        write_file(paths.to_src(DB), "old")
        coordinator = make_coordinator()
        coordinator.start_interval(0.02)

        server.put(REMOTE_DB, b"new")

        assert wait_until(lambda: paths.to_src(DB).read_text() == "new")
        coordinator.stop_interval()
        assert not coordinator.interval_running

    def test_second_interval_rejected(self, make_coordinator) -> None:
        coordinator = make_coordinator()
        coordinator.start_interval(10)

        with pytest.raises(RuntimeError, match="already an interval"):
            coordinator.start_interval(10)

    def test_stop_without_interval_rejected(self, make_coordinator) -> None:
        with pytest.raises(RuntimeError, match="no interval"):
            make_coordinator().stop_interval()
