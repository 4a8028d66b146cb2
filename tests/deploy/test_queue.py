"""Tests for the per-path build queue."""

from __future__ import annotations

import threading
import time
from collections.abc import Iterator

import pytest

from syncdeploy.deploy.queue import BuildQueue
from syncdeploy.deploy.types import TaskResult, TaskStatus


@pytest.fixture
def queue() -> Iterator[BuildQueue]:
    """Create a queue and shut it down after the test."""
    q = BuildQueue(max_workers=8)
    yield q
    q.shutdown(wait=False)


class TestSerialization:
    """Tasks for one path run one at a time, in order."""

    def test_same_path_runs_in_enqueue_order(self, queue: BuildQueue) -> None:
        """Tasks on one path complete in the order they were queued."""
        order: list[int] = []

        def task(n: int):
            def run() -> None:
                time.sleep(0.01 * (5 - n))
                order.append(n)

            return run

        futures = [queue.enqueue("app.js", task(n)) for n in range(5)]
        for future in futures:
            future.result(timeout=5)

        assert order == [0, 1, 2, 3, 4]

    def test_same_path_never_overlaps(self, queue: BuildQueue) -> None:
        """Two tasks on one path are never running at the same time."""
        active = 0
        peak = 0
        lock = threading.Lock()

        def task() -> None:
            nonlocal active, peak
            with lock:
                active += 1
                peak = max(peak, active)
            time.sleep(0.01)
            with lock:
                active -= 1

        futures = [queue.enqueue("index.php", task) for _ in range(10)]
        for future in futures:
            future.result(timeout=5)

        assert peak == 1

    def test_different_paths_run_in_parallel(self, queue: BuildQueue) -> None:
        """A slow task on one path does not hold up another path."""
        release = threading.Event()
        other_done = threading.Event()

        slow = queue.enqueue("slow.js", lambda: release.wait(5))
        fast = queue.enqueue("fast.js", other_done.set)

        assert fast.result(timeout=5).success
        assert other_done.is_set()
        assert not slow.done()
        release.set()
        assert slow.result(timeout=5).success


class TestFailures:
    """A failing task is reported and does not poison its path."""

    def test_failure_resolves_future_with_error(self, queue: BuildQueue) -> None:
        """The future resolves with a FAILED result instead of raising."""

        def boom() -> None:
            raise RuntimeError("build broke")

        result = queue.enqueue("app.js", boom, "build").result(timeout=5)

        assert result.status == TaskStatus.FAILED
        assert not result.success
        assert isinstance(result.error, RuntimeError)
        assert result.description == "build"
        assert result.path == "app.js"

    def test_failure_does_not_block_later_tasks(self, queue: BuildQueue) -> None:
        """Tasks queued after a failure on the same path still run."""
        ran: list[str] = []

        def boom() -> None:
            raise RuntimeError("build broke")

        queue.enqueue("app.js", boom)
        after = queue.enqueue("app.js", lambda: ran.append("after"))

        assert after.result(timeout=5).success
        assert ran == ["after"]

    def test_results_reach_sink(self) -> None:
        """Every result is passed to the on_result sink."""
        results: list[TaskResult] = []
        queue = BuildQueue(max_workers=2, on_result=results.append)

        def boom() -> None:
            raise ValueError("nope")

        queue.enqueue("a.js", lambda: None, "build")
        queue.enqueue("b.js", boom, "remove")
        queue.shutdown(wait=True)

        by_path = {r.path: r for r in results}
        assert by_path["a.js"].status == TaskStatus.COMPLETED
        assert by_path["b.js"].status == TaskStatus.FAILED
        assert by_path["b.js"].description == "remove"

    def test_broken_sink_does_not_stall_queue(self) -> None:
        """An exception in the sink is logged and the queue keeps going."""

        def sink(result: TaskResult) -> None:
            raise RuntimeError("sink broke")

        queue = BuildQueue(max_workers=2, on_result=sink)
        first = queue.enqueue("a.js", lambda: None)
        second = queue.enqueue("a.js", lambda: None)

        assert first.result(timeout=5).success
        assert second.result(timeout=5).success
        queue.shutdown()


class TestLifecycle:
    """Tests for idle tracking and shutdown."""

    def test_wait_idle_and_pending_count(self, queue: BuildQueue) -> None:
        """pending_count drops to zero once all tasks have run."""
        release = threading.Event()
        queue.enqueue("a.js", lambda: release.wait(5))
        queue.enqueue("a.js", lambda: None)

        assert queue.pending_count == 2
        assert queue.is_busy("a.js")
        assert not queue.wait_idle(timeout=0.05)

        release.set()
        assert queue.wait_idle(timeout=5)
        assert queue.pending_count == 0
        assert not queue.is_busy("a.js")

    def test_enqueue_after_shutdown_raises(self) -> None:
        """A shut down queue refuses new tasks."""
        queue = BuildQueue(max_workers=1)
        queue.shutdown()

        with pytest.raises(RuntimeError):
            queue.enqueue("a.js", lambda: None)

    def test_shutdown_waits_for_queued_tasks(self) -> None:
        """shutdown(wait=True) lets already queued tasks finish."""
        ran: list[int] = []
        queue = BuildQueue(max_workers=1)
        for n in range(3):
            queue.enqueue("a.js", lambda n=n: (time.sleep(0.01), ran.append(n)))

        queue.shutdown(wait=True)

        assert ran == [0, 1, 2]

    def test_result_timing(self, queue: BuildQueue) -> None:
        """Results carry a non-negative elapsed time."""
        result = queue.enqueue("a.js", lambda: time.sleep(0.01)).result(timeout=5)

        assert result.elapsed >= 0.0
