"""Shared fixtures: an in-memory FTP server and a project layout."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest

from syncdeploy.core.paths import ProjectPaths
from tests.fakes import FakeServer, FakeTransport


@pytest.fixture
def server() -> FakeServer:
    """Create an empty in-memory FTP server."""
    return FakeServer()


@pytest.fixture
def transport_factory(server: FakeServer) -> Callable[[], FakeTransport]:
    """Factory returning unconnected sessions on the fake server."""
    return lambda: FakeTransport(server)


@pytest.fixture
def project_dir(tmp_path: Path) -> Path:
    """Create a project layout with ``../src`` and ``data/``."""
    project = tmp_path / "project"
    (project / "data").mkdir(parents=True)
    (tmp_path / "src").mkdir()
    return project


@pytest.fixture
def paths(project_dir: Path) -> ProjectPaths:
    """Resolved directories of the test project."""
    root = project_dir.resolve()
    return ProjectPaths(src=root.parent / "src", dest=root / "server", staging=root / ".sync")
