"""One-shot sync commands for syncdeploy CLI.

Commands:
- pull: Download sync files changed on the server
- push: Upload one sync file
- status: Show cached mtimes and sync patterns
"""

from __future__ import annotations

from pathlib import Path

import click

from syncdeploy.cli.common import (
    debug_option,
    fail,
    load_credentials,
    load_project,
    project_option,
    setup_logging,
)
from syncdeploy.core.paths import from_posix
from syncdeploy.deploy import (
    CacheCorruptError,
    ChangeTracker,
    FileCategory,
    NotASyncFileError,
    Orchestrator,
    SyncPatternRegistry,
    build_orchestrator,
)
from syncdeploy.transport import ftp_factory


def _open_engine(project: Path, debug: bool) -> Orchestrator:
    config = load_project(project, debug=debug or None)
    ftp_config = load_credentials(config)
    try:
        orchestrator = build_orchestrator(config, ftp_factory(ftp_config, debug=config.debug))
    except (CacheCorruptError, ValueError) as e:
        fail(str(e))
    orchestrator.start()
    return orchestrator


@click.command()
@project_option
@debug_option
def pull(project: Path, debug: bool) -> None:
    """Download every sync file that changed on the server."""
    setup_logging(debug)
    orchestrator = _open_engine(project, debug)
    try:
        ran = orchestrator.coordinator.pull()
    finally:
        orchestrator.stop()
    click.echo("Pull complete." if ran else "Pull skipped.")


@click.command()
@click.argument("path")
@project_option
@debug_option
def push(path: str, project: Path, debug: bool) -> None:
    """Upload the sync file PATH (relative to the source directory)."""
    setup_logging(debug)
    path = from_posix(path)
    orchestrator = _open_engine(project, debug)
    try:
        try:
            future = orchestrator.coordinator.push(path)
        except NotASyncFileError as e:
            fail(str(e))
        result = future.result()
        if not result.success:
            fail(f"Push failed: {result.error}")
        mtime_ms = orchestrator.paths.to_src(path).stat().st_mtime_ns / 1_000_000
        orchestrator.tracker.commit(path, mtime_ms, FileCategory.SYNC_FILE)
    finally:
        orchestrator.stop()
    click.echo(f"Pushed {path}.")


@click.command()
@project_option
def status(project: Path) -> None:
    """Show sync patterns and the local mtime cache."""
    config = load_project(project)
    try:
        tracker = ChangeTracker(config.mtime_cache_file)
    except CacheCorruptError as e:
        fail(str(e))

    registry = SyncPatternRegistry(config.sync_patterns_file, config.src_dir)
    registry.load()

    click.echo(f"Project: {config.project_dir}")
    click.echo(f"Source:  {config.src_dir}")
    click.echo(f"Mirror:  {config.dest_dir}")
    click.echo("")

    patterns = registry.patterns
    click.echo(f"Sync patterns ({len(patterns)}):")
    for pattern in patterns:
        click.echo(f"  {pattern}")
    click.echo("")

    files = tracker.tracked_files()
    synced = [f.path for f in files if registry.matches(f.path)]
    click.echo(f"Tracked files: {len(files)} ({len(files) - len(synced)} built, {len(synced)} synced)")
    for tracked in files:
        marker = "S" if tracked.path in synced else "B"
        click.echo(f"  [{marker}] {tracked.path}")
