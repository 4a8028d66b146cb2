"""Watch command for syncdeploy CLI.

Commands:
- watch: Build, upload and sync continuously
"""

from __future__ import annotations

import logging
import time
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

logger = logging.getLogger(__name__)


@click.command()
@project_option
@click.option(
    "--interval",
    type=click.FloatRange(min=0, min_open=True),
    default=None,
    help="Seconds between pull passes (default 1).",
)
@debug_option
def watch(project: Path, interval: float | None, debug: bool) -> None:
    """Watch the source tree and keep the server up to date.

    Changed files are built and uploaded, sync files are pushed, deletions
    are mirrored, and sync files changed on the server are pulled back.
    """
    from syncdeploy.deploy import CacheCorruptError, FileWatcher, build_orchestrator
    from syncdeploy.transport import ftp_factory

    setup_logging(debug)
    config = load_project(project, pull_interval=interval, debug=debug or None)
    ftp_config = load_credentials(config)

    try:
        orchestrator = build_orchestrator(config, ftp_factory(ftp_config, debug=config.debug))
    except (CacheCorruptError, ValueError) as e:
        fail(str(e))

    try:
        watcher = FileWatcher(
            config.src_dir,
            orchestrator.handle_event,
            on_ready=orchestrator.on_ready,
            ignore_patterns=config.ignore_patterns,
        )
    except ValueError as e:
        orchestrator.stop()
        fail(str(e))

    orchestrator.start()
    logger.info("FTP pool initialized for %s", ftp_config.host)
    logger.info(">>> Building the source code")
    watcher.start()
    click.echo("Watching for changes... (Ctrl+C to stop)")

    try:
        while True:
            time.sleep(1.0)
    except KeyboardInterrupt:
        click.echo("\nStopping...")
    finally:
        watcher.stop()
        orchestrator.stop()
