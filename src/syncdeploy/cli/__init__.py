"""Command-line interface for syncdeploy.

This module provides the main CLI entry point and assembles all commands.

Commands:
- watch: Build, upload and sync continuously
- pull: Download sync files changed on the server
- push: Upload one sync file
- status: Show cached mtimes and sync patterns
"""

from __future__ import annotations

import click

from syncdeploy.cli.common import setup_logging
from syncdeploy.cli.sync import pull, push, status
from syncdeploy.cli.watch import watch


@click.group()
@click.version_option(package_name="syncdeploy")
def cli() -> None:
    """syncdeploy - Build, deploy and sync a web project over FTP."""


# Continuous mode
cli.add_command(watch)

# One-shot commands
cli.add_command(pull)
cli.add_command(push)
cli.add_command(status)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = [
    "cli",
    "main",
    "setup_logging",
]
