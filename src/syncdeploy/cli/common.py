"""Shared helpers for syncdeploy CLI commands."""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Any, NoReturn

import click

from syncdeploy.core.config import (
    ConfigError,
    DeployConfig,
    FTPConfig,
    load_config,
    load_ftp_config,
)

LOG_FORMAT = "[%(asctime)s] %(message)s"
LOG_DATE_FORMAT = "%H:%M:%S"

project_option = click.option(
    "--project",
    "-p",
    type=click.Path(file_okay=False, path_type=Path),
    default=".",
    show_default=True,
    help="Project directory holding data/.",
)
debug_option = click.option(
    "--debug", is_flag=True, help="Verbose logs and FTP command tracing."
)


def setup_logging(debug: bool = False) -> None:
    """Send syncdeploy logs to stdout with a time prefix."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))

    syncdeploy_logger = logging.getLogger("syncdeploy")
    # Remove any existing handlers
    for existing in syncdeploy_logger.handlers[:]:
        syncdeploy_logger.removeHandler(existing)
    syncdeploy_logger.addHandler(handler)
    syncdeploy_logger.setLevel(logging.DEBUG if debug else logging.INFO)
    # Prevent propagation to root logger
    syncdeploy_logger.propagate = False


def fail(message: str) -> NoReturn:
    """Print an error and exit with status 1."""
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


def load_project(project: Path, **overrides: Any) -> DeployConfig:
    """Load the project configuration or exit."""
    try:
        return load_config(project, **overrides)
    except ConfigError as e:
        fail(str(e))


def load_credentials(config: DeployConfig) -> FTPConfig:
    """Load the FTP credentials of a project or exit."""
    try:
        return load_ftp_config(config.ftp_config_file)
    except ConfigError as e:
        fail(str(e))
