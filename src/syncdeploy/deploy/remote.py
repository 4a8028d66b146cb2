"""Remote file operations on a borrowed transport session.

These helpers work around what the hosting server expects:
- directories are created one segment at a time and chmod-ed to 755
- new artifacts are chmod-ed to 644, sync files to 666
- a missing file ("550") means "never modified" when reading its mtime
- an upload into a missing directory creates it and retries once

All functions take a session that the caller borrowed from the pool.
"""

from __future__ import annotations

import logging
import posixpath
from datetime import timedelta
from typing import TYPE_CHECKING

from syncdeploy.transport.base import RemoteNotFoundError

if TYPE_CHECKING:
    from pathlib import Path

    from syncdeploy.transport.base import Transport

logger = logging.getLogger(__name__)

DIR_MODE = "755"
ARTIFACT_MODE = "644"
SYNC_FILE_MODE = "666"


def chmod(transport: Transport, mode: str, remote_path: str) -> None:
    """Change permissions with ``SITE CHMOD``."""
    transport.send(f"SITE CHMOD {mode} {remote_path}")


def ensure_dir_with_perm(transport: Transport, remote_dir: str) -> None:
    """Recursively create a remote directory with 755 permissions.

    Existing segments are kept (the ``MKD`` error is ignored). Leaves the
    session's working directory at ``remote_dir``.
    """
    if remote_dir.startswith("/"):
        transport.cd("/")
    for name in (n for n in remote_dir.split("/") if n):
        transport.send(f"MKD {name}", ignore_errors=True)
        chmod(transport, DIR_MODE, name)
        transport.cd(name)


def last_mod_ms(transport: Transport, remote_path: str, offset_hours: float = 0.0) -> float:
    """Remote modification time in ms since the epoch.

    Args:
        transport: Borrowed session.
        remote_path: Remote file.
        offset_hours: Correction subtracted from the server's clock.

    Returns:
        The adjusted mtime, or 0 when the file does not exist.
    """
    try:
        mtime = transport.last_mod(remote_path)
    except RemoteNotFoundError:
        return 0.0
    return (mtime - timedelta(hours=offset_hours)).timestamp() * 1000


def check_exists(transport: Transport, remote_path: str) -> bool:
    """Check whether a remote file exists by listing its directory.

    Must not run while a transfer is active on the same session.
    """
    try:
        transport.cd(posixpath.dirname(remote_path) or "/")
        entries = transport.list()
    except RemoteNotFoundError:
        # The directory itself does not exist
        return False
    name = posixpath.basename(remote_path)
    return any(entry.name == name for entry in entries)


def put_file(transport: Transport, local_path: Path, remote_path: str) -> bool:
    """Upload a local file, creating missing remote directories.

    Returns:
        True if the remote directory had to be created.
    """
    try:
        with open(local_path, "rb") as f:
            transport.upload(f, remote_path)
        return False
    except RemoteNotFoundError:
        ensure_dir_with_perm(transport, posixpath.dirname(remote_path))
    with open(local_path, "rb") as f:
        transport.upload(f, remote_path)
    return True


def upload_artifact(transport: Transport, local_path: Path, remote_path: str) -> bool:
    """Upload a built artifact, chmod-ing new files to 644.

    Returns:
        True if the remote file was created, False if it was replaced.
    """
    existed = check_exists(transport, remote_path)
    created_dirs = put_file(transport, local_path, remote_path)
    if existed:
        logger.info("Updated remote file %s", remote_path)
        return False
    chmod(transport, ARTIFACT_MODE, remote_path)
    if created_dirs:
        logger.info("Created %s (and missing directories) remotely", remote_path)
    else:
        logger.info("Created %s remotely", remote_path)
    return True


def remove_file(transport: Transport, remote_path: str) -> None:
    """Delete a remote file; a file that is already gone is fine."""
    try:
        transport.send(f"DELE {remote_path}")
    except RemoteNotFoundError:
        logger.debug("Remote file %s already absent", remote_path)


def remove_dir(transport: Transport, remote_dir: str) -> None:
    """Delete a remote directory and everything below it."""
    try:
        entries = transport.list(remote_dir)
    except RemoteNotFoundError:
        logger.debug("Remote directory %s already absent", remote_dir)
        return
    for entry in entries:
        child = posixpath.join(remote_dir, entry.name)
        if entry.is_dir:
            remove_dir(transport, child)
            continue
        try:
            transport.send(f"DELE {child}")
        except RemoteNotFoundError:
            # NLST listings do not tell directories apart
            remove_dir(transport, child)
    transport.send(f"RMD {remote_dir}")
