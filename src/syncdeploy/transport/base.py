"""Transport contract consumed by the deploy engine.

A transport is one live session with the remote host. Sessions are not
thread-safe; the connection pool guarantees each one is used by a single
task at a time.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, BinaryIO, Protocol

if TYPE_CHECKING:
    from datetime import datetime

# FTP reply code for "file unavailable" (not found, no access)
NOT_FOUND_CODE = 550


class TransportError(Exception):
    """A remote command failed.

    Attributes:
        code: Protocol reply code, when the server sent one.
    """

    def __init__(self, message: str, code: int | None = None) -> None:
        super().__init__(message)
        self.code = code


class RemoteNotFoundError(TransportError):
    """The remote path (or one of its parents) does not exist."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code=NOT_FOUND_CODE)


@dataclass
class RemoteEntry:
    """One entry of a remote directory listing."""

    name: str
    is_dir: bool = False


class Transport(Protocol):
    """Session-level file transfer operations."""

    def connect(self) -> None:
        """Open and authenticate the session."""
        ...

    def upload(self, source: BinaryIO, remote_path: str) -> None:
        """Store the bytes of ``source`` at ``remote_path``."""
        ...

    def download(self, remote_path: str, destination: BinaryIO) -> None:
        """Write the bytes of ``remote_path`` into ``destination``."""
        ...

    def list(self, remote_dir: str | None = None) -> list[RemoteEntry]:
        """List a directory (the working directory when None)."""
        ...

    def cd(self, remote_dir: str) -> None:
        """Change the working directory."""
        ...

    def send(self, command: str, ignore_errors: bool = False) -> str:
        """Send a raw command and return the reply text."""
        ...

    def last_mod(self, remote_path: str) -> datetime:
        """Modification time of a remote file (UTC)."""
        ...

    def noop(self) -> None:
        """Cheap round trip used to validate an idle session."""
        ...

    def close(self) -> None:
        """Close the session."""
        ...
