"""Transport layer - Remote file transfer sessions."""

from syncdeploy.transport.base import (
    NOT_FOUND_CODE,
    RemoteEntry,
    RemoteNotFoundError,
    Transport,
    TransportError,
)
from syncdeploy.transport.ftp import FTPTransport, ftp_factory, parse_mdtm

__all__ = [
    "NOT_FOUND_CODE",
    "FTPTransport",
    "RemoteEntry",
    "RemoteNotFoundError",
    "Transport",
    "TransportError",
    "ftp_factory",
    "parse_mdtm",
]
