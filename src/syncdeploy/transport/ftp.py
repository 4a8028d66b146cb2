"""FTP implementation of the transport contract.

Wraps :class:`ftplib.FTP` (or :class:`ftplib.FTP_TLS` when the config asks
for a secure session) and translates its reply errors into
:class:`TransportError` with the numeric reply code attached.
"""

from __future__ import annotations

import ftplib
import logging
import posixpath
from datetime import datetime, timezone
from typing import TYPE_CHECKING, BinaryIO

from syncdeploy.transport.base import (
    NOT_FOUND_CODE,
    RemoteEntry,
    RemoteNotFoundError,
    TransportError,
)

if TYPE_CHECKING:
    from syncdeploy.core.config import FTPConfig

logger = logging.getLogger(__name__)


def _reply_code(error: ftplib.Error) -> int | None:
    text = str(error)
    if len(text) >= 3 and text[:3].isdigit():
        return int(text[:3])
    return None


def _translate(error: ftplib.Error) -> TransportError:
    code = _reply_code(error)
    if code == NOT_FOUND_CODE:
        return RemoteNotFoundError(str(error))
    return TransportError(str(error), code=code)


def parse_mdtm(reply: str) -> datetime:
    """Parse an ``MDTM`` reply (``213 YYYYMMDDHHMMSS[.fff]``) as UTC."""
    value = reply.split()[-1]
    whole, _, fraction = value.partition(".")
    stamp = datetime.strptime(whole, "%Y%m%d%H%M%S").replace(tzinfo=timezone.utc)
    if fraction:
        stamp = stamp.replace(microsecond=int(fraction.ljust(6, "0")[:6]))
    return stamp


class FTPTransport:
    """One FTP session.

    Usage:
        transport = FTPTransport(FTPConfig(host="ftp.example.com", user="u"))
        transport.connect()
        with open("app.js", "rb") as f:
            transport.upload(f, "/public_html/app.js")
        transport.close()
    """

    def __init__(self, config: FTPConfig, debug: bool = False) -> None:
        self._config = config
        self._debug = debug
        self._ftp: ftplib.FTP | None = None

    @property
    def ftp(self) -> ftplib.FTP:
        """The underlying ftplib session."""
        if self._ftp is None:
            raise TransportError("Not connected")
        return self._ftp

    def connect(self) -> None:
        """Open the control connection and log in."""
        cls = ftplib.FTP_TLS if self._config.secure else ftplib.FTP
        ftp = cls(timeout=self._config.timeout)
        if self._debug:
            ftp.set_debuglevel(1)
        try:
            ftp.connect(self._config.host, self._config.port)
            ftp.login(self._config.user, self._config.password)
            if isinstance(ftp, ftplib.FTP_TLS):
                ftp.prot_p()
        except ftplib.Error as e:
            ftp.close()
            raise _translate(e) from e
        except OSError:
            ftp.close()
            raise
        self._ftp = ftp
        logger.debug("Connected to %s:%d", self._config.host, self._config.port)

    def upload(self, source: BinaryIO, remote_path: str) -> None:
        """Store a file (``STOR``)."""
        try:
            self.ftp.storbinary(f"STOR {remote_path}", source)
        except ftplib.Error as e:
            raise _translate(e) from e

    def download(self, remote_path: str, destination: BinaryIO) -> None:
        """Retrieve a file (``RETR``)."""
        try:
            self.ftp.retrbinary(f"RETR {remote_path}", destination.write)
        except ftplib.Error as e:
            raise _translate(e) from e

    def list(self, remote_dir: str | None = None) -> list[RemoteEntry]:
        """List a directory, preferring ``MLSD`` for entry types."""
        target = remote_dir or ""
        try:
            return [
                RemoteEntry(name=name, is_dir=facts.get("type") == "dir")
                for name, facts in self.ftp.mlsd(target, facts=["type"])
                if facts.get("type") not in ("cdir", "pdir")
            ]
        except ftplib.error_perm as e:
            if _reply_code(e) == NOT_FOUND_CODE:
                raise _translate(e) from e
            logger.debug("MLSD unsupported (%s), falling back to NLST", e)
        try:
            names = self.ftp.nlst(target) if target else self.ftp.nlst()
        except ftplib.error_perm as e:
            # Some servers answer an empty NLST with 550
            if "no files" in str(e).lower():
                return []
            raise _translate(e) from e
        return [
            RemoteEntry(name=posixpath.basename(name))
            for name in names
            if posixpath.basename(name) not in (".", "..")
        ]

    def cd(self, remote_dir: str) -> None:
        """Change the working directory (``CWD``)."""
        try:
            self.ftp.cwd(remote_dir)
        except ftplib.Error as e:
            raise _translate(e) from e

    def send(self, command: str, ignore_errors: bool = False) -> str:
        """Send a raw command.

        Args:
            command: Command line, e.g. ``SITE CHMOD 644 /a.js``.
            ignore_errors: Return the error reply instead of raising.
        """
        try:
            return self.ftp.sendcmd(command)
        except ftplib.Error as e:
            if ignore_errors:
                logger.debug("Ignored error for %r: %s", command, e)
                return str(e)
            raise _translate(e) from e

    def last_mod(self, remote_path: str) -> datetime:
        """Modification time via ``MDTM``."""
        return parse_mdtm(self.send(f"MDTM {remote_path}"))

    def noop(self) -> None:
        """Validate the session with ``NOOP``."""
        self.send("NOOP")

    def close(self) -> None:
        """Quit politely, falling back to dropping the socket."""
        if self._ftp is None:
            return
        ftp, self._ftp = self._ftp, None
        try:
            ftp.quit()
        except (ftplib.Error, OSError, EOFError):
            ftp.close()


def ftp_factory(config: FTPConfig, debug: bool = False):
    """Return a zero-argument callable creating unconnected FTP transports."""

    def create() -> FTPTransport:
        return FTPTransport(config, debug=debug)

    return create
